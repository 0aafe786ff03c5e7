"""Model listing endpoints."""

from typing import List

from fastapi import APIRouter, Request, HTTPException
from pydantic import BaseModel

router = APIRouter()


class ModelInfo(BaseModel):
    """Model information."""
    id: str
    name: str
    format: str
    path: str
    input_size: List[int]


class ModelsResponse(BaseModel):
    """Response for listing models."""
    models: List[ModelInfo]
    default_model: str = ""


@router.get("/models", response_model=ModelsResponse)
async def list_models(request: Request):
    """List available models."""
    model_registry = request.app.state.model_registry

    default = model_registry.get_default_model()
    return ModelsResponse(
        models=[
            ModelInfo(id=m.id, name=m.name, format=m.format, path=m.path,
                      input_size=list(m.input_size))
            for m in model_registry.list_models()
        ],
        default_model=default.id if default else ""
    )


@router.get("/models/{model_id}")
async def get_model(model_id: str, request: Request):
    """Get details for a specific model."""
    model_registry = request.app.state.model_registry

    model = model_registry.get_model(model_id)
    if model is None:
        raise HTTPException(status_code=404, detail=f"Model {model_id} not found")

    return model.to_dict()
