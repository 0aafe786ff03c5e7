"""Sketch-to-image generation endpoints."""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Request, HTTPException, Form, File, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel

from ..exceptions import Busy, ModelFailure, ResourceAcquisitionFailure, ShapeMismatch
from ..services.model_backend import load_model_resource
from ..utils.tensor_codec import image_from_bytes, image_to_png_bytes

logger = logging.getLogger(__name__)

router = APIRouter()


class RunnerStatusResponse(BaseModel):
    """Job slot status."""
    state: str
    job_id: Optional[str] = None


@router.get("/generate/status", response_model=RunnerStatusResponse)
async def get_runner_status(request: Request):
    """Report whether a generation job is currently running."""
    runner = request.app.state.job_runner
    return RunnerStatusResponse(**runner.get_status())


@router.post(
    "/generate",
    response_class=Response,
    responses={200: {"content": {"image/png": {}}}}
)
async def generate(
    request: Request,
    image: UploadFile = File(...),
    model_id: Optional[str] = Form(None),
):
    """Translate an uploaded sketch into a generated image (PNG).

    Only one generation runs at a time; a request arriving while another is
    in progress gets 409 instead of waiting.
    """
    registry = request.app.state.model_registry
    runner = request.app.state.job_runner
    gpu_manager = request.app.state.gpu_manager

    model_info = registry.get_model(model_id) if model_id else registry.get_default_model()
    if model_info is None:
        if model_id:
            detail = "Model not found: %s" % model_id
        elif registry.default_model:
            detail = "Default model not found: %s" % registry.default_model
        else:
            detail = "Model not found: no default model configured"
        raise HTTPException(status_code=404, detail=detail)

    try:
        sketch = image_from_bytes(await image.read())
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    try:
        resource = load_model_resource(model_info.path, gpu_manager)
    except ResourceAcquisitionFailure as e:
        raise HTTPException(status_code=503, detail=str(e))

    loop = asyncio.get_running_loop()
    result = loop.create_future()

    def on_complete(output):
        if not result.done():
            result.set_result(output)

    def on_error(error):
        if not result.done():
            result.set_exception(error)

    try:
        job = runner.submit(sketch, resource, on_complete, on_error,
                            dispatch=loop.call_soon_threadsafe)
    except Busy as e:
        raise HTTPException(status_code=409, detail=str(e))

    try:
        output = await result
    except ShapeMismatch as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ResourceAcquisitionFailure as e:
        raise HTTPException(status_code=503, detail=str(e))
    except ModelFailure as e:
        raise HTTPException(status_code=500, detail=str(e))

    logger.info("Generated image for job %s with model %s", job.job_id, model_info.id)
    return Response(
        content=image_to_png_bytes(output),
        media_type="image/png",
        headers={"X-Job-Id": job.job_id}
    )
