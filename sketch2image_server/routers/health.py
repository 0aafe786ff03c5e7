"""Health check endpoints."""

import logging

from fastapi import APIRouter, Request

from .. import __version__

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check():
    """Check server health status."""
    return {"status": "healthy", "version": __version__}


@router.get("/gpu")
async def gpu_info(request: Request):
    """Get inference device information."""
    gpu_manager = request.app.state.gpu_manager
    return gpu_manager.get_info()
