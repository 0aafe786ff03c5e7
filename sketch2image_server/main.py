"""Main entry point for the Sketch2Image server."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from . import __version__
from .routers import health, models, generate

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting Sketch2Image Server...")
    from .services.gpu_manager import GPUManager
    gpu_manager = GPUManager(preferred=getattr(app.state, "device", "auto"))
    app.state.gpu_manager = gpu_manager

    from .services.model_registry import ModelRegistry
    model_registry = ModelRegistry(
        models_dir=getattr(app.state, "models_dir", None),
        default_model=getattr(app.state, "default_model", None)
    )
    app.state.model_registry = model_registry

    # One background slot shared by every request
    from .services.job_runner import InferenceJobRunner
    job_runner = InferenceJobRunner()
    app.state.job_runner = job_runner

    yield

    logger.info("Shutting down Sketch2Image Server...")
    job_runner.shutdown()


app = FastAPI(
    title="Sketch2Image Server",
    description="Sketch-to-image translation with a pre-trained model",
    version=__version__,
    lifespan=lifespan
)

app.include_router(health.router, prefix="/api/v1", tags=["health"])
app.include_router(models.router, prefix="/api/v1", tags=["models"])
app.include_router(generate.router, prefix="/api/v1", tags=["generate"])


def run():
    """Run the server.

    Passes the app object directly to uvicorn instead of an import string
    so the settings placed on app.state survive.
    """
    import argparse
    parser = argparse.ArgumentParser(description="Sketch2Image Server")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8766, help="Port to bind to")
    parser.add_argument("--models-dir", default=None,
                        help="Directory holding model subdirectories "
                             "(default: $SKETCH2IMAGE_MODELS_DIR or ~/.sketch2image/models)")
    parser.add_argument("--default-model", default=None,
                        help="Model id used when a request names none")
    parser.add_argument("--device", default="auto",
                        choices=["auto", "cuda", "mps", "cpu"],
                        help="Inference device")
    args = parser.parse_args()

    app.state.models_dir = args.models_dir
    app.state.default_model = args.default_model
    app.state.device = args.device

    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_level="info"
    )


if __name__ == "__main__":
    run()
