"""Shared fixtures for sketch2image_server tests.

This module provides pytest fixtures for:
- Synthetic sketch images (model-sized and oversized) and an oversized PNG header
- In-process model callables
- A TorchScript model directory for backend and API tests
- Test client for FastAPI endpoints
"""

import io
import json
import struct
import zlib
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from sketch2image_server.utils.tensor_codec import MODEL_INPUT_HEIGHT, MODEL_INPUT_WIDTH

# Import test client only when available
try:
    from fastapi.testclient import TestClient
    from sketch2image_server.main import app
    FASTAPI_AVAILABLE = True
except ImportError:
    FASTAPI_AVAILABLE = False


@pytest.fixture
def sketch_image() -> Image.Image:
    """A 178x218 RGB image with random content and a dark stroke."""
    rng = np.random.default_rng(42)
    img = rng.integers(0, 256, (MODEL_INPUT_HEIGHT, MODEL_INPUT_WIDTH, 3), dtype=np.uint8)
    img[100:110, 20:150] = [0, 0, 0]
    return Image.fromarray(img)


@pytest.fixture
def large_sketch_image() -> Image.Image:
    """A 400x300 white image with a black rectangle outline."""
    img = np.full((300, 400, 3), 255, dtype=np.uint8)
    img[50:52, 50:350] = 0
    img[248:250, 50:350] = 0
    img[50:250, 50:52] = 0
    img[50:250, 348:350] = 0
    return Image.fromarray(img)


@pytest.fixture
def oversized_png_bytes() -> bytes:
    """A valid 1x1 PNG whose header claims 20000x20000 pixels."""
    buf = io.BytesIO()
    Image.new("RGB", (1, 1)).save(buf, format="PNG")
    data = bytearray(buf.getvalue())
    # IHDR width/height follow the signature and chunk header; CRC covers type + data
    data[16:24] = struct.pack(">II", 20000, 20000)
    data[29:33] = struct.pack(">I", zlib.crc32(bytes(data[12:29])) & 0xffffffff)
    return bytes(data)


@pytest.fixture
def identity_model():
    """Model callable returning its input unchanged."""
    def model(tensor):
        return tensor.copy()
    return model


@pytest.fixture
def torchscript_model_dir(tmp_path) -> Path:
    """Model directory holding a TorchScript colour-inverting model.

    The model computes ``1 - x`` on a (1, H, W, 3) tensor, so its output is
    predictable without any trained weights.

    Returns:
        Path to the models root (containing one model directory)
    """
    try:
        import torch
    except ImportError:
        pytest.skip("PyTorch not available")

    class Invert(torch.nn.Module):
        def forward(self, x):
            return 1.0 - x

    models_dir = tmp_path / "models"
    model_dir = models_dir / "invert"
    model_dir.mkdir(parents=True)

    example = torch.zeros(1, MODEL_INPUT_HEIGHT, MODEL_INPUT_WIDTH, 3)
    traced = torch.jit.trace(Invert(), example)
    torch.jit.save(traced, str(model_dir / "model.pt"))

    metadata = {
        "id": "invert",
        "name": "Invert Test Model",
        "input_size": [MODEL_INPUT_WIDTH, MODEL_INPUT_HEIGHT],
        "input_layout": "nhwc"
    }
    with open(model_dir / "metadata.json", "w") as f:
        json.dump(metadata, f, indent=2)

    return models_dir


@pytest.fixture
def client(torchscript_model_dir):
    """FastAPI test client with lifespan context and the invert model."""
    if not FASTAPI_AVAILABLE:
        pytest.skip("FastAPI test client not available")

    app.state.models_dir = str(torchscript_model_dir)
    app.state.default_model = None
    app.state.device = "cpu"

    # Use context manager to invoke lifespan
    with TestClient(app) as client:
        yield client


@pytest.fixture
def empty_client(tmp_path):
    """FastAPI test client with no models registered."""
    if not FASTAPI_AVAILABLE:
        pytest.skip("FastAPI test client not available")

    app.state.models_dir = str(tmp_path / "no_models")
    app.state.default_model = None
    app.state.device = "cpu"

    with TestClient(app) as client:
        yield client


@pytest.fixture
def skip_without_cuda():
    """Skip test if CUDA is not available."""
    try:
        import torch
        if not torch.cuda.is_available():
            pytest.skip("CUDA not available")
    except ImportError:
        pytest.skip("PyTorch not available")
