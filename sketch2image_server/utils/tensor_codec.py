"""Conversion between RGB images and the model's flat float tensor.

The sketch-to-image model consumes and produces a float32 tensor laid out as
[1, H, W, 3] in row-major order. For pixel index ``p = y * W + x`` and channel
``c`` (0=R, 1=G, 2=B) the value lives at flat offset ``p * 3 + c``.

Encoding divides each 8-bit channel by 255. Decoding clamps each value to
[0, 1] *before* scaling by 255 and truncates (never rounds), so golden
outputs are reproducible bit-for-bit.
"""

import io
import logging
from typing import Any, Dict, Union

import numpy as np
from PIL import Image, UnidentifiedImageError

from ..exceptions import ShapeMismatch

logger = logging.getLogger(__name__)

MODEL_INPUT_WIDTH = 178
MODEL_INPUT_HEIGHT = 218
NUM_CHANNELS = 3

ImageLike = Union[Image.Image, np.ndarray]


def tensor_length(width: int = MODEL_INPUT_WIDTH,
                  height: int = MODEL_INPUT_HEIGHT) -> int:
    """Number of float values in a tensor for a width x height image."""
    return width * height * NUM_CHANNELS


def _to_rgb_array(image: ImageLike) -> np.ndarray:
    """Return an (H, W, 3) uint8 view of an image, dropping any alpha."""
    if isinstance(image, Image.Image):
        if image.mode != "RGB":
            image = image.convert("RGB")
        return np.asarray(image, dtype=np.uint8)

    arr = np.asarray(image)
    if arr.dtype != np.uint8:
        raise ValueError("Expected uint8 pixel data, got %s" % arr.dtype)
    if arr.ndim == 2:
        arr = arr[..., np.newaxis]
    if arr.ndim != 3:
        raise ShapeMismatch(
            "Expected an (H, W, C) pixel array, got shape %s" % (arr.shape,),
            expected="(H, W, C)", actual=arr.shape)
    if arr.shape[2] == 1:
        return np.repeat(arr, NUM_CHANNELS, axis=2)
    if arr.shape[2] < NUM_CHANNELS:
        raise ShapeMismatch(
            "Expected at least %d channels, got %d" % (NUM_CHANNELS, arr.shape[2]),
            expected=NUM_CHANNELS, actual=arr.shape[2])
    return arr[..., :NUM_CHANNELS]


def image_size(image: ImageLike):
    """Return (width, height) of a PIL image or an (H, W, ...) array."""
    if isinstance(image, Image.Image):
        return image.size
    arr = np.asarray(image)
    return arr.shape[1], arr.shape[0]


def encode(image: ImageLike,
           width: int = MODEL_INPUT_WIDTH,
           height: int = MODEL_INPUT_HEIGHT) -> np.ndarray:
    """Encode an RGB image into a flat normalized float32 tensor.

    Args:
        image: PIL image or (H, W, C) uint8 array of exactly width x height
            pixels. Alpha, if present, is ignored.
        width: Expected image width
        height: Expected image height

    Returns:
        1-D float32 array of length width * height * 3 with values in [0, 1]

    Raises:
        ShapeMismatch: If the image is not width x height
    """
    pixels = _to_rgb_array(image)
    if pixels.shape[:2] != (height, width):
        raise ShapeMismatch(
            "Image is %dx%d, expected %dx%d" % (
                pixels.shape[1], pixels.shape[0], width, height),
            expected=(width, height),
            actual=(pixels.shape[1], pixels.shape[0]))

    return (pixels.astype(np.float32) / np.float32(255.0)).reshape(-1)


def decode(tensor: Any,
           width: int = MODEL_INPUT_WIDTH,
           height: int = MODEL_INPUT_HEIGHT) -> Image.Image:
    """Decode a model output tensor into an opaque RGBA image.

    Each value is clamped to [0, 1], multiplied by 255 and truncated. NaN
    decodes to 0.

    Args:
        tensor: Array-like of width * height * 3 floats. Any shape is
            accepted as long as its row-major flattening has that length,
            e.g. a (1, H, W, 3) model output.
        width: Output image width
        height: Output image height

    Returns:
        PIL image in RGBA mode with alpha 255 everywhere

    Raises:
        ShapeMismatch: If the tensor has the wrong number of elements
    """
    values = np.asarray(tensor, dtype=np.float32).reshape(-1)
    expected = tensor_length(width, height)
    if values.size != expected:
        raise ShapeMismatch(
            "Tensor has %d values, expected %d (%dx%dx%d)" % (
                values.size, expected, height, width, NUM_CHANNELS),
            expected=expected, actual=values.size)

    values = np.where(np.isnan(values), np.float32(0.0), values)
    clamped = np.clip(values, np.float32(0.0), np.float32(1.0))
    channels = (clamped * np.float32(255.0)).astype(np.uint8)

    rgba = np.empty((height, width, 4), dtype=np.uint8)
    rgba[..., :NUM_CHANNELS] = channels.reshape(height, width, NUM_CHANNELS)
    rgba[..., 3] = 255
    return Image.fromarray(rgba)


def resize_image(image: ImageLike,
                 width: int = MODEL_INPUT_WIDTH,
                 height: int = MODEL_INPUT_HEIGHT) -> Image.Image:
    """Resize an image to width x height with bilinear filtering.

    Returns the image converted to RGB; no resampling happens when it
    already has the target size.
    """
    if not isinstance(image, Image.Image):
        image = Image.fromarray(_to_rgb_array(image))
    if image.mode != "RGB":
        image = image.convert("RGB")
    if image.size == (width, height):
        return image

    logger.debug("Resizing %dx%d -> %dx%d", image.size[0], image.size[1],
                 width, height)
    return image.resize((width, height), Image.Resampling.BILINEAR)


def tensor_summary(tensor: Any) -> Dict[str, float]:
    """Summary statistics of a tensor for logging."""
    values = np.asarray(tensor, dtype=np.float32)
    if values.size == 0:
        return {"size": 0}
    return {
        "size": int(values.size),
        "min": float(np.nanmin(values)),
        "max": float(np.nanmax(values)),
        "mean": float(np.nanmean(values)),
    }


def image_from_bytes(data: bytes) -> Image.Image:
    """Decode an uploaded image file (PNG, JPEG, ...).

    Raises:
        ValueError: If the bytes are not a readable image
    """
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise ValueError("Could not decode image: %s" % e) from e
    return img


def image_to_png_bytes(image: Image.Image) -> bytes:
    """Serialize an image as PNG."""
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()
