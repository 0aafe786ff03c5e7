"""Model resources for the sketch-to-image network.

A model resource is the opaque ``Tensor -> Tensor`` function behind the job
runner. It is acquired once per job through :meth:`ModelResource.acquire`,
which loads the artifact, yields a callable, and releases everything again
when the ``with`` block exits, whether the call succeeded or not.

Supported artifacts:
- ONNX (``model.onnx``) via onnxruntime
- TorchScript (``model.pt``) via torch.jit
- In-process callables (tests, embedding)
"""

import gc
import json
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional, Tuple

import numpy as np

from ..exceptions import ResourceAcquisitionFailure
from ..utils.tensor_codec import MODEL_INPUT_HEIGHT, MODEL_INPUT_WIDTH, NUM_CHANNELS
from .gpu_manager import GPUManager, get_gpu_manager

logger = logging.getLogger(__name__)

ONNX_FILENAME = "model.onnx"
TORCHSCRIPT_FILENAME = "model.pt"
METADATA_FILENAME = "metadata.json"

TensorFn = Callable[[np.ndarray], np.ndarray]


def read_metadata(model_dir: Path) -> Dict[str, Any]:
    """Read metadata.json from a model directory ({} when absent)."""
    metadata_path = Path(model_dir) / METADATA_FILENAME
    if not metadata_path.exists():
        return {}
    with open(metadata_path) as f:
        return json.load(f)


def find_model_file(model_path: Path) -> Optional[Tuple[str, Path]]:
    """Locate the model artifact for a directory or file path.

    Prefers ONNX over TorchScript when a directory holds both.

    Returns:
        (format, path) with format "onnx" or "torchscript", or None
    """
    model_path = Path(model_path)
    if model_path.is_file():
        if model_path.suffix == ".onnx":
            return "onnx", model_path
        if model_path.suffix in (".pt", ".pth", ".torchscript"):
            return "torchscript", model_path
        return None

    onnx_path = model_path / ONNX_FILENAME
    if onnx_path.exists():
        return "onnx", onnx_path
    pt_path = model_path / TORCHSCRIPT_FILENAME
    if pt_path.exists():
        return "torchscript", pt_path
    return None


def input_size_from_metadata(metadata: Dict[str, Any]) -> Tuple[int, int]:
    """(width, height) the model expects; 178x218 unless metadata says otherwise."""
    size = metadata.get("input_size")
    if size:
        return int(size[0]), int(size[1])
    return MODEL_INPUT_WIDTH, MODEL_INPUT_HEIGHT


class ModelResource(ABC):
    """A model that must be acquired before use and released afterwards."""

    def __init__(self, name: str,
                 input_size: Tuple[int, int] = (MODEL_INPUT_WIDTH, MODEL_INPUT_HEIGHT)):
        self.name = name
        self.input_size = input_size

    @abstractmethod
    def _open(self) -> TensorFn:
        """Load the model and return its tensor function."""

    def _close(self, handle: TensorFn) -> None:
        """Release whatever _open allocated."""

    @contextmanager
    def acquire(self) -> Iterator[TensorFn]:
        """Acquire the model for one job.

        Raises:
            ResourceAcquisitionFailure: If the model cannot be loaded
        """
        try:
            handle = self._open()
        except ResourceAcquisitionFailure:
            raise
        except Exception as e:
            raise ResourceAcquisitionFailure(
                "Failed to load model %s: %s" % (self.name, e)) from e

        logger.debug("Acquired model %s", self.name)
        try:
            yield handle
        finally:
            try:
                self._close(handle)
            except Exception as e:
                logger.warning("Error while releasing model %s: %s", self.name, e)
            logger.debug("Released model %s", self.name)


class CallableModelResource(ModelResource):
    """Wraps an in-process tensor function as a model resource."""

    def __init__(self, fn: TensorFn, name: str = "callable",
                 input_size: Tuple[int, int] = (MODEL_INPUT_WIDTH, MODEL_INPUT_HEIGHT)):
        super().__init__(name, input_size)
        self._fn = fn

    def _open(self) -> TensorFn:
        return self._fn


class _FileModelResource(ModelResource):
    """Shared layout handling for models loaded from disk."""

    def __init__(self, path: Path, gpu_manager: Optional[GPUManager] = None,
                 metadata: Optional[Dict[str, Any]] = None):
        metadata = metadata or {}
        super().__init__(metadata.get("name", Path(path).parent.name),
                         input_size_from_metadata(metadata))
        self.path = Path(path)
        self.gpu_manager = gpu_manager or get_gpu_manager()
        # Models converted from TF/TFLite are NHWC; PyTorch exports are usually NCHW
        self.channels_first = metadata.get("input_layout", "nhwc").lower() == "nchw"
        self._model = None

    def _to_model_layout(self, tensor: np.ndarray) -> np.ndarray:
        width, height = self.input_size
        batch = np.asarray(tensor, dtype=np.float32).reshape(
            1, height, width, NUM_CHANNELS)
        if self.channels_first:
            batch = np.ascontiguousarray(batch.transpose(0, 3, 1, 2))
        return batch

    def _from_model_layout(self, output: np.ndarray) -> np.ndarray:
        output = np.asarray(output, dtype=np.float32)
        if self.channels_first and output.ndim == 4:
            output = output.transpose(0, 2, 3, 1)
        return output.reshape(-1)

    def _close(self, handle: TensorFn) -> None:
        # Drop the session/module before clearing so its memory can be freed
        self._model = None
        gc.collect()
        self.gpu_manager.clear_cache()


class OnnxModelResource(_FileModelResource):
    """ONNX model run through an onnxruntime InferenceSession."""

    def _open(self) -> TensorFn:
        import onnxruntime as ort

        logger.info("Loading ONNX model from %s", self.path)
        self._model = ort.InferenceSession(
            str(self.path),
            providers=self.gpu_manager.onnx_providers()
        )
        self._input_name = self._model.get_inputs()[0].name

        def run(tensor: np.ndarray) -> np.ndarray:
            outputs = self._model.run(
                None, {self._input_name: self._to_model_layout(tensor)})
            return self._from_model_layout(outputs[0])

        return run


class TorchScriptModelResource(_FileModelResource):
    """TorchScript module loaded onto the selected device."""

    def _open(self) -> TensorFn:
        import torch

        device = self.gpu_manager.device
        logger.info("Loading TorchScript model from %s on %s", self.path, device)
        self._model = torch.jit.load(str(self.path), map_location=device)
        self._model.eval()

        def run(tensor: np.ndarray) -> np.ndarray:
            batch = torch.from_numpy(self._to_model_layout(tensor)).to(device)
            with torch.no_grad():
                output = self._model(batch)
            if isinstance(output, (tuple, list)):
                output = output[0]
            return self._from_model_layout(output.detach().cpu().numpy())

        return run


def load_model_resource(
    model_path: str,
    gpu_manager: Optional[GPUManager] = None
) -> ModelResource:
    """Build the resource for a model directory or model file.

    The artifact is only located here; loading happens in acquire().

    Raises:
        ResourceAcquisitionFailure: If no supported model file exists
    """
    path = Path(model_path)
    found = find_model_file(path)
    if found is None:
        raise ResourceAcquisitionFailure("No model found at %s" % model_path)

    model_format, file_path = found
    metadata = read_metadata(file_path.parent)
    metadata.setdefault("name", file_path.parent.name if path.is_dir() else file_path.stem)

    if model_format == "onnx":
        return OnnxModelResource(file_path, gpu_manager, metadata)
    return TorchScriptModelResource(file_path, gpu_manager, metadata)
