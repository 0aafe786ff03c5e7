"""Device selection for the sketch-to-image model.

Provides:
- Device detection (CUDA > MPS > CPU priority)
- Accelerator cache clearing once a job releases its model
- Device info for the /gpu endpoint
"""

import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)


class GPUManager:
    """Detects the inference device and manages its memory cache.

    Priority: CUDA > MPS > CPU. A specific device can be forced with
    ``preferred`` ("cuda", "mps" or "cpu"); "auto" keeps the priority order.
    """

    def __init__(self, preferred: str = "auto"):
        self._device_type: str = "cpu"
        self._device = None
        self._device_name: str = "CPU"
        self._memory_mb: int = 0
        self._cuda_version: Optional[str] = None

        if preferred == "auto":
            self._detect_device()
        else:
            self._force_device(preferred)

    def _detect_device(self) -> None:
        """Detect available GPU device with priority CUDA > MPS > CPU."""
        try:
            import torch

            if torch.cuda.is_available():
                self._device_type = "cuda"
                self._device = torch.device("cuda")
                self._device_name = torch.cuda.get_device_name(0)
                props = torch.cuda.get_device_properties(0)
                self._memory_mb = props.total_memory // (1024 * 1024)
                self._cuda_version = torch.version.cuda
                logger.info(
                    "CUDA GPU detected: %s (%d MB, CUDA %s)",
                    self._device_name, self._memory_mb, self._cuda_version
                )
                return

            if hasattr(torch.backends, 'mps') and torch.backends.mps.is_available():
                self._device_type = "mps"
                self._device = torch.device("mps")
                self._device_name = "Apple Silicon (MPS)"
                logger.info("Apple MPS device detected")
                return

            self._device_type = "cpu"
            self._device = torch.device("cpu")
            self._device_name = "CPU"
            logger.info("No GPU available, using CPU")

        except ImportError:
            logger.warning("PyTorch not installed, GPU detection unavailable")
            self._device_type = "cpu"
        except Exception as e:
            logger.warning("GPU detection failed: %s", e)
            self._device_type = "cpu"

    def _force_device(self, device_type: str) -> None:
        if device_type not in ("cuda", "mps", "cpu"):
            raise ValueError("Unknown device: %s" % device_type)
        self._device_type = device_type
        self._device_name = {
            "cuda": "CUDA",
            "mps": "Apple Silicon (MPS)",
            "cpu": "CPU",
        }[device_type]
        logger.info("Using forced device: %s", device_type)

    @property
    def device_type(self) -> str:
        """Device type string ('cuda', 'mps', or 'cpu')."""
        return self._device_type

    @property
    def device(self):
        """torch.device for the selected device."""
        if self._device is None:
            import torch
            self._device = torch.device(self._device_type)
        return self._device

    def is_available(self) -> bool:
        """Check if GPU is available (CUDA or MPS)."""
        return self._device_type != "cpu"

    def get_device_name(self) -> str:
        return self._device_name

    def onnx_providers(self) -> list:
        """ONNX Runtime execution providers matching the selected device."""
        try:
            import onnxruntime as ort
            available = ort.get_available_providers()
        except ImportError:
            logger.warning("ONNX Runtime not available")
            return ["CPUExecutionProvider"]

        if self._device_type == "cuda" and "CUDAExecutionProvider" in available:
            return ["CUDAExecutionProvider", "CPUExecutionProvider"]
        elif self._device_type == "mps" and "CoreMLExecutionProvider" in available:
            return ["CoreMLExecutionProvider", "CPUExecutionProvider"]

        return ["CPUExecutionProvider"]

    def get_memory_info(self) -> Dict[str, Any]:
        """Current accelerator memory usage (CUDA only reports numbers)."""
        if self._device_type == "cuda":
            try:
                import torch
                return {
                    "device": "cuda",
                    "allocated_mb": torch.cuda.memory_allocated() / (1024**2),
                    "reserved_mb": torch.cuda.memory_reserved() / (1024**2),
                    "total_mb": self._memory_mb,
                }
            except Exception as e:
                logger.warning("Failed to get CUDA memory info: %s", e)
                return {"device": "cuda", "error": str(e)}

        elif self._device_type == "mps":
            return {
                "device": "mps",
                "info": "Apple MPS - limited memory introspection available"
            }

        return {
            "device": "cpu",
            "info": "Using system RAM"
        }

    def clear_cache(self) -> None:
        """Clear the accelerator memory cache. Safe on any device type."""
        try:
            import torch

            if self._device_type == "cuda":
                torch.cuda.empty_cache()
                logger.debug("Cleared CUDA memory cache")

            elif self._device_type == "mps":
                if hasattr(torch.mps, 'empty_cache'):
                    torch.mps.empty_cache()
                    logger.debug("Cleared MPS memory cache")

        except Exception as e:
            logger.warning("Failed to clear GPU cache: %s", e)

    def get_info(self) -> Dict[str, Any]:
        """Device info for the /gpu endpoint."""
        info = {
            "available": self._device_type != "cpu",
            "device_type": self._device_type,
            "device_string": str(self.device),
            "name": self._device_name
        }

        if self._device_type == "cuda":
            info.update({
                "cuda_version": self._cuda_version,
                "total_memory_mb": self._memory_mb,
                **self.get_memory_info()
            })

        return info


_gpu_manager_instance: Optional[GPUManager] = None


def get_gpu_manager() -> GPUManager:
    """Get or create the shared GPUManager instance."""
    global _gpu_manager_instance
    if _gpu_manager_instance is None:
        _gpu_manager_instance = GPUManager()
    return _gpu_manager_instance
