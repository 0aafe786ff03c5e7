"""Tests for GPU manager service.

Tests cover:
- Device detection (CUDA, MPS, CPU)
- Forced device selection
- Memory information retrieval
- Cache clearing
- API info structure
"""

import pytest


class TestGPUManager:
    """Test suite for GPUManager class."""

    def test_device_detection(self):
        """Verify correct device type detection."""
        from sketch2image_server.services.gpu_manager import GPUManager

        gm = GPUManager()

        assert gm.device_type in ["cuda", "mps", "cpu"]

        import torch
        assert isinstance(gm.device, torch.device)
        assert gm.device.type == gm.device_type

    def test_is_available(self):
        """Test GPU availability check."""
        from sketch2image_server.services.gpu_manager import GPUManager

        gm = GPUManager()

        assert gm.is_available() is (gm.device_type in ["cuda", "mps"])

    def test_forced_cpu(self):
        """Forcing cpu ignores any accelerator."""
        from sketch2image_server.services.gpu_manager import GPUManager

        gm = GPUManager(preferred="cpu")

        assert gm.device_type == "cpu"
        assert gm.get_device_name() == "CPU"
        assert gm.is_available() is False
        assert str(gm.device) == "cpu"

    def test_unknown_device_rejected(self):
        """An unknown device name raises ValueError."""
        from sketch2image_server.services.gpu_manager import GPUManager

        with pytest.raises(ValueError):
            GPUManager(preferred="tpu")

    def test_memory_info_structure(self):
        """Test memory info returns correct structure."""
        from sketch2image_server.services.gpu_manager import GPUManager

        gm = GPUManager()
        mem_info = gm.get_memory_info()

        assert isinstance(mem_info, dict)
        assert "device" in mem_info

        if gm.device_type == "cuda":
            assert mem_info["allocated_mb"] >= 0
            assert mem_info["total_mb"] >= 0

    def test_cache_clear_no_raise(self):
        """Test GPU cache clearing doesn't raise exceptions."""
        from sketch2image_server.services.gpu_manager import GPUManager

        GPUManager().clear_cache()
        GPUManager(preferred="cpu").clear_cache()

    def test_onnx_providers_cpu(self):
        """CPU always maps to the CPU execution provider."""
        from sketch2image_server.services.gpu_manager import GPUManager

        gm = GPUManager(preferred="cpu")

        assert gm.onnx_providers() == ["CPUExecutionProvider"]

    def test_get_info_structure(self):
        """Test GPU info API response structure."""
        from sketch2image_server.services.gpu_manager import GPUManager

        gm = GPUManager()
        info = gm.get_info()

        assert isinstance(info["available"], bool)
        assert info["device_type"] in ["cuda", "mps", "cpu"]
        assert "device_string" in info
        assert "name" in info

    def test_get_info_cuda_fields(self, skip_without_cuda):
        """Test CUDA-specific info fields."""
        from sketch2image_server.services.gpu_manager import GPUManager

        info = GPUManager().get_info()

        assert info["device_type"] == "cuda"
        assert "cuda_version" in info
        assert info["total_memory_mb"] > 0

    def test_singleton_get_gpu_manager(self):
        """Test singleton pattern for get_gpu_manager."""
        from sketch2image_server.services.gpu_manager import get_gpu_manager

        assert get_gpu_manager() is get_gpu_manager()
