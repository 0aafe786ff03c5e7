"""Errors raised by the codec, the job runner and the model backends."""

from typing import Any, Optional


class Sketch2ImageError(Exception):
    """Base class for sketch2image_server errors."""


class ShapeMismatch(Sketch2ImageError, ValueError):
    """An image or tensor does not have the expected dimensions/length."""

    def __init__(self, message: str, expected: Any = None, actual: Any = None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class Busy(Sketch2ImageError, RuntimeError):
    """A job was submitted while another one is still running."""

    def __init__(self, job_id: Optional[str] = None):
        super().__init__(
            "Inference runner is busy with job %s" % job_id if job_id
            else "Inference runner is busy"
        )
        self.job_id = job_id


class ModelFailure(Sketch2ImageError, RuntimeError):
    """The model call raised an error."""


class ResourceAcquisitionFailure(Sketch2ImageError, RuntimeError):
    """The model resource could not be loaded or acquired."""
