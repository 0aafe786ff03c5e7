"""Model registry service."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Dict, Any, Tuple

from .model_backend import find_model_file, input_size_from_metadata, read_metadata

logger = logging.getLogger(__name__)

MODELS_DIR_ENV = "SKETCH2IMAGE_MODELS_DIR"
DEFAULT_MODELS_DIR = "~/.sketch2image/models"


@dataclass
class ModelInfo:
    """Information about a registered sketch-to-image model."""
    id: str
    name: str
    format: str
    path: str
    input_size: Tuple[int, int]
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "format": self.format,
            "path": self.path,
            "input_size": list(self.input_size),
            "metadata": self.metadata
        }


class ModelRegistry:
    """Registry of the model directories found under ``models_dir``.

    A model directory holds ``model.onnx`` and/or ``model.pt`` plus an
    optional ``metadata.json`` (``id``, ``name``, ``input_size``,
    ``input_layout``).
    """

    def __init__(self, models_dir: Optional[str] = None,
                 default_model: Optional[str] = None):
        if models_dir is None:
            models_dir = os.environ.get(MODELS_DIR_ENV, DEFAULT_MODELS_DIR)

        self.models_dir = Path(os.path.expanduser(models_dir))
        self.models_dir.mkdir(parents=True, exist_ok=True)
        self.default_model = default_model
        self._models: Dict[str, ModelInfo] = {}
        self._scan_models()

    def _scan_models(self):
        """Scan models directory for existing models."""
        logger.info("Scanning models directory: %s", self.models_dir)

        for model_dir in sorted(self.models_dir.iterdir()):
            if not model_dir.is_dir():
                continue
            found = find_model_file(model_dir)
            if found is None:
                continue
            try:
                metadata = read_metadata(model_dir)
                model_info = ModelInfo(
                    id=metadata.get("id", model_dir.name),
                    name=metadata.get("name", model_dir.name),
                    format=found[0],
                    path=str(model_dir),
                    input_size=input_size_from_metadata(metadata),
                    metadata=metadata
                )
                self._models[model_info.id] = model_info
                logger.info("Loaded model: %s (%s)", model_info.name, model_info.format)

            except Exception as e:
                logger.warning("Failed to load model from %s: %s", model_dir, e)

        logger.info("Found %d models", len(self._models))

    def list_models(self) -> List[ModelInfo]:
        """List all registered models."""
        return list(self._models.values())

    def get_model(self, model_id: str) -> Optional[ModelInfo]:
        """Get a specific model by ID."""
        return self._models.get(model_id)

    def get_default_model(self) -> Optional[ModelInfo]:
        """The configured default model, else the first one found."""
        if self.default_model:
            return self._models.get(self.default_model)
        if self._models:
            return next(iter(self._models.values()))
        return None
