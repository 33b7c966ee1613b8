"""Model registry package."""
from .registry import ModelRegistry
from .model_config import ModelConfig

__all__ = ["ModelRegistry", "ModelConfig"]
