"""OpenAI-compatible proxy for the Trae IDE chat service."""
from .app import create_app

__all__ = ["create_app"]
