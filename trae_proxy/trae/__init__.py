"""Adapter for the upstream IDE chat service."""
from .adapter import ChatRun, ContinuationPolicy, TraeAdapter

__all__ = ["ChatRun", "ContinuationPolicy", "TraeAdapter"]
