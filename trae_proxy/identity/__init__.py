"""Upstream credentials and device identity."""
from .device import DeviceIdentity, DeviceRotator
from .tokens import CredentialManager, RedisTokenStore, TokenExchanger, TokenRefresher

__all__ = [
    "CredentialManager",
    "DeviceIdentity",
    "DeviceRotator",
    "RedisTokenStore",
    "TokenExchanger",
    "TokenRefresher",
]
