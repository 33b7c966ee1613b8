"""Process-wide services shared by all requests."""
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .common.retry import RetryPolicy
from .identity import (
    CredentialManager,
    DeviceRotator,
    RedisTokenStore,
    TokenExchanger,
    TokenRefresher,
)
from .registry.registry import ModelRegistry
from .trae.adapter import ContinuationPolicy, TraeAdapter
from .trae.client import UpstreamClient
from .trae.request_adapter import RequestAdapter
from .trae.sessions import SessionRegistry


@dataclass
class Services:
    registry: ModelRegistry
    credentials: CredentialManager
    devices: DeviceRotator
    sessions: SessionRegistry
    client: UpstreamClient
    adapter: TraeAdapter
    refresher: Optional[TokenRefresher] = None


def build_services(config: Mapping[str, Any]) -> Services:
    """Wire the services from a Flask config mapping."""
    registry = ModelRegistry(config["MODEL_CONFIG_PATH"])

    store = None
    if config.get("REDIS_URL"):
        store = RedisTokenStore.from_url(config["REDIS_URL"], config["APP_ID"])

    credentials = CredentialManager(
        TokenExchanger(
            config["TOKEN_BASE_URL"],
            config["CLIENT_ID"],
            config["USER_ID"],
            timeout=config["UPSTREAM_CONNECT_TIMEOUT"],
        ),
        config["REFRESH_TOKEN"],
        static_token=config.get("UPSTREAM_TOKEN"),
        store=store,
    )
    devices = DeviceRotator(rotate=config["DEVICE_ROTATION"])
    sessions = SessionRegistry()

    client = UpstreamClient(
        config["BASE_URL"],
        config["APP_ID"],
        credentials,
        devices,
        ide_version=config["IDE_VERSION"],
        ide_version_code=str(config["IDE_VERSION_CODE"]),
        connect_timeout=config["UPSTREAM_CONNECT_TIMEOUT"],
    )
    request_adapter = RequestAdapter(
        registry,
        sessions,
        devices,
        locale=config["UPSTREAM_LOCALE"],
        version_code=int(config["IDE_VERSION_CODE"]),
    )
    adapter = TraeAdapter(
        request_adapter,
        client,
        queue_policy=RetryPolicy(
            max_attempts=config["QUEUE_MAX_RETRIES"],
            delay=config["QUEUE_RETRY_DELAY"],
        ),
        notice_interval=config["QUEUE_NOTICE_INTERVAL"],
        continuation=ContinuationPolicy(
            enabled=config["AUTO_CONTINUE"],
            max_passes=config["AUTO_CONTINUE_MAX_PASSES"],
            prompt=config["AUTO_CONTINUE_PROMPT"],
        ),
    )

    refresher = None
    if config.get("TOKEN_AUTO_REFRESH") and not credentials.static_token:
        refresher = TokenRefresher(credentials, config["TOKEN_REFRESH_INTERVAL"])

    return Services(
        registry=registry,
        credentials=credentials,
        devices=devices,
        sessions=sessions,
        client=client,
        adapter=adapter,
        refresher=refresher,
    )
