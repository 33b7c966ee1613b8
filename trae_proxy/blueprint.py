"""Flask blueprint and request routing for the proxy service.

This module defines the application blueprint and hands OpenAI chat and
model requests over to the upstream adapter.
"""

import time

from flask import Blueprint, current_app, jsonify, request

from .auth import require_auth
from .common.logging import log_request
from .exceptions import ConfigurationError, CredentialExpiredError, ProxyError
from .services import Services, build_services
from .trae.schema import ChatRequest

# Global services (initialized in app factory)
_services: Services = None


def init_services(config) -> Services:
    """Initialize the global services from the app config.

    Args:
        config: Flask config mapping
    """
    global _services
    _services = build_services(config)
    return _services


def get_services() -> Services:
    """Get the initialized services.

    Raises:
        RuntimeError: If services not initialized
    """
    if _services is None:
        raise RuntimeError("Services not initialized. Call init_services() first.")
    return _services


def ensure_credentials_valid() -> None:
    """Fail fast once the refresh token has expired."""
    if get_services().credentials.is_expired():
        raise CredentialExpiredError()


blueprint = Blueprint("blueprint", __name__)


@blueprint.route("/health", methods=["GET"])
def health():
    """Return a simple health check payload."""
    return jsonify({"status": "ok"})


@blueprint.route("/chat/completions", methods=["POST"])
@blueprint.route("/v1/chat/completions", methods=["POST"])
@require_auth
def chat_completions():
    """Answer an OpenAI chat completion request through the upstream."""
    ensure_credentials_valid()
    if current_app.config.get("LOG_CONTEXT"):
        log_request(request)

    chat_request = ChatRequest.from_payload(request.get_json(silent=True))
    return get_services().adapter.forward(chat_request)


@blueprint.route("/models", methods=["GET"])
@blueprint.route("/v1/models", methods=["GET"])
@require_auth
def models():
    """Return the upstream model catalog under public model names."""
    ensure_credentials_valid()
    services = get_services()
    created = int(time.time())

    return jsonify(
        {
            "object": "list",
            "data": [
                {
                    "id": services.registry.public_name(entry.get("name", "")),
                    "object": "model",
                    "created": created,
                    "owned_by": "system",
                }
                for entry in services.client.list_models()
                if entry.get("name")
            ],
        }
    )


@blueprint.errorhandler(ProxyError)
def proxy_error(e: ProxyError):
    """Return the OpenAI error envelope for service errors."""
    if e.status_code >= 500:
        current_app.logger.error("%s: %s", type(e).__name__, e.message)
    else:
        current_app.logger.warning("%s: %s", type(e).__name__, e.message)
    return jsonify(e.get_response_content()), e.status_code


@blueprint.errorhandler(ConfigurationError)
def configuration_error(e: ConfigurationError):
    """Return a 400 JSON error payload for ValueError."""
    return e.get_response_content(), 400
