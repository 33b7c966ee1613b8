"""Inbound API key check."""
import hmac
from functools import wraps

from flask import current_app, jsonify, request


def extract_api_key(req) -> str:
    """Return the key from ``Authorization: Bearer`` or ``x-api-key``."""
    auth_header = req.headers.get("Authorization", "")
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip()
    return req.headers.get("x-api-key", "").strip()


def require_auth(view):
    """Reject requests without the configured SERVICE_API_KEY.

    No key configured means the service is open.
    """

    @wraps(view)
    def wrapper(*args, **kwargs):
        expected = current_app.config.get("SERVICE_API_KEY")
        if expected:
            provided = extract_api_key(request)
            if not hmac.compare_digest(provided.encode(), expected.encode()):
                return jsonify({
                    "error": {
                        "message": "Invalid or missing API key",
                        "type": "invalid_request_error",
                        "param": None,
                        "code": "invalid_api_key",
                    }
                }), 401
        return view(*args, **kwargs)

    return wrapper
