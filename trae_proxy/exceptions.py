"""Exceptions for the application."""


class ConfigurationError(ValueError):
    """Exception raised for configuration errors."""

    preamble = None

    def get_response_content(self):
        """Returns a formated error message inclduing the preamble and the message."""
        message = self.args[0].replace("\n", "\n\t")

        return f"{self.preamble}\n\n\t{message}"


class ServiceConfigurationError(ConfigurationError):
    """Exception raised for configuration errors in the service configuration."""

    preamble = "Service configuration error, check your .env file."


class ClientClosedConnection(Exception):  # noqa: N818
    """Raised when the downstream client closes the HTTP connection mid-stream.

    This helps distinguish client disconnects from other server-side errors.
    """


class ProxyError(Exception):
    """Base class for errors rendered as an OpenAI error envelope."""

    status_code = 500
    error_type = "api_error"
    param = None

    def __init__(self, message: str, *, status_code: int = None, error_type: str = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_type is not None:
            self.error_type = error_type

    def get_response_content(self) -> dict:
        """Return the JSON body sent back to the caller."""
        return {
            "error": {
                "message": self.message,
                "type": self.error_type,
                "param": self.param,
                "code": self.status_code,
            }
        }


class InvalidRequestError(ProxyError):
    """The inbound request body is missing required fields."""

    status_code = 400
    error_type = "invalid_request_error"


class UnsupportedModelError(InvalidRequestError):
    """The requested model has no upstream mapping."""

    param = "model"


class CredentialExpiredError(ProxyError):
    """The refresh token validity window has elapsed.

    Terminal: nothing recovers from this until an operator supplies a new
    REFRESH_TOKEN.
    """

    status_code = 401
    error_type = "token_expired"

    def __init__(self, message: str = None):
        super().__init__(
            message
            or "Refresh token has expired, update REFRESH_TOKEN and restart the service"
        )


class UpstreamUnavailableError(ProxyError):
    """Transport level failure talking to the upstream."""

    status_code = 503
    error_type = "service_unavailable"


class TokenExchangeError(UpstreamUnavailableError):
    """A token exchange round-trip failed; the held credentials are unchanged."""


UPSTREAM_ERROR_TYPES = {
    400: "invalid_request",
    401: "unauthorized",
    403: "permission_denied",
    404: "not_found",
    429: "rate_limit_exceeded",
}


class UpstreamError(ProxyError):
    """The upstream answered with a non-200 status or an error event."""

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(
            message,
            status_code=status_code,
            error_type=UPSTREAM_ERROR_TYPES.get(status_code, "internal_server_error"),
        )


class MalformedFrameError(ProxyError):
    """A single SSE event/data pair could not be parsed."""

    def __init__(self, message: str, event: str = None, data: str = None):
        super().__init__(message)
        self.event = event
        self.data = data


class StreamReadError(ProxyError):
    """Reading the upstream body failed mid-stream."""


class EmptyCompletionError(ProxyError):
    """The upstream finished without producing any content."""

    def __init__(self, message: str = "No response received from the upstream service"):
        super().__init__(message)
