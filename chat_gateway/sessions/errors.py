"""Error taxonomy shared by the session core and the HTTP layer."""
from typing import Any, Optional


class GatewayError(Exception):
    status_code: int = 500
    error_code: str = "INTERNAL_SERVER_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(GatewayError):
    status_code = 400
    error_code = "VALIDATION_ERROR"


class NotFoundError(GatewayError):
    status_code = 404
    error_code = "SESSION_NOT_FOUND"


class CredentialNotFoundError(NotFoundError):
    """No QR or pairing code is available, or it has expired."""

    error_code = "CREDENTIAL_NOT_FOUND"


class AgentNotFoundError(NotFoundError):
    error_code = "AGENT_NOT_FOUND"


class ConflictError(GatewayError):
    status_code = 409
    error_code = "SESSION_ALREADY_EXISTS"


class AlreadyConnectingError(ConflictError):
    status_code = 400
    error_code = "SESSION_ALREADY_CONNECTING"


class NotConnectedError(GatewayError):
    status_code = 400
    error_code = "SESSION_DISCONNECTED"


class LimitExceededError(GatewayError):
    status_code = 429
    error_code = "SESSION_LIMIT_EXCEEDED"


class TransportError(GatewayError):
    """Handshake or send failure reported by the transport provider."""

    status_code = 500
    error_code = "MESSAGE_SEND_FAILED"

    def __init__(
        self,
        message: str,
        disconnect_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details)
        self.disconnect_code = disconnect_code


class DependencyError(GatewayError):
    """Agent directory or text generator unavailable."""

    status_code = 502
    error_code = "DEPENDENCY_ERROR"


class AuthenticationError(GatewayError):
    status_code = 401
    error_code = "INVALID_API_KEY"


class RateLimitedError(GatewayError):
    status_code = 429
    error_code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, message: str = "Rate limit exceeded", reset_time: Optional[int] = None) -> None:
        details = {"retry_after": reset_time} if reset_time else None
        super().__init__(message, details)
        self.reset_time = reset_time
