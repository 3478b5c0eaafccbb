"""
Shared error handling for the Astro Insights gateway.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from shared.logging import request_id_var


class ErrorBody(BaseModel):
    """Error payload carried inside the envelope."""

    code: str
    message: str
    details: Dict[str, Any] = {}
    request_id: Optional[str] = None


class ErrorEnvelope(BaseModel):
    """Standard error response format."""

    success: bool = False
    error: ErrorBody


class GatewayError(Exception):
    """Base exception for gateway services."""

    status_code: int = 500
    retryable: bool = False

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorEnvelope:
        """Convert to error envelope."""
        return ErrorEnvelope(
            error=ErrorBody(
                code=self.code,
                message=self.message,
                details=self.details,
                request_id=request_id_var.get(),
            )
        )


class ValidationError(GatewayError):
    """Request validation errors."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NotFoundError(GatewayError):
    """Unknown route or resource."""

    status_code = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class AuthConfigError(GatewayError):
    """Credentials for an upstream are absent or malformed."""

    status_code = 500

    def __init__(self, message: str = "Upstream credentials are not configured", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTH_CONFIG_ERROR", message, details)


class UpstreamAuthError(GatewayError):
    """The upstream rejected our credentials."""

    status_code = 502

    def __init__(self, service: str, message: str = "Upstream rejected credentials", details: Optional[Dict[str, Any]] = None):
        super().__init__("UPSTREAM_AUTH_ERROR", f"{service}: {message}", details)


class RateLimited(GatewayError):
    """Rate limiting errors."""

    status_code = 429

    def __init__(self, message: str = "Rate limit exceeded", details: Optional[Dict[str, Any]] = None):
        super().__init__("RATE_LIMITED", message, details)

    @property
    def retry_after_seconds(self) -> Optional[int]:
        return self.details.get("retry_after_seconds")


class UpstreamTimeout(GatewayError):
    """An upstream call timed out."""

    status_code = 504
    retryable = True

    def __init__(self, service: str, message: str = "Upstream request timed out", details: Optional[Dict[str, Any]] = None):
        super().__init__("UPSTREAM_TIMEOUT", f"{service}: {message}", details)


class UpstreamServerError(GatewayError):
    """Upstream 5xx, 429 or transport failure."""

    status_code = 502
    retryable = True

    def __init__(self, service: str, message: str = "Upstream service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("UPSTREAM_SERVER_ERROR", f"{service}: {message}", details)


class UpstreamMalformedResponse(UpstreamServerError):
    """Upstream answered 200 with a body we could not interpret."""

    def __init__(self, service: str, message: str = "Malformed upstream response", details: Optional[Dict[str, Any]] = None):
        super().__init__(service, message, details)
        self.code = "UPSTREAM_MALFORMED_RESPONSE"


class UpstreamRequestError(GatewayError):
    """Upstream refused the request itself (4xx other than auth and 429)."""

    status_code = 502

    def __init__(self, service: str, message: str = "Upstream rejected request", details: Optional[Dict[str, Any]] = None):
        super().__init__("UPSTREAM_REQUEST_ERROR", f"{service}: {message}", details)


class DeadlineExceeded(GatewayError):
    """The request deadline does not leave room for another attempt."""

    status_code = 504

    def __init__(self, message: str = "Request deadline exceeded", details: Optional[Dict[str, Any]] = None):
        super().__init__("DEADLINE_EXCEEDED", message, details)


class InternalError(GatewayError):
    """Unexpected failure while handling a request."""

    status_code = 500

    def __init__(self, message: str = "Internal server error", details: Optional[Dict[str, Any]] = None):
        super().__init__("INTERNAL_ERROR", message, details)


def is_retryable(exc: BaseException) -> bool:
    """Default retry predicate: only transient gateway errors are retried."""
    return isinstance(exc, GatewayError) and exc.retryable
