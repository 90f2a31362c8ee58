"""
Error Taxonomy — Domain exceptions raised by services and rendered by the API.

Every error carries an HTTP status and a machine-readable code; the FastAPI
exception handlers in `offramp.main` turn them into the partner-facing
envelope `{success: false, error, message, details?}`.
"""
from typing import Any, Optional


class GatewayError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, *, code: Optional[str] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details

    def to_dict(self) -> dict:
        body = {"success": False, "error": self.code, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(GatewayError):
    """Missing or malformed request fields. Never retried."""
    status_code = 400
    code = "validation_error"


class AuthError(GatewayError):
    status_code = 401
    code = "unauthorized"


class NotFoundError(GatewayError):
    status_code = 404
    code = "not_found"


class StateConflictError(GatewayError):
    """Operation not valid for the entity's current state."""
    status_code = 409
    code = "state_conflict"


class ProviderError(GatewayError):
    """An external provider answered with something we could not interpret."""
    status_code = 502
    code = "provider_error"

    def __init__(self, message: str, *, provider: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.provider = provider


class ProviderUnavailable(ProviderError):
    """Provider unreachable, timed out, 5xx, or answered with HTML."""
    status_code = 503
    code = "provider_unavailable"


class ProviderRejected(ProviderError):
    """Provider returned a well-formed refusal of the request."""
    status_code = 422
    code = "provider_rejected"


class DeliveryError(Exception):
    """Webhook delivery attempt failed. Recorded on the event, never surfaced to API callers."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
