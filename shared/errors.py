"""
Shared error handling for the QA Showcase gateway.
"""

from typing import Dict, Any, List, Optional
from pydantic import BaseModel

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: str
    code: str
    details: Dict[str, Any] = {}
    validation_errors: Optional[List[str]] = None
    request_id: Optional[str] = None


class GatewayException(Exception):
    """Base exception for gateway services."""

    status_code: int = 400
    validation_errors: Optional[List[str]] = None

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None,
                 status_code: Optional[int] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            error=self.message,
            code=self.code,
            details=self.details,
            validation_errors=self.validation_errors,
            request_id=request_id_var.get()
        )


class AuthenticationError(GatewayException):
    """No acceptable credential was presented."""

    status_code = 401

    def __init__(self, message: str = "unauthorized", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class InvalidAuthorizationHeaderError(AuthenticationError):
    """Authorization header is present but not ``Bearer <token>``."""

    def __init__(self, message: str = "invalid authorization", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.code = "INVALID_AUTHORIZATION_HEADER"


class InvalidTokenError(AuthenticationError):
    """Bearer token was rejected by the tokenizer."""

    def __init__(self, message: str = "invalid token", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.code = "INVALID_TOKEN"


class ValidationError(GatewayException):
    """Validation-related errors."""

    status_code = 400

    def __init__(self, message: str = "invalid payload", details: Optional[Dict[str, Any]] = None,
                 validation_errors: Optional[List[str]] = None):
        super().__init__("VALIDATION_ERROR", message, details)
        self.validation_errors = validation_errors


class NotFoundError(GatewayException):
    """Requested resource does not exist."""

    status_code = 404

    def __init__(self, message: str = "not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class PayloadTooLargeError(GatewayException):
    """Request payload exceeds a size limit."""

    status_code = 413

    def __init__(self, message: str = "payload too large", details: Optional[Dict[str, Any]] = None):
        super().__init__("PAYLOAD_TOO_LARGE", message, details)


class UnknownModelError(GatewayException):
    """Requested logical model is not in the adapter mapping."""

    status_code = 400

    def __init__(self, model: str):
        super().__init__("UNKNOWN_MODEL", "unknown model", {"model": model})


class AdapterError(GatewayException):
    """Base class for failures talking to an adapter backend."""

    status_code = 502

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(code, message, details)


class BackendUnavailableError(AdapterError):
    """Transport-level failure reaching an adapter."""

    def __init__(self, message: str = "adapter unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("BACKEND_UNAVAILABLE", message, details)


class AdapterStatusError(AdapterError):
    """Adapter answered with a non-2xx status."""

    def __init__(self, status_code: int, reason: str):
        super().__init__(
            "ADAPTER_STATUS",
            f"adapter status {status_code} {reason}".rstrip(),
            {"status_code": status_code},
        )


class InvalidBackendResponseError(AdapterError):
    """Adapter answered 2xx with a body that does not decode."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_BACKEND_RESPONSE", message, details)


class ClientDisconnectedError(GatewayException):
    """Caller went away while an adapter call was in flight."""

    status_code = 499

    def __init__(self, message: str = "client closed request", details: Optional[Dict[str, Any]] = None):
        super().__init__("CLIENT_CLOSED_REQUEST", message, details)


class InternalProxyError(GatewayException):
    """The outbound request could not be built."""

    status_code = 500

    def __init__(self, message: str = "failed to create proxy request", details: Optional[Dict[str, Any]] = None):
        super().__init__("INTERNAL_PROXY_ERROR", message, details)
