"""
Authentication gate for the Gateway.

Two credentials are accepted, in strict order: a bearer token validated by the
tokenizer, then (only when no ``Authorization`` header is sent at all) the
shared service key in ``x-api-key``.
"""

import hmac
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Mapping, Optional

from fastapi import Request

from shared.errors import (
    AuthenticationError,
    InvalidAuthorizationHeaderError,
    InvalidTokenError,
)
from shared.logging import get_logger, set_user_context
from shared.metrics import MetricsCollector

from ..auth.tokenizer import Tokenizer

SERVICE_USER_ID = "service"

REASON_UNAUTHORIZED = "unauthorized"
REASON_INVALID_AUTHORIZATION = "invalid authorization"
REASON_INVALID_TOKEN = "invalid token"

_REJECTIONS = {
    REASON_UNAUTHORIZED: AuthenticationError,
    REASON_INVALID_AUTHORIZATION: InvalidAuthorizationHeaderError,
    REASON_INVALID_TOKEN: InvalidTokenError,
}


class AuthDecisionKind(str, Enum):
    AUTHENTICATED = "authenticated"
    SERVICE_AUTHENTICATED = "service_authenticated"
    REJECTED = "rejected"
    BYPASSED = "bypassed"


@dataclass(frozen=True)
class AuthDecision:
    """Outcome of inspecting one request's credentials."""

    kind: AuthDecisionKind
    user_id: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def authenticated(cls, user_id: str) -> "AuthDecision":
        return cls(AuthDecisionKind.AUTHENTICATED, user_id=user_id)

    @classmethod
    def service(cls) -> "AuthDecision":
        return cls(AuthDecisionKind.SERVICE_AUTHENTICATED, user_id=SERVICE_USER_ID)

    @classmethod
    def rejected(cls, reason: str = REASON_UNAUTHORIZED) -> "AuthDecision":
        return cls(AuthDecisionKind.REJECTED, reason=reason)

    @classmethod
    def bypassed(cls) -> "AuthDecision":
        return cls(AuthDecisionKind.BYPASSED)

    @property
    def allowed(self) -> bool:
        return self.kind is not AuthDecisionKind.REJECTED

    @property
    def auth_method(self) -> Optional[str]:
        if self.kind is AuthDecisionKind.AUTHENTICATED:
            return "jwt"
        if self.kind is AuthDecisionKind.SERVICE_AUTHENTICATED:
            return "api_key"
        return None


def parse_bearer(header: str) -> Optional[str]:
    """Return the token of an ``Authorization: Bearer <token>`` value, else None."""
    scheme, _, token = header.partition(" ")
    token = token.strip()
    if scheme != "Bearer" or not token:
        return None
    return token


def _lower_keys(headers: Mapping[str, str]) -> Mapping[str, str]:
    return {name.lower(): value for name, value in headers.items()}


class AuthGate:
    """JWT-or-API-key gate shared by the proxy and completion routes."""

    def __init__(self, tokenizer: Tokenizer, service_api_key: Optional[str] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.tokenizer = tokenizer
        self.service_api_key = service_api_key
        self.metrics = metrics
        self.logger = get_logger("gateway.auth_gate")

    def authorize(self, headers: Mapping[str, str],
                  allowed_service_key: Optional[str] = None) -> AuthDecision:
        """Decide on a set of request headers without touching any state.

        ``allowed_service_key`` defaults to the key the gate was built with;
        an empty key disables service authentication entirely.
        """
        headers = _lower_keys(headers)
        if allowed_service_key is None:
            allowed_service_key = self.service_api_key

        authorization = (headers.get("authorization") or "").strip()
        if authorization:
            token = parse_bearer(authorization)
            if token is None:
                return AuthDecision.rejected(REASON_INVALID_AUTHORIZATION)
            try:
                return AuthDecision.authenticated(self.tokenizer.validate_token(token))
            except InvalidTokenError:
                return AuthDecision.rejected(REASON_INVALID_TOKEN)

        api_key = headers.get("x-api-key") or ""
        if allowed_service_key and api_key and hmac.compare_digest(
            api_key.encode("utf-8"), allowed_service_key.encode("utf-8")
        ):
            return AuthDecision.service()

        return AuthDecision.rejected(REASON_UNAUTHORIZED)

    def check(self, request: Request, health_path: Optional[str] = None) -> AuthDecision:
        """Authorize ``request``, attach the identity to it, or raise a 401 error."""
        if health_path is not None and request.method == "GET" and request.scope.get("path") == health_path:
            self._record(AuthDecisionKind.BYPASSED)
            return AuthDecision.bypassed()

        decision = self.authorize(request.headers)
        self._record(decision.kind)

        if not decision.allowed:
            self.logger.info(
                "Request rejected",
                reason=decision.reason,
                method=request.method,
                path=request.url.path
            )
            raise _REJECTIONS[decision.reason]()

        request.state.user_id = decision.user_id
        request.state.auth_method = decision.auth_method
        set_user_context(decision.user_id, decision.auth_method)
        return decision

    def dependency(self) -> Callable[[Request], Awaitable[AuthDecision]]:
        """FastAPI dependency for routes that always require credentials."""

        async def require_auth(request: Request) -> AuthDecision:
            return self.check(request)

        return require_auth

    def _record(self, kind: AuthDecisionKind) -> None:
        if self.metrics is not None:
            self.metrics.record_auth_decision(kind.value)
