"""
Bearer token validation for the Gateway.

The gateway only needs one capability from the user-management side: turn a
bearer token into a user id or refuse it. ``JWTTokenizer`` is the local
implementation used in development and tests.
"""

from __future__ import annotations

import time
from typing import Any, Dict, Optional, Protocol

from jose import JWTError, jwt

from shared.errors import InvalidTokenError
from shared.logging import get_logger


class Tokenizer(Protocol):
    """Anything that can map a bearer token to a user id."""

    def validate_token(self, token: str) -> str:
        """Return the user id or raise ``InvalidTokenError``."""
        ...


class JWTTokenizer:
    """HS256 JWT validation and issuance backed by python-jose."""

    def __init__(self, secret: str, algorithm: str = "HS256") -> None:
        self.secret = secret
        self.algorithm = algorithm
        self.logger = get_logger("gateway.auth.tokenizer")

    def validate_token(self, token: str) -> str:
        if not token:
            raise InvalidTokenError()

        try:
            claims = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except JWTError as exc:
            self.logger.info("Token rejected", error=str(exc))
            raise InvalidTokenError() from exc

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            self.logger.info("Token rejected", error="missing subject")
            raise InvalidTokenError()

        return subject

    def issue_token(self, user_id: str, expires_in: int = 3600,
                    extra_claims: Optional[Dict[str, Any]] = None) -> str:
        """Mint a signed token for ``user_id`` valid for ``expires_in`` seconds."""
        now = int(time.time())
        claims: Dict[str, Any] = {"sub": user_id, "iat": now, "exp": now + expires_in}
        if extra_claims:
            claims.update(extra_claims)
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)
