"""
Bearer token validation against the session-issuing identity service.

Tokens are HS256 JWTs signed with AUTH_JWT_SECRET. The ``sub`` claim is the
stable user id used to scope every query.

SECURITY: JWT payloads and decode errors are never logged in detail.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from jose import JWTError, jwt

from tradiesync.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthenticatedUser:
    id: str
    email: Optional[str] = None


class IdentityProvider:
    def __init__(self, settings: Settings):
        self.secret = settings.AUTH_JWT_SECRET
        self.algorithm = settings.AUTH_JWT_ALGORITHM
        self.audience = settings.AUTH_JWT_AUDIENCE

    def get_user(self, token: str) -> tuple[Optional[AuthenticatedUser], Optional[str]]:
        """Returns ``(user, None)`` for a valid token, else ``(None, reason)``."""
        if not token:
            return None, "missing token"

        options = {"verify_aud": self.audience is not None}
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                options=options,
            )
        except JWTError:
            return None, "invalid token"

        sub = payload.get("sub")
        if not sub or not isinstance(sub, str):
            return None, "token has no subject"
        return AuthenticatedUser(id=sub, email=payload.get("email")), None
