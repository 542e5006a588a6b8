"""
Stateless session tokens for the shared-password login.

A token is an HS256 JWT whose ``iat`` claim records when it was issued, in
seconds. Nothing is stored server-side; a token stops working once it is older
than ``SESSION_MAX_AGE_MS``.
"""

from __future__ import annotations

import hmac
import time
from typing import Optional

from jose import JWTError, jwt

from .config import Settings
from .errors import ConfigurationError

SESSION_COOKIE_NAME = "app_auth"
SESSION_MAX_AGE_MS = 60 * 60 * 12 * 1000
SESSION_MAX_AGE_SECONDS = SESSION_MAX_AGE_MS // 1000
ALGORITHM = "HS256"


def _now_ms() -> int:
    return int(time.time() * 1000)


class SessionAuthenticator:
    """Issues and verifies signed session tokens from the configured secrets."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def _signing_key(self) -> str:
        secret = self._settings.signing_secret
        if not secret:
            raise ConfigurationError(
                "SESSION_SECRET or APP_PASSWORD must be set to issue sessions."
            )
        return secret

    def create_session(self, now_ms: Optional[int] = None) -> str:
        """Return a new token stamped with the current time.

        Raises ConfigurationError when no signing secret is configured.
        """
        issued_ms = _now_ms() if now_ms is None else now_ms
        return jwt.encode({"iat": issued_ms // 1000}, self._signing_key(), algorithm=ALGORITHM)

    def is_valid_session(self, token: Optional[str], now_ms: Optional[int] = None) -> bool:
        """Check signature and age of a token. Returns False on any failure, never raises."""
        if not token or not isinstance(token, str):
            return False

        try:
            claims = jwt.decode(token, self._signing_key(), algorithms=[ALGORITHM])
        except (ConfigurationError, JWTError):
            return False

        issued_at = claims.get("iat")
        if not isinstance(issued_at, int) or isinstance(issued_at, bool):
            return False

        elapsed = (_now_ms() if now_ms is None else now_ms) - issued_at * 1000
        return elapsed <= SESSION_MAX_AGE_MS

    def check_password(self, password: Optional[str]) -> bool:
        """Constant-time comparison of a login attempt against APP_PASSWORD."""
        expected = self._settings.app_password
        if not password or not expected:
            return False
        return hmac.compare_digest(password.encode("utf-8"), expected.encode("utf-8"))
