from __future__ import annotations

import logging
from typing import Awaitable, Callable
from urllib.parse import quote

from fastapi import Request
from fastapi.responses import RedirectResponse, Response

from .session import SESSION_COOKIE_NAME, SessionAuthenticator

logger = logging.getLogger("chat_proxy.gate")

LOGIN_PATH = "/login"
PROTECTED_PATHS = frozenset(
    {
        "/",
        "/chat",
        "/settings",
        "/api/llm/chat",
        "/api/llm/chat/stream",
        "/api/llm/health",
    }
)
PROTECTED_PREFIXES = ("/settings/",)


def is_protected_path(path: str) -> bool:
    """Return True when the path requires a valid session cookie."""
    normalized = path.rstrip("/") or "/"
    if normalized in PROTECTED_PATHS:
        return True
    return any(path.startswith(prefix) for prefix in PROTECTED_PREFIXES)


def login_redirect_url(path: str) -> str:
    """Build the login URL that returns the user to path after signing in."""
    return f"{LOGIN_PATH}?from={quote(path, safe='/')}"


class AccessGate:
    """HTTP middleware that redirects requests without a valid session to the login page."""

    def __init__(self, authenticator: SessionAuthenticator) -> None:
        self._authenticator = authenticator

    async def __call__(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        path = request.url.path
        if not is_protected_path(path):
            return await call_next(request)

        # Re-verify on every request; validity is never cached.
        token = request.cookies.get(SESSION_COOKIE_NAME)
        if not self._authenticator.is_valid_session(token):
            logger.debug("gate redirect path=%s has_cookie=%s", path, bool(token))
            return RedirectResponse(login_redirect_url(path), status_code=302)
        return await call_next(request)
