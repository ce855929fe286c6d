"""HTTP middleware — Basic Auth for the push API.

Uses pure ASGI middleware (not BaseHTTPMiddleware) to avoid
known issues with response streaming in Starlette.
"""

from __future__ import annotations

import base64
import binascii
import secrets

from starlette.responses import Response
from starlette.types import ASGIApp, Receive, Scope, Send

# Paths that never require authentication
_PUBLIC_EXACT = ("/api/health",)


class BasicAuthMiddleware:
    """Require HTTP Basic Auth on all routes except the health check."""

    def __init__(self, app: ASGIApp, username: str, password: str) -> None:
        self.app = app
        self._username = username
        self._password = password

    def _authorized(self, header: str) -> bool:
        if not header.startswith("Basic "):
            return False
        try:
            decoded = base64.b64decode(header[6:], validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            return False
        user, _, pwd = decoded.partition(":")
        return secrets.compare_digest(
            user.encode(), self._username.encode()
        ) and secrets.compare_digest(pwd.encode(), self._password.encode())

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["path"] in _PUBLIC_EXACT:
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        auth = headers.get(b"authorization", b"").decode("utf-8", errors="ignore")
        if self._authorized(auth):
            await self.app(scope, receive, send)
            return

        response = Response(
            status_code=401,
            headers={"WWW-Authenticate": 'Basic realm="gko-push"'},
        )
        await response(scope, receive, send)
