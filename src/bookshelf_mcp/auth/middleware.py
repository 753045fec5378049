"""
Bearer-token middleware for the MCP session endpoint.

Only the protected paths require a token; the OAuth endpoints themselves
stay open.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

if TYPE_CHECKING:
    from starlette.requests import Request

    from . import AuthProvider

logger = logging.getLogger(__name__)


class AuthMiddleware(BaseHTTPMiddleware):
    """Authentication middleware for the session endpoint.

    - Validates credentials using the configured AuthProvider
    - Injects user_context into request.state for the transport
    - Returns 401 with WWW-Authenticate on auth failures
    - Lets CORS preflight requests through untouched

    Attributes:
        auth_provider: Authentication provider instance
        protected_paths: Path prefixes that require a bearer token
    """

    def __init__(  # type: ignore[no-untyped-def]
        self, app, auth_provider: AuthProvider, protected_paths: tuple[str, ...] = ("/mcp",)
    ) -> None:
        super().__init__(app)
        self.auth_provider = auth_provider
        self.protected_paths = protected_paths

        logger.info(
            f"AuthMiddleware initialized: "
            f"provider={auth_provider.__class__.__name__}, "
            f"protected={', '.join(protected_paths)}"
        )

    def _is_protected(self, path: str) -> bool:
        return any(
            path == prefix or path.startswith(prefix.rstrip("/") + "/")
            for prefix in self.protected_paths
        )

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        if request.method == "OPTIONS" or not self._is_protected(request.url.path):
            return await call_next(request)

        user_context = await self.auth_provider.get_user_context(request)

        if self.auth_provider.is_enabled() and not user_context:
            logger.warning(
                f"Unauthorized request: path={request.url.path}, "
                f"client={request.client.host if request.client else 'unknown'}"
            )
            headers = {}
            www_auth_header = self.auth_provider.get_www_authenticate_header(request)
            if www_auth_header:
                headers["WWW-Authenticate"] = www_auth_header
            return Response(
                status_code=401,
                headers=headers,
                content=b"Unauthorized",
                media_type="text/plain",
            )

        request.state.user_context = user_context
        if user_context:
            logger.info(f"Authenticated request: user={user_context.user_id}, path={request.url.path}")

        return await call_next(request)
