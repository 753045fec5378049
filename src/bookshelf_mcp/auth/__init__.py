"""
Authentication for the Bookshelf MCP session endpoint.

Architecture:
- AuthProvider Protocol: interface the middleware is written against
- BearerTokenAuthProvider: validates locally issued OAuth bearer tokens
- OAuthProvider: the local authorization server that issues those tokens
- AuthorizationFlow: GitHub-federated /authorize and /callback handlers
- ConsentCache: signed cookie of clients the browser already approved
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from cachetools import TTLCache  # type: ignore[import-untyped]

from .consent import ConsentCache
from .models import AuthorizationRequest, Identity, TokenInfo, UserContext
from .provider import OAuthProvider

__all__ = [
    "AuthProvider",
    "AuthorizationRequest",
    "BearerTokenAuthProvider",
    "ConsentCache",
    "Identity",
    "OAuthProvider",
    "TokenInfo",
    "UserContext",
    "extract_bearer_token",
]

logger = logging.getLogger(__name__)


def extract_bearer_token(header: Optional[str]) -> Optional[str]:
    """Return the token from an ``Authorization: Bearer <token>`` header."""
    if not header or not header.startswith("Bearer "):
        return None
    token = header[7:].strip()
    return token or None


class AuthProvider(Protocol):
    """Authentication provider interface.

    Methods:
        get_user_context: Extract user context from HTTP request
        is_enabled: Whether authentication is enabled
        get_www_authenticate_header: WWW-Authenticate header for 401 responses
    """

    async def get_user_context(self, request: Any) -> Optional[UserContext]:
        """Extract user context from request.

        Returns:
            UserContext if request is authenticated and valid, None otherwise
        """
        ...

    def is_enabled(self) -> bool:
        ...

    def get_www_authenticate_header(self, request: Any) -> Optional[str]:
        ...


class BearerTokenAuthProvider:
    """Validates bearer tokens issued by the local OAuthProvider.

    Failed validations are rate limited per client IP to keep token guessing
    expensive; requests carrying a valid token are never counted. The
    ``X-Forwarded-For`` header is only honoured when ``trust_forwarded`` is
    set, i.e. when the server runs behind a proxy that overwrites it.
    """

    def __init__(
        self,
        oauth_provider: OAuthProvider,
        rate_limit: int = 120,
        trust_forwarded: bool = False,
    ) -> None:
        self.oauth_provider = oauth_provider
        self.rate_limit = rate_limit
        self.trust_forwarded = trust_forwarded
        self._failure_cache: TTLCache = TTLCache(maxsize=10000, ttl=60)

    async def get_user_context(self, request: Any) -> Optional[UserContext]:
        """Validate bearer token and extract user context.

        Returns None for any validation failure to prevent information leakage.
        """
        try:
            token = extract_bearer_token(request.headers.get("authorization"))
            if not token:
                logger.debug("No bearer token in Authorization header")
                return None

            client_ip = self._get_client_ip(request)
            if self._is_rate_limited(client_ip):
                logger.warning(f"Rate limit exceeded for client IP: {client_ip}")
                return None

            info = await self.oauth_provider.validate_access_token(token)
            if info is None:
                self._record_failure(client_ip)
                logger.warning("Bearer token validation failed")
                return None

            return UserContext(
                user_id=info.user_id,
                email=info.props.get("email"),
                client_id=info.client_id,
                scopes=info.scope,
                token_expires_at=datetime.fromtimestamp(info.expires_at, tz=timezone.utc),
                metadata={"props": info.props},
            )

        except Exception as e:
            logger.error(f"Error extracting user context: {e}", exc_info=True)
            return None

    def is_enabled(self) -> bool:
        return True

    def get_www_authenticate_header(self, request: Any) -> str:
        """WWW-Authenticate header per RFC9728 Section 5.1."""
        base_url = str(request.base_url).rstrip("/")
        return (
            f'Bearer realm="{base_url}", '
            f'resource_metadata="{base_url}/.well-known/oauth-protected-resource"'
        )

    def _is_rate_limited(self, client_ip: str) -> bool:
        return self._failure_cache.get(client_ip, 0) >= self.rate_limit

    def _record_failure(self, client_ip: str) -> None:
        self._failure_cache[client_ip] = self._failure_cache.get(client_ip, 0) + 1

    def _get_client_ip(self, request: Any) -> str:
        if self.trust_forwarded:
            forwarded = request.headers.get("x-forwarded-for")
            if forwarded:
                return forwarded.split(",")[0].strip()
        if getattr(request, "client", None):
            return str(request.client.host)
        return "unknown"
