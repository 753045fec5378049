"""
Signed consent cache.

Keeps the set of OAuth client IDs a browser has already approved in a
client-held cookie. The cookie is an HS256 JWT, so it is tamper-evident and
carries its own expiry; the server never trusts its contents without
verifying the signature first.

The cache only skips the approval prompt. It grants no access by itself.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

import jwt

logger = logging.getLogger(__name__)

COOKIE_NAME = "mcp-approved-clients"
_ALGORITHM = "HS256"


class ConsentCache:
    """Verify and re-issue the approved-clients cookie.

    Args:
        signing_key: Process-wide secret (COOKIE_ENCRYPTION_KEY)
        ttl: Cookie lifetime in seconds
    """

    def __init__(self, signing_key: str, ttl: int = 86400 * 365) -> None:
        if not signing_key:
            raise ValueError("ConsentCache requires a signing key")
        self._key = signing_key
        self.ttl = ttl

    def approved_clients(self, cookie: Optional[str]) -> list[str]:
        """Return the verified set of approved client IDs.

        An absent, malformed, tampered or expired cookie yields an empty list.
        """
        if not cookie:
            return []
        try:
            payload = jwt.decode(
                cookie,
                self._key,
                algorithms=[_ALGORITHM],
                options={"require": ["exp"]},
            )
        except jwt.ExpiredSignatureError:
            logger.debug("Consent cookie expired")
            return []
        except jwt.InvalidTokenError as e:
            logger.warning(f"Consent cookie failed verification: {e}")
            return []

        clients = payload.get("clients")
        if not isinstance(clients, list):
            logger.warning("Consent cookie payload has no client list")
            return []
        return [c for c in clients if isinstance(c, str)]

    def is_approved(self, cookie: Optional[str], client_id: str) -> bool:
        """True iff the cookie verifies, is unexpired, and lists client_id."""
        if not client_id:
            return False
        return client_id in self.approved_clients(cookie)

    def record_approval(self, cookie: Optional[str], client_id: str) -> str:
        """Merge client_id into the approved set and re-sign.

        Only a verified prior cookie contributes to the merged set.

        Returns:
            A complete Set-Cookie header value
        """
        clients = self.approved_clients(cookie)
        if client_id not in clients:
            clients.append(client_id)

        now = int(time.time())
        token = jwt.encode(
            {"clients": clients, "iat": now, "exp": now + self.ttl},
            self._key,
            algorithm=_ALGORITHM,
        )
        logger.info(f"Recorded consent for client {client_id} ({len(clients)} approved)")
        return (
            f"{COOKIE_NAME}={token}; HttpOnly; Secure; Path=/; "
            f"SameSite=Lax; Max-Age={max(self.ttl, 0)}"
        )
