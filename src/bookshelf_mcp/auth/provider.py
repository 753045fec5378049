"""
Local OAuth 2.1 authorization server.

Issues the bearer tokens MCP clients present to the session endpoint.
End-user authentication is federated to GitHub by AuthorizationFlow; this
module only handles what happens on either side of that:
- Dynamic client registration (RFC 7591)
- Parsing /authorize requests
- Minting single-use authorization codes bound to a grant
- /token exchange (authorization_code with PKCE, refresh_token rotation)
- Bearer token validation

All records live in a KeyValueStore. Codes and tokens are stored under the
SHA-256 of their value, never in plain text.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
import time
from collections.abc import Mapping
from typing import Any, Optional
from urllib.parse import urlencode, urlparse

from ..errors import BadRequestError, OAuthError
from ..storage import KeyValueStore
from .models import AuthorizationRequest, ClientInfo, Identity, TokenInfo

logger = logging.getLogger(__name__)

SUPPORTED_GRANT_TYPES = ("authorization_code", "refresh_token")
SUPPORTED_CHALLENGE_METHODS = ("S256", "plain")


def _hash(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def _is_absolute_url(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    parsed = urlparse(value)
    return bool(parsed.scheme and parsed.netloc)


def verify_pkce(verifier: str, challenge: str, method: str) -> bool:
    """Check a PKCE code_verifier against the stored challenge."""
    if method == "S256":
        digest = hashlib.sha256(verifier.encode("ascii")).digest()
        computed = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    else:
        computed = verifier
    return hmac.compare_digest(computed, challenge)


class OAuthProvider:
    """OAuth 2.1 provider backed by a KeyValueStore.

    Args:
        store: Key-value store for clients, codes and tokens
        access_token_ttl: Access token lifetime in seconds
        refresh_token_ttl: Refresh token lifetime in seconds
        code_ttl: Authorization code lifetime in seconds
    """

    def __init__(
        self,
        store: KeyValueStore,
        access_token_ttl: int = 3600,
        refresh_token_ttl: int = 86400 * 30,
        code_ttl: int = 600,
        clock=time.time,
    ) -> None:
        self.store = store
        self.access_token_ttl = access_token_ttl
        self.refresh_token_ttl = refresh_token_ttl
        self.code_ttl = code_ttl
        self._clock = clock

    # ------------------------------------------------------------------
    # Clients
    # ------------------------------------------------------------------

    async def register_client(
        self, metadata: Mapping[str, Any], client_id: Optional[str] = None
    ) -> dict[str, Any]:
        """Register a client per RFC 7591.

        Args:
            metadata: Client metadata from the registration request
            client_id: Fixed client ID (pre-provisioned clients); random if omitted

        Returns:
            Registration response, including client_secret for confidential clients

        Raises:
            OAuthError: invalid_redirect_uri / invalid_client_metadata
        """
        redirect_uris = metadata.get("redirect_uris")
        if not isinstance(redirect_uris, list) or not redirect_uris:
            raise OAuthError("invalid_redirect_uri", "redirect_uris must be a non-empty list")
        if not all(_is_absolute_url(uri) for uri in redirect_uris):
            raise OAuthError("invalid_redirect_uri", "redirect_uris must be absolute URLs")

        auth_method = metadata.get("token_endpoint_auth_method", "client_secret_basic")
        if auth_method not in ("none", "client_secret_basic", "client_secret_post"):
            raise OAuthError(
                "invalid_client_metadata",
                f"Unsupported token_endpoint_auth_method: {auth_method}",
            )

        grant_types = metadata.get("grant_types") or list(SUPPORTED_GRANT_TYPES)
        if any(g not in SUPPORTED_GRANT_TYPES for g in grant_types):
            raise OAuthError("invalid_client_metadata", "Unsupported grant type requested")

        client_secret = None if auth_method == "none" else secrets.token_urlsafe(32)
        client = ClientInfo(
            client_id=client_id or secrets.token_urlsafe(16),
            redirect_uris=[str(uri) for uri in redirect_uris],
            client_name=metadata.get("client_name"),
            client_secret_hash=_hash(client_secret) if client_secret else None,
            token_endpoint_auth_method=auth_method,
            grant_types=list(grant_types),
            registered_at=self._clock(),
        )
        await self.store.put(f"client:{client.client_id}", client.to_dict())
        logger.info(f"Registered OAuth client {client.client_id} ({client.client_name or 'unnamed'})")

        response: dict[str, Any] = {
            "client_id": client.client_id,
            "client_id_issued_at": int(client.registered_at),
            "redirect_uris": client.redirect_uris,
            "client_name": client.client_name,
            "token_endpoint_auth_method": client.token_endpoint_auth_method,
            "grant_types": client.grant_types,
            "response_types": client.response_types,
        }
        if client_secret:
            response["client_secret"] = client_secret
            response["client_secret_expires_at"] = 0
        return response

    async def lookup_client(self, client_id: str) -> Optional[ClientInfo]:
        data = await self.store.get(f"client:{client_id}")
        return ClientInfo.from_dict(data) if data else None

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    async def parse_auth_request(self, params: Mapping[str, Any]) -> AuthorizationRequest:
        """Parse and validate the query parameters of an /authorize call.

        Raises:
            BadRequestError: client_id absent, unknown client, or bad redirect URI
        """
        client_id = (params.get("client_id") or "").strip()
        if not client_id:
            raise BadRequestError("Invalid request")

        response_type = params.get("response_type") or "code"
        if response_type != "code":
            raise BadRequestError("Unsupported response_type")

        client = await self.lookup_client(client_id)
        if client is None:
            logger.warning(f"Authorization request for unknown client {client_id}")
            raise BadRequestError("Invalid client")

        redirect_uri = params.get("redirect_uri") or ""
        if not redirect_uri and len(client.redirect_uris) == 1:
            redirect_uri = client.redirect_uris[0]
        if redirect_uri not in client.redirect_uris:
            logger.warning(f"Unregistered redirect URI for client {client_id}")
            raise BadRequestError("Invalid redirect URI")

        code_challenge = params.get("code_challenge") or None
        challenge_method = params.get("code_challenge_method") or None
        if code_challenge:
            challenge_method = challenge_method or "plain"
            if challenge_method not in SUPPORTED_CHALLENGE_METHODS:
                raise BadRequestError("Unsupported code_challenge_method")

        return AuthorizationRequest(
            client_id=client_id,
            redirect_uri=redirect_uri,
            scope=(params.get("scope") or "").split(),
            state=params.get("state") or "",
            response_type=response_type,
            code_challenge=code_challenge,
            code_challenge_method=challenge_method if code_challenge else None,
        )

    async def complete_authorization(
        self,
        request: AuthorizationRequest,
        identity: Identity,
        scope: Optional[list[str]] = None,
    ) -> str:
        """Bind a grant to the identity and mint an authorization code.

        Returns:
            The client's redirect URI carrying ``code`` and the original ``state``
        """
        code = secrets.token_urlsafe(32)
        record = {
            "user_id": identity.normalized_login,
            "client_id": request.client_id,
            "redirect_uri": request.redirect_uri,
            "scope": list(scope if scope is not None else request.scope),
            "props": identity.to_props(),
            "label": identity.display_name,
            "code_challenge": request.code_challenge,
            "code_challenge_method": request.code_challenge_method,
        }
        await self.store.put(f"code:{_hash(code)}", record, ttl=self.code_ttl)
        logger.info(
            f"Issued authorization code for user={identity.normalized_login} "
            f"client={request.client_id}"
        )

        query = {"code": code}
        if request.state:
            query["state"] = request.state
        separator = "&" if "?" in request.redirect_uri else "?"
        return f"{request.redirect_uri}{separator}{urlencode(query)}"

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    async def exchange_token(
        self, form: Mapping[str, Any], basic_auth: Optional[tuple[str, str]] = None
    ) -> dict[str, Any]:
        """Handle a /token request.

        Args:
            form: Form-encoded body of the token request
            basic_auth: (client_id, client_secret) from an HTTP Basic header

        Raises:
            OAuthError: RFC 6749 error for any rejected request
        """
        grant_type = form.get("grant_type")
        if grant_type not in SUPPORTED_GRANT_TYPES:
            raise OAuthError("unsupported_grant_type", f"Unsupported grant_type: {grant_type}")

        client = await self._authenticate_client(form, basic_auth)

        if grant_type == "authorization_code":
            return await self._exchange_code(client, form)
        return await self._exchange_refresh_token(client, form)

    async def _authenticate_client(
        self, form: Mapping[str, Any], basic_auth: Optional[tuple[str, str]]
    ) -> ClientInfo:
        client_id = basic_auth[0] if basic_auth else form.get("client_id")
        if not client_id:
            raise OAuthError("invalid_client", "client_id is required", status_code=401)

        client = await self.lookup_client(client_id)
        if client is None:
            raise OAuthError("invalid_client", "Unknown client", status_code=401)

        if client.client_secret_hash:
            secret = basic_auth[1] if basic_auth else form.get("client_secret")
            if not secret or not hmac.compare_digest(_hash(secret), client.client_secret_hash):
                logger.warning(f"Client authentication failed for {client_id}")
                raise OAuthError("invalid_client", "Client authentication failed", status_code=401)
        return client

    async def _exchange_code(self, client: ClientInfo, form: Mapping[str, Any]) -> dict[str, Any]:
        code = form.get("code")
        if not code:
            raise OAuthError("invalid_request", "code is required")

        # Consumed regardless of outcome so a code can never be replayed
        record = await self.store.take(f"code:{_hash(code)}")
        if record is None:
            raise OAuthError("invalid_grant", "Authorization code is invalid or expired")

        if record["client_id"] != client.client_id:
            logger.warning(f"Code presented by wrong client {client.client_id}")
            raise OAuthError("invalid_grant", "Authorization code was issued to another client")

        redirect_uri = form.get("redirect_uri")
        if redirect_uri and redirect_uri != record["redirect_uri"]:
            raise OAuthError("invalid_grant", "redirect_uri does not match")

        challenge = record.get("code_challenge")
        if challenge:
            verifier = form.get("code_verifier")
            if not verifier:
                raise OAuthError("invalid_request", "code_verifier is required")
            if not verify_pkce(verifier, challenge, record.get("code_challenge_method") or "plain"):
                logger.warning(f"PKCE verification failed for client {client.client_id}")
                raise OAuthError("invalid_grant", "PKCE verification failed")
        elif client.token_endpoint_auth_method == "none":
            raise OAuthError("invalid_request", "Public clients must use PKCE")

        return await self._issue_tokens(record)

    async def _exchange_refresh_token(
        self, client: ClientInfo, form: Mapping[str, Any]
    ) -> dict[str, Any]:
        refresh_token = form.get("refresh_token")
        if not refresh_token:
            raise OAuthError("invalid_request", "refresh_token is required")

        record = await self.store.take(f"refresh:{_hash(refresh_token)}")
        if record is None:
            raise OAuthError("invalid_grant", "Refresh token is invalid or expired")
        if record["client_id"] != client.client_id:
            raise OAuthError("invalid_grant", "Refresh token was issued to another client")

        return await self._issue_tokens(record)

    async def _issue_tokens(self, grant: dict[str, Any]) -> dict[str, Any]:
        now = self._clock()
        access_token = secrets.token_urlsafe(32)
        refresh_token = secrets.token_urlsafe(32)

        token_record = {
            "user_id": grant["user_id"],
            "client_id": grant["client_id"],
            "scope": list(grant.get("scope", [])),
            "props": grant.get("props", {}),
            "expires_at": now + self.access_token_ttl,
        }
        await self.store.put(
            f"token:{_hash(access_token)}", token_record, ttl=self.access_token_ttl
        )

        refresh_record = {
            "user_id": grant["user_id"],
            "client_id": grant["client_id"],
            "redirect_uri": grant.get("redirect_uri", ""),
            "scope": list(grant.get("scope", [])),
            "props": grant.get("props", {}),
        }
        await self.store.put(
            f"refresh:{_hash(refresh_token)}", refresh_record, ttl=self.refresh_token_ttl
        )

        logger.info(f"Issued tokens for user={grant['user_id']} client={grant['client_id']}")
        return {
            "access_token": access_token,
            "token_type": "bearer",
            "expires_in": self.access_token_ttl,
            "refresh_token": refresh_token,
            "scope": " ".join(grant.get("scope", [])),
        }

    async def validate_access_token(self, token: str) -> Optional[TokenInfo]:
        """Look up a bearer token.

        Returns:
            TokenInfo if the token exists and is unexpired, None otherwise
        """
        if not token:
            return None
        record = await self.store.get(f"token:{_hash(token)}")
        if record is None:
            return None
        if record["expires_at"] <= self._clock():
            return None
        return TokenInfo(
            user_id=record["user_id"],
            client_id=record["client_id"],
            scope=list(record.get("scope", [])),
            props=dict(record.get("props", {})),
            expires_at=record["expires_at"],
        )

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    @staticmethod
    def authorization_server_metadata(base_url: str) -> dict[str, Any]:
        """RFC 8414 authorization server metadata."""
        base_url = base_url.rstrip("/")
        return {
            "issuer": base_url,
            "authorization_endpoint": f"{base_url}/authorize",
            "token_endpoint": f"{base_url}/token",
            "registration_endpoint": f"{base_url}/register",
            "response_types_supported": ["code"],
            "response_modes_supported": ["query"],
            "grant_types_supported": list(SUPPORTED_GRANT_TYPES),
            "token_endpoint_auth_methods_supported": [
                "client_secret_basic",
                "client_secret_post",
                "none",
            ],
            "code_challenge_methods_supported": list(SUPPORTED_CHALLENGE_METHODS),
        }
