"""
Data models for authentication module.

Separated from __init__.py to avoid circular imports between
the main auth module and provider implementations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


@dataclass
class UserContext:
    """User context extracted from an authenticated request.

    Attributes:
        user_id: Normalized login, the stable actor key
        email: User email address from the upstream profile
        client_id: OAuth client the token was issued to
        scopes: OAuth scopes granted to this token
        token_expires_at: Token expiration timestamp
        metadata: Identity props bound to the grant (under "props")
    """

    user_id: str
    email: Optional[str] = None
    client_id: Optional[str] = None
    scopes: list[str] = field(default_factory=list)
    token_expires_at: Optional[datetime] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def props(self) -> dict[str, Any]:
        return self.metadata.get("props", {})


@dataclass
class AuthorizationRequest:
    """An incoming /authorize request.

    Transient: it only lives for the redirect round trip through GitHub,
    carried inside the opaque state parameter.
    """

    client_id: str
    redirect_uri: str = ""
    scope: list[str] = field(default_factory=list)
    state: str = ""
    response_type: str = "code"
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "responseType": self.response_type,
            "clientId": self.client_id,
            "redirectUri": self.redirect_uri,
            "scope": list(self.scope),
            "state": self.state,
        }
        if self.code_challenge:
            data["codeChallenge"] = self.code_challenge
            data["codeChallengeMethod"] = self.code_challenge_method or "plain"
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuthorizationRequest:
        """Rebuild a request from its round-tripped form.

        Raises:
            ValueError: a field has the wrong type
        """
        scope = data.get("scope") or []
        if isinstance(scope, str):
            scope = scope.split()
        if not isinstance(scope, list) or not all(isinstance(s, str) for s in scope):
            raise ValueError("scope must be a string or a list of strings")
        for name in ("clientId", "redirectUri", "state", "responseType", "codeChallenge",
                     "codeChallengeMethod"):
            if data.get(name) is not None and not isinstance(data[name], str):
                raise ValueError(f"{name} must be a string")
        return cls(
            client_id=data.get("clientId") or "",
            redirect_uri=data.get("redirectUri") or "",
            scope=list(scope),
            state=data.get("state") or "",
            response_type=data.get("responseType") or "code",
            code_challenge=data.get("codeChallenge"),
            code_challenge_method=data.get("codeChallengeMethod"),
        )


@dataclass(frozen=True)
class Identity:
    """Authenticated GitHub identity, immutable once the callback completes."""

    normalized_login: str
    display_name: Optional[str]
    email: Optional[str]
    upstream_access_token: str
    provider_id: str

    def to_props(self) -> dict[str, Any]:
        """Props bound to the grant and handed to the session actor."""
        return {
            "login": self.normalized_login,
            "name": self.display_name,
            "email": self.email,
            "accessToken": self.upstream_access_token,
            "githubId": self.provider_id,
        }


@dataclass
class ClientInfo:
    """An OAuth client registered through /register."""

    client_id: str
    redirect_uris: list[str]
    client_name: Optional[str] = None
    client_secret_hash: Optional[str] = None
    token_endpoint_auth_method: str = "none"
    grant_types: list[str] = field(
        default_factory=lambda: ["authorization_code", "refresh_token"]
    )
    response_types: list[str] = field(default_factory=lambda: ["code"])
    registered_at: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "client_id": self.client_id,
            "redirect_uris": list(self.redirect_uris),
            "client_name": self.client_name,
            "client_secret_hash": self.client_secret_hash,
            "token_endpoint_auth_method": self.token_endpoint_auth_method,
            "grant_types": list(self.grant_types),
            "response_types": list(self.response_types),
            "registered_at": self.registered_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClientInfo:
        return cls(
            client_id=data["client_id"],
            redirect_uris=list(data.get("redirect_uris", [])),
            client_name=data.get("client_name"),
            client_secret_hash=data.get("client_secret_hash"),
            token_endpoint_auth_method=data.get("token_endpoint_auth_method", "none"),
            grant_types=list(data.get("grant_types", ["authorization_code", "refresh_token"])),
            response_types=list(data.get("response_types", ["code"])),
            registered_at=data.get("registered_at", 0.0),
        )


@dataclass
class TokenInfo:
    """Result of validating a local bearer token."""

    user_id: str
    client_id: str
    scope: list[str]
    props: dict[str, Any]
    expires_at: float
