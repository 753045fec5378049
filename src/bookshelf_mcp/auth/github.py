"""
GitHub upstream OAuth client.

Builds the upstream authorize URL, exchanges authorization codes for GitHub
access tokens, and fetches the authenticated user's profile.
"""

from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from ..errors import UpstreamFailure

logger = logging.getLogger(__name__)


class GitHubClient:
    """Server-to-server calls against GitHub's OAuth endpoints.

    Args:
        client_id: GitHub OAuth app client ID
        client_secret: GitHub OAuth app client secret
        authorize_url: Upstream authorize endpoint
        token_url: Upstream token endpoint
        user_url: Authenticated-user profile endpoint
        transport: Optional httpx transport (tests inject httpx.MockTransport)
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        authorize_url: str = "https://github.com/login/oauth/authorize",
        token_url: str = "https://github.com/login/oauth/access_token",
        user_url: str = "https://api.github.com/user",
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ) -> None:
        self.client_id = client_id
        self._client_secret = client_secret
        self.authorize_endpoint = authorize_url
        self.token_endpoint = token_url
        self.user_endpoint = user_url
        self._transport = transport
        self._timeout = timeout

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    def authorize_url(self, redirect_uri: str, state: str, scope: str = "read:user") -> str:
        """URL the browser is sent to for GitHub sign-in."""
        query = urlencode(
            {
                "client_id": self.client_id,
                "redirect_uri": redirect_uri,
                "scope": scope,
                "state": state,
                "response_type": "code",
            }
        )
        return f"{self.authorize_endpoint}?{query}"

    async def exchange_code(self, code: Optional[str], redirect_uri: str) -> str:
        """Exchange an upstream authorization code for an access token.

        Raises:
            UpstreamFailure: non-2xx status or no access_token in the body;
                carries the upstream response for verbatim forwarding
        """
        async with self._client() as client:
            response = await client.post(
                self.token_endpoint,
                data={
                    "client_id": self.client_id,
                    "client_secret": self._client_secret,
                    "code": code or "",
                    "redirect_uri": redirect_uri,
                },
                headers={"Accept": "application/json"},
            )

        if not response.is_success:
            logger.error(f"GitHub token exchange failed with status {response.status_code}")
            raise UpstreamFailure("Failed to fetch access token", response)

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not access_token:
            # GitHub reports bad codes as 200 with an "error" field
            error = payload.get("error") if isinstance(payload, dict) else None
            logger.error(f"GitHub token exchange returned no access token (error={error})")
            raise UpstreamFailure("Missing access token", response)

        return str(access_token)

    async def get_user(self, access_token: str) -> dict[str, Any]:
        """Fetch the authenticated user's profile.

        Raises:
            UpstreamFailure: non-2xx status from the GitHub API
        """
        async with self._client() as client:
            response = await client.get(
                self.user_endpoint,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/vnd.github+json",
                    "User-Agent": "bookshelf-mcp",
                },
            )

        if not response.is_success:
            logger.error(f"GitHub profile fetch failed with status {response.status_code}")
            raise UpstreamFailure("Failed to fetch user profile", response)

        return response.json()
