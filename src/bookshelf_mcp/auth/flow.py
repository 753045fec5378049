"""
OAuth authorization-code flow federated to GitHub.

States: AwaitingApproval -> RedirectedUpstream -> CallbackReceived -> GrantIssued

- GET /authorize: parse the client's request; skip straight to GitHub if the
  consent cookie already approves this client, else render the approval page
- POST /authorize: record consent in the signed cookie, then go to GitHub
- GET /callback: decode the original request from ``state``, exchange the
  GitHub code, fetch the profile, and hand a fresh local code to the client

The ``state`` parameter is the only channel that survives the GitHub round
trip, so it carries the full AuthorizationRequest.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import time
from typing import Any, Optional
from urllib.parse import urlencode

import jwt
from starlette.requests import Request
from starlette.responses import PlainTextResponse, RedirectResponse, Response

from ..core.actor import normalize_login
from ..errors import BadRequestError, UpstreamFailure
from .approval import render_approval_dialog
from .consent import COOKIE_NAME, ConsentCache
from .github import GitHubClient
from .models import AuthorizationRequest, Identity
from .provider import OAuthProvider

logger = logging.getLogger(__name__)


class StateCodec:
    """Encode and decode the state round-tripped through the browser.

    With a signing key the state is an HS256 JWT with a short expiry, so a
    tampered state is rejected. Without one it is plain base64-encoded JSON
    and carries no integrity protection.
    """

    def __init__(self, signing_key: Optional[str] = None, ttl: int = 600) -> None:
        self._key = signing_key
        self.ttl = ttl

    @property
    def signed(self) -> bool:
        return bool(self._key)

    def encode(self, payload: dict[str, Any]) -> str:
        if self._key:
            now = int(time.time())
            return jwt.encode(
                {"req": payload, "iat": now, "exp": now + self.ttl},
                self._key,
                algorithm="HS256",
            )
        raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        return base64.b64encode(raw).decode("ascii")

    def decode(self, value: Optional[str]) -> dict[str, Any]:
        """Decode a state value.

        Raises:
            BadRequestError: the value is missing, undecodable, tampered or expired
        """
        if not value:
            raise BadRequestError("Invalid state")

        if self._key:
            try:
                claims = jwt.decode(value, self._key, algorithms=["HS256"])
            except jwt.InvalidTokenError as e:
                logger.warning(f"OAuth state failed verification: {e}")
                raise BadRequestError("Invalid state") from None
            payload = claims.get("req")
        else:
            try:
                payload = json.loads(base64.b64decode(value, validate=True))
            except (binascii.Error, ValueError, UnicodeDecodeError):
                logger.warning("OAuth state is not base64-encoded JSON")
                raise BadRequestError("Invalid state") from None

        if not isinstance(payload, dict):
            raise BadRequestError("Invalid state")
        return payload


def identity_from_profile(profile: dict[str, Any], access_token: str) -> Identity:
    """Build an Identity from a GitHub /user payload.

    Raises:
        ValueError: the profile has no login
    """
    login = profile.get("login")
    if not isinstance(login, str) or not login.strip():
        raise ValueError("GitHub profile has no login")
    return Identity(
        normalized_login=normalize_login(login),
        display_name=profile.get("name"),
        email=profile.get("email"),
        upstream_access_token=access_token,
        provider_id=str(profile.get("id", "")),
    )


class AuthorizationFlow:
    """Request handlers for /authorize and /callback."""

    def __init__(
        self,
        provider: OAuthProvider,
        consent: ConsentCache,
        github: GitHubClient,
        state_codec: StateCodec,
        server_name: str = "Personal Book Recommendations",
        upstream_scope: str = "read:user",
    ) -> None:
        self.provider = provider
        self.consent = consent
        self.github = github
        self.state_codec = state_codec
        self.server_name = server_name
        self.upstream_scope = upstream_scope

    @staticmethod
    def _callback_url(request: Request) -> str:
        return str(request.base_url).rstrip("/") + "/callback"

    def _redirect_upstream(
        self,
        request: Request,
        auth_request: AuthorizationRequest,
        headers: Optional[dict[str, str]] = None,
    ) -> Response:
        location = self.github.authorize_url(
            redirect_uri=self._callback_url(request),
            state=self.state_codec.encode(auth_request.to_dict()),
            scope=self.upstream_scope,
        )
        logger.info(f"Redirecting client {auth_request.client_id} to GitHub")
        return RedirectResponse(location, status_code=302, headers=headers)

    async def start_authorization(self, request: Request) -> Response:
        """GET /authorize"""
        try:
            auth_request = await self.provider.parse_auth_request(request.query_params)
        except BadRequestError as e:
            logger.warning(f"Rejected authorization request: {e.message}")
            return PlainTextResponse(e.message, status_code=400)

        if self.consent.is_approved(request.cookies.get(COOKIE_NAME), auth_request.client_id):
            logger.debug(f"Client {auth_request.client_id} already approved, skipping prompt")
            return self._redirect_upstream(request, auth_request)

        client = await self.provider.lookup_client(auth_request.client_id)
        return render_approval_dialog(
            client=client,
            client_id=auth_request.client_id,
            server_name=self.server_name,
            state=self.state_codec.encode({"oauthReqInfo": auth_request.to_dict()}),
        )

    async def submit_approval(self, request: Request) -> Response:
        """POST /authorize"""
        form = await request.form()
        try:
            payload = self.state_codec.decode(form.get("state"))
        except BadRequestError:
            return PlainTextResponse("Invalid request", status_code=400)

        info = payload.get("oauthReqInfo")
        if not isinstance(info, dict) or not info.get("clientId"):
            return PlainTextResponse("Invalid request", status_code=400)
        try:
            auth_request = AuthorizationRequest.from_dict(info)
        except ValueError:
            return PlainTextResponse("Invalid request", status_code=400)

        client = await self.provider.lookup_client(auth_request.client_id)
        if client is None or auth_request.redirect_uri not in client.redirect_uris:
            logger.warning(f"Approval submitted for unverifiable client {auth_request.client_id}")
            return PlainTextResponse("Invalid request", status_code=400)

        if form.get("action") == "deny":
            query = {"error": "access_denied"}
            if auth_request.state:
                query["state"] = auth_request.state
            separator = "&" if "?" in auth_request.redirect_uri else "?"
            logger.info(f"User denied access to client {auth_request.client_id}")
            return RedirectResponse(
                f"{auth_request.redirect_uri}{separator}{urlencode(query)}", status_code=302
            )

        set_cookie = self.consent.record_approval(
            request.cookies.get(COOKIE_NAME), auth_request.client_id
        )
        return self._redirect_upstream(request, auth_request, headers={"Set-Cookie": set_cookie})

    async def handle_callback(self, request: Request) -> Response:
        """GET /callback"""
        state_param = request.query_params.get("state")
        if not state_param:
            return PlainTextResponse("Missing state parameter", status_code=400)

        try:
            payload = self.state_codec.decode(state_param)
            auth_request = AuthorizationRequest.from_dict(payload)
        except (BadRequestError, TypeError, ValueError):
            logger.warning("Callback state does not describe an authorization request")
            return PlainTextResponse("Invalid state", status_code=400)
        if not auth_request.client_id:
            return PlainTextResponse("Invalid state", status_code=400)

        try:
            try:
                upstream_token = await self.github.exchange_code(
                    request.query_params.get("code"), self._callback_url(request)
                )
            except UpstreamFailure as e:
                return self._forward_upstream_error(e)

            profile = await self.github.get_user(upstream_token)
            identity = identity_from_profile(profile, upstream_token)

            redirect_to = await self.provider.complete_authorization(
                auth_request, identity, scope=auth_request.scope
            )
            logger.info(f"Authorization granted for {identity.normalized_login}")
            return RedirectResponse(redirect_to, status_code=302)

        except Exception:
            # Detail stays in the server log, never in the response
            logger.exception("Callback error")
            return PlainTextResponse("Invalid request", status_code=400)

    @staticmethod
    def _forward_upstream_error(error: UpstreamFailure) -> Response:
        upstream = error.response
        if upstream is None:
            return PlainTextResponse(str(error), status_code=502)
        status = upstream.status_code if upstream.status_code >= 400 else 400
        return Response(
            content=upstream.content,
            status_code=status,
            media_type=upstream.headers.get("content-type", "text/plain"),
        )
