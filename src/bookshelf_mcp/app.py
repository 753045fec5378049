"""
Starlette application for the Bookshelf MCP server.

Routes:
- /authorize (GET, POST), /callback: GitHub-federated authorization
- /token, /register: local OAuth endpoints
- /token-info: echo the caller's token and identity
- /.well-known/oauth-authorization-server, /.well-known/oauth-protected-resource
- /health, /mcp: session transport
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from contextlib import asynccontextmanager
from typing import Optional
from urllib.parse import unquote

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.routing import Route

from .auth import BearerTokenAuthProvider, ConsentCache, OAuthProvider, extract_bearer_token
from .auth.flow import AuthorizationFlow, StateCodec
from .auth.github import GitHubClient
from .auth.middleware import AuthMiddleware
from .clients import BedrockRecommendationClient
from .config import ServerConfig
from .core.actor import ActorNamespace
from .core.persistence import ActorStateStore
from .errors import OAuthError
from .storage import KeyValueStore, MemoryKeyValueStore
from .transport import SessionTransport

logger = logging.getLogger(__name__)

TOKEN_USAGE = "Use this token in your MCP client's Authorization header as 'Bearer <token>'"


def _parse_basic_auth(header: Optional[str]) -> Optional[tuple[str, str]]:
    """Client credentials from an HTTP Basic header (RFC 6749 section 2.3.1)."""
    if not header or not header.startswith("Basic "):
        return None
    try:
        decoded = base64.b64decode(header[6:].strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        raise OAuthError(
            "invalid_client", "Malformed Basic credentials", status_code=401
        ) from None
    client_id, sep, secret = decoded.partition(":")
    if not sep:
        raise OAuthError("invalid_client", "Malformed Basic credentials", status_code=401)
    return unquote(client_id), unquote(secret)


def _oauth_error_response(error: OAuthError) -> JSONResponse:
    headers = {"Cache-Control": "no-store"}
    if error.status_code == 401:
        headers["WWW-Authenticate"] = 'Basic realm="token"'
    return JSONResponse(error.to_dict(), status_code=error.status_code, headers=headers)


class OAuthEndpoints:
    """Handlers for /token, /register, /token-info and discovery metadata."""

    def __init__(self, provider: OAuthProvider):
        self.provider = provider

    async def token(self, request: Request) -> JSONResponse:
        form = await request.form()
        try:
            basic_auth = _parse_basic_auth(request.headers.get("authorization"))
            tokens = await self.provider.exchange_token(dict(form), basic_auth)
        except OAuthError as e:
            logger.warning(f"Token request rejected: {e}")
            return _oauth_error_response(e)
        return JSONResponse(tokens, headers={"Cache-Control": "no-store"})

    async def register(self, request: Request) -> JSONResponse:
        try:
            metadata = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return _oauth_error_response(
                OAuthError("invalid_client_metadata", "Request body must be JSON")
            )
        if not isinstance(metadata, dict):
            return _oauth_error_response(
                OAuthError("invalid_client_metadata", "Request body must be a JSON object")
            )

        try:
            registration = await self.provider.register_client(metadata)
        except OAuthError as e:
            logger.warning(f"Client registration rejected: {e}")
            return _oauth_error_response(e)
        return JSONResponse(registration, status_code=201)

    async def token_info(self, request: Request) -> Response:
        token = extract_bearer_token(request.headers.get("authorization"))
        if not token:
            return PlainTextResponse("Unauthorized", status_code=401)

        try:
            info = await self.provider.validate_access_token(token)
        except Exception:
            logger.exception("Error retrieving token info")
            return PlainTextResponse("Error retrieving token info", status_code=500)

        if info is None:
            return PlainTextResponse("Invalid token", status_code=401)

        base_url = str(request.base_url).rstrip("/")
        return JSONResponse(
            {
                "token": token,
                "user": info.props,
                "instructions": {"session_url": f"{base_url}/mcp", "usage": TOKEN_USAGE},
            },
            headers={"Access-Control-Allow-Origin": "*"},
        )

    async def authorization_server_metadata(self, request: Request) -> JSONResponse:
        return JSONResponse(
            self.provider.authorization_server_metadata(str(request.base_url))
        )


def create_app(
    config: ServerConfig,
    *,
    kv: Optional[KeyValueStore] = None,
    store: Optional[ActorStateStore] = None,
    github: Optional[GitHubClient] = None,
    recommender=None,
) -> Starlette:
    """
    Build the Starlette application.

    Args:
        config: Server configuration; validated here
        kv: OAuth record store; in-memory if omitted
        store: Actor state store; file-backed at config.actor_storage_path if omitted
        github: Upstream client; built from config if omitted
        recommender: Recommendation client; Bedrock if omitted
    """
    config.validate()
    kv = kv if kv is not None else MemoryKeyValueStore()
    store = store if store is not None else ActorStateStore(config.actor_storage_path)
    github = github or GitHubClient(
        client_id=config.github_client_id,
        client_secret=config.github_client_secret,
        authorize_url=config.upstream_authorize_url,
        token_url=config.upstream_token_url,
        user_url=config.upstream_user_url,
    )
    if recommender is None:
        recommender = BedrockRecommendationClient(
            model_id=config.recommendation_model_id, region=config.aws_region
        )

    provider = OAuthProvider(
        kv,
        access_token_ttl=config.access_token_ttl,
        refresh_token_ttl=config.refresh_token_ttl,
        code_ttl=config.authorization_code_ttl,
    )
    flow = AuthorizationFlow(
        provider=provider,
        consent=ConsentCache(config.cookie_encryption_key, ttl=config.consent_cookie_ttl),
        github=github,
        state_codec=StateCodec(
            config.cookie_encryption_key if config.oauth_state_signing else None,
            ttl=config.authorization_code_ttl,
        ),
        server_name=config.server_name,
        upstream_scope=config.upstream_scope,
    )
    namespace = ActorNamespace(
        store,
        recommender=recommender,
        max_tokens=config.recommendation_max_tokens,
        max_actors=config.max_actors,
        idle_ttl=config.actor_idle_ttl,
    )
    transport = SessionTransport(
        namespace, server_name=config.server_name, server_version=config.server_version
    )
    endpoints = OAuthEndpoints(provider)

    if not flow.state_codec.signed:
        logger.warning("OAuth state signing is disabled; state is unauthenticated base64 JSON")

    routes = [
        Route("/authorize", flow.start_authorization, methods=["GET"]),
        Route("/authorize", flow.submit_approval, methods=["POST"]),
        Route("/callback", flow.handle_callback, methods=["GET"]),
        Route("/token", endpoints.token, methods=["POST"]),
        Route("/register", endpoints.register, methods=["POST"]),
        Route("/token-info", endpoints.token_info, methods=["GET"]),
        Route(
            "/.well-known/oauth-authorization-server",
            endpoints.authorization_server_metadata,
            methods=["GET"],
        ),
        *transport.routes(),
    ]

    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Content-Type", "Authorization"],
            max_age=86400,
        ),
        Middleware(
            AuthMiddleware,
            auth_provider=BearerTokenAuthProvider(
                provider, trust_forwarded=config.trust_proxy_headers
            ),
            protected_paths=("/mcp",),
        ),
    ]

    @asynccontextmanager
    async def lifespan(app: Starlette):
        logger.info(f"{config.server_name} ready on http://{config.host}:{config.port}/mcp")
        yield
        cleanup = getattr(recommender, "cleanup", None)
        if callable(cleanup):
            cleanup()
        logger.info("Bookshelf MCP server shut down")

    app = Starlette(routes=routes, middleware=middleware, lifespan=lifespan)
    app.state.provider = provider
    app.state.namespace = namespace
    app.state.transport = transport
    return app
