"""
End-to-end tests for the assembled application.
"""

import base64
import hashlib
import html
import re
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from starlette.testclient import TestClient

from bookshelf_mcp.app import create_app
from bookshelf_mcp.auth.github import GitHubClient

from fakes import FakeRecommender

REDIRECT_URI = "https://client.example.com/cb"
VERIFIER = "end-to-end-code-verifier-0123456789-abcdefghij"


def _s256(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def _github_stub(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/login/oauth/access_token":
        return httpx.Response(200, json={"access_token": "gho_upstream"})
    if request.url.path == "/user":
        return httpx.Response(
            200, json={"login": "Alice", "name": "Alice Reader", "email": "a@example.com", "id": 7}
        )
    return httpx.Response(404)


@pytest.fixture
def app(config):
    github = GitHubClient(
        client_id=config.github_client_id,
        client_secret=config.github_client_secret,
        transport=httpx.MockTransport(_github_stub),
    )
    return create_app(config, github=github, recommender=FakeRecommender())


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


def _register_public_client(client) -> str:
    response = client.post(
        "/register",
        json={
            "redirect_uris": [REDIRECT_URI],
            "client_name": "Test Client",
            "token_endpoint_auth_method": "none",
        },
    )
    assert response.status_code == 201
    return response.json()["client_id"]


def _obtain_tokens(client) -> dict:
    """Run the whole authorization-code flow and return the token response."""
    client_id = _register_public_client(client)

    page = client.get(
        "/authorize",
        params={
            "client_id": client_id,
            "redirect_uri": REDIRECT_URI,
            "response_type": "code",
            "state": "client-state",
            "code_challenge": _s256(VERIFIER),
            "code_challenge_method": "S256",
        },
    )
    assert page.status_code == 200
    state = html.unescape(re.search(r'name="state" value="([^"]+)"', page.text).group(1))

    to_github = client.post(
        "/authorize", data={"state": state, "action": "approve"}, follow_redirects=False
    )
    assert to_github.status_code == 302
    upstream_state = parse_qs(urlparse(to_github.headers["location"]).query)["state"][0]

    back = client.get(
        "/callback",
        params={"code": "upstream-code", "state": upstream_state},
        follow_redirects=False,
    )
    assert back.status_code == 302
    query = parse_qs(urlparse(back.headers["location"]).query)
    assert query["state"] == ["client-state"]

    response = client.post(
        "/token",
        data={
            "grant_type": "authorization_code",
            "code": query["code"][0],
            "redirect_uri": REDIRECT_URI,
            "client_id": client_id,
            "code_verifier": VERIFIER,
        },
    )
    assert response.status_code == 200
    assert response.headers["cache-control"] == "no-store"
    return response.json()


class TestFullFlow:
    def test_authorize_to_tool_call(self, client):
        tokens = _obtain_tokens(client)
        headers = {"Authorization": f"Bearer {tokens['access_token']}"}

        added = client.post(
            "/mcp",
            json={
                "jsonrpc": "2.0",
                "id": 1,
                "method": "tools/call",
                "params": {"name": "addGenre", "arguments": {"genre": "Science Fiction"}},
            },
            headers=headers,
        )
        profile = client.post(
            "/mcp",
            json={
                "jsonrpc": "2.0",
                "id": 2,
                "method": "tools/call",
                "params": {"name": "getProfile", "arguments": {}},
            },
            headers=headers,
        )

        assert added.status_code == 200
        text = profile.json()["result"]["content"][0]["text"]
        assert "Alice Reader's Reading Profile" in text
        assert "science fiction" in text
        assert "Interactions: 2" in text
        assert "GitHub User: alice" in text

    def test_mcp_requires_bearer_token(self, client):
        response = client.post("/mcp", json={"jsonrpc": "2.0", "id": 1, "method": "ping"})

        assert response.status_code == 401
        assert "resource_metadata=" in response.headers["www-authenticate"]

    def test_mcp_rejects_unknown_token(self, client):
        response = client.post(
            "/mcp",
            json={"jsonrpc": "2.0", "id": 1, "method": "ping"},
            headers={"Authorization": "Bearer not-a-real-token"},
        )

        assert response.status_code == 401

    def test_code_cannot_be_replayed(self, client):
        client_id = _register_public_client(client)
        page = client.get(
            "/authorize",
            params={
                "client_id": client_id,
                "redirect_uri": REDIRECT_URI,
                "code_challenge": _s256(VERIFIER),
                "code_challenge_method": "S256",
            },
        )
        state = html.unescape(re.search(r'name="state" value="([^"]+)"', page.text).group(1))
        to_github = client.post("/authorize", data={"state": state}, follow_redirects=False)
        upstream_state = parse_qs(urlparse(to_github.headers["location"]).query)["state"][0]
        back = client.get(
            "/callback", params={"code": "c", "state": upstream_state}, follow_redirects=False
        )
        code = parse_qs(urlparse(back.headers["location"]).query)["code"][0]
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": client_id,
            "code_verifier": VERIFIER,
        }

        assert client.post("/token", data=form).status_code == 200
        replay = client.post("/token", data=form)
        assert replay.status_code == 400
        assert replay.json()["error"] == "invalid_grant"

    def test_busy_client_with_valid_token_is_not_throttled(self, client):
        tokens = _obtain_tokens(client)
        headers = {"Authorization": f"Bearer {tokens['access_token']}"}

        statuses = [
            client.post(
                "/mcp", json={"jsonrpc": "2.0", "id": i, "method": "ping"}, headers=headers
            ).status_code
            for i in range(125)
        ]

        assert set(statuses) == {200}


class TestTokenInfo:
    def test_missing_header(self, client):
        response = client.get("/token-info")

        assert response.status_code == 401
        assert response.text == "Unauthorized"

    def test_malformed_header(self, client):
        response = client.get("/token-info", headers={"Authorization": "Basic abc"})

        assert response.status_code == 401
        assert response.text == "Unauthorized"

    def test_invalid_token(self, client):
        response = client.get("/token-info", headers={"Authorization": "Bearer bogus"})

        assert response.status_code == 401
        assert response.text == "Invalid token"

    def test_valid_token_echoes_props(self, client):
        tokens = _obtain_tokens(client)

        response = client.get(
            "/token-info", headers={"Authorization": f"Bearer {tokens['access_token']}"}
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"
        data = response.json()
        assert data["token"] == tokens["access_token"]
        assert data["user"]["login"] == "alice"
        assert data["user"]["name"] == "Alice Reader"
        assert data["user"]["accessToken"] == "gho_upstream"
        assert data["instructions"]["session_url"] == "http://testserver/mcp"
        assert "Bearer <token>" in data["instructions"]["usage"]


class TestOAuthEndpoints:
    def test_register_rejects_non_json(self, client):
        response = client.post(
            "/register", content=b"nope", headers={"content-type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_client_metadata"

    def test_register_rejects_missing_redirects(self, client):
        response = client.post("/register", json={"client_name": "x"})

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_redirect_uri"

    def test_token_with_basic_auth(self, client):
        registration = client.post("/register", json={"redirect_uris": [REDIRECT_URI]}).json()
        credentials = base64.b64encode(
            f"{registration['client_id']}:wrong-secret".encode()
        ).decode()

        response = client.post(
            "/token",
            data={"grant_type": "authorization_code", "code": "x"},
            headers={"Authorization": f"Basic {credentials}"},
        )

        assert response.status_code == 401
        assert response.json()["error"] == "invalid_client"

    def test_token_malformed_basic_auth(self, client):
        response = client.post(
            "/token",
            data={"grant_type": "authorization_code", "code": "x"},
            headers={"Authorization": "Basic !!!"},
        )

        assert response.status_code == 401

    def test_token_unsupported_grant(self, client):
        response = client.post("/token", data={"grant_type": "password"})

        assert response.status_code == 400
        assert response.json()["error"] == "unsupported_grant_type"

    def test_authorization_server_metadata(self, client):
        response = client.get("/.well-known/oauth-authorization-server")

        data = response.json()
        assert data["issuer"] == "http://testserver"
        assert data["authorization_endpoint"] == "http://testserver/authorize"
        assert data["registration_endpoint"] == "http://testserver/register"


class TestCORS:
    def test_preflight(self, client):
        response = client.options(
            "/mcp",
            headers={
                "Origin": "https://app.example.com",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "Authorization, Content-Type",
            },
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"
        assert "POST" in response.headers["access-control-allow-methods"]
        assert response.headers["access-control-max-age"] == "86400"

    def test_simple_request_gets_cors_header(self, client):
        response = client.get("/health", headers={"Origin": "https://app.example.com"})

        assert response.headers["access-control-allow-origin"] == "*"

    def test_unauthorized_response_still_has_cors(self, client):
        response = client.post(
            "/mcp",
            json={"jsonrpc": "2.0", "id": 1, "method": "ping"},
            headers={"Origin": "https://app.example.com"},
        )

        assert response.status_code == 401
        assert response.headers["access-control-allow-origin"] == "*"
