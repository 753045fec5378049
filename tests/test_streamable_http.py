"""
Integration tests for the streamable HTTP session transport.

Tests the stateless JSON-RPC 2.0 endpoint with an authenticated user
injected by AuthMiddleware.
"""

from unittest.mock import AsyncMock, Mock

import pytest
from mcp.types import LATEST_PROTOCOL_VERSION
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.testclient import TestClient

from bookshelf_mcp.auth.middleware import AuthMiddleware
from bookshelf_mcp.auth.models import UserContext
from bookshelf_mcp.transport import SessionTransport

PROPS = {"login": "alice", "name": "Alice Reader", "email": "a@example.com"}


def _rpc(method, params=None, request_id=1):
    body = {"jsonrpc": "2.0", "method": method, "id": request_id}
    if params is not None:
        body["params"] = params
    return body


class TestSessionTransport:
    """Test suite for SessionTransport."""

    @pytest.fixture
    def auth_provider(self):
        """Mock auth provider that authenticates every request as alice."""
        provider = Mock()
        provider.get_user_context = AsyncMock(
            return_value=UserContext(user_id="alice", metadata={"props": PROPS})
        )
        provider.is_enabled.return_value = True
        provider.get_www_authenticate_header.return_value = 'Bearer realm="test"'
        return provider

    @pytest.fixture
    def transport(self, namespace):
        return SessionTransport(namespace, server_name="Test Books", server_version="9.9.9")

    @pytest.fixture
    def client(self, transport, auth_provider):
        app = Starlette(
            routes=transport.routes(),
            middleware=[Middleware(AuthMiddleware, auth_provider=auth_provider)],
        )
        with TestClient(app) as client:
            yield client

    def test_health_endpoint(self, client):
        response = client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "bookshelf-mcp"
        assert data["transport"] == "streamable-http"
        assert data["active_actors"] == 0

    def test_protected_resource_metadata(self, client):
        response = client.get("/.well-known/oauth-protected-resource")
        assert response.status_code == 200

        data = response.json()
        assert data["resource"] == "http://testserver/mcp"
        assert data["authorization_servers"] == ["http://testserver"]
        assert data["bearer_methods_supported"] == ["header"]

    def test_get_mcp_not_allowed(self, client):
        response = client.get("/mcp")
        assert response.status_code == 405

        data = response.json()
        assert data["error"]["code"] == -32601
        assert "Method not allowed" in data["error"]["message"]

    def test_initialize_request(self, client):
        response = client.post(
            "/mcp",
            json=_rpc(
                "initialize",
                {
                    "protocolVersion": LATEST_PROTOCOL_VERSION,
                    "capabilities": {},
                    "clientInfo": {"name": "test-client", "version": "1.0.0"},
                },
            ),
        )
        assert response.status_code == 200

        data = response.json()
        assert data["jsonrpc"] == "2.0"
        assert data["id"] == 1
        result = data["result"]
        assert result["protocolVersion"] == LATEST_PROTOCOL_VERSION
        assert "tools" in result["capabilities"]
        assert result["serverInfo"] == {"name": "Test Books", "version": "9.9.9"}

    def test_ping(self, client):
        response = client.post("/mcp", json=_rpc("ping", request_id="abc"))

        assert response.json() == {"jsonrpc": "2.0", "id": "abc", "result": {}}

    def test_tools_list(self, client):
        response = client.post("/mcp", json=_rpc("tools/list"))
        assert response.status_code == 200

        tools = response.json()["result"]["tools"]
        assert [tool["name"] for tool in tools] == [
            "getProfile",
            "addGenre",
            "rateBook",
            "getRecommendations",
        ]
        assert all("inputSchema" in tool for tool in tools)

    def test_tools_call_routes_to_actor(self, client, namespace):
        response = client.post(
            "/mcp", json=_rpc("tools/call", {"name": "addGenre", "arguments": {"genre": "Poetry"}})
        )
        assert response.status_code == 200

        result = response.json()["result"]
        assert result["isError"] is False
        assert result["content"][0]["type"] == "text"
        assert 'Added "Poetry"' in result["content"][0]["text"]
        assert "alice" in namespace
        assert len(namespace) == 1

    def test_tools_call_validation_error(self, client):
        response = client.post(
            "/mcp",
            json=_rpc(
                "tools/call",
                {"name": "rateBook", "arguments": {"title": "X", "author": "Y", "rating": 0}},
            ),
        )

        result = response.json()["result"]
        assert result["isError"] is True
        assert "Invalid input for rateBook" in result["content"][0]["text"]

    def test_tools_call_unknown_tool(self, client):
        response = client.post("/mcp", json=_rpc("tools/call", {"name": "nope"}))

        data = response.json()
        assert data["error"]["code"] == -32602
        assert "nope" in data["error"]["data"]

    def test_tools_call_missing_name(self, client):
        response = client.post("/mcp", json=_rpc("tools/call", {"arguments": {}}))

        assert response.json()["error"]["code"] == -32602

    def test_tools_call_arguments_must_be_object(self, client):
        response = client.post(
            "/mcp", json=_rpc("tools/call", {"name": "addGenre", "arguments": ["x"]})
        )

        assert response.json()["error"]["code"] == -32602

    def test_unknown_method(self, client):
        response = client.post("/mcp", json=_rpc("resources/list"))

        data = response.json()
        assert data["error"]["code"] == -32601
        assert data["id"] == 1

    def test_notification_accepted(self, client):
        response = client.post(
            "/mcp", json={"jsonrpc": "2.0", "method": "notifications/initialized"}
        )

        assert response.status_code == 202
        assert response.content == b""

    def test_parse_error(self, client):
        response = client.post(
            "/mcp", content=b"{not json", headers={"content-type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32700

    @pytest.mark.parametrize(
        "body",
        [
            {"method": "ping", "id": 1},
            {"jsonrpc": "1.0", "method": "ping", "id": 1},
            {"jsonrpc": "2.0", "id": 1},
            [{"jsonrpc": "2.0", "method": "ping", "id": 1}],
        ],
    )
    def test_invalid_request(self, client, body):
        response = client.post("/mcp", json=body)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32600

    def test_persistence_failure_is_internal_error(self, client, namespace, state_store):
        client.post("/mcp", json=_rpc("tools/call", {"name": "getProfile"}))
        state_store.save_state = AsyncMock(side_effect=OSError("disk full"))

        response = client.post("/mcp", json=_rpc("tools/call", {"name": "getProfile"}))

        data = response.json()
        assert data["error"]["code"] == -32603
        assert "disk full" not in str(data)

    def test_unauthenticated_request_rejected(self, transport, auth_provider):
        auth_provider.get_user_context = AsyncMock(return_value=None)
        app = Starlette(
            routes=transport.routes(),
            middleware=[Middleware(AuthMiddleware, auth_provider=auth_provider)],
        )

        with TestClient(app) as client:
            response = client.post("/mcp", json=_rpc("tools/list"))
            health = client.get("/health")

        assert response.status_code == 401
        assert response.headers["www-authenticate"] == 'Bearer realm="test"'
        assert health.status_code == 200

    def test_metrics(self, client, transport):
        client.post("/mcp", json=_rpc("ping"))

        metrics = transport.get_metrics()
        assert metrics["requests_handled"] == 1
        assert metrics["transport_type"] == "streamable-http"

    def test_health_reports_metrics(self, client):
        client.post("/mcp", json=_rpc("ping"))
        client.post("/mcp", json=_rpc("ping", request_id=2))

        metrics = client.get("/health").json()["metrics"]
        assert metrics["requests_handled"] == 2
        assert metrics["active_actors"] == 0
