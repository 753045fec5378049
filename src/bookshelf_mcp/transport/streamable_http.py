"""
Streamable HTTP transport for the Bookshelf MCP server.

Stateless HTTP JSON transport: every POST /mcp carries one JSON-RPC 2.0
message. The authenticated user (placed on request.state by AuthMiddleware)
selects the session actor that runs tool calls.
"""

import json
import logging
from typing import Any

from mcp.types import (
    LATEST_PROTOCOL_VERSION,
    Implementation,
    InitializeResult,
    ServerCapabilities,
    ToolsCapability,
)
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from ..core.actor import ActorNamespace
from ..errors import ToolNotFoundError

logger = logging.getLogger(__name__)

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


def _error(
    code: int, message: str, request_id: Any = None, data: Any = None, status_code: int = 200
) -> JSONResponse:
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return JSONResponse(
        {"jsonrpc": "2.0", "id": request_id, "error": error}, status_code=status_code
    )


def _result(request_id: Any, result: dict[str, Any]) -> JSONResponse:
    return JSONResponse({"jsonrpc": "2.0", "id": request_id, "result": result})


class SessionTransport:
    """JSON-RPC handler for the /mcp session endpoint."""

    def __init__(
        self,
        namespace: ActorNamespace,
        server_name: str = "Personal Book Recommendations",
        server_version: str = "1.0.0",
    ):
        """
        Initialize the session transport.

        Args:
            namespace: Actor namespace routing tool calls to per-user actors
            server_name: Name reported in initialize
            server_version: Version reported in initialize
        """
        self.namespace = namespace
        self.server_name = server_name
        self.server_version = server_version
        self.metrics = {"requests_handled": 0, "errors": 0}

    def routes(self) -> list[Route]:
        return [
            Route("/mcp", self.handle_mcp_request, methods=["POST"]),
            Route("/mcp", self.handle_mcp_get, methods=["GET"]),
            Route("/health", self.handle_health, methods=["GET"]),
            Route(
                "/.well-known/oauth-protected-resource",
                self.handle_resource_metadata,
                methods=["GET"],
            ),
        ]

    async def handle_health(self, request: Request) -> JSONResponse:
        """Health check endpoint for load balancers."""
        return JSONResponse(
            {
                "status": "healthy",
                "service": "bookshelf-mcp",
                "transport": "streamable-http",
                "metrics": self.get_metrics(),
                "active_actors": len(self.namespace),
            }
        )

    async def handle_resource_metadata(self, request: Request) -> JSONResponse:
        """OAuth 2.0 Protected Resource Metadata (RFC 9728)."""
        base_url = str(request.base_url).rstrip("/")
        return JSONResponse(
            {
                "resource": f"{base_url}/mcp",
                "authorization_servers": [base_url],
                "bearer_methods_supported": ["header"],
                "resource_name": self.server_name,
            }
        )

    async def handle_mcp_get(self, request: Request) -> JSONResponse:
        return _error(
            METHOD_NOT_FOUND,
            "Method not allowed. Use POST for stateless JSON-RPC requests.",
            data={"allowed_methods": ["POST"], "endpoint": "/mcp"},
            status_code=405,
        )

    async def handle_mcp_request(self, request: Request) -> Response:
        """Handle POST requests to /mcp endpoint."""
        self.metrics["requests_handled"] += 1

        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return _error(
                PARSE_ERROR, "Parse error", data="Invalid JSON in request body", status_code=400
            )

        if not self._is_valid_jsonrpc(body):
            return _error(
                INVALID_REQUEST,
                "Invalid Request",
                request_id=body.get("id") if isinstance(body, dict) else None,
                data="Missing or invalid JSON-RPC 2.0 structure",
                status_code=400,
            )

        method = body["method"]
        params = body.get("params") or {}

        # Notifications carry no id and get no response body
        if "id" not in body:
            logger.debug(f"Notification received: {method}")
            return Response(status_code=202)

        request_id = body["id"]
        if not isinstance(params, dict):
            return _error(INVALID_PARAMS, "Invalid params", request_id, "params must be an object")

        try:
            if method == "initialize":
                return _result(request_id, self._initialize_result())
            if method == "ping":
                return _result(request_id, {})
            if method == "tools/list":
                tools = [
                    tool.model_dump(by_alias=True, exclude_none=True, mode="json")
                    for tool in self.namespace.dispatcher.list_tools()
                ]
                return _result(request_id, {"tools": tools})
            if method == "tools/call":
                return await self._handle_tools_call(request, params, request_id)
        except Exception as e:
            self.metrics["errors"] += 1
            logger.exception(f"Error handling MCP request {method}")
            return _error(INTERNAL_ERROR, "Internal error", request_id, type(e).__name__)

        return _error(
            METHOD_NOT_FOUND, "Method not found", request_id, f"Method '{method}' not supported"
        )

    def _initialize_result(self) -> dict[str, Any]:
        result = InitializeResult(
            protocolVersion=LATEST_PROTOCOL_VERSION,
            capabilities=ServerCapabilities(tools=ToolsCapability(listChanged=False)),
            serverInfo=Implementation(name=self.server_name, version=self.server_version),
        )
        return result.model_dump(by_alias=True, exclude_none=True, mode="json")

    async def _handle_tools_call(
        self, request: Request, params: dict[str, Any], request_id: Any
    ) -> JSONResponse:
        tool_name = params.get("name")
        arguments = params.get("arguments") or {}

        if not isinstance(tool_name, str) or not tool_name:
            return _error(INVALID_PARAMS, "Invalid params", request_id, "Missing 'name' parameter")
        if not isinstance(arguments, dict):
            return _error(
                INVALID_PARAMS, "Invalid params", request_id, "'arguments' must be an object"
            )

        user_context = getattr(request.state, "user_context", None)
        if user_context is None:
            return _error(
                INVALID_REQUEST, "Unauthorized", request_id, "No authenticated user", 401
            )

        props = user_context.props
        agent = await self.namespace.get(props.get("login") or user_context.user_id, props)

        try:
            result = await agent.call_tool(tool_name, arguments)
        except ToolNotFoundError as e:
            return _error(INVALID_PARAMS, "Invalid params", request_id, str(e))

        return _result(request_id, result.model_dump(by_alias=True, exclude_none=True, mode="json"))

    def _is_valid_jsonrpc(self, body: Any) -> bool:
        """Check if request body is a single valid JSON-RPC 2.0 message."""
        if not isinstance(body, dict):
            return False
        if body.get("jsonrpc") != "2.0":
            return False
        return isinstance(body.get("method"), str)

    def get_metrics(self) -> dict[str, Any]:
        """Get transport metrics."""
        return {
            **self.metrics,
            "active_actors": len(self.namespace),
            "transport_type": "streamable-http",
        }
