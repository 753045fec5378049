"""
Transport layer for the Bookshelf MCP server.

- Streamable HTTP JSON-RPC 2.0 session endpoint
- Health and protected resource metadata endpoints
"""

from .streamable_http import SessionTransport

__all__ = ["SessionTransport"]
