"""
Exception taxonomy for Bookshelf MCP.

Core code raises these; the HTTP layer maps them to responses:
- BadRequestError   -> 400 with a generic message
- UpstreamFailure   -> upstream response forwarded as-is (token exchange only)
- ToolValidationError -> tool result with isError=True, never a transport error
- RecommendationError -> recovered inside the tool, never surfaces
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx


class BookshelfError(Exception):
    """Base class for all Bookshelf MCP errors."""


class ConfigurationError(BookshelfError):
    """Required configuration is missing or invalid."""

    def __init__(self, missing: list[str] | None = None, message: str | None = None):
        self.missing = missing or []
        if message is None:
            message = "Missing required configuration: " + ", ".join(self.missing)
        super().__init__(message)


class BadRequestError(BookshelfError):
    """Malformed or missing OAuth parameters."""

    def __init__(self, message: str = "Invalid request"):
        self.message = message
        super().__init__(message)


class UpstreamFailure(BookshelfError):
    """The upstream identity provider rejected a call.

    Carries the upstream response so the token-exchange step can forward it
    verbatim.
    """

    def __init__(self, message: str, response: httpx.Response | None = None):
        self.response = response
        super().__init__(message)


class OAuthError(BookshelfError):
    """RFC 6749 error returned from the token and registration endpoints."""

    def __init__(self, error: str, description: str = "", status_code: int = 400):
        self.error = error
        self.description = description
        self.status_code = status_code
        super().__init__(f"{error}: {description}" if description else error)

    def to_dict(self) -> dict[str, str]:
        body = {"error": self.error}
        if self.description:
            body["error_description"] = self.description
        return body


class ToolValidationError(BookshelfError):
    """Tool arguments are outside the tool's contract."""


class ToolNotFoundError(BookshelfError):
    """No tool is registered under the requested name."""


class RecommendationError(BookshelfError):
    """The recommendation service failed to produce text."""
