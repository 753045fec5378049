"""
Tool registry and dispatcher.

Each tool declares a pydantic model for its arguments. The dispatcher
validates arguments before the handler runs, so a rejected call never
touches actor state.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from mcp.types import CallToolResult, TextContent
from mcp.types import Tool as MCPTool
from pydantic import BaseModel, ValidationError

from ..errors import ToolNotFoundError, ToolValidationError
from ..formatting import format_invalid_input

if TYPE_CHECKING:
    from ..clients import RecommendationClient
    from ..core.state import BookPreferences

logger = logging.getLogger(__name__)


@dataclass
class ToolContext:
    """Per-invocation context handed to tool handlers."""

    login: Optional[str]
    now: datetime
    recommender: Optional[RecommendationClient] = None
    max_tokens: int = 600


ToolHandler = Callable[[Any, "BookPreferences", ToolContext], Awaitable[str]]


@dataclass(frozen=True)
class Tool:
    """A named, schema-validated operation on actor state."""

    name: str
    description: str
    arguments: type[BaseModel]
    handler: ToolHandler

    def to_mcp(self) -> MCPTool:
        return MCPTool(
            name=self.name,
            description=self.description,
            inputSchema=self.arguments.model_json_schema(),
        )


def _text_result(text: str, is_error: bool = False) -> CallToolResult:
    return CallToolResult(content=[TextContent(type="text", text=text)], isError=is_error)


def _describe_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(loc) for loc in item.get("loc", ())) or "arguments"
        parts.append(f"{location}: {item.get('msg', 'invalid value')}")
    return "; ".join(parts)


class ToolDispatcher:
    """Validates arguments and runs the matching handler against actor state."""

    def __init__(self, tools: Iterable[Tool]) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            if tool.name in self._tools:
                raise ValueError(f"Duplicate tool name: {tool.name}")
            self._tools[tool.name] = tool

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def list_tools(self) -> list[MCPTool]:
        return [tool.to_mcp() for tool in self._tools.values()]

    async def dispatch(
        self,
        name: str,
        arguments: Optional[dict[str, Any]],
        state: BookPreferences,
        context: ToolContext,
    ) -> CallToolResult:
        """
        Run one tool invocation against ``state`` (mutated in place).

        Returns:
            CallToolResult; isError=True means the caller must discard ``state``

        Raises:
            ToolNotFoundError: no tool named ``name``
        """
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(f"Unknown tool: {name}")

        try:
            args = tool.arguments.model_validate(arguments or {})
        except ValidationError as e:
            message = _describe_validation_error(e)
            logger.warning(f"Validation error in {name}: {message}")
            return _text_result(format_invalid_input(name, message), is_error=True)

        try:
            text = await tool.handler(args, state, context)
        except ToolValidationError as e:
            logger.warning(f"Validation error in {name}: {e}")
            return _text_result(format_invalid_input(name, str(e)), is_error=True)
        except Exception as e:
            logger.exception(f"Unexpected error in {name}")
            return _text_result(
                f"❌ **Unexpected error in {name}**: {type(e).__name__}", is_error=True
            )

        return _text_result(text)
