"""MCP tools for Bookshelf"""

from .books import BOOK_TOOLS, build_recommendation_prompt
from .dispatcher import Tool, ToolContext, ToolDispatcher

__all__ = [
    "BOOK_TOOLS",
    "Tool",
    "ToolContext",
    "ToolDispatcher",
    "build_recommendation_prompt",
]
