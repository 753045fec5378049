"""
Per-user session actors.

Each authenticated GitHub login maps to exactly one BookPreferencesAgent.
The agent owns that user's BookPreferences and serializes every tool call
behind its own lock, so there is a single writer per user.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any, Optional

from cachetools import TTLCache  # type: ignore[import-untyped]
from mcp.types import CallToolResult
from mcp.types import Tool as MCPTool

from ..tools import BOOK_TOOLS, ToolContext, ToolDispatcher
from .persistence import ActorStateStore
from .state import DEFAULT_USER_NAME, BookPreferences, utcnow

logger = logging.getLogger(__name__)


def normalize_login(login: str) -> str:
    """Identity key for a GitHub login; logins are case-insensitive."""
    return login.strip().lower()


class BookPreferencesAgent:
    """Stateful actor holding one user's reading preferences."""

    def __init__(
        self,
        key: str,
        props: Optional[dict[str, Any]],
        store: ActorStateStore,
        dispatcher: ToolDispatcher,
        recommender=None,
        clock: Callable[[], datetime] = utcnow,
        max_tokens: int = 600,
    ):
        self.key = key
        self.props: dict[str, Any] = dict(props or {})
        self._store = store
        self._dispatcher = dispatcher
        self._recommender = recommender
        self._clock = clock
        self._max_tokens = max_tokens
        self._state: Optional[BookPreferences] = None
        self._lock = asyncio.Lock()

    @property
    def initialized(self) -> bool:
        return self._state is not None

    @property
    def state(self) -> BookPreferences:
        """Committed state. Callers get a copy and cannot mutate the actor."""
        if self._state is None:
            raise RuntimeError(f"Actor {self.key} used before init()")
        return self._state.copy()

    def _default_user_name(self) -> str:
        return self.props.get("name") or self.props.get("login") or DEFAULT_USER_NAME

    async def init(self) -> None:
        """Load persisted state, filling in only the fields that are absent."""
        async with self._lock:
            if self._state is not None:
                return

            stored = await self._store.load_state(self.key)
            state, defaulted = BookPreferences.from_partial(
                stored, self._default_user_name(), self._clock()
            )

            if defaulted:
                try:
                    await self._store.save_state(self.key, state.to_dict())
                except OSError as e:
                    logger.error(f"Failed to persist initial state for {self.key}: {e}")

            self._state = state
            logger.info(
                f"Actor {self.key} initialized"
                + (f" (defaulted: {', '.join(defaulted)})" if defaulted else "")
            )

    def list_tools(self) -> list[MCPTool]:
        return self._dispatcher.list_tools()

    async def call_tool(
        self, name: str, arguments: Optional[dict[str, Any]] = None
    ) -> CallToolResult:
        """
        Run a tool against this actor's state.

        The tool works on a copy; the copy is persisted in one write and only
        then becomes the committed state. A failed validation or a failed
        write leaves the committed state untouched.

        Raises:
            ToolNotFoundError: unknown tool name
            OSError: the state could not be persisted
        """
        await self.init()

        async with self._lock:
            working = self._state.copy()
            context = ToolContext(
                login=self.props.get("login"),
                now=self._clock(),
                recommender=self._recommender,
                max_tokens=self._max_tokens,
            )

            result = await self._dispatcher.dispatch(name, arguments, working, context)
            if result.isError:
                return result

            try:
                await self._store.save_state(self.key, working.to_dict())
            except OSError as e:
                logger.error(f"Failed to persist state for {self.key} after {name}: {e}")
                raise

            self._state = working
            logger.info(
                f"{self.key}: {len(working.favorite_genres)} genres, "
                f"{len(working.books_read)} books, {working.interaction_count} interactions"
            )
            return result


class ActorNamespace:
    """Creates and caches one agent per normalized login.

    Agents idle for longer than ``idle_ttl`` seconds are dropped, and at most
    ``max_actors`` are held, least recently used evicted first. A dropped
    agent holds no unsaved state; the next request reloads it from the store.
    """

    def __init__(
        self,
        store: ActorStateStore,
        recommender=None,
        dispatcher: Optional[ToolDispatcher] = None,
        clock: Callable[[], datetime] = utcnow,
        max_tokens: int = 600,
        max_actors: int = 10000,
        idle_ttl: float = 3600,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.recommender = recommender
        self.dispatcher = dispatcher or ToolDispatcher(BOOK_TOOLS)
        self._clock = clock
        self._max_tokens = max_tokens
        self._agents: TTLCache = TTLCache(maxsize=max_actors, ttl=idle_ttl, timer=timer)
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, login: str) -> bool:
        return normalize_login(login) in self._agents

    async def get(
        self, login: str, props: Optional[dict[str, Any]] = None
    ) -> BookPreferencesAgent:
        """
        Get (or lazily create) the agent for a login, initialized.

        Raises:
            ValueError: empty login
        """
        key = normalize_login(login or "")
        if not key:
            raise ValueError("Cannot route to an actor without a login")

        async with self._lock:
            agent = self._agents.get(key)
            if agent is None:
                agent = BookPreferencesAgent(
                    key=key,
                    props=props,
                    store=self.store,
                    dispatcher=self.dispatcher,
                    recommender=self.recommender,
                    clock=self._clock,
                    max_tokens=self._max_tokens,
                )
                logger.debug(f"Created actor for {key}")
            elif props:
                # Latest grant wins; the upstream token may have rotated
                agent.props.update(props)
            # Re-inserting restarts the idle window
            self._agents[key] = agent

        await agent.init()
        return agent
