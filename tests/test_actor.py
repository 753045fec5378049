"""
Tests for per-user session actors.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from bookshelf_mcp.core.actor import ActorNamespace, normalize_login
from bookshelf_mcp.core.persistence import ActorStateStore
from bookshelf_mcp.core.state import DEFAULT_USER_NAME
from bookshelf_mcp.errors import ToolNotFoundError

ALICE = {"login": "alice", "name": "Alice Reader", "email": "a@example.com"}


def _text(result) -> str:
    return result.content[0].text


class _Timer:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestNormalizeLogin:
    @pytest.mark.parametrize("login", ["Alice", "alice ", "  ALICE", "alice"])
    def test_case_and_whitespace_insensitive(self, login):
        assert normalize_login(login) == "alice"

    def test_idempotent(self):
        once = normalize_login("  MixedCase ")
        assert normalize_login(once) == once


class TestActorNamespace:
    """Identity routing"""

    @pytest.mark.asyncio
    async def test_same_identity_same_actor(self, namespace):
        first = await namespace.get("Alice", ALICE)
        second = await namespace.get("alice ", ALICE)

        assert first is second
        assert len(namespace) == 1

    @pytest.mark.asyncio
    async def test_distinct_identities_isolated(self, namespace):
        alice = await namespace.get("alice", ALICE)
        bob = await namespace.get("bob", {"login": "bob"})

        await alice.call_tool("addGenre", {"genre": "Mystery"})

        assert alice is not bob
        assert bob.state.favorite_genres == []

    @pytest.mark.asyncio
    async def test_concurrent_first_access_yields_one_instance(self, namespace):
        agents = await asyncio.gather(*(namespace.get("Alice", ALICE) for _ in range(10)))

        assert all(agent is agents[0] for agent in agents)

    @pytest.mark.asyncio
    async def test_empty_login_rejected(self, namespace):
        with pytest.raises(ValueError):
            await namespace.get("   ")

    @pytest.mark.asyncio
    async def test_get_refreshes_props(self, namespace):
        await namespace.get("alice", ALICE)
        agent = await namespace.get("alice", {**ALICE, "accessToken": "rotated"})

        assert agent.props["accessToken"] == "rotated"

    @pytest.mark.asyncio
    async def test_idle_actor_evicted_and_reloaded(self, state_store, recommender, clock):
        timer = _Timer()
        namespace = ActorNamespace(
            state_store, recommender, clock=clock, idle_ttl=60, timer=timer
        )
        agent = await namespace.get("alice", ALICE)
        await agent.call_tool("addGenre", {"genre": "Fantasy"})

        timer.now += 61
        assert "alice" not in namespace
        assert len(namespace) == 0

        reloaded = await namespace.get("alice", ALICE)
        assert reloaded is not agent
        assert reloaded.state.favorite_genres == ["fantasy"]
        assert reloaded.state.interaction_count == 1

    @pytest.mark.asyncio
    async def test_access_restarts_idle_window(self, state_store, recommender, clock):
        timer = _Timer()
        namespace = ActorNamespace(
            state_store, recommender, clock=clock, idle_ttl=60, timer=timer
        )
        agent = await namespace.get("alice", ALICE)

        timer.now += 45
        await namespace.get("alice", ALICE)
        timer.now += 45

        assert await namespace.get("alice", ALICE) is agent

    @pytest.mark.asyncio
    async def test_max_actors_bound(self, state_store, recommender, clock):
        namespace = ActorNamespace(state_store, recommender, clock=clock, max_actors=2)

        for login in ("alice", "bob", "carol"):
            await namespace.get(login)

        assert len(namespace) == 2
        assert "alice" not in namespace
        assert "carol" in namespace


class TestActorInit:
    """Single authoritative init transition"""

    @pytest.mark.asyncio
    async def test_fresh_actor_defaults(self, namespace, clock):
        agent = await namespace.get("alice", ALICE)
        state = agent.state

        assert state.user_name == "Alice Reader"
        assert state.favorite_genres == []
        assert state.books_read == ()
        assert state.interaction_count == 0
        assert state.session_started == clock.now

    @pytest.mark.asyncio
    async def test_user_name_falls_back_to_login_then_default(self, namespace):
        by_login = await namespace.get("bob", {"login": "bob"})
        anonymous = await namespace.get("carol")

        assert by_login.state.user_name == "bob"
        assert anonymous.state.user_name == DEFAULT_USER_NAME

    @pytest.mark.asyncio
    async def test_defaults_persisted_once(self, namespace, state_store):
        await namespace.get("alice", ALICE)

        stored = await state_store.load_state("alice")
        assert stored["userName"] == "Alice Reader"
        assert stored["interactionCount"] == 0

    @pytest.mark.asyncio
    async def test_init_never_overwrites_present_fields(self, state_store, recommender, clock):
        await state_store.save_state(
            "alice", {"userName": "Stored Name", "favoriteGenres": ["horror"]}
        )

        agent = await ActorNamespace(state_store, recommender, clock=clock).get("alice", ALICE)

        assert agent.state.user_name == "Stored Name"
        assert agent.state.favorite_genres == ["horror"]
        assert agent.state.interaction_count == 0
        stored = await state_store.load_state("alice")
        assert stored["favoriteGenres"] == ["horror"]
        assert stored["interactionCount"] == 0
        assert "sessionStarted" in stored

    @pytest.mark.asyncio
    async def test_init_runs_once(self, namespace, state_store):
        agent = await namespace.get("alice", ALICE)

        with patch.object(state_store, "load_state", AsyncMock()) as mock_load:
            await agent.init()
            await agent.init()
            mock_load.assert_not_called()

    @pytest.mark.asyncio
    async def test_state_reloaded_from_disk(self, temp_storage, recommender, clock):
        first = ActorNamespace(ActorStateStore(temp_storage), recommender, clock=clock)
        agent = await first.get("alice", ALICE)
        await agent.call_tool("addGenre", {"genre": "Fantasy"})
        await agent.call_tool("rateBook", {"title": "Dune", "author": "Frank Herbert", "rating": 5})

        second = ActorNamespace(ActorStateStore(temp_storage), recommender, clock=clock)
        reloaded = (await second.get("Alice", ALICE)).state

        assert reloaded.favorite_genres == ["fantasy"]
        assert [b.title for b in reloaded.books_read] == ["Dune"]
        assert reloaded.interaction_count == 2


class TestActorToolCalls:
    """Tool execution against actor state"""

    @pytest.mark.asyncio
    async def test_add_genre_then_profile(self, namespace):
        agent = await namespace.get("alice", ALICE)

        await agent.call_tool("addGenre", {"genre": "Science Fiction"})
        result = await agent.call_tool("getProfile", {})

        assert agent.state.favorite_genres == ["science fiction"]
        assert agent.state.interaction_count == 2
        assert "science fiction" in _text(result)
        assert "Interactions: 2" in _text(result)

    @pytest.mark.asyncio
    async def test_duplicate_genre_stored_once(self, namespace):
        agent = await namespace.get("alice", ALICE)

        await agent.call_tool("addGenre", {"genre": "Mystery"})
        result = await agent.call_tool("addGenre", {"genre": "mystery "})

        assert agent.state.favorite_genres == ["mystery"]
        assert "already in your favorites" in _text(result)
        assert agent.state.interaction_count == 2

    @pytest.mark.asyncio
    async def test_invalid_rating_leaves_history(self, namespace):
        agent = await namespace.get("alice", ALICE)

        ok = await agent.call_tool(
            "rateBook", {"title": "Dune", "author": "Frank Herbert", "rating": 5}
        )
        bad = await agent.call_tool("rateBook", {"title": "X", "author": "Y", "rating": 0})

        assert ok.isError is False
        assert bad.isError is True
        assert len(agent.state.books_read) == 1
        assert agent.state.interaction_count == 1

    @pytest.mark.asyncio
    async def test_rejected_call_does_not_persist(self, namespace, state_store):
        agent = await namespace.get("alice", ALICE)

        with patch.object(state_store, "save_state", AsyncMock()) as mock_save:
            await agent.call_tool("addGenre", {"genre": "   "})
            mock_save.assert_not_called()

    @pytest.mark.asyncio
    async def test_successful_call_persists_once(self, namespace, state_store):
        agent = await namespace.get("alice", ALICE)

        with patch.object(state_store, "save_state", AsyncMock(return_value=True)) as mock_save:
            await agent.call_tool("rateBook", {"title": "Emma", "author": "Austen", "rating": 4})

        mock_save.assert_awaited_once()
        key, saved = mock_save.await_args.args
        assert key == "alice"
        assert saved["booksRead"][0]["title"] == "Emma"
        assert saved["interactionCount"] == 1

    @pytest.mark.asyncio
    async def test_failed_write_keeps_previous_state(self, namespace, state_store):
        agent = await namespace.get("alice", ALICE)
        await agent.call_tool("addGenre", {"genre": "Mystery"})

        with patch.object(state_store, "save_state", AsyncMock(side_effect=OSError("disk full"))):
            with pytest.raises(OSError):
                await agent.call_tool("addGenre", {"genre": "Horror"})

        assert agent.state.favorite_genres == ["mystery"]
        assert agent.state.interaction_count == 1

    @pytest.mark.asyncio
    async def test_unknown_tool(self, namespace):
        agent = await namespace.get("alice", ALICE)

        with pytest.raises(ToolNotFoundError):
            await agent.call_tool("deleteEverything", {})
        assert agent.state.interaction_count == 0

    @pytest.mark.asyncio
    async def test_concurrent_calls_serialized(self, namespace):
        agent = await namespace.get("alice", ALICE)

        await asyncio.gather(
            *(agent.call_tool("addGenre", {"genre": f"genre {i}"}) for i in range(10))
        )

        assert agent.state.interaction_count == 10
        assert len(agent.state.favorite_genres) == 10

    @pytest.mark.asyncio
    async def test_state_property_is_a_copy(self, namespace):
        agent = await namespace.get("alice", ALICE)

        agent.state.favorite_genres.append("injected")

        assert agent.state.favorite_genres == []

    @pytest.mark.asyncio
    async def test_recommendations_use_actor_recommender(self, namespace, recommender):
        agent = await namespace.get("alice", ALICE)
        await agent.call_tool("addGenre", {"genre": "Fantasy"})

        result = await agent.call_tool("getRecommendations", {})

        assert "Personalized Recommendations for Alice Reader" in _text(result)
        prompt, max_tokens = recommender.calls[0]
        assert prompt.startswith("Recommend 3 books for Alice Reader.")
        assert max_tokens == 600
