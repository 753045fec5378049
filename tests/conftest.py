"""
Shared fixtures for the Bookshelf MCP test suite.
"""

import pytest

from bookshelf_mcp.config import ServerConfig
from bookshelf_mcp.core.actor import ActorNamespace
from bookshelf_mcp.core.persistence import ActorStateStore
from bookshelf_mcp.errors import RecommendationError

from fakes import SIGNING_KEY, FakeClock, FakeRecommender


@pytest.fixture
def signing_key():
    return SIGNING_KEY


@pytest.fixture
def recommender():
    return FakeRecommender()


@pytest.fixture
def failing_recommender():
    return FakeRecommender(error=RecommendationError("Generation failed: throttled"))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def temp_storage(tmp_path):
    """Temporary directory for actor state files"""
    return str(tmp_path / "actors")


@pytest.fixture
def state_store(temp_storage):
    return ActorStateStore(storage_path=temp_storage)


@pytest.fixture
def namespace(state_store, recommender, clock):
    return ActorNamespace(state_store, recommender=recommender, clock=clock)


@pytest.fixture
def config(temp_storage):
    return ServerConfig(
        github_client_id="gh-client-id",
        github_client_secret="gh-client-secret",
        cookie_encryption_key=SIGNING_KEY,
        actor_storage_path=temp_storage,
    ).validate()
