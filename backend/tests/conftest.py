"""Shared test fixtures for the story glossary backend tests.

Provides mocked infrastructure (Redis, arq) and fresh state objects so no
test touches a real provider or server.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from storyglossary.core.resilience import reset_breakers
from storyglossary.repositories.project_repo import InMemoryProjectRepository
from storyglossary.services.accumulator import GlossaryAccumulator

# -- State ------------------------------------------------------------------


@pytest.fixture
def accumulator() -> GlossaryAccumulator:
    return GlossaryAccumulator()


@pytest.fixture
def project_repo() -> InMemoryProjectRepository:
    return InMemoryProjectRepository()


@pytest.fixture(autouse=True)
def _reset_breakers():
    """Provider breakers are module singletons; start every test closed."""
    reset_breakers()
    yield


# -- Infrastructure mocks -------------------------------------------------


@pytest.fixture
def mock_redis():
    """Mock Redis async client backed by a dict for hash commands."""
    store: dict[str, dict[str, str]] = {}
    redis = AsyncMock()

    async def hset(key, field, value):
        store.setdefault(key, {})[field] = value
        return 1

    async def hget(key, field):
        return store.get(key, {}).get(field)

    async def hvals(key):
        return list(store.get(key, {}).values())

    async def hdel(key, field):
        return 1 if store.get(key, {}).pop(field, None) is not None else 0

    redis.hset.side_effect = hset
    redis.hget.side_effect = hget
    redis.hvals.side_effect = hvals
    redis.hdel.side_effect = hdel
    redis.ping.return_value = True
    redis.store = store
    return redis


@pytest.fixture
def mock_arq_pool():
    """arq pool whose enqueue_job returns a job with id 'job-1'."""
    pool = AsyncMock()
    job = AsyncMock()
    job.job_id = "job-1"
    pool.enqueue_job = AsyncMock(return_value=job)
    return pool
