"""Route dependencies backed by objects the lifespan puts on ``app.state``."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Request  # noqa: TC002 (needed at runtime for FastAPI DI)

from storyglossary.core.exceptions import ServiceUnavailableError

if TYPE_CHECKING:
    from arq.connections import ArqRedis

    from storyglossary.repositories.project_repo import ProjectRepository


async def get_project_repo(request: Request) -> ProjectRepository:
    return request.app.state.project_repo


async def get_arq_pool(request: Request) -> ArqRedis:
    """The job queue pool; 503 when the lifespan could not reach Redis."""
    pool = getattr(request.app.state, "arq_pool", None)
    if pool is None:
        raise ServiceUnavailableError("Task queue not available (Redis down?)")
    return pool
