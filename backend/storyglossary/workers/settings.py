"""arq worker settings and lifecycle management.

Startup/shutdown mirrors the API lifespan but is independent of FastAPI.
Each worker process opens its own Redis connection for the project store.

Launch:
    arq storyglossary.workers.settings.WorkerSettings
"""

from __future__ import annotations

from typing import Any
from urllib.parse import urlparse

from arq.connections import RedisSettings as ArqRedisSettings
from redis.asyncio import Redis

from storyglossary.config import settings
from storyglossary.core.logging import get_logger, setup_logging
from storyglossary.llm.providers import get_oracle
from storyglossary.repositories.project_repo import RedisProjectRepository
from storyglossary.workers.tasks import (
    ARQ_QUEUE,
    process_glossary_consolidation,
    process_glossary_extraction,
)

logger = get_logger(__name__)


def parse_redis_settings(url: str | None = None) -> ArqRedisSettings:
    """Split a redis:// URL into the host/port/password/db arq expects."""
    parsed = urlparse(url or settings.redis_url)
    database = parsed.path.lstrip("/")
    return ArqRedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        password=parsed.password or None,
        database=int(database) if database.isdigit() else 0,
    )


async def startup(ctx: dict[str, Any]) -> None:
    """Populate ctx with the project store and oracles.

    arq puts its own ArqRedis pool at ctx["redis"]; the project store gets
    a separate decoded client under ctx["store_redis"].
    """
    setup_logging(log_level=settings.log_level, log_format=settings.log_format)
    logger.info("arq_worker_starting")

    store_redis = Redis.from_url(settings.redis_url, decode_responses=True)
    await store_redis.ping()
    ctx["store_redis"] = store_redis
    ctx["project_repo"] = RedisProjectRepository(store_redis)
    logger.info("arq_worker_redis_connected")

    ctx["extraction_oracle"] = get_oracle(settings.llm_extraction)
    ctx["consolidation_oracle"] = get_oracle(settings.llm_consolidation)

    logger.info(
        "arq_worker_started",
        extraction_model=ctx["extraction_oracle"].model,
        consolidation_model=ctx["consolidation_oracle"].model,
    )


async def shutdown(ctx: dict[str, Any]) -> None:
    logger.info("arq_worker_stopping")
    if store_redis := ctx.get("store_redis"):
        await store_redis.aclose()
    logger.info("arq_worker_stopped")


class WorkerSettings:
    """arq WorkerSettings for glossary background tasks."""

    functions = [process_glossary_extraction, process_glossary_consolidation]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = parse_redis_settings()
    max_jobs = settings.arq_max_jobs
    job_timeout = settings.arq_job_timeout
    keep_result = settings.arq_keep_result
    queue_name = ARQ_QUEUE
