"""Story glossary HTTP service.

The lifespan opens the Redis-backed project store and the arq pool used to
enqueue extraction and consolidation jobs. Run with::

    uvicorn storyglossary.api.main:app
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.asyncio import Redis

from storyglossary.api.middleware import RequestContextMiddleware
from storyglossary.api.routes import health, projects
from storyglossary.config import settings
from storyglossary.core.exceptions import GlossaryError
from storyglossary.core.logging import get_logger, setup_logging
from storyglossary.repositories.project_repo import RedisProjectRepository

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from arq.connections import ArqRedis

logger = get_logger(__name__)

VERSION = "0.1.0"
API_PREFIX = "/api"


def _safe_host(uri: str) -> str:
    """Host part of a connection URI, credentials dropped.

    'redis://:pass@localhost:6379/0' -> 'localhost:6379'
    """
    _, _, location = uri.rpartition("://")
    location = location.rpartition("@")[2]
    for sep in ("/", "?"):
        location = location.partition(sep)[0]
    return location


async def _connect_store() -> Redis:
    # An unreachable Redis is logged, not fatal; /api/health reports it.
    client = Redis.from_url(settings.redis_url, decode_responses=True)
    host = _safe_host(settings.redis_url)
    try:
        await client.ping()
    except Exception as e:
        logger.error("redis_connection_failed", host=host, error=type(e).__name__)
    else:
        logger.info("redis_connected", host=host)
    return client


async def _connect_queue() -> ArqRedis | None:
    from arq.connections import create_pool

    from storyglossary.workers.settings import parse_redis_settings
    from storyglossary.workers.tasks import ARQ_QUEUE

    try:
        pool = await create_pool(parse_redis_settings(), default_queue_name=ARQ_QUEUE)
    except Exception as e:
        logger.warning("arq_pool_connection_failed", error=type(e).__name__)
        return None
    logger.info("arq_pool_connected", queue=ARQ_QUEUE)
    return pool


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    setup_logging(log_level=settings.log_level, log_format=settings.log_format)
    logger.info("storyglossary_starting", version=VERSION)

    app.state.redis = await _connect_store()
    app.state.project_repo = RedisProjectRepository(app.state.redis)
    app.state.arq_pool = await _connect_queue()
    logger.info("storyglossary_started", queue_available=app.state.arq_pool is not None)

    try:
        yield
    finally:
        if app.state.arq_pool is not None:
            await app.state.arq_pool.aclose()
        await app.state.redis.aclose()
        logger.info("storyglossary_stopped")


async def handle_glossary_error(request: Request, exc: GlossaryError) -> JSONResponse:
    """Render any GlossaryError as ``{error, detail, context}``; context only in debug."""
    body = {
        "error": type(exc).__name__,
        "detail": exc.detail,
        "context": exc.context if settings.debug else {},
    }
    return JSONResponse(body, status_code=exc.status_code)


def create_app(*, use_lifespan: bool = True) -> FastAPI:
    """Build the application.

    ``use_lifespan=False`` skips connecting to Redis; callers then set
    ``app.state.project_repo`` and ``app.state.arq_pool`` themselves.
    """
    app = FastAPI(
        title="Story Glossary",
        description="Chunked glossary extraction and arc consolidation for long-form fiction",
        version=VERSION,
        lifespan=lifespan if use_lifespan else None,
    )
    app.add_exception_handler(GlossaryError, handle_glossary_error)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(RequestContextMiddleware)

    for module in (health, projects):
        app.include_router(module.router, prefix=API_PREFIX)

    return app


app = create_app()
