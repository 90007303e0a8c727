"""Health check endpoint.

Reports Redis connectivity (project store and task queue) and which
oracle providers have credentials configured, with the state of
each provider breaker created so far.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from storyglossary.config import settings
from storyglossary.core.logging import get_logger
from storyglossary.core.resilience import breaker_states

logger = get_logger(__name__)
router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Return 200 when the store is reachable, 503 when degraded."""
    checks: dict[str, str] = {}

    redis = getattr(request.app.state, "redis", None)
    if redis is None:
        checks["redis"] = "not configured"
    else:
        try:
            await redis.ping()
            checks["redis"] = "ok"
        except Exception as e:
            checks["redis"] = "error"
            logger.error("health_check_failed", service="redis", error=type(e).__name__)

    pool = getattr(request.app.state, "arq_pool", None)
    checks["task_queue"] = "ok" if pool is not None else "not configured"

    providers = {
        "openai": settings.openai_api_key,
        "anthropic": settings.anthropic_api_key,
        "gemini": settings.gemini_api_key,
    }
    configured = sorted(name for name, key in providers.items() if key)

    all_ok = all(v == "ok" for v in checks.values() if v != "not configured")
    body = {
        "status": "healthy" if all_ok else "degraded",
        "services": checks,
        "oracle_providers": configured,
        "oracle_breakers": breaker_states(),
    }
    if not all_ok:
        return JSONResponse(content=body, status_code=503)
    return body
