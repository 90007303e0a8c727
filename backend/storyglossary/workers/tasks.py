"""arq task functions for glossary background processing.

Each task receives a `ctx` dict populated by worker startup with:
  - ctx["project_repo"]: ProjectRepository
  - ctx["extraction_oracle"]: GlossaryOracle
  - ctx["consolidation_oracle"]: GlossaryOracle
  - ctx["redis"]: ArqRedis (arq's own pool)
"""

from __future__ import annotations

from typing import Any

from storyglossary.core.exceptions import GlossaryError
from storyglossary.core.logging import get_logger
from storyglossary.schemas.project import ProjectStatus
from storyglossary.services.pipeline import GlossaryPipeline

logger = get_logger(__name__)

ARQ_QUEUE = "storyglossary:arq"


def _pipeline(ctx: dict[str, Any]) -> GlossaryPipeline:
    return GlossaryPipeline(
        ctx["extraction_oracle"],
        ctx["project_repo"],
        consolidation_oracle=ctx.get("consolidation_oracle"),
    )


async def _release(ctx: dict[str, Any], project_id: str) -> None:
    """Move a project out of ``processing`` after a failed job so it can be re-run."""
    try:
        await ctx["project_repo"].update(project_id, status=ProjectStatus.PENDING)
    except GlossaryError as exc:
        logger.warning("task_release_failed", project_id=project_id, error=exc.detail)


async def process_glossary_extraction(
    ctx: dict[str, Any],
    project_id: str,
    text: str,
    target_language: str | None = None,
    name: str | None = None,
) -> dict[str, Any]:
    """Run (or resume) the glossary pipeline for one document.

    Called by the arq worker after POST /projects/{project_id}/extract.
    Per-chunk failures are absorbed by the pipeline; anything that escapes
    is logged and re-raised so arq marks the job as failed.
    """
    logger.info(
        "task_glossary_extraction_started",
        project_id=project_id,
        chars=len(text),
        target_language=target_language,
    )
    try:
        result = await _pipeline(ctx).run(project_id, text, target_language, name=name)
    except Exception:
        logger.exception("task_glossary_extraction_failed", project_id=project_id)
        await _release(ctx, project_id)
        raise

    logger.info("task_glossary_extraction_completed", **result.to_dict())
    return result.to_dict()


async def process_glossary_consolidation(ctx: dict[str, Any], project_id: str) -> dict[str, Any]:
    """Replay a project's raw log and consolidate its arcs.

    Called by the arq worker after POST /projects/{project_id}/consolidate.
    """
    logger.info("task_glossary_consolidation_started", project_id=project_id)
    try:
        result = await _pipeline(ctx).reconsolidate(project_id)
    except Exception:
        logger.exception("task_glossary_consolidation_failed", project_id=project_id)
        raise

    logger.info("task_glossary_consolidation_completed", **result.to_dict())
    return result.to_dict()
