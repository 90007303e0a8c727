"""Glossary project API routes.

Listing, export/import of snapshots and enqueueing of background
extraction and consolidation jobs. Jobs run in the arq worker; poll
GET /projects/{id} for status and progress counters.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from storyglossary.api.dependencies import get_arq_pool, get_project_repo
from storyglossary.core.exceptions import ConflictError, NotFoundError, ValidationError
from storyglossary.core.logging import get_logger
from storyglossary.schemas.project import (  # noqa: TC001 (runtime use by FastAPI)
    ExtractionRequest,
    JobEnqueuedResult,
    ProjectImportRequest,
    ProjectRecord,
    ProjectStatus,
    ProjectSummary,
)
from storyglossary.services.accumulator import GlossaryAccumulator
from storyglossary.workers.tasks import ARQ_QUEUE

if TYPE_CHECKING:
    from arq.connections import ArqRedis

    from storyglossary.repositories.project_repo import ProjectRepository

logger = get_logger(__name__)
router = APIRouter(prefix="/projects", tags=["projects"])


def _summary(record: ProjectRecord) -> ProjectSummary:
    arcs = (record.glossary or {}).get("arcs")
    return ProjectSummary(
        id=record.id,
        name=record.name,
        updated_at=record.updated_at,
        status=record.status,
        total_chunks=record.total_chunks,
        processed_chunks=record.processed_chunks,
        arc_count=len(arcs) if isinstance(arcs, list) else 0,
    )


def _job_id(kind: str, project_id: str) -> str:
    # arq refuses an id whose result is still kept, so every request gets its own.
    return f"{kind}:{project_id}:{uuid.uuid4().hex[:8]}"


async def _require(repo: ProjectRepository, project_id: str) -> ProjectRecord:
    record = await repo.get(project_id)
    if record is None:
        raise NotFoundError(f"Project '{project_id}' not found")
    return record


@router.get("", response_model=list[ProjectSummary])
async def list_projects(
    repo: ProjectRepository = Depends(get_project_repo),
) -> list[ProjectSummary]:
    """List projects, most recently updated first."""
    return [_summary(record) for record in await repo.list()]


@router.get("/{project_id}", response_model=ProjectSummary)
async def get_project(
    project_id: str,
    repo: ProjectRepository = Depends(get_project_repo),
) -> ProjectSummary:
    return _summary(await _require(repo, project_id))


@router.delete("/{project_id}")
async def delete_project(
    project_id: str,
    repo: ProjectRepository = Depends(get_project_repo),
) -> dict:
    if not await repo.delete(project_id):
        raise NotFoundError(f"Project '{project_id}' not found")
    return {"deleted": True, "project_id": project_id}


@router.get("/{project_id}/export")
async def export_project(
    project_id: str,
    repo: ProjectRepository = Depends(get_project_repo),
) -> JSONResponse:
    """Full glossary snapshot, readable by POST /projects/import."""
    record = await _require(repo, project_id)
    if not record.glossary:
        raise ValidationError(f"Project '{project_id}' has no glossary yet")
    # Round-trip through the accumulator so older snapshots export with every field.
    snapshot = GlossaryAccumulator.from_snapshot(record.glossary).serialize()
    return JSONResponse(
        content=snapshot,
        headers={"Content-Disposition": f'attachment; filename="{project_id}-glossary.json"'},
    )


@router.post("/import", response_model=ProjectSummary, status_code=201)
async def import_project(
    body: ProjectImportRequest,
    repo: ProjectRepository = Depends(get_project_repo),
) -> ProjectSummary:
    """Create a project from an exported snapshot; missing fields are defaulted."""
    accumulator = GlossaryAccumulator.from_snapshot(body.glossary)
    project_id = body.id or uuid.uuid4().hex[:12]
    if await repo.get(project_id) is not None:
        raise ConflictError(f"Project '{project_id}' already exists")

    record = await repo.save(
        ProjectRecord(
            id=project_id,
            name=body.name or project_id,
            glossary=accumulator.serialize(),
            view=body.view,
            status=ProjectStatus.READY,
            total_chunks=accumulator.total_chunks,
            processed_chunks=accumulator.processed_chunks,
        )
    )
    logger.info("project_imported", project_id=project_id, arcs=len(accumulator.arcs))
    return _summary(record)


@router.post("/{project_id}/extract", response_model=JobEnqueuedResult)
async def extract_project(
    project_id: str,
    body: ExtractionRequest,
    repo: ProjectRepository = Depends(get_project_repo),
    arq_pool: ArqRedis = Depends(get_arq_pool),
) -> JobEnqueuedResult:
    """Enqueue glossary extraction for a document.

    Creates the project when it does not exist yet. Re-posting the same
    text for a partially processed project resumes where it stopped.
    """
    record = await repo.get(project_id)
    if record is not None and record.status == ProjectStatus.PROCESSING:
        raise ConflictError(f"Project '{project_id}' is already being processed")
    if record is None:
        await repo.save(ProjectRecord(id=project_id, name=body.name or project_id))

    job = await arq_pool.enqueue_job(
        "process_glossary_extraction",
        project_id,
        body.text,
        body.target_language,
        body.name,
        _queue_name=ARQ_QUEUE,
        _job_id=_job_id("extract", project_id),
    )
    if job is None:
        raise ConflictError("Job already enqueued or could not be created.")

    logger.info(
        "project_extraction_enqueued",
        project_id=project_id,
        job_id=job.job_id,
        chars=len(body.text),
    )
    return JobEnqueuedResult(
        project_id=project_id,
        job_id=job.job_id,
        message="Extraction job enqueued. Poll GET /projects/{project_id} for progress.",
    )


@router.post("/{project_id}/consolidate", response_model=JobEnqueuedResult)
async def consolidate_project(
    project_id: str,
    repo: ProjectRepository = Depends(get_project_repo),
    arq_pool: ArqRedis = Depends(get_arq_pool),
) -> JobEnqueuedResult:
    """Enqueue a replay of the raw log followed by consolidation (no extraction calls)."""
    record = await _require(repo, project_id)
    if not record.glossary:
        raise ValidationError(f"Project '{project_id}' has no glossary yet")
    if record.status == ProjectStatus.PROCESSING:
        raise ConflictError(f"Project '{project_id}' is already being processed")

    job = await arq_pool.enqueue_job(
        "process_glossary_consolidation",
        project_id,
        _queue_name=ARQ_QUEUE,
        _job_id=_job_id("consolidate", project_id),
    )
    if job is None:
        raise ConflictError("Job already enqueued or could not be created.")

    logger.info("project_consolidation_enqueued", project_id=project_id, job_id=job.job_id)
    return JobEnqueuedResult(
        project_id=project_id,
        job_id=job.job_id,
        message="Consolidation job enqueued.",
    )
