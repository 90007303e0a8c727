"""Pydantic schemas for persisted glossary projects."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ProjectStatus(StrEnum):
    """Lifecycle of a glossary project record."""

    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"


class ProjectRecord(BaseModel):
    """A stored glossary project.

    ``glossary`` holds the serialized accumulator snapshot; ``view`` is
    opaque UI state owned by the front end and passed through untouched.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str = ""
    updated_at: float = Field(default=0.0, alias="updatedAt")
    glossary: dict[str, Any] | None = None
    view: dict[str, Any] | None = None
    status: ProjectStatus = ProjectStatus.PENDING
    total_chunks: int = Field(default=0, alias="totalChunks")
    processed_chunks: int = Field(default=0, alias="processedChunks")


class ProjectSummary(BaseModel):
    """Lightweight listing entry (no snapshot payload)."""

    id: str
    name: str
    updated_at: float
    status: ProjectStatus
    total_chunks: int
    processed_chunks: int
    arc_count: int = 0


class ExtractionRequest(BaseModel):
    """Body of POST /projects/{id}/extract."""

    text: str = Field(min_length=1)
    target_language: str | None = None
    name: str | None = None


class ProjectImportRequest(BaseModel):
    """Body of POST /projects/import.

    ``glossary`` is checked by the accumulator rather than by the request
    model, so a malformed snapshot is reported as a SerializationError.
    """

    id: str | None = None
    name: str = ""
    glossary: Any = None
    view: dict[str, Any] | None = None


class JobEnqueuedResult(BaseModel):
    project_id: str
    job_id: str
    status: str = "enqueued"
    message: str = ""
