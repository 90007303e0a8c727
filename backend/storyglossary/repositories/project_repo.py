"""Project record store.

A project record holds one document's serialized glossary snapshot plus
its progress counters. Two backends share the ProjectRepository contract:
an in-memory dict (tests, CLI) and a single Redis hash keyed by project id.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from storyglossary.config import settings
from storyglossary.core.exceptions import NotFoundError
from storyglossary.core.logging import get_logger
from storyglossary.schemas.project import ProjectRecord

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = get_logger(__name__)


class ProjectRepository(ABC):
    """Async CRUD over ProjectRecord, listed newest first."""

    @abstractmethod
    async def get(self, project_id: str) -> ProjectRecord | None: ...

    @abstractmethod
    async def _put(self, record: ProjectRecord) -> None: ...

    @abstractmethod
    async def _all(self) -> list[ProjectRecord]: ...

    @abstractmethod
    async def delete(self, project_id: str) -> bool:
        """Remove a record. Returns False when it did not exist."""

    async def save(self, record: ProjectRecord) -> ProjectRecord:
        """Insert or overwrite; stamps ``updatedAt`` when it is unset."""
        if not record.updated_at:
            record = record.model_copy(update={"updated_at": time.time()})
        await self._put(record)
        logger.debug(
            "project_saved",
            project_id=record.id,
            status=record.status,
            processed_chunks=record.processed_chunks,
        )
        return record

    async def update(self, project_id: str, **changes: Any) -> ProjectRecord:
        """Apply field changes and refresh ``updatedAt``.

        Raises:
            NotFoundError: No record with this id.
        """
        current = await self.get(project_id)
        if current is None:
            raise NotFoundError(f"Project '{project_id}' not found")
        changes["updated_at"] = time.time()
        record = current.model_copy(update=changes)
        await self._put(record)
        return record

    async def list(self) -> list[ProjectRecord]:
        records = await self._all()
        return sorted(records, key=lambda record: record.updated_at, reverse=True)


class InMemoryProjectRepository(ProjectRepository):
    def __init__(self) -> None:
        self._records: dict[str, ProjectRecord] = {}

    async def get(self, project_id: str) -> ProjectRecord | None:
        record = self._records.get(project_id)
        return record.model_copy(deep=True) if record is not None else None

    async def _put(self, record: ProjectRecord) -> None:
        self._records[record.id] = record.model_copy(deep=True)

    async def _all(self) -> list[ProjectRecord]:
        return [record.model_copy(deep=True) for record in self._records.values()]

    async def delete(self, project_id: str) -> bool:
        return self._records.pop(project_id, None) is not None


class RedisProjectRepository(ProjectRepository):
    """Records stored as JSON values in one Redis hash.

    The client must be created with ``decode_responses=True``.
    """

    def __init__(self, redis: Redis, key: str | None = None) -> None:
        self.redis = redis
        self.key = key or settings.projects_key

    async def get(self, project_id: str) -> ProjectRecord | None:
        raw = await self.redis.hget(self.key, project_id)
        if raw is None:
            return None
        return ProjectRecord.model_validate_json(raw)

    async def _put(self, record: ProjectRecord) -> None:
        await self.redis.hset(self.key, record.id, record.model_dump_json(by_alias=True))

    async def _all(self) -> list[ProjectRecord]:
        raw_records = await self.redis.hvals(self.key)
        return [ProjectRecord.model_validate_json(raw) for raw in raw_records]

    async def delete(self, project_id: str) -> bool:
        removed = await self.redis.hdel(self.key, project_id)
        if removed:
            logger.info("project_deleted", project_id=project_id)
        return bool(removed)
