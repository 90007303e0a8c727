"""Pipeline driver: chunk → (extract → merge)* → consolidation guard → done.

Chunks are processed strictly in order; chunk i+1 is not extracted until
chunk i has been merged. The snapshot is persisted to the project record
after every chunk, so a crashed run resumes from the last saved chunk.

Run states:
    idle → chunking → (extracting → merging)* → consolidation_guard
         → [consolidating →] done
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from storyglossary.config import settings
from storyglossary.core.exceptions import IdentityAmbiguityError, NotFoundError, ValidationError
from storyglossary.core.logging import (
    chunk_index_var,
    get_logger,
    pipeline_stage_var,
    project_id_var,
)
from storyglossary.schemas.glossary import GlossaryDocument
from storyglossary.schemas.project import ProjectRecord, ProjectStatus
from storyglossary.services.accumulator import GlossaryAccumulator
from storyglossary.services.chunking import split_text
from storyglossary.services.consolidation import consolidate, should_consolidate
from storyglossary.services.extraction.adapter import extract_chunk
from storyglossary.services.extraction.normalize import fallback_result, normalize_extraction
from storyglossary.services.merge import ArcMatcher, same_name

if TYPE_CHECKING:
    from storyglossary.llm.providers import GlossaryOracle
    from storyglossary.repositories.project_repo import ProjectRepository
    from storyglossary.schemas.extraction import ExtractionResult

logger = get_logger(__name__)


class PipelineStage(StrEnum):
    IDLE = "idle"
    CHUNKING = "chunking"
    EXTRACTING = "extracting"
    MERGING = "merging"
    CONSOLIDATION_GUARD = "consolidation_guard"
    CONSOLIDATING = "consolidating"
    DONE = "done"


@dataclass
class GlossaryRunResult:
    project_id: str
    total_chunks: int
    processed_chunks: int
    resumed_from: int = 0
    fallback_chunks: int = 0
    consolidated: bool = False
    arcs: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def replay_raw_chunks(accumulator: GlossaryAccumulator) -> GlossaryAccumulator:
    """Rebuild the knowledge base from the raw capture log alone.

    The newest record per chunk index is re-normalized and merged in chunk
    order; a record without a parsed object contributes the fallback arc.
    The raw log, target language and chunk total carry over. No oracle call.
    """
    source = accumulator.document
    fresh = GlossaryAccumulator(
        GlossaryDocument(
            raw_chunks=list(source.raw_chunks),
            target_language=source.target_language,
            total_chunks=source.total_chunks,
        ),
        matcher=accumulator.matcher,
    )
    for chunk_index, record in fresh.raw_store.latest_by_chunk().items():
        if record.raw is None:
            result = fallback_result(chunk_index, record.parse_error)
        else:
            result = normalize_extraction(record.raw, chunk_index)
        fresh.apply_extraction(result, chunk_index)
        fresh.mark_chunk_processed(chunk_index)

    logger.info(
        "raw_chunks_replayed",
        records=len(fresh.raw_store),
        chunks=fresh.raw_store.chunk_count(),
        arcs=len(fresh.arcs),
    )
    return fresh


class GlossaryPipeline:
    """Drives one document through extraction, merge and consolidation.

    Args:
        oracle: Extraction oracle.
        repository: Project record store receiving snapshots.
        chunk_size: Characters per chunk (defaults to settings).
        consolidation_oracle: Oracle for the consolidation pass (defaults
            to ``oracle``).
        matcher: Arc name comparator handed to each accumulator.
        timeout: Per-call oracle deadline in seconds (defaults to settings).
    """

    def __init__(
        self,
        oracle: GlossaryOracle,
        repository: ProjectRepository,
        *,
        chunk_size: int | None = None,
        consolidation_oracle: GlossaryOracle | None = None,
        matcher: ArcMatcher = same_name,
        timeout: float | None = None,
    ) -> None:
        self.oracle = oracle
        self.repository = repository
        self.chunk_size = settings.chunk_size if chunk_size is None else chunk_size
        self.consolidation_oracle = consolidation_oracle or oracle
        self.matcher = matcher
        self.timeout = timeout
        self.stage = PipelineStage.IDLE

    def _enter(self, stage: PipelineStage) -> None:
        self.stage = stage
        pipeline_stage_var.set(stage.value)

    async def process_chunk(
        self,
        accumulator: GlossaryAccumulator,
        chunk_text: str,
        chunk_index: int,
    ) -> ExtractionResult:
        """Extract one chunk, merge it and advance ``processedChunks``."""
        token = chunk_index_var.set(chunk_index)
        try:
            self._enter(PipelineStage.EXTRACTING)
            result = await extract_chunk(
                chunk_text,
                chunk_index,
                accumulator.target_language,
                oracle=self.oracle,
                raw_store=accumulator.raw_store,
                timeout=self.timeout,
            )

            self._enter(PipelineStage.MERGING)
            try:
                accumulator.apply_extraction(result, chunk_index)
            except IdentityAmbiguityError as exc:
                logger.error("chunk_merge_failed", chunk=chunk_index, error=exc.detail, **exc.context)
            accumulator.mark_chunk_processed(chunk_index)
            return result
        finally:
            chunk_index_var.reset(token)

    async def run(
        self,
        project_id: str,
        text: str,
        target_language: str | None = None,
        *,
        consolidate_arcs: bool = True,
        name: str | None = None,
    ) -> GlossaryRunResult:
        """Run (or resume) the full pipeline for one project.

        A stored snapshot built from the same chunking is resumed from
        ``max(processedChunks, captured chunks)``; otherwise the run starts
        from an empty accumulator.

        Raises:
            SerializationError: The stored snapshot is structurally unreadable.
        """
        project_id_var.set(project_id)
        self._enter(PipelineStage.CHUNKING)
        chunks = split_text(text, self.chunk_size)

        record = await self.repository.get(project_id)
        accumulator = GlossaryAccumulator(matcher=self.matcher)
        start = 0
        if record is not None and record.glossary:
            accumulator.restore(record.glossary)
            start = max(
                record.processed_chunks,
                accumulator.processed_chunks,
                accumulator.raw_store.chunk_count(),
            )
            if accumulator.total_chunks not in (0, len(chunks)):
                logger.warning(
                    "resume_discarded",
                    stored_total=accumulator.total_chunks,
                    total_chunks=len(chunks),
                )
                accumulator.reset()
                start = 0
            start = min(start, len(chunks))

        if record is None:
            record = ProjectRecord(id=project_id, name=name or project_id)
        elif name:
            record = record.model_copy(update={"name": name})

        accumulator.set_total_chunks(len(chunks))
        accumulator.set_target_language(
            target_language or accumulator.target_language or settings.default_target_language
        )

        logger.info(
            "pipeline_started",
            total_chunks=len(chunks),
            resumed_from=start,
            target_language=accumulator.target_language,
        )

        summary = GlossaryRunResult(
            project_id=project_id,
            total_chunks=len(chunks),
            processed_chunks=start,
            resumed_from=start,
        )

        with accumulator.busy():
            record = await self._persist(record, accumulator, ProjectStatus.PROCESSING)
            for chunk_index in range(start, len(chunks)):
                result = await self.process_chunk(accumulator, chunks[chunk_index], chunk_index)
                summary.processed_chunks = accumulator.processed_chunks
                if result.used_fallback:
                    summary.fallback_chunks += 1
                record = await self._persist(record, accumulator, ProjectStatus.PROCESSING)

            if consolidate_arcs:
                summary.consolidated = await self._consolidate(accumulator)

        self._enter(PipelineStage.DONE)
        summary.arcs = len(accumulator.arcs)
        await self._persist(record, accumulator, ProjectStatus.READY)

        logger.info("pipeline_completed", **summary.to_dict())
        return summary

    async def reconsolidate(self, project_id: str) -> GlossaryRunResult:
        """Rebuild a project from its raw log and consolidate, with no extraction calls.

        Raises:
            NotFoundError: Unknown project.
            ValidationError: The project has no snapshot yet.
            SerializationError: The stored snapshot is structurally unreadable.
        """
        project_id_var.set(project_id)
        record = await self.repository.get(project_id)
        if record is None:
            raise NotFoundError(f"Project '{project_id}' not found")
        if not record.glossary:
            raise ValidationError(f"Project '{project_id}' has no glossary snapshot")

        accumulator = GlossaryAccumulator.from_snapshot(record.glossary, matcher=self.matcher)
        if len(accumulator.raw_store):
            accumulator = replay_raw_chunks(accumulator)

        with accumulator.busy():
            consolidated = await self._consolidate(accumulator)

        self._enter(PipelineStage.DONE)
        await self._persist(record, accumulator, ProjectStatus.READY)
        return GlossaryRunResult(
            project_id=project_id,
            total_chunks=accumulator.total_chunks,
            processed_chunks=accumulator.processed_chunks,
            consolidated=consolidated,
            arcs=len(accumulator.arcs),
        )

    async def _consolidate(self, accumulator: GlossaryAccumulator) -> bool:
        self._enter(PipelineStage.CONSOLIDATION_GUARD)
        if not should_consolidate(accumulator):
            logger.info("consolidation_not_needed", arcs=len(accumulator.arcs))
            return False
        self._enter(PipelineStage.CONSOLIDATING)
        before = accumulator.arcs
        after = await consolidate(accumulator, oracle=self.consolidation_oracle, timeout=self.timeout)
        return after is not before

    async def _persist(
        self,
        record: ProjectRecord,
        accumulator: GlossaryAccumulator,
        status: ProjectStatus,
    ) -> ProjectRecord:
        """Save the snapshot; a storage failure is logged and the run goes on."""
        updated = record.model_copy(
            update={
                "glossary": accumulator.serialize(),
                "status": status,
                "total_chunks": accumulator.total_chunks,
                "processed_chunks": accumulator.processed_chunks,
                "updated_at": time.time(),
            }
        )
        try:
            return await self.repository.save(updated)
        except Exception:
            logger.exception("project_persist_failed", project_id=record.id, status=status)
            return updated
