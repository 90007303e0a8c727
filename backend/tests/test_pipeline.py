"""Tests for the pipeline driver: run, resume, replay and reconsolidation."""

from __future__ import annotations

import pytest

from storyglossary.config import settings
from storyglossary.core.exceptions import NotFoundError, ValidationError
from storyglossary.repositories.project_repo import InMemoryProjectRepository
from storyglossary.schemas.glossary import GlossaryDocument, RawChunkRecord
from storyglossary.schemas.project import ProjectRecord, ProjectStatus
from storyglossary.services.accumulator import GlossaryAccumulator
from storyglossary.services.merge import same_name
from storyglossary.services.pipeline import GlossaryPipeline, PipelineStage, replay_raw_chunks
from tests.fixtures.glossary import ScriptedOracle, arc_payload, make_arc, reply_payload

# Three 5-character chunks: "aaaaa", "bbbbb", "ccccc"
TEXT = "aaaaabbbbbccccc"


class RecordingRepository(InMemoryProjectRepository):
    """In-memory repository remembering every save."""

    def __init__(self) -> None:
        super().__init__()
        self.saves: list[ProjectRecord] = []

    async def _put(self, record: ProjectRecord) -> None:
        self.saves.append(record.model_copy(deep=True))
        await super()._put(record)


class BrokenRepository(InMemoryProjectRepository):
    async def _put(self, record: ProjectRecord) -> None:
        raise RuntimeError("redis down")


def _pipeline(oracle, repo, **kwargs) -> GlossaryPipeline:
    return GlossaryPipeline(oracle, repo, chunk_size=5, **kwargs)


# -- Full run ---------------------------------------------------------------


class TestRun:

    async def test_end_to_end(self):
        repo = RecordingRepository()
        oracle = ScriptedOracle(
            [
                reply_payload(arc_payload("Entrance", characters=[{"name": "Kim", "role": "minor"}])),
                reply_payload(
                    arc_payload(
                        "entrance",
                        characters=[{"name": "Kim", "role": "protagonist"}, {"name": "Park"}],
                    ),
                    honorifics={"-ssi": "polite"},
                ),
                "the model rambled without JSON",
            ]
        )
        pipeline = _pipeline(oracle, repo)
        result = await pipeline.run("p1", TEXT, "ko", name="Novel")

        assert oracle.calls == 3
        assert result.total_chunks == 3
        assert result.processed_chunks == 3
        assert result.fallback_chunks == 1
        assert result.consolidated is False
        assert result.arcs == 2
        assert pipeline.stage == PipelineStage.DONE

        record = await repo.get("p1")
        assert record.status == ProjectStatus.READY
        assert record.name == "Novel"
        assert (record.total_chunks, record.processed_chunks) == (3, 3)

        acc = GlossaryAccumulator.from_snapshot(record.glossary)
        assert [arc.name for arc in acc.arcs] == ["Entrance", "Story Arc 3"]
        entrance = acc.arcs[0]
        assert [(c.name, c.role) for c in entrance.characters] == [
            ("Kim", "protagonist"),
            ("Park", "minor"),
        ]
        assert (entrance.start_chunk, entrance.end_chunk) == (0, 1)
        assert acc.document.honorifics == {"-ssi": "polite"}
        assert acc.target_language == "ko"
        assert acc.document.is_loading is False
        assert len(acc.raw_store) == 3

    async def test_chunks_in_order_with_language(self):
        oracle = ScriptedOracle([reply_payload(arc_payload(f"A{i}")) for i in range(3)])
        await _pipeline(oracle, InMemoryProjectRepository()).run("p1", TEXT, "ja")
        for prompt, chunk in zip(oracle.prompts, ["aaaaa", "bbbbb", "ccccc"], strict=True):
            assert chunk in prompt
        assert all("Japanese" in prompt for prompt in oracle.prompts)

    async def test_snapshot_persisted_after_every_chunk(self):
        repo = RecordingRepository()
        oracle = ScriptedOracle([reply_payload(arc_payload("A"))] * 3)
        await _pipeline(oracle, repo).run("p1", TEXT)
        assert [(s.processed_chunks, s.status) for s in repo.saves] == [
            (0, ProjectStatus.PROCESSING),
            (1, ProjectStatus.PROCESSING),
            (2, ProjectStatus.PROCESSING),
            (3, ProjectStatus.PROCESSING),
            (3, ProjectStatus.READY),
        ]
        assert repo.saves[1].glossary["isLoading"] is True
        assert repo.saves[-1].glossary["isLoading"] is False

    async def test_zero_chunk_size_rejected(self):
        oracle = ScriptedOracle([])
        pipeline = GlossaryPipeline(oracle, InMemoryProjectRepository(), chunk_size=0)
        with pytest.raises(ValueError, match="chunk_size"):
            await pipeline.run("p1", TEXT)
        assert oracle.calls == 0

    def test_chunk_size_defaults_to_settings(self):
        pipeline = GlossaryPipeline(ScriptedOracle([]), InMemoryProjectRepository())
        assert pipeline.chunk_size == settings.chunk_size

    async def test_empty_text(self):
        oracle = ScriptedOracle([])
        result = await _pipeline(oracle, InMemoryProjectRepository()).run("p1", "")
        assert (result.total_chunks, result.processed_chunks, result.arcs) == (0, 0, 0)
        assert oracle.calls == 0

    async def test_persist_failure_does_not_abort(self):
        oracle = ScriptedOracle([reply_payload(arc_payload("A"))] * 3)
        result = await _pipeline(oracle, BrokenRepository()).run("p1", TEXT)
        assert result.processed_chunks == 3

    async def test_ambiguous_merge_skips_whole_chunk(self):
        def wildcard(a: str, b: str) -> bool:
            return b == "Wildcard" or same_name(a, b)

        oracle = ScriptedOracle(
            [
                reply_payload(arc_payload("A"), arc_payload("B")),
                reply_payload(
                    arc_payload("X"), arc_payload("Wildcard"), honorifics={"선배": "senior"}
                ),
                reply_payload(arc_payload("C")),
            ]
        )
        repo = InMemoryProjectRepository()
        result = await _pipeline(oracle, repo, matcher=wildcard).run("p1", TEXT)
        assert result.processed_chunks == 3
        record = await repo.get("p1")
        assert [arc["name"] for arc in record.glossary["arcs"]] == ["A", "B", "C"]
        assert record.glossary["honorifics"] == {}


# -- Consolidation in the run -----------------------------------------------


class TestRunConsolidation:

    async def test_consolidates_when_guard_passes(self):
        oracle = ScriptedOracle([reply_payload(arc_payload(f"Arc {i}")) for i in range(4)])
        merger = ScriptedOracle(
            [reply_payload(arc_payload("First half", end_chunk=1), arc_payload("Second half", start_chunk=2, end_chunk=3))]
        )
        repo = InMemoryProjectRepository()
        pipeline = GlossaryPipeline(oracle, repo, chunk_size=1, consolidation_oracle=merger)
        result = await pipeline.run("p1", "abcd")
        assert merger.calls == 1
        assert result.consolidated is True
        assert result.arcs == 2
        record = await repo.get("p1")
        assert [arc["name"] for arc in record.glossary["arcs"]] == ["First half", "Second half"]

    async def test_consolidation_disabled(self):
        oracle = ScriptedOracle([reply_payload(arc_payload(f"Arc {i}")) for i in range(4)])
        merger = ScriptedOracle([])
        pipeline = GlossaryPipeline(
            oracle, InMemoryProjectRepository(), chunk_size=1, consolidation_oracle=merger
        )
        result = await pipeline.run("p1", "abcd", consolidate_arcs=False)
        assert merger.calls == 0
        assert result.arcs == 4

    async def test_failed_consolidation_keeps_arcs(self):
        oracle = ScriptedOracle([reply_payload(arc_payload(f"Arc {i}")) for i in range(4)])
        merger = ScriptedOracle(["no json"])
        pipeline = GlossaryPipeline(
            oracle, InMemoryProjectRepository(), chunk_size=1, consolidation_oracle=merger
        )
        result = await pipeline.run("p1", "abcd")
        assert result.consolidated is False
        assert result.arcs == 4


# -- Resume -----------------------------------------------------------------


def _partial_snapshot(processed: int, total: int) -> dict:
    acc = GlossaryAccumulator()
    acc.set_total_chunks(total)
    for i in range(processed):
        acc.merge_arc(make_arc("Entrance", chunk=i), i)
        acc.raw_store.append(RawChunkRecord(chunk_index=i, raw={"arcs": [{"name": "Entrance"}]}))
        acc.mark_chunk_processed(i)
    return acc.serialize()


class TestResume:

    async def test_resumes_after_last_saved_chunk(self):
        repo = InMemoryProjectRepository()
        await repo.save(
            ProjectRecord(id="p1", glossary=_partial_snapshot(2, 3), processed_chunks=2, total_chunks=3)
        )
        oracle = ScriptedOracle([reply_payload(arc_payload("Finale"))])
        result = await _pipeline(oracle, repo).run("p1", TEXT)

        assert oracle.calls == 1
        assert "ccccc" in oracle.prompts[0]
        assert result.resumed_from == 2
        assert result.processed_chunks == 3
        record = await repo.get("p1")
        assert [arc["name"] for arc in record.glossary["arcs"]] == ["Entrance", "Finale"]

    async def test_raw_log_ahead_of_counter(self):
        snapshot = _partial_snapshot(2, 3)
        snapshot["processedChunks"] = 1
        repo = InMemoryProjectRepository()
        await repo.save(ProjectRecord(id="p1", glossary=snapshot, processed_chunks=1))
        oracle = ScriptedOracle([reply_payload(arc_payload("Finale"))])
        result = await _pipeline(oracle, repo).run("p1", TEXT)
        assert result.resumed_from == 2
        assert oracle.calls == 1

    async def test_different_chunking_starts_over(self):
        repo = InMemoryProjectRepository()
        await repo.save(ProjectRecord(id="p1", glossary=_partial_snapshot(2, 7), processed_chunks=2))
        oracle = ScriptedOracle([reply_payload(arc_payload("New"))] * 3)
        result = await _pipeline(oracle, repo).run("p1", TEXT)
        assert result.resumed_from == 0
        assert oracle.calls == 3
        record = await repo.get("p1")
        assert [arc["name"] for arc in record.glossary["arcs"]] == ["New"]

    async def test_completed_project_makes_no_calls(self):
        repo = InMemoryProjectRepository()
        await repo.save(ProjectRecord(id="p1", glossary=_partial_snapshot(3, 3), processed_chunks=3))
        oracle = ScriptedOracle([])
        result = await _pipeline(oracle, repo).run("p1", TEXT)
        assert oracle.calls == 0
        assert result.processed_chunks == 3


# -- Replay and reconsolidation ---------------------------------------------


def _replayable_document() -> GlossaryDocument:
    return GlossaryDocument(
        target_language="fr",
        total_chunks=3,
        arcs=[make_arc("Stale")],
        raw_chunks=[
            RawChunkRecord(chunk_index=0, raw={"arcs": [{"name": "Entrance", "characters": [{"name": "Kim"}]}]}),
            RawChunkRecord(chunk_index=1, raw={"arcs": [{"name": "Old attempt"}]}),
            RawChunkRecord(chunk_index=1, raw={"arcs": [{"name": "entrance", "characters": [{"name": "Park"}]}]}),
            RawChunkRecord(chunk_index=2, raw=None, parse_error="No JSON object found in oracle reply"),
        ],
    )


class TestReplay:

    def test_rebuilds_from_latest_records(self):
        replayed = replay_raw_chunks(GlossaryAccumulator(_replayable_document()))
        assert [arc.name for arc in replayed.arcs] == ["Entrance", "Story Arc 3"]
        assert [c.name for c in replayed.arcs[0].characters] == ["Kim", "Park"]
        assert replayed.processed_chunks == 3
        assert replayed.target_language == "fr"
        assert len(replayed.raw_store) == 4

    def test_source_untouched(self):
        source = GlossaryAccumulator(_replayable_document())
        replay_raw_chunks(source)
        assert [arc.name for arc in source.arcs] == ["Stale"]


class TestReconsolidate:

    async def test_replays_and_consolidates(self):
        doc = _replayable_document()
        doc.raw_chunks.append(
            RawChunkRecord(chunk_index=3, raw={"arcs": [{"name": "Festival"}, {"name": "Epilogue"}]})
        )
        doc.total_chunks = 4
        repo = InMemoryProjectRepository()
        await repo.save(ProjectRecord(id="p1", glossary=doc.model_dump(mode="json", by_alias=True)))

        extractor = ScriptedOracle([])
        merger = ScriptedOracle([reply_payload(arc_payload("Everything", end_chunk=3))])
        pipeline = GlossaryPipeline(extractor, repo, consolidation_oracle=merger)
        result = await pipeline.reconsolidate("p1")

        assert extractor.calls == 0
        assert merger.calls == 1
        assert result.consolidated is True
        assert result.arcs == 1
        record = await repo.get("p1")
        assert record.status == ProjectStatus.READY
        assert [arc["name"] for arc in record.glossary["arcs"]] == ["Everything"]

    async def test_unknown_project(self):
        pipeline = GlossaryPipeline(ScriptedOracle([]), InMemoryProjectRepository())
        with pytest.raises(NotFoundError):
            await pipeline.reconsolidate("missing")

    async def test_project_without_snapshot(self):
        repo = InMemoryProjectRepository()
        await repo.save(ProjectRecord(id="p1"))
        pipeline = GlossaryPipeline(ScriptedOracle([]), repo)
        with pytest.raises(ValidationError):
            await pipeline.reconsolidate("p1")
