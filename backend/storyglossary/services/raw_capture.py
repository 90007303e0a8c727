"""Append-only log of raw oracle output, one record per extraction attempt.

The log is the replay source for rebuilding the knowledge base without new
extraction calls. Records are frozen; the only mutations are ``append`` and
``clear`` (on accumulator reset).
"""

from __future__ import annotations

from collections.abc import Iterator

from storyglossary.schemas.glossary import RawChunkRecord


class RawCaptureStore:
    """View over a document's ``raw_chunks`` list.

    The list is shared with the owning GlossaryDocument so the log is
    serialized with the snapshot.
    """

    def __init__(self, records: list[RawChunkRecord] | None = None) -> None:
        self._records: list[RawChunkRecord] = records if records is not None else []

    def append(self, record: RawChunkRecord) -> None:
        self._records.append(record)

    def list(self) -> list[RawChunkRecord]:
        """All records ascending by chunk index; attempt order kept within an index."""
        return sorted(self._records, key=lambda record: record.chunk_index)

    def for_chunk(self, chunk_index: int) -> list[RawChunkRecord]:
        return [record for record in self._records if record.chunk_index == chunk_index]

    def latest_by_chunk(self) -> dict[int, RawChunkRecord]:
        """Most recent attempt per chunk index, ordered by index."""
        latest: dict[int, RawChunkRecord] = {}
        for record in self.list():
            latest[record.chunk_index] = record
        return latest

    def chunk_count(self) -> int:
        """Number of distinct chunk indices captured."""
        return len({record.chunk_index for record in self._records})

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[RawChunkRecord]:
        return iter(self._records)
