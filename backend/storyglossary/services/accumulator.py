"""Accumulator state: the knowledge base being built for one document.

GlossaryAccumulator owns a GlossaryDocument and is the only writer to it.
The pipeline driver creates one per run and passes it explicitly; there is
no module-level state.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import ValidationError as PydanticValidationError

from storyglossary.core.exceptions import SerializationError
from storyglossary.core.logging import get_logger
from storyglossary.schemas.glossary import (
    Arc,
    Character,
    Event,
    GlossaryDocument,
    Location,
    NarrativeStyle,
    StorySummary,
    StyleGuide,
)
from storyglossary.services.merge import (
    ArcMatcher,
    build_character_index,
    check_arc_batch,
    merge_arc,
    normalize_name,
    same_name,
    union_strings,
)
from storyglossary.services.raw_capture import RawCaptureStore

if TYPE_CHECKING:
    from storyglossary.schemas.extraction import ExtractionResult

logger = get_logger(__name__)

M = TypeVar("M", bound=StyleGuide | NarrativeStyle | StorySummary)


def _merge_flat_model(existing: M, incoming: M) -> M:
    """Array fields union, string fields overwrite when the incoming value is non-empty."""
    update: dict[str, Any] = {}
    for field in type(existing).model_fields:
        old, new = getattr(existing, field), getattr(incoming, field)
        if isinstance(old, list):
            update[field] = union_strings(old, new)
        elif isinstance(old, str):
            update[field] = new if new.strip() else old
    return existing.model_copy(update=update)


def merge_style_guide(existing: StyleGuide, incoming: StyleGuide) -> StyleGuide:
    merged = _merge_flat_model(existing, incoming)
    return merged.model_copy(
        update={
            "narrative_style": _merge_flat_model(
                existing.narrative_style, incoming.narrative_style
            )
        }
    )


def merge_story_summary(existing: StorySummary, incoming: StorySummary) -> StorySummary:
    return _merge_flat_model(existing, incoming)


def union_locations(existing: list[Location], incoming: list[Location]) -> list[Location]:
    result = list(existing)
    seen = {normalize_name(loc.name) for loc in result}
    for loc in incoming:
        key = normalize_name(loc.name)
        if key not in seen:
            seen.add(key)
            result.append(loc.model_copy(deep=True))
    return result


def union_events(existing: list[Event], incoming: list[Event]) -> list[Event]:
    result = list(existing)
    seen = {(normalize_name(ev.name), ev.chunk_index) for ev in result}
    for ev in incoming:
        key = (normalize_name(ev.name), ev.chunk_index)
        if key not in seen:
            seen.add(key)
            result.append(ev.model_copy(deep=True))
    return result


class GlossaryAccumulator:
    """Mutable knowledge base plus progress counters for one document.

    All writes go through the merge operations here or in ``services.merge``.
    """

    def __init__(
        self,
        document: GlossaryDocument | None = None,
        *,
        matcher: ArcMatcher = same_name,
    ) -> None:
        self.document = document if document is not None else GlossaryDocument()
        self.matcher = matcher
        self.raw_store = RawCaptureStore(self.document.raw_chunks)

    # --- Read access ---

    @property
    def arcs(self) -> list[Arc]:
        return self.document.arcs

    @property
    def characters(self) -> list[Character]:
        """Canonical cross-arc character view."""
        return build_character_index(self.document.arcs)

    @property
    def processed_chunks(self) -> int:
        return self.document.processed_chunks

    @property
    def total_chunks(self) -> int:
        return self.document.total_chunks

    @property
    def target_language(self) -> str:
        return self.document.target_language

    # --- Lifecycle ---

    def reset(self) -> None:
        """Clear to the empty initial state, raw log included."""
        self._attach(GlossaryDocument())

    def set_total_chunks(self, total: int) -> None:
        self.document.total_chunks = total

    def set_target_language(self, code: str) -> None:
        self.document.target_language = code or "en"

    def mark_chunk_processed(self, chunk_index: int) -> None:
        self.document.processed_chunks = chunk_index + 1

    @contextmanager
    def busy(self) -> Iterator[GlossaryAccumulator]:
        """Hold ``isLoading`` for the duration of the block."""
        self.document.is_loading = True
        try:
            yield self
        finally:
            self.document.is_loading = False

    # --- Merging ---

    def merge_arc(self, arc: Arc, chunk_index: int) -> Arc:
        return merge_arc(self.document.arcs, arc, chunk_index, matcher=self.matcher)

    def apply_extraction(self, result: ExtractionResult, chunk_index: int) -> None:
        """Fold one chunk's extraction into the knowledge base.

        Either the whole result is applied or nothing is: arc identities are
        resolved for the full batch before the first merge.

        Raises:
            IdentityAmbiguityError: An incoming arc matches more than one arc.
        """
        doc = self.document
        check_arc_batch(doc.arcs, result.arcs, self.matcher)
        for arc in result.arcs:
            self.merge_arc(arc, chunk_index)

        doc.honorifics.update(result.honorifics)
        doc.recurring_phrases.update(result.recurring_phrases)
        doc.style_guide = merge_style_guide(doc.style_guide, result.style_guide)
        doc.story_summary = merge_story_summary(doc.story_summary, result.story_summary)
        doc.world_building_notes = union_strings(
            doc.world_building_notes, result.world_building_notes
        )
        doc.locations = union_locations(doc.locations, result.locations)
        doc.events = union_events(doc.events, result.events)

        logger.debug(
            "extraction_applied",
            chunk=chunk_index,
            arcs=len(doc.arcs),
            locations=len(doc.locations),
            events=len(doc.events),
        )

    def replace_arcs(self, arcs: list[Arc]) -> None:
        """Swap the whole arc list in one assignment."""
        self.document.arcs = arcs

    # --- Persistence ---

    def serialize(self) -> dict[str, Any]:
        """JSON-ready snapshot using the wire (camelCase) names."""
        return self.document.model_dump(mode="json", by_alias=True)

    def restore(self, snapshot: Any) -> None:
        """Load a snapshot; missing fields are defaulted.

        Raises:
            SerializationError: The snapshot is not an object or a container
                field has the wrong type.
        """
        self._attach(self.load_document(snapshot))

    def export_json(self) -> str:
        return json.dumps(self.serialize(), ensure_ascii=False, indent=2)

    def import_json(self, text: str) -> None:
        try:
            snapshot = json.loads(text)
        except json.JSONDecodeError as exc:
            raise SerializationError(
                "Glossary snapshot is not valid JSON",
                context={"error": str(exc)},
            ) from exc
        self.restore(snapshot)

    @staticmethod
    def load_document(snapshot: Any) -> GlossaryDocument:
        if not isinstance(snapshot, dict):
            raise SerializationError(
                "Glossary snapshot must be a JSON object",
                context={"type": type(snapshot).__name__},
            )
        try:
            return GlossaryDocument.model_validate(snapshot)
        except PydanticValidationError as exc:
            errors = exc.errors(include_url=False, include_context=False, include_input=False)
            raise SerializationError(
                "Glossary snapshot has an invalid structure",
                context={"errors": errors},
            ) from exc

    @classmethod
    def from_snapshot(cls, snapshot: Any, *, matcher: ArcMatcher = same_name) -> GlossaryAccumulator:
        return cls(cls.load_document(snapshot), matcher=matcher)

    def _attach(self, document: GlossaryDocument) -> None:
        self.document = document
        self.raw_store = RawCaptureStore(document.raw_chunks)
