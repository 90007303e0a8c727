"""Normalize a parsed oracle reply into a fully populated ExtractionResult.

This is the single place untyped oracle JSON becomes typed records:
- non-object items are dropped, every other field is defaulted by the
  lenient pydantic validators in ``schemas.glossary``;
- characters, terms, locations and events without an id get a synthetic
  ``{kind}-{chunkIndex}-{localIndex}`` id, counted per kind over the chunk;
- arc ids are derived from names and both chunk bounds set to the chunk;
- terms with a blank ``original`` are dropped and each arc is deduplicated
  with the merge engine's identity keys;
- zero arcs yields exactly one fallback arc.
"""

from __future__ import annotations

from collections import Counter
from typing import Any

from storyglossary.schemas.extraction import ExtractionResult
from storyglossary.schemas.glossary import (
    Arc,
    Character,
    Event,
    Location,
    Relationship,
    StorySummary,
    StyleGuide,
    Term,
    coerce_str,
    coerce_str_list,
    coerce_str_map,
    derive_arc_id,
)
from storyglossary.services.merge import (
    union_characters,
    union_relationships,
    union_strings,
    union_terms,
)


def fallback_arc_name(chunk_index: int) -> str:
    return f"Story Arc {chunk_index + 1}"


def make_fallback_arc(chunk_index: int) -> Arc:
    """The synthetic arc used when a chunk yields no arc at all."""
    name = fallback_arc_name(chunk_index)
    return Arc(
        id=derive_arc_id(name),
        name=name,
        start_chunk=chunk_index,
        end_chunk=chunk_index,
    )


def fallback_result(chunk_index: int, parse_error: str | None = None) -> ExtractionResult:
    return ExtractionResult(
        chunk_index=chunk_index,
        arcs=[make_fallback_arc(chunk_index)],
        parse_error=parse_error,
        used_fallback=True,
    )


def _objects(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


class IdAllocator:
    """Hands out ``{kind}-{scope}-{n}`` ids with one counter per kind.

    ``scope`` is the chunk index for extraction output.
    """

    def __init__(self, scope: int | str) -> None:
        self.scope = scope
        self._counters: Counter[str] = Counter()

    def next(self, kind: str) -> str:
        local_index = self._counters[kind]
        self._counters[kind] += 1
        return f"{kind}-{self.scope}-{local_index}"

    def fill(self, data: dict[str, Any], kind: str) -> dict[str, Any]:
        current = data.get("id")
        if isinstance(current, str) and current.strip():
            return dict(data)
        return {**data, "id": self.next(kind)}


def normalize_arc(
    data: dict[str, Any],
    *,
    ids: IdAllocator,
    default_name: str,
    start_chunk: int,
    end_chunk: int,
    retag_relationships: bool = False,
) -> Arc:
    """Build one validated, internally deduplicated Arc from untyped JSON.

    Character relationships without an ``arc_id`` are tagged with this arc;
    ``retag_relationships`` tags every one of them, dropping whatever id the
    reply carried.
    """
    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        name = default_name
    arc_id = derive_arc_id(name)

    characters = []
    for raw_char in _objects(data.get("characters")):
        char_data = ids.fill(raw_char, "char")
        char_data["relationships"] = [
            {**rel, "arc_id": arc_id if retag_relationships else rel.get("arc_id") or arc_id}
            for rel in _objects(char_data.get("relationships"))
        ]
        characters.append(Character.model_validate(char_data))

    terms = [
        Term.model_validate(ids.fill(raw_term, "term"))
        for raw_term in _objects(data.get("terms"))
        if coerce_str(raw_term.get("original")).strip()
    ]
    relationships = [
        Relationship.model_validate(raw_rel) for raw_rel in _objects(data.get("relationships"))
    ]

    return Arc(
        id=arc_id,
        name=name,
        description=data.get("description"),
        theme=data.get("theme"),
        characters=union_characters([], characters),
        relationships=union_relationships([], relationships),
        terms=union_terms([], terms),
        key_events=union_strings([], coerce_str_list(data.get("key_events"))),
        background_changes=union_strings([], coerce_str_list(data.get("background_changes"))),
        start_chunk=start_chunk,
        end_chunk=end_chunk,
    )


def normalize_extraction(raw: dict[str, Any], chunk_index: int) -> ExtractionResult:
    """Turn a parsed oracle object into a validated ExtractionResult.

    Never raises on content problems; anything unusable is dropped or
    defaulted. A reply without usable arcs gets the fallback arc, with the
    document-level metadata still kept.
    """
    ids = IdAllocator(chunk_index)

    arcs = [
        normalize_arc(
            item,
            ids=ids,
            default_name=fallback_arc_name(chunk_index),
            start_chunk=chunk_index,
            end_chunk=chunk_index,
        )
        for item in _objects(raw.get("arcs"))
    ]
    used_fallback = not arcs
    if used_fallback:
        arcs = [make_fallback_arc(chunk_index)]

    locations = [
        Location.model_validate(ids.fill(item, "location"))
        for item in _objects(raw.get("locations"))
    ]
    events = [
        Event.model_validate({**ids.fill(item, "event"), "chunk_index": chunk_index})
        for item in _objects(raw.get("events"))
    ]

    summary = raw.get("story_summary")
    style = raw.get("style_guide")

    return ExtractionResult(
        chunk_index=chunk_index,
        arcs=arcs,
        locations=locations,
        events=events,
        story_summary=StorySummary.model_validate(summary if isinstance(summary, dict) else {}),
        style_guide=StyleGuide.model_validate(style if isinstance(style, dict) else {}),
        honorifics=coerce_str_map(raw.get("honorifics")),
        recurring_phrases=coerce_str_map(raw.get("recurring_phrases")),
        world_building_notes=union_strings([], coerce_str_list(raw.get("world_building_notes"))),
        used_fallback=used_fallback,
    )
