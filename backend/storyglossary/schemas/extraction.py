"""Pydantic schemas for per-chunk extraction output.

ExtractionResult is the validated intermediate structure the adapter hands
to the merge engine: every field populated, at least one arc.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from storyglossary.schemas.glossary import (
    Arc,
    Event,
    Location,
    StorySummary,
    StyleGuide,
)


class ExtractionResult(BaseModel):
    """Normalized extraction output for one chunk."""

    chunk_index: int
    arcs: list[Arc] = Field(default_factory=list)
    locations: list[Location] = Field(default_factory=list)
    events: list[Event] = Field(default_factory=list)
    story_summary: StorySummary = Field(default_factory=StorySummary)
    style_guide: StyleGuide = Field(default_factory=StyleGuide)
    honorifics: dict[str, str] = Field(default_factory=dict)
    recurring_phrases: dict[str, str] = Field(default_factory=dict)
    world_building_notes: list[str] = Field(default_factory=list)

    # Set when the oracle call or the reply parse failed
    parse_error: str | None = None
    used_fallback: bool = False
