"""Pydantic schemas for the story glossary knowledge base.

Arc → Character / Relationship / Term is the unit of extraction and merge;
GlossaryDocument is the full serializable snapshot (arcs plus document-level
metadata, progress counters and the raw chunk log).

Every field carries a default so a record with missing keys always
validates. Leaf values coming from the oracle or an imported snapshot are
coerced leniently: None falls back to the default, scalars become strings,
a bare string becomes a one-element list and unknown enum values fall back
to the documented default.
"""

from __future__ import annotations

import re
from typing import Any, Literal, get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator

CharacterRole = Literal["protagonist", "antagonist", "major", "supporting", "minor"]
Sentiment = Literal["positive", "negative", "neutral"]
TermCategory = Literal["name", "place", "item", "concept", "cultural", "other"]
EventImportance = Literal["major", "minor"]

DEFAULT_ROLE: CharacterRole = "minor"
DEFAULT_SENTIMENT: Sentiment = "neutral"
DEFAULT_CATEGORY: TermCategory = "other"
DEFAULT_IMPORTANCE: EventImportance = "minor"


# ── Lenient coercion helpers ───────────────────────────────────────────


def coerce_str(value: Any, default: str = "") -> str:
    if value is None:
        return default
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float, bool)):
        return str(value)
    return default


def _non_blank(value: str, default: str) -> str:
    return value if value.strip() else default


def coerce_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [coerce_str(v) for v in value if coerce_str(v).strip()]
    return []


def coerce_str_map(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): coerce_str(v) for k, v in value.items() if v is not None}


def coerce_choice(value: Any, choices: tuple[str, ...], default: str) -> str:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in choices:
            return lowered
    return default


def coerce_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return default


def derive_arc_id(name: str) -> str:
    """Stable arc id from its name: 'The Entrance Exam' -> 'arc-the-entrance-exam'."""
    slug = re.sub(r"[^\w]+", "-", name.strip().lower()).strip("-_")
    return f"arc-{slug or 'untitled'}"


class GlossaryModel(BaseModel):
    """Base for all glossary records."""

    model_config = ConfigDict(populate_by_name=True)


# ── Arc contents ────────────────────────────────────────────────────────


class CharacterRelationship(GlossaryModel):
    """A character-scoped relationship, tagged with the arc it belongs to."""

    character_name: str = ""
    relationship_type: str = "unknown"
    description: str = ""
    arc_id: str = ""

    @field_validator("character_name", "description", "arc_id", mode="before")
    @classmethod
    def _str(cls, v: Any) -> str:
        return coerce_str(v)

    @field_validator("relationship_type", mode="before")
    @classmethod
    def _type(cls, v: Any) -> str:
        return coerce_str(v) or "unknown"


class Character(GlossaryModel):
    """A character as seen within one arc."""

    id: str = ""
    name: str = "Unknown"
    korean_name: str = ""
    english_name: str = ""
    description: str = ""
    physical_appearance: str = ""
    personality: str = ""
    traits: list[str] = Field(default_factory=list)
    emoji: str = "👤"
    age: str = ""
    gender: str = ""
    role: CharacterRole = DEFAULT_ROLE
    occupation: str = ""
    abilities: list[str] = Field(default_factory=list)
    speech_style: str = ""
    name_variants: dict[str, str] = Field(default_factory=dict)
    relationships: list[CharacterRelationship] = Field(default_factory=list)

    @field_validator(
        "id",
        "korean_name",
        "english_name",
        "description",
        "physical_appearance",
        "personality",
        "age",
        "gender",
        "occupation",
        "speech_style",
        mode="before",
    )
    @classmethod
    def _str(cls, v: Any) -> str:
        return coerce_str(v)

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v: Any) -> str:
        return _non_blank(coerce_str(v), "Unknown")

    @field_validator("emoji", mode="before")
    @classmethod
    def _emoji(cls, v: Any) -> str:
        return coerce_str(v) or "👤"

    @field_validator("traits", "abilities", mode="before")
    @classmethod
    def _str_list(cls, v: Any) -> list[str]:
        return coerce_str_list(v)

    @field_validator("role", mode="before")
    @classmethod
    def _role(cls, v: Any) -> str:
        return coerce_choice(v, get_args(CharacterRole), DEFAULT_ROLE)

    @field_validator("name_variants", mode="before")
    @classmethod
    def _variants(cls, v: Any) -> dict[str, str]:
        return coerce_str_map(v)


class Relationship(GlossaryModel):
    """An arc-level relationship between two characters."""

    character_a: str = ""
    character_b: str = ""
    relationship_type: str = ""
    description: str = ""
    sentiment: Sentiment = DEFAULT_SENTIMENT

    @field_validator(
        "character_a", "character_b", "relationship_type", "description", mode="before"
    )
    @classmethod
    def _str(cls, v: Any) -> str:
        return coerce_str(v)

    @field_validator("sentiment", mode="before")
    @classmethod
    def _sentiment(cls, v: Any) -> str:
        return coerce_choice(v, get_args(Sentiment), DEFAULT_SENTIMENT)


class Term(GlossaryModel):
    """A translation term keyed by its source-language text."""

    id: str = ""
    original: str = ""
    translation: str = ""
    context: str = ""
    category: TermCategory = DEFAULT_CATEGORY

    @field_validator("id", "original", "translation", "context", mode="before")
    @classmethod
    def _str(cls, v: Any) -> str:
        return coerce_str(v)

    @field_validator("category", mode="before")
    @classmethod
    def _category(cls, v: Any) -> str:
        return coerce_choice(v, get_args(TermCategory), DEFAULT_CATEGORY)


class Arc(GlossaryModel):
    """A contiguous narrative phase; the unit of merge and consolidation."""

    id: str = ""
    name: str = ""
    description: str = ""
    theme: str = ""
    characters: list[Character] = Field(default_factory=list)
    relationships: list[Relationship] = Field(default_factory=list)
    key_events: list[str] = Field(default_factory=list)
    background_changes: list[str] = Field(default_factory=list)
    terms: list[Term] = Field(default_factory=list)
    start_chunk: int = 0
    end_chunk: int = 0

    @field_validator("id", "name", "description", "theme", mode="before")
    @classmethod
    def _str(cls, v: Any) -> str:
        return coerce_str(v)

    @field_validator("key_events", "background_changes", mode="before")
    @classmethod
    def _str_list(cls, v: Any) -> list[str]:
        return coerce_str_list(v)

    @field_validator("start_chunk", "end_chunk", mode="before")
    @classmethod
    def _int(cls, v: Any) -> int:
        return coerce_int(v)


# ── Document-level records ──────────────────────────────────────────────


class Location(GlossaryModel):
    id: str = ""
    name: str = "Unknown"
    description: str = ""
    emoji: str = "📍"

    @field_validator("id", "description", mode="before")
    @classmethod
    def _str(cls, v: Any) -> str:
        return coerce_str(v)

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v: Any) -> str:
        return _non_blank(coerce_str(v), "Unknown")

    @field_validator("emoji", mode="before")
    @classmethod
    def _emoji(cls, v: Any) -> str:
        return coerce_str(v) or "📍"


class Event(GlossaryModel):
    id: str = ""
    name: str = "Unknown Event"
    description: str = ""
    characters_involved: list[str] = Field(default_factory=list)
    source_location: str = "unknown"
    target_location: str = "unknown"
    importance: EventImportance = DEFAULT_IMPORTANCE
    chunk_index: int = 0

    @field_validator("id", "description", mode="before")
    @classmethod
    def _str(cls, v: Any) -> str:
        return coerce_str(v)

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v: Any) -> str:
        return _non_blank(coerce_str(v), "Unknown Event")

    @field_validator("source_location", "target_location", mode="before")
    @classmethod
    def _location(cls, v: Any) -> str:
        return coerce_str(v) or "unknown"

    @field_validator("characters_involved", mode="before")
    @classmethod
    def _str_list(cls, v: Any) -> list[str]:
        return coerce_str_list(v)

    @field_validator("importance", mode="before")
    @classmethod
    def _importance(cls, v: Any) -> str:
        return coerce_choice(v, get_args(EventImportance), DEFAULT_IMPORTANCE)

    @field_validator("chunk_index", mode="before")
    @classmethod
    def _int(cls, v: Any) -> int:
        return coerce_int(v)


class StorySummary(GlossaryModel):
    logline: str = ""
    blurb: str = ""

    @field_validator("logline", "blurb", mode="before")
    @classmethod
    def _str(cls, v: Any) -> str:
        return coerce_str(v)


class NarrativeStyle(GlossaryModel):
    point_of_view: str = ""
    tense: str = ""
    voice: str = ""
    common_expressions: list[str] = Field(default_factory=list)
    atmosphere_descriptors: list[str] = Field(default_factory=list)

    @field_validator("point_of_view", "tense", "voice", mode="before")
    @classmethod
    def _str(cls, v: Any) -> str:
        return coerce_str(v)

    @field_validator("common_expressions", "atmosphere_descriptors", mode="before")
    @classmethod
    def _str_list(cls, v: Any) -> list[str]:
        return coerce_str_list(v)


class StyleGuide(GlossaryModel):
    """Translation style guide; list fields merge by union, scalars by overwrite."""

    tone: str = ""
    formality_level: str = "medium"
    themes: list[str] = Field(default_factory=list)
    genre: str = ""
    sub_genres: list[str] = Field(default_factory=list)
    content_rating: str = ""
    name_format: str = ""
    honorific_usage: str = ""
    formal_speech_level: str = ""
    dialogue_style: str = ""
    narrative_vocabulary: str = ""
    narrative_style: NarrativeStyle = Field(default_factory=NarrativeStyle)

    @field_validator(
        "tone",
        "genre",
        "content_rating",
        "name_format",
        "honorific_usage",
        "formal_speech_level",
        "dialogue_style",
        "narrative_vocabulary",
        mode="before",
    )
    @classmethod
    def _str(cls, v: Any) -> str:
        return coerce_str(v)

    @field_validator("formality_level", mode="before")
    @classmethod
    def _formality(cls, v: Any) -> str:
        return coerce_str(v) or "medium"

    @field_validator("themes", "sub_genres", mode="before")
    @classmethod
    def _str_list(cls, v: Any) -> list[str]:
        return coerce_str_list(v)

    @field_validator("narrative_style", mode="before")
    @classmethod
    def _narrative_style(cls, v: Any) -> Any:
        return v if isinstance(v, (dict, NarrativeStyle)) else {}


class RawChunkRecord(GlossaryModel):
    """Unprocessed oracle output for one extraction attempt. Never mutated."""

    chunk_index: int = Field(default=0, alias="chunkIndex")
    model: str = ""
    extracted_at: float = Field(default=0.0, alias="extractedAt")
    raw: dict[str, Any] | None = None
    raw_text: str = Field(default="", alias="rawText")
    parse_error: str | None = Field(default=None, alias="parseError")

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class GlossaryDocument(GlossaryModel):
    """Full knowledge base snapshot; the export and import format."""

    arcs: list[Arc] = Field(default_factory=list)
    locations: list[Location] = Field(default_factory=list)
    events: list[Event] = Field(default_factory=list)
    story_summary: StorySummary = Field(default_factory=StorySummary)
    style_guide: StyleGuide = Field(default_factory=StyleGuide)
    honorifics: dict[str, str] = Field(default_factory=dict)
    recurring_phrases: dict[str, str] = Field(default_factory=dict)
    world_building_notes: list[str] = Field(default_factory=list)
    target_language: str = "en"
    processed_chunks: int = Field(default=0, alias="processedChunks")
    total_chunks: int = Field(default=0, alias="totalChunks")
    is_loading: bool = Field(default=False, alias="isLoading")
    raw_chunks: list[RawChunkRecord] = Field(default_factory=list)

    @field_validator("honorifics", "recurring_phrases", mode="before")
    @classmethod
    def _str_map(cls, v: Any) -> Any:
        # A non-object here is a structural error, not a missing field.
        return coerce_str_map(v) if isinstance(v, dict) else v

    @field_validator("target_language", mode="before")
    @classmethod
    def _language(cls, v: Any) -> str:
        return coerce_str(v) or "en"
