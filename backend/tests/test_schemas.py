"""Tests for storyglossary.schemas: lenient defaults and coercion."""

from __future__ import annotations

from storyglossary.schemas.glossary import (
    Arc,
    Character,
    Event,
    GlossaryDocument,
    Location,
    RawChunkRecord,
    Relationship,
    StyleGuide,
    Term,
    derive_arc_id,
)
from storyglossary.schemas.project import ProjectRecord


class TestDefaults:

    def test_character_defaults(self):
        char = Character()
        assert char.name == "Unknown"
        assert char.role == "minor"
        assert char.emoji == "👤"
        assert char.traits == []
        assert char.name_variants == {}

    def test_term_and_relationship_defaults(self):
        assert Term().category == "other"
        assert Relationship().sentiment == "neutral"

    def test_location_and_event_defaults(self):
        assert Location().emoji == "📍"
        event = Event()
        assert event.name == "Unknown Event"
        assert event.source_location == "unknown"
        assert event.importance == "minor"

    def test_style_guide_defaults(self):
        guide = StyleGuide()
        assert guide.formality_level == "medium"
        assert guide.narrative_style.common_expressions == []

    def test_document_defaults(self):
        doc = GlossaryDocument()
        assert doc.target_language == "en"
        assert doc.processed_chunks == 0
        assert doc.is_loading is False


class TestLenientCoercion:

    def test_none_becomes_default(self):
        char = Character.model_validate({"name": None, "description": None, "traits": None})
        assert char.name == "Unknown"
        assert char.description == ""
        assert char.traits == []

    def test_unknown_enum_falls_back(self):
        assert Character.model_validate({"role": "villain"}).role == "minor"
        assert Term.model_validate({"category": "weapon"}).category == "other"
        assert Relationship.model_validate({"sentiment": "hostile"}).sentiment == "neutral"

    def test_enum_case_insensitive(self):
        assert Character.model_validate({"role": " Protagonist "}).role == "protagonist"

    def test_bare_string_becomes_list(self):
        assert Character.model_validate({"traits": "brave"}).traits == ["brave"]

    def test_scalars_become_strings(self):
        char = Character.model_validate({"age": 17, "name": 42})
        assert char.age == "17"
        assert char.name == "42"

    def test_blank_list_entries_dropped(self):
        arc = Arc.model_validate({"key_events": ["", "  ", "Exam begins", None]})
        assert arc.key_events == ["Exam begins"]

    def test_non_string_map_values(self):
        char = Character.model_validate({"name_variants": {"formal": "Kim-ssi", "bad": None, "n": 3}})
        assert char.name_variants == {"formal": "Kim-ssi", "n": "3"}

    def test_numeric_chunk_strings(self):
        arc = Arc.model_validate({"start_chunk": "3", "end_chunk": 4.0})
        assert (arc.start_chunk, arc.end_chunk) == (3, 4)

    def test_extra_keys_ignored(self):
        term = Term.model_validate({"original": "수능", "confidence": 0.9})
        assert term.original == "수능"


class TestAliases:

    def test_raw_chunk_record_wire_names(self):
        record = RawChunkRecord.model_validate(
            {"chunkIndex": 2, "rawText": "{}", "parseError": "bad", "extractedAt": 1.5}
        )
        assert record.chunk_index == 2
        dumped = record.model_dump(by_alias=True)
        assert set(dumped) >= {"chunkIndex", "extractedAt", "rawText", "parseError", "raw", "model"}

    def test_document_accepts_both_names(self):
        by_alias = GlossaryDocument.model_validate({"processedChunks": 3, "totalChunks": 5})
        by_name = GlossaryDocument.model_validate({"processed_chunks": 3, "total_chunks": 5})
        assert by_alias == by_name

    def test_project_record_alias(self):
        record = ProjectRecord.model_validate({"id": "p1", "updatedAt": 10.0, "processedChunks": 2})
        assert record.updated_at == 10.0
        assert record.processed_chunks == 2


class TestDeriveArcId:

    def test_slug(self):
        assert derive_arc_id("The Entrance Exam") == "arc-the-entrance-exam"

    def test_case_and_whitespace_insensitive(self):
        assert derive_arc_id("  entrance ") == derive_arc_id("Entrance")

    def test_unicode_names_kept(self):
        assert derive_arc_id("입학 시험") == "arc-입학-시험"

    def test_empty_name(self):
        assert derive_arc_id("!!!") == "arc-untitled"
