"""Prompt for per-chunk glossary extraction.

The reply schema mirrors GlossaryDocument minus the progress counters: one
or more arcs (each with characters, relationships and terms) plus the
document-level metadata seen in this chunk.
"""

from __future__ import annotations

from storyglossary.prompts.base import build_prompt

ROLE_DESCRIPTION = (
    "an expert literary analyst building a translation glossary for a serialized novel"
)

CONSTRAINTS = [
    "Return AT LEAST ONE arc. If the chunk has no clear arc, describe the current story phase",
    "Group characters, relationships and terms under the arc they appear in",
    "Use the exact source-text spelling for names and original terms",
    "Only include named characters; generic references (the guard, he, she) are not characters",
    "role is one of: protagonist, antagonist, major, supporting, minor",
    "sentiment is one of: positive, negative, neutral",
    "category is one of: name, place, item, concept, cultural, other",
    "importance is one of: major, minor",
    "Do NOT invent information absent from the text",
    "Leave a field empty rather than guessing",
]

RESPONSE_SCHEMA: dict = {
    "arcs": [
        {
            "name": "Arc name",
            "description": "What happens in this arc",
            "theme": "Central theme",
            "characters": [
                {
                    "name": "Translated name",
                    "korean_name": "Source-language name",
                    "english_name": "English name",
                    "description": "",
                    "physical_appearance": "",
                    "personality": "",
                    "traits": [""],
                    "emoji": "👤",
                    "age": "",
                    "gender": "",
                    "role": "minor",
                    "occupation": "",
                    "abilities": [""],
                    "speech_style": "",
                    "name_variants": {"source form": "translated form"},
                    "relationships": [
                        {"character_name": "", "relationship_type": "", "description": ""}
                    ],
                }
            ],
            "relationships": [
                {
                    "character_a": "",
                    "character_b": "",
                    "relationship_type": "",
                    "description": "",
                    "sentiment": "neutral",
                }
            ],
            "key_events": [""],
            "background_changes": [""],
            "terms": [
                {"original": "", "translation": "", "context": "", "category": "other"}
            ],
        }
    ],
    "locations": [{"name": "", "description": "", "emoji": "📍"}],
    "events": [
        {
            "name": "",
            "description": "",
            "characters_involved": [""],
            "source_location": "unknown",
            "target_location": "unknown",
            "importance": "minor",
        }
    ],
    "story_summary": {"logline": "", "blurb": ""},
    "style_guide": {
        "tone": "",
        "formality_level": "medium",
        "themes": [""],
        "genre": "",
        "sub_genres": [""],
        "content_rating": "",
        "name_format": "",
        "honorific_usage": "",
        "formal_speech_level": "",
        "dialogue_style": "",
        "narrative_vocabulary": "",
        "narrative_style": {
            "point_of_view": "",
            "tense": "",
            "voice": "",
            "common_expressions": [""],
            "atmosphere_descriptors": [""],
        },
    },
    "honorifics": {"source honorific": "how to render it"},
    "recurring_phrases": {"source phrase": "translation"},
    "world_building_notes": [""],
}


def build_glossary_extraction_prompt(chunk_text: str, target_language: str) -> str:
    """Build the extraction prompt for one chunk."""
    return build_prompt(
        role_description=ROLE_DESCRIPTION,
        constraints=CONSTRAINTS,
        schema=RESPONSE_SCHEMA,
        input_label="TEXT TO ANALYZE",
        input_text=chunk_text,
        target_language=target_language,
    )
