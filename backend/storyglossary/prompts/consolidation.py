"""Prompt for arc consolidation.

The oracle receives every accumulated arc in chunk order and returns a
smaller, temporally ordered list of canonical arcs that carries over all
characters, relationships and terms.
"""

from __future__ import annotations

import json

from storyglossary.config import settings
from storyglossary.prompts.base import build_prompt
from storyglossary.schemas.glossary import Arc

ROLE_DESCRIPTION = "an expert story editor reorganizing a novel's narrative arcs"


def _constraints(target_min: int, target_max: int) -> list[str]:
    return [
        f"Merge the arcs below into {target_min} to {target_max} major story arcs",
        "Keep the arcs in temporal order of the story",
        "Every character, relationship and term from the input MUST appear in some output arc",
        "Merge duplicate characters that clearly refer to the same person",
        "Set start_chunk and end_chunk to the chunk range the merged arc spans",
        "Give each arc a distinctive name; do not reuse a name for two arcs",
    ]


RESPONSE_SCHEMA: dict = {
    "arcs": [
        {
            "name": "Arc name",
            "description": "",
            "theme": "",
            "characters": [{"name": "", "korean_name": "", "description": "", "role": "minor"}],
            "relationships": [
                {"character_a": "", "character_b": "", "relationship_type": "", "sentiment": "neutral"}
            ],
            "key_events": [""],
            "background_changes": [""],
            "terms": [{"original": "", "translation": "", "context": "", "category": "other"}],
            "start_chunk": 0,
            "end_chunk": 0,
        }
    ]
}


_PROMPT_EXCLUDE = {
    "id": True,
    "characters": {"__all__": {"relationships": {"__all__": {"arc_id"}}}},
}


def serialize_arcs(arcs: list[Arc]) -> str:
    """Serialize arcs for the prompt without arc ids, which are re-derived from names."""
    payload = [arc.model_dump(mode="json", exclude=_PROMPT_EXCLUDE) for arc in arcs]
    return json.dumps(payload, ensure_ascii=False, indent=2)


def build_consolidation_prompt(
    arcs: list[Arc],
    target_language: str,
    *,
    target_min: int | None = None,
    target_max: int | None = None,
) -> str:
    """Build the consolidation prompt for the full arc list."""
    return build_prompt(
        role_description=ROLE_DESCRIPTION,
        constraints=_constraints(
            target_min or settings.consolidation_target_min,
            target_max or settings.consolidation_target_max,
        ),
        schema=RESPONSE_SCHEMA,
        input_label=f"ARCS ({len(arcs)})",
        input_text=serialize_arcs(arcs),
        target_language=target_language,
    )
