"""Prompt base template shared by extraction and consolidation prompts.

Every oracle prompt follows the same 4-part structure:
[SYSTEM] Role + target language directive
[CONSTRAINTS] Output rules
[SCHEMA] JSON shape the reply must follow
[INPUT] Text or arcs to work on
"""

from __future__ import annotations

import json
from dataclasses import dataclass


@dataclass(frozen=True)
class TargetLanguage:
    """Language the glossary translations and descriptions are written in."""

    code: str
    name: str


_LANGUAGES = {
    "en": TargetLanguage(code="en", name="English"),
    "ja": TargetLanguage(code="ja", name="Japanese"),
    "ko": TargetLanguage(code="ko", name="Korean"),
    "fr": TargetLanguage(code="fr", name="French"),
    "zh": TargetLanguage(code="zh", name="Chinese"),
    "es": TargetLanguage(code="es", name="Spanish"),
    "de": TargetLanguage(code="de", name="German"),
}


def get_target_language(code: str) -> TargetLanguage:
    """Resolve a language code; unknown codes are passed through verbatim."""
    normalized = (code or "en").strip().lower()
    return _LANGUAGES.get(normalized, TargetLanguage(code=normalized, name=normalized))


def language_directive(code: str) -> str:
    lang = get_target_language(code)
    return (
        f"Write every translation, description and summary in {lang.name} "
        f"({lang.code}). Keep source-language names in the korean_name and "
        "original fields exactly as they appear in the text."
    )


def build_prompt(
    *,
    role_description: str,
    constraints: list[str],
    schema: dict,
    input_label: str,
    input_text: str,
    target_language: str,
) -> str:
    """Assemble a sectioned prompt.

    Args:
        role_description: Who the oracle is asked to be.
        constraints: One rule per line, rendered as a bullet list.
        schema: JSON-serializable example of the expected reply.
        input_label: Header for the input section.
        input_text: The chunk text or serialized arcs.
        target_language: Target language code for the directive.

    Returns:
        Complete prompt string.
    """
    schema_json = json.dumps(schema, ensure_ascii=False, indent=2)

    sections: list[str] = [
        f"[SYSTEM]\nYou are {role_description}.",
        language_directive(target_language),
        "\n[CONSTRAINTS]",
        *(f"- {rule}" for rule in constraints),
        f"\n[SCHEMA]\nReply with ONE JSON object of this shape and nothing else:\n"
        f"```json\n{schema_json}\n```",
        f"\n[{input_label}]\n{input_text}",
    ]
    return "\n".join(sections)
