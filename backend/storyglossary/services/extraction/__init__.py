"""Per-chunk glossary extraction: oracle call, JSON recovery, normalization."""

from storyglossary.services.extraction.adapter import extract_chunk
from storyglossary.services.extraction.json_span import (
    find_json_object_spans,
    parse_first_json_object,
)
from storyglossary.services.extraction.normalize import (
    make_fallback_arc,
    normalize_extraction,
)

__all__ = [
    "extract_chunk",
    "find_json_object_spans",
    "make_fallback_arc",
    "normalize_extraction",
    "parse_first_json_object",
]
