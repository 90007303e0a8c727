"""Locate and parse the first JSON object embedded in free-form oracle text.

Oracle replies often wrap the JSON in commentary or markdown fences. A
greedy regex (first '{' to last '}') breaks as soon as the commentary
contains braces, so spans are found with a depth-counting scan that skips
braces inside JSON string literals.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from typing import Any

from storyglossary.core.exceptions import MalformedReplyError


def find_json_object_spans(text: str) -> Iterator[tuple[int, int]]:
    """Yield (start, end) of every balanced top-level ``{...}`` span, left to right.

    ``end`` is exclusive. Braces inside double-quoted strings (with backslash
    escapes) do not count toward nesting. A ``{`` that never balances (stray
    commentary brace, truncated reply) is skipped and the scan moves on to
    the next ``{``; after a balanced span it resumes past the span's end, so
    nested objects are not yielded on their own.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        end = -1
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    end = i + 1
                    break
        if end == -1:
            start = text.find("{", start + 1)
            continue
        yield start, end
        start = text.find("{", end)


def parse_first_json_object(text: str) -> dict[str, Any]:
    """Return the first balanced span in *text* that parses to a JSON object.

    Raises:
        MalformedReplyError: No span exists, or none of them is valid JSON.
    """
    if not text or not text.strip():
        raise MalformedReplyError("Oracle reply was empty")

    last_error: str | None = None
    for start, end in find_json_object_spans(text):
        try:
            parsed = json.loads(text[start:end])
        except json.JSONDecodeError as exc:
            last_error = str(exc)
            continue
        if isinstance(parsed, dict):
            return parsed

    if last_error is None:
        raise MalformedReplyError("No JSON object found in oracle reply")
    raise MalformedReplyError(
        "No parseable JSON object in oracle reply",
        context={"json_error": last_error},
    )
