"""Fixed-size chunking service.

Splits a source document into ordered, non-overlapping character spans.
Spans never overlap, so an entity mentioned near a boundary is simply seen
by both neighbouring extractions and unified later by the merge engine.
"""

from __future__ import annotations

from storyglossary.config import settings
from storyglossary.core.logging import get_logger

logger = get_logger(__name__)


def split_text(text: str, chunk_size: int | None = None) -> list[str]:
    """Split text into consecutive spans of at most ``chunk_size`` characters.

    Args:
        text: Full source document.
        chunk_size: Characters per chunk. Defaults to ``settings.chunk_size``.

    Returns:
        Ordered list of chunks; concatenating them yields ``text`` exactly.

    Raises:
        ValueError: If ``chunk_size`` is smaller than 1.
    """
    size = settings.chunk_size if chunk_size is None else chunk_size
    if size < 1:
        raise ValueError(f"chunk_size must be >= 1, got {size}")
    if not text:
        return []

    chunks = [text[start : start + size] for start in range(0, len(text), size)]

    logger.info(
        "text_chunked",
        chars=len(text),
        chunk_size=size,
        chunks=len(chunks),
    )
    return chunks
