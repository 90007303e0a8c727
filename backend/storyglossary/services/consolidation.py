"""Consolidation engine: reorganize accumulated arcs into a canonical list.

Runs one oracle pass over every arc and swaps the arc list in a single
assignment on success. Any failure (oracle error, timeout, unparseable
reply, empty ``arcs``) leaves the accumulator untouched.

Arc ids are re-derived from the new names; references to pre-consolidation
arc ids go stale.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from storyglossary.config import settings
from storyglossary.core.exceptions import MalformedReplyError, OracleUnavailableError
from storyglossary.core.logging import get_logger
from storyglossary.prompts.consolidation import build_consolidation_prompt
from storyglossary.schemas.glossary import Arc, coerce_int
from storyglossary.services.extraction.adapter import call_oracle, parse_reply
from storyglossary.services.extraction.normalize import IdAllocator, normalize_arc
from storyglossary.services.merge import merge_arc

if TYPE_CHECKING:
    from storyglossary.llm.providers import GlossaryOracle
    from storyglossary.services.accumulator import GlossaryAccumulator

logger = get_logger(__name__)


def should_consolidate(accumulator: GlossaryAccumulator) -> bool:
    """Guard: only documents with enough chunks and arcs are worth reorganizing."""
    return (
        accumulator.total_chunks > settings.consolidation_min_chunks
        and len(accumulator.arcs) > settings.consolidation_min_arcs
    )


def build_consolidated_arcs(items: list[dict[str, Any]]) -> list[Arc]:
    """Normalize the oracle's arcs and fold any that share a name.

    Returns arcs in the oracle's order; an arc repeated by name is merged
    into its first occurrence.
    """
    ids = IdAllocator("c")
    arcs: list[Arc] = []
    for position, item in enumerate(items):
        start = max(coerce_int(item.get("start_chunk")), 0)
        end = max(coerce_int(item.get("end_chunk")), start)
        arc = normalize_arc(
            item,
            ids=ids,
            default_name=f"Story Arc {position + 1}",
            start_chunk=start,
            end_chunk=end,
            retag_relationships=True,
        )
        merge_arc(arcs, arc, arc.end_chunk)
    return arcs


async def consolidate(
    accumulator: GlossaryAccumulator,
    *,
    oracle: GlossaryOracle,
    timeout: float | None = None,
) -> list[Arc]:
    """Replace the accumulator's arcs with the oracle's consolidated list.

    Returns:
        The arc list in effect after the call: the new list on success,
        the untouched prior list when skipped or failed.
    """
    before = accumulator.arcs
    if not should_consolidate(accumulator):
        logger.info(
            "consolidation_skipped",
            total_chunks=accumulator.total_chunks,
            arcs=len(before),
        )
        return before

    deadline = timeout if timeout is not None else settings.oracle_timeout_seconds
    prompt = build_consolidation_prompt(before, accumulator.target_language)

    try:
        reply = await call_oracle(oracle, prompt, deadline)
        parsed = parse_reply(reply)
        items = [item for item in parsed["arcs"] if isinstance(item, dict)]
        if not items:
            raise MalformedReplyError("Consolidation reply has an empty 'arcs' list")
        consolidated = build_consolidated_arcs(items)
    except (OracleUnavailableError, MalformedReplyError) as exc:
        logger.warning(
            "consolidation_failed",
            error=exc.detail,
            error_type=type(exc).__name__,
            arcs=len(before),
        )
        return before

    accumulator.replace_arcs(consolidated)
    logger.info(
        "consolidation_completed",
        arcs_before=len(before),
        arcs_after=len(consolidated),
        model=oracle.model,
    )
    return consolidated
