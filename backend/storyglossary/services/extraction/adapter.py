"""Extraction adapter: one chunk in, one validated ExtractionResult out.

Oracle failures, timeouts and malformed replies never leave this module;
they are logged, recorded in the raw capture log and turned into the
fallback result so a bad chunk cannot abort a run.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any

from storyglossary.config import settings
from storyglossary.core.exceptions import MalformedReplyError, OracleUnavailableError
from storyglossary.core.logging import get_logger
from storyglossary.prompts.glossary_extraction import build_glossary_extraction_prompt
from storyglossary.schemas.glossary import RawChunkRecord
from storyglossary.services.extraction.json_span import parse_first_json_object
from storyglossary.services.extraction.normalize import fallback_result, normalize_extraction

if TYPE_CHECKING:
    from storyglossary.llm.providers import GlossaryOracle
    from storyglossary.schemas.extraction import ExtractionResult
    from storyglossary.services.raw_capture import RawCaptureStore

logger = get_logger(__name__)


async def call_oracle(oracle: GlossaryOracle, prompt: str, timeout: float) -> str:
    """Run one oracle call under a deadline.

    Raises:
        OracleUnavailableError: The call failed or exceeded ``timeout``.
    """
    try:
        async with asyncio.timeout(timeout):
            return await oracle.generate(prompt)
    except TimeoutError as exc:
        raise OracleUnavailableError(
            f"Oracle call timed out after {timeout}s",
            context={"model": oracle.model},
        ) from exc
    except OracleUnavailableError:
        raise
    except Exception as exc:
        raise OracleUnavailableError(
            f"Oracle call failed: {type(exc).__name__}: {exc}",
            context={"model": oracle.model},
        ) from exc


def parse_reply(reply: str) -> dict[str, Any]:
    """Locate the JSON object in a reply and check it carries an ``arcs`` list.

    Raises:
        MalformedReplyError: No JSON object, or ``arcs`` missing / not a list.
    """
    parsed = parse_first_json_object(reply)
    if not isinstance(parsed.get("arcs"), list):
        raise MalformedReplyError("Oracle reply has no 'arcs' list", context={"keys": list(parsed)})
    return parsed


async def extract_chunk(
    chunk_text: str,
    chunk_index: int,
    target_language: str,
    *,
    oracle: GlossaryOracle,
    raw_store: RawCaptureStore,
    timeout: float | None = None,
) -> ExtractionResult:
    """Extract a glossary fragment from one chunk.

    Args:
        chunk_text: Chunk contents.
        chunk_index: 0-based chunk position.
        target_language: Language code for translations and descriptions.
        oracle: Text generation backend.
        raw_store: Log receiving exactly one RawChunkRecord per call.
        timeout: Per-call deadline in seconds (defaults to settings).

    Returns:
        ExtractionResult with at least one arc.
    """
    deadline = timeout if timeout is not None else settings.oracle_timeout_seconds
    prompt = build_glossary_extraction_prompt(chunk_text, target_language)

    raw_text = ""
    raw: dict[str, Any] | None = None
    error: str | None = None
    start = time.perf_counter()

    try:
        raw_text = await call_oracle(oracle, prompt, deadline)
        raw = parse_reply(raw_text)
    except OracleUnavailableError as exc:
        error = exc.detail
        logger.warning("chunk_oracle_unavailable", chunk=chunk_index, error=error)
    except MalformedReplyError as exc:
        error = exc.detail
        logger.warning(
            "chunk_reply_malformed",
            chunk=chunk_index,
            error=error,
            reply_chars=len(raw_text),
        )

    raw_store.append(
        RawChunkRecord(
            chunk_index=chunk_index,
            model=oracle.model,
            extracted_at=time.time(),
            raw=raw,
            raw_text=raw_text,
            parse_error=error,
        )
    )

    if raw is None:
        return fallback_result(chunk_index, error)

    result = normalize_extraction(raw, chunk_index)
    logger.info(
        "chunk_extracted",
        chunk=chunk_index,
        arcs=len(result.arcs),
        characters=sum(len(arc.characters) for arc in result.arcs),
        terms=sum(len(arc.terms) for arc in result.arcs),
        used_fallback=result.used_fallback,
        duration_ms=round((time.perf_counter() - start) * 1000),
    )
    return result
