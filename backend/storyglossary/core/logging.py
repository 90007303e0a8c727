"""Structured logging: structlog routed through the stdlib root logger.

Every entry is enriched from context variables set by the request
middleware and the pipeline driver (request id, project id, chunk index,
pipeline stage). ``json`` renders one object per line; any other format
renders console output for development.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from typing import Any

import structlog

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
project_id_var: ContextVar[str | None] = ContextVar("project_id", default=None)
chunk_index_var: ContextVar[int | None] = ContextVar("chunk_index", default=None)
pipeline_stage_var: ContextVar[str | None] = ContextVar("pipeline_stage", default=None)

_CONTEXT_FIELDS: tuple[tuple[str, ContextVar[Any]], ...] = (
    ("request_id", request_id_var),
    ("project_id", project_id_var),
    ("chunk_index", chunk_index_var),
    ("pipeline_stage", pipeline_stage_var),
)

_QUIET_LOGGERS = ("httpx", "httpcore", "openai", "anthropic", "google_genai", "uvicorn.access")


def add_context_vars(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    """Copy every set context variable into the entry; explicit keys win."""
    for key, var in _CONTEXT_FIELDS:
        value = var.get()
        if value is not None:
            event_dict.setdefault(key, value)
    return event_dict


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer(ensure_ascii=False)
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def setup_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Install one stdout handler on the root logger for structlog and stdlib loggers.

    Args:
        log_level: Minimum level name (DEBUG, INFO, WARNING, ...).
        log_format: "json" for production, anything else for console output.
    """
    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        add_context_vars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if log_format == "json":
        pre_chain.append(structlog.processors.dict_tracebacks)

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(log_format),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(log_level.upper())

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
