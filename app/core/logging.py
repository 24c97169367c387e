# app/core/logging.py
from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import structlog

from app.core.run_context import get_generation, get_run_id

EventDict = Dict[str, Any]
Processor = Callable[[Any, str, EventDict], EventDict]

# Key-based redaction; the LLM key travels through settings and must never be logged.
SECRET_KEYS = frozenset({
    "api_key", "apikey", "llm_api_key", "authorization", "auth",
    "token", "access_token", "password", "secret",
})
REDACTED = "***redacted***"


def _stamp(_: Any, method_name: str, event_dict: EventDict) -> EventDict:
    # ISO 8601 UTC with millis, plus lowercase level from the log method
    event_dict.setdefault("ts", datetime.now(timezone.utc).isoformat(timespec="milliseconds"))
    event_dict["level"] = str(event_dict.get("level") or method_name or "info").lower()
    return event_dict


def _context(service_name: str) -> Processor:
    def _inner(_: Any, __: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", service_name)
        run_id = get_run_id()
        if run_id:
            event_dict.setdefault("run_id", run_id)
        generation = get_generation()
        if generation is not None:
            event_dict.setdefault("generation", generation)
        return event_dict

    return _inner


def _redact(_: Any, __: str, event_dict: EventDict) -> EventDict:
    for key in [k for k in event_dict if str(k).lower() in SECRET_KEYS]:
        event_dict[key] = REDACTED
    details = event_dict.get("details")
    if isinstance(details, dict):
        event_dict["details"] = {
            k: (REDACTED if str(k).lower() in SECRET_KEYS else v) for k, v in details.items()
        }
    return event_dict


_logger: Optional[structlog.BoundLogger] = None


def configure_logging(service_name: str = "pipeline", *, level: int = logging.INFO) -> None:
    """
    Set up the process-wide structlog pipeline: one JSON object per line on
    stderr, so stdout stays free for worker output.
    """
    global _logger

    logging.basicConfig(level=level, format="%(message)s", stream=sys.stderr, force=True)

    processors: List[Processor] = [
        _stamp,
        _context(service_name),
        _redact,
        structlog.processors.EventRenamer("event"),
        structlog.processors.dict_tracebacks,
        structlog.processors.JSONRenderer(),
    ]
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
    _logger = structlog.get_logger()


def get_logger() -> structlog.BoundLogger:
    if _logger is None:
        configure_logging()
    return _logger


logger = get_logger()
