# app/core/errors.py
from __future__ import annotations

from typing import Any, Dict, Optional


class NewsPipelineError(Exception):
    """Base exception for the feed enrichment pipeline."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class FeedUnavailable(NewsPipelineError):
    """
    The feed could not be fetched or parsed.
    Surfaced to the caller; no items are shown for that feed.
    """


class ContentFetchFailed(NewsPipelineError):
    """Article page could not be fetched. Never escapes the content fetcher."""


class ProviderError(NewsPipelineError):
    """
    Remote analyzer failure: timeout, non-2xx, empty or malformed payload.
    The analysis gateway treats all of these as "remote unavailable".
    """


class PersistFailed(NewsPipelineError):
    """Write to the persisted cache failed. Logged; in-memory state stays authoritative."""


def describe_error(exc: BaseException) -> Dict[str, Any]:
    """Flatten an exception into log-friendly fields."""
    if isinstance(exc, NewsPipelineError):
        return {
            "error_type": exc.__class__.__name__,
            "error": exc.message,
            "details": exc.details,
        }
    return {"error_type": exc.__class__.__name__, "error": str(exc)}
