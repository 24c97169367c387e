from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from dateutil import parser as date_parser
from pydantic import BaseModel, Field, model_validator

from app.models.analysis import Sentiment


def parse_published_at(value: str) -> Optional[datetime]:
    """
    Parse a feed date string (RFC 822 or ISO 8601) into an aware UTC datetime.
    Naive values are taken as UTC. Returns None when unparseable.
    """
    if not value:
        return None
    try:
        parsed = date_parser.parse(value)
    except (ValueError, TypeError, OverflowError):
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class RawEntry(BaseModel):
    """
    One entry as produced by the feed adapter, before identity and analysis.
    `published_at` is kept verbatim: it is part of the item identity.
    """

    title: str
    description: str = ""
    published_at: str
    link: str
    image_url: Optional[str] = None
    source_name: Optional[str] = None


class NewsItem(BaseModel):
    """
    One ingested content entry plus its enrichment state.
    """

    id: str
    title: str
    description: str = ""
    published_at: str
    link: str
    image_url: Optional[str] = None
    source_name: Optional[str] = None

    # Baseline analysis; may hold a local-fallback result after enrichment.
    sentiment: Sentiment = "neutral"
    keywords: List[str] = Field(default_factory=list)
    reading_time_seconds: int = Field(0, ge=0)

    # Enrichment. None means "not produced yet".
    summary: Optional[str] = None
    llm_sentiment: Optional[Sentiment] = None
    llm_keywords: Optional[List[str]] = None

    is_summarized: bool = False
    # Transient, process-lifetime only; stripped before persisting.
    is_summarizing: bool = False

    @model_validator(mode="after")
    def _check_status(self) -> "NewsItem":
        if self.is_summarized and self.summary is None:
            raise ValueError("is_summarized requires a summary")
        if self.is_summarizing and self.is_summarized:
            raise ValueError("a summarized item cannot be summarizing")
        return self

    @property
    def is_pending(self) -> bool:
        return not self.is_summarized and not self.is_summarizing

    def published_datetime(self) -> Optional[datetime]:
        return parse_published_at(self.published_at)


class FeedSnapshot(BaseModel):
    """Persisted cache payload for one feed."""

    items: List[NewsItem]
    timestamp: datetime
