from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

Sentiment = Literal["positive", "negative", "neutral"]

MIN_REMOTE_SUMMARY_CHARS = 50
MAX_REMOTE_KEYWORDS = 5


class RemoteAnalysisPayload(BaseModel):
    """
    Structured response expected from the remote analyzer.
    Anything that does not validate is a provider failure.
    """

    summary: str = Field(..., min_length=MIN_REMOTE_SUMMARY_CHARS, description="2-3 sentence summary.")
    sentiment: Sentiment = Field(..., description="positive, negative or neutral.")
    keywords: List[str] = Field(..., description="3-5 key terms from the article.")

    @field_validator("summary", mode="before")
    @classmethod
    def _trim_summary(cls, value: Optional[str]) -> str:
        if not isinstance(value, str):
            raise ValueError("summary must be a string")
        return value.strip()

    @field_validator("sentiment", mode="before")
    @classmethod
    def _normalize_sentiment(cls, value: Optional[str]) -> Sentiment:
        if not isinstance(value, str):
            raise ValueError("sentiment must be a string")
        normalized = value.strip().lower()
        if normalized in ("positive", "negative"):
            return normalized  # type: ignore[return-value]
        return "neutral"

    @field_validator("keywords", mode="before")
    @classmethod
    def _normalize_keywords(cls, value: object) -> List[str]:
        if not isinstance(value, list):
            raise ValueError("keywords must be a list")
        cleaned = [str(v).strip() for v in value if str(v).strip()]
        return cleaned[:MAX_REMOTE_KEYWORDS]


class AnalysisResult(BaseModel):
    """Best-effort analysis of one article. `used_remote` tells callers which path produced it."""

    summary: str
    sentiment: Sentiment
    keywords: List[str] = Field(default_factory=list)
    used_remote: bool = False
