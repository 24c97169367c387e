from __future__ import annotations

from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from typing import Callable, Dict, List, Optional

import pytest

from app.models.analysis import AnalysisResult
from app.models.news_item import NewsItem, RawEntry
from services.cache_store import InMemoryKeyValueStore
from services.content_identity import make_item_id
from services.item_store import ItemStore

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


def rfc822(hours_ago: float) -> str:
    return format_datetime(NOW - timedelta(hours=hours_ago), usegmt=True)


class DummyGateway:
    """Analysis gateway stand-in: records calls, returns canned results."""

    def __init__(self, *, used_remote: bool = True, summary: str = "A remote summary of the article.") -> None:
        self.used_remote = used_remote
        self.summary = summary
        self.calls: List[str] = []

    async def analyze(self, title: str, content: str) -> AnalysisResult:
        self.calls.append(title)
        return AnalysisResult(
            summary=self.summary,
            sentiment="positive",
            keywords=["remote", "keywords"],
            used_remote=self.used_remote,
        )


class DummyFetcher:
    def __init__(self, pages: Optional[Dict[str, str]] = None) -> None:
        self.pages = pages or {}
        self.calls: List[str] = []

    async def fetch_content(self, link: str) -> str:
        self.calls.append(link)
        return self.pages.get(link, "")


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: NOW


@pytest.fixture
def cache() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def store(cache: InMemoryKeyValueStore, clock: Callable[[], datetime]) -> ItemStore:
    return ItemStore(cache, clock=clock)


@pytest.fixture
def make_entry() -> Callable[..., RawEntry]:
    def _make(
        title: str = "Markets rally",
        *,
        hours_ago: float = 1,
        link: Optional[str] = None,
        description: str = "Stocks closed higher on Friday after a strong session.",
    ) -> RawEntry:
        return RawEntry(
            title=title,
            description=description,
            published_at=rfc822(hours_ago),
            link=link or f"https://example.com/{title.lower().replace(' ', '-')}",
            source_name="Example News",
        )

    return _make


@pytest.fixture
def make_item() -> Callable[..., NewsItem]:
    def _make(
        title: str = "Markets rally",
        *,
        hours_ago: float = 1,
        summary: Optional[str] = None,
        is_summarized: bool = False,
        is_summarizing: bool = False,
    ) -> NewsItem:
        published_at = rfc822(hours_ago)
        link = f"https://example.com/{title.lower().replace(' ', '-')}"
        return NewsItem(
            id=make_item_id(title, published_at, link),
            title=title,
            description="Stocks closed higher on Friday after a strong session.",
            published_at=published_at,
            link=link,
            summary=summary,
            is_summarized=is_summarized,
            is_summarizing=is_summarizing,
        )

    return _make
