from __future__ import annotations

import json

import pytest

from app.core.errors import FeedUnavailable
from app.models.news_sources import NewsSource
from app.workers import news_enrichment_bot
from conftest import DummyFetcher, DummyGateway
from services.cache_store import InMemoryKeyValueStore
from services.enrichment_queue import EnrichmentQueue
from services.news_session_service import NewsSession

FEED_URL = "https://a.example.com/rss"


class DummyFeedSource:
    def __init__(self, entries=None) -> None:
        self.entries = entries

    async def fetch_feed(self, feed_url, *, source_name=None):
        if self.entries is None:
            raise FeedUnavailable("feed_fetch_failed", {"feed_url": feed_url})
        return self.entries


def _session(store, entries=None) -> NewsSession:
    queue = EnrichmentQueue(store, DummyGateway(), DummyFetcher(), batch_delay_ms=0)
    sources = [NewsSource(name="A", url=FEED_URL, feed_url=FEED_URL)]
    return NewsSession(store, queue, DummyFeedSource(entries), sources=sources)


@pytest.mark.asyncio
async def test_run_enrichment_prints_display_ordered_items(store, make_entry, capsys) -> None:
    entries = [make_entry("Older", hours_ago=3), make_entry("Newer", hours_ago=1)]

    exit_code = await news_enrichment_bot.run_enrichment(
        feed_url=FEED_URL,
        force_refresh=False,
        clear_cache=False,
        limit=None,
        session=_session(store, entries),
    )

    assert exit_code == 0
    lines = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
    assert [line["title"] for line in lines] == ["Newer", "Older"]
    assert all(line["is_summarized"] for line in lines)
    assert all("is_summarizing" not in line for line in lines)


@pytest.mark.asyncio
async def test_run_enrichment_respects_limit(store, make_entry, capsys) -> None:
    entries = [make_entry(f"Story {n}", hours_ago=n + 1) for n in range(3)]

    exit_code = await news_enrichment_bot.run_enrichment(
        feed_url=None,
        force_refresh=False,
        clear_cache=False,
        limit=1,
        session=_session(store, entries),
    )

    assert exit_code == 0
    assert len(capsys.readouterr().out.splitlines()) == 1


@pytest.mark.asyncio
async def test_run_enrichment_load_failure_returns_error_code(store, capsys) -> None:
    exit_code = await news_enrichment_bot.run_enrichment(
        feed_url=FEED_URL,
        force_refresh=False,
        clear_cache=False,
        limit=None,
        session=_session(store),
    )

    assert exit_code == 1
    assert capsys.readouterr().out == ""


def test_parse_args_requires_exactly_one_target() -> None:
    with pytest.raises(SystemExit):
        news_enrichment_bot.parse_args([])
    with pytest.raises(SystemExit):
        news_enrichment_bot.parse_args(["--feed-url", FEED_URL, "--all-sources"])

    args = news_enrichment_bot.parse_args(["--all-sources", "--force-refresh", "--limit", "5"])
    assert args.all_sources is True
    assert args.force_refresh is True
    assert args.limit == 5


@pytest.mark.asyncio
async def test_main_async_no_persist_uses_memory_cache(monkeypatch: pytest.MonkeyPatch) -> None:
    recorded = {}

    async def fake_run_enrichment(**kwargs):
        recorded.update(kwargs)
        return 0

    monkeypatch.setattr(news_enrichment_bot, "run_enrichment", fake_run_enrichment)

    exit_code = await news_enrichment_bot.main_async(["--feed-url", FEED_URL, "--no-persist"])

    assert exit_code == 0
    assert recorded["feed_url"] == FEED_URL
    assert isinstance(recorded["session"].store.cache, InMemoryKeyValueStore)


@pytest.mark.asyncio
async def test_run_enrichment_tags_items_with_category(store, make_entry, capsys) -> None:
    entries = [
        make_entry("Stock market slides", description="Investors sold shares."),
        make_entry("Local bakery opens", hours_ago=2, description="Fresh bread daily."),
    ]

    await news_enrichment_bot.run_enrichment(
        feed_url=FEED_URL,
        force_refresh=False,
        clear_cache=False,
        limit=None,
        session=_session(store, entries),
    )

    lines = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
    assert {line["title"]: line["category"] for line in lines} == {
        "Stock market slides": "business",
        "Local bakery opens": "world",
    }


@pytest.mark.asyncio
async def test_run_enrichment_script_mode_prints_briefing(store, make_entry, capsys) -> None:
    entries = [make_entry("Harbor expansion approved", description="The council approved the plan.")]

    exit_code = await news_enrichment_bot.run_enrichment(
        feed_url=FEED_URL,
        force_refresh=False,
        clear_cache=False,
        limit=None,
        script=True,
        session=_session(store, entries),
    )

    out = capsys.readouterr().out
    assert exit_code == 0
    assert out.startswith("Harbor expansion approved\n\nSource: Example News\n\n")
    assert out.rstrip().endswith("Key topics: approved, harbor, expansion")
