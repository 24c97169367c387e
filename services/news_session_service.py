from __future__ import annotations

from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence

from app.core.errors import FeedUnavailable, describe_error
from app.core.logging import get_logger
from app.models.news_item import NewsItem, RawEntry
from app.models.news_sources import NewsSource, find_source_by_feed_url, get_all_news_sources
from services.analysis_gateway import AnalysisGateway
from services.cache_store import KeyValueStore, SQLiteKeyValueStore
from services.content_fetch_service import ContentFetchService
from services.enrichment_queue import ContentFetcher, EnrichmentQueue
from services.feed_service import FeedService
from services.item_store import ItemStore

logger = get_logger()

NO_RECENT_ITEMS_MESSAGE = "No news articles found for the last 24 hours."
ALL_SOURCES_FAILED_MESSAGE = "Failed to load news from some sources. Please try again."


class FeedSource(Protocol):
    async def fetch_feed(self, feed_url: str, *, source_name: Optional[str] = None) -> List[RawEntry]: ...


def cache_key_for(feed_url: str) -> str:
    return f"news-cache-{feed_url}"


@dataclass
class FeedLoadResult:
    items: List[NewsItem]
    from_cache: bool = False
    queued: List[str] = field(default_factory=list)
    error: Optional[str] = None


class NewsSession:
    """
    One feed-viewing session: owns the item store and the enrichment queue.

    Every load starts a new store generation, so enrichment results from an
    earlier load that land late are discarded instead of overwriting state.
    """

    def __init__(
        self,
        store: ItemStore,
        queue: EnrichmentQueue,
        feed_source: FeedSource,
        *,
        sources: Optional[Sequence[NewsSource]] = None,
    ) -> None:
        self.store = store
        self.queue = queue
        self.feed_source = feed_source
        self._sources = list(sources) if sources is not None else None
        self._exit_stack: Optional[AsyncExitStack] = None

    @classmethod
    def create(
        cls,
        *,
        cache: Optional[KeyValueStore] = None,
        gateway: Optional[AnalysisGateway] = None,
        feed_source: Optional[FeedSource] = None,
        content_fetcher: Optional[ContentFetcher] = None,
        sources: Optional[Sequence[NewsSource]] = None,
    ) -> "NewsSession":
        """
        Wire a session from settings. Default HTTP collaborators are opened
        and closed by `async with session:`.
        """
        store = ItemStore(cache if cache is not None else SQLiteKeyValueStore())
        queue = EnrichmentQueue(
            store,
            gateway or AnalysisGateway.from_settings(),
            content_fetcher or ContentFetchService(),
        )
        return cls(store, queue, feed_source or FeedService(), sources=sources)

    async def __aenter__(self) -> "NewsSession":
        self._exit_stack = AsyncExitStack()
        for collaborator in (self.feed_source, self.queue.content_fetcher):
            if hasattr(collaborator, "__aenter__"):
                await self._exit_stack.enter_async_context(collaborator)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.queue.drain()
        if self._exit_stack is not None:
            await self._exit_stack.aclose()
            self._exit_stack = None

    @property
    def sources(self) -> List[NewsSource]:
        if self._sources is None:
            self._sources = get_all_news_sources()
        return self._sources

    def display_items(self) -> List[NewsItem]:
        return self.store.display_items()

    async def wait_idle(self) -> None:
        await self.queue.drain()

    def _install_from_cache(self, feed_key: str) -> Optional[List[NewsItem]]:
        snapshot = self.store.restore(feed_key)
        if snapshot is None:
            return None
        items = self.store.filter_recent(snapshot.items)
        self.store.install(items, feed_key=feed_key)
        return items

    async def _fetch_and_merge(
        self,
        feed_url: str,
        *,
        force_refresh: bool,
        source_name: Optional[str],
    ) -> List[str]:
        """Returns ids needing enrichment. Raises FeedUnavailable."""
        feed_key = cache_key_for(feed_url)
        if force_refresh and not self.store.items(feed_key):
            # Cold forced refresh: seed from the snapshot so enrichment carries over.
            self._install_from_cache(feed_key)

        entries = await self.feed_source.fetch_feed(feed_url, source_name=source_name)
        merged = self.store.merge(entries, force_refresh, feed_key=feed_key)
        if merged.items:
            self.store.persist(feed_key)
        return merged.needs_enrichment

    async def load_feed(self, feed_url: str, *, force_refresh: bool = False) -> FeedLoadResult:
        """
        Show one feed: cache first unless forced, otherwise fetch and merge.
        Enrichment for anything not yet summarized starts in the background.
        """
        feed_key = cache_key_for(feed_url)
        self.store.begin_generation()
        self.store.retain_feeds([feed_key])

        if not force_refresh:
            cached = self._install_from_cache(feed_key)
            if cached is not None:
                pending = [item.id for item in cached if not item.is_summarized]
                self.queue.enqueue(pending)
                logger.info("news_session_cache_hit", feed_url=feed_url, items=len(cached), pending=len(pending))
                return FeedLoadResult(items=self.display_items(), from_cache=True, queued=pending)

        source = find_source_by_feed_url(feed_url)
        try:
            needs = await self._fetch_and_merge(
                feed_url,
                force_refresh=force_refresh,
                source_name=source.name if source else "Unknown Source",
            )
        except FeedUnavailable as exc:
            logger.warning("news_session_feed_unavailable", feed_url=feed_url, **describe_error(exc))
            self.store.install([], feed_key=feed_key)
            return FeedLoadResult(items=[], error=f"Failed to load news: {exc.message}")

        self.queue.enqueue(needs)
        items = self.display_items()
        return FeedLoadResult(
            items=items,
            queued=needs,
            error=None if items else NO_RECENT_ITEMS_MESSAGE,
        )

    async def load_all_feeds(self, *, force_refresh: bool = False) -> FeedLoadResult:
        """
        Combine every configured source. Each source uses its own cache entry;
        a failing source is skipped. Errors are reported only when nothing loaded.
        """
        self.store.begin_generation()
        self.store.retain_feeds([cache_key_for(source.feed_url) for source in self.sources])

        pending: List[str] = []
        any_from_cache = False
        has_errors = False
        for source in self.sources:
            feed_key = cache_key_for(source.feed_url)
            if not force_refresh:
                cached = self._install_from_cache(feed_key)
                if cached:
                    any_from_cache = True
                    pending.extend(item.id for item in cached if not item.is_summarized)
                    continue
            try:
                pending.extend(
                    await self._fetch_and_merge(
                        source.feed_url,
                        force_refresh=force_refresh,
                        source_name=source.name,
                    )
                )
            except FeedUnavailable as exc:
                has_errors = True
                logger.warning("news_session_source_failed", source=source.name, **describe_error(exc))

        self.queue.enqueue(pending)
        items = self.display_items()
        error = None
        if not items:
            error = ALL_SOURCES_FAILED_MESSAGE if has_errors else NO_RECENT_ITEMS_MESSAGE
        return FeedLoadResult(items=items, from_cache=any_from_cache, queued=pending, error=error)

    async def refresh(self, feed_url: Optional[str] = None) -> FeedLoadResult:
        if feed_url is None:
            return await self.load_all_feeds(force_refresh=True)
        return await self.load_feed(feed_url, force_refresh=True)

    async def clear_cache(self, feed_url: Optional[str] = None) -> FeedLoadResult:
        """Drop persisted and in-memory items, then load fresh."""
        if feed_url is None:
            for source in self.sources:
                self.store.clear(cache_key_for(source.feed_url))
        else:
            self.store.clear(cache_key_for(feed_url))
        return await self.refresh(feed_url)
