"""
In-memory authoritative item set plus its persisted snapshots.

Every mutation is synchronous, so with a single event loop each one is atomic
relative to the enrichment tasks. Completing tasks hand in field changes which
are applied to the *latest* item for that id, never to a stale copy.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, ValidationError

from app.config import settings
from app.core.errors import PersistFailed, describe_error
from app.core.logging import get_logger
from app.models.news_item import FeedSnapshot, NewsItem, RawEntry, parse_published_at
from services.cache_store import KeyValueStore
from services.content_identity import make_item_id
from services.text_analysis_service import (
    analyze_sentiment,
    calculate_reading_time,
    extract_keywords,
)

logger = get_logger()

DEFAULT_FEED_KEY = "news-cache-default"

# Fields only the enrichment pipeline writes; carried over on forced refresh.
ENRICHMENT_FIELDS = (
    "sentiment",
    "keywords",
    "summary",
    "llm_sentiment",
    "llm_keywords",
    "is_summarized",
)


@dataclass(frozen=True)
class StoreStatus:
    summarizing_count: int
    last_updated: Optional[datetime]
    generation: int


@dataclass
class MergedSet:
    items: List[NewsItem]
    needs_enrichment: List[str] = field(default_factory=list)
    skipped_old: int = 0


StatusListener = Callable[[StoreStatus], None]


class _SnapshotEnvelope(BaseModel):
    items: List[Any]
    timestamp: datetime


def _published_ts(item: NewsItem) -> float:
    published = item.published_datetime()
    return published.timestamp() if published else float("-inf")


def sort_for_display(items: Iterable[NewsItem]) -> List[NewsItem]:
    """
    Summarized items first, then newest first within each group. Stable.
    Recompute on every change; background completion reorders the list.
    """
    return sorted(items, key=lambda item: (not item.is_summarized, -_published_ts(item)))


class ItemStore:
    def __init__(
        self,
        cache: KeyValueStore,
        *,
        feed_key: str = DEFAULT_FEED_KEY,
        retention_hours: Optional[int] = None,
        keyword_limit: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.cache = cache
        self.feed_key = feed_key
        self.retention = timedelta(hours=retention_hours or settings.RETENTION_HOURS)
        self.keyword_limit = keyword_limit or settings.BASELINE_KEYWORD_LIMIT
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._items: Dict[str, NewsItem] = {}
        self._feed_of: Dict[str, str] = {}
        self._listeners: List[StatusListener] = []
        self.generation = 0
        self.last_updated: Optional[datetime] = None

    # -------- Read side ------------------------------------------------------

    def get(self, item_id: str) -> Optional[NewsItem]:
        return self._items.get(item_id)

    def items(self, feed_key: Optional[str] = None) -> List[NewsItem]:
        if feed_key is None:
            return list(self._items.values())
        return [item for item_id, item in self._items.items() if self._feed_of.get(item_id) == feed_key]

    def display_items(self) -> List[NewsItem]:
        return sort_for_display(self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def feed_keys(self) -> List[str]:
        return list(dict.fromkeys(self._feed_of.values()))

    def status(self) -> StoreStatus:
        return StoreStatus(
            summarizing_count=sum(1 for item in self._items.values() if item.is_summarizing),
            last_updated=self.last_updated,
            generation=self.generation,
        )

    # -------- Subscriptions --------------------------------------------------

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _publish(self) -> None:
        status = self.status()
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception as exc:
                logger.warning("item_store_listener_failed", **describe_error(exc))

    # -------- Generations ----------------------------------------------------

    def begin_generation(self) -> int:
        """
        Start a new feed-load session. In-flight results from earlier
        generations will be discarded, so their transient flags are cleared.
        """
        self.generation += 1
        for item_id, item in list(self._items.items()):
            if item.is_summarizing:
                self._items[item_id] = item.model_copy(update={"is_summarizing": False})
        logger.info("item_store_generation_started", generation=self.generation)
        self._publish()
        return self.generation

    def retain_feeds(self, feed_keys: Sequence[str]) -> None:
        keep = set(feed_keys)
        for item_id in [i for i, key in self._feed_of.items() if key not in keep]:
            self._items.pop(item_id, None)
            self._feed_of.pop(item_id, None)
        self._publish()

    # -------- Retention ------------------------------------------------------

    def within_retention(self, published_at: str, now: Optional[datetime] = None) -> bool:
        published = parse_published_at(published_at)
        if published is None:
            return False
        return published >= (now or self._clock()) - self.retention

    def filter_recent(self, items: Iterable[NewsItem]) -> List[NewsItem]:
        now = self._clock()
        return [item for item in items if self.within_retention(item.published_at, now)]

    # -------- Merge ----------------------------------------------------------

    def _new_item(self, item_id: str, entry: RawEntry) -> NewsItem:
        combined = f"{entry.title} {entry.description}"
        return NewsItem(
            id=item_id,
            title=entry.title,
            description=entry.description,
            published_at=entry.published_at,
            link=entry.link,
            image_url=entry.image_url,
            source_name=entry.source_name,
            sentiment=analyze_sentiment(combined),
            keywords=extract_keywords(combined, self.keyword_limit),
            reading_time_seconds=calculate_reading_time(entry.description),
        )

    def merge(
        self,
        entries: Sequence[RawEntry],
        force_refresh: bool = False,
        *,
        feed_key: Optional[str] = None,
    ) -> MergedSet:
        """
        Merge fresh feed entries into the feed's item set and install the result.

        Known ids are kept as-is unless force_refresh; a forced refresh rewrites
        base fields but carries enrichment over. Ids still needing enrichment are
        new ids and known ids that were never summarized.
        """
        key = feed_key or self.feed_key
        now = self._clock()
        existing_by_id = {item.id: item for item in self.items(key)}
        merged: Dict[str, NewsItem] = {}
        needs: List[str] = []
        skipped_old = 0

        for entry in entries:
            if not self.within_retention(entry.published_at, now):
                skipped_old += 1
                continue
            item_id = make_item_id(entry.title, entry.published_at, entry.link)
            if item_id in merged:
                continue

            existing = existing_by_id.get(item_id)
            if existing is not None and not force_refresh:
                merged[item_id] = existing
                if existing.is_pending:
                    needs.append(item_id)
                continue

            fresh = self._new_item(item_id, entry)
            if existing is not None:
                carried = {name: getattr(existing, name) for name in ENRICHMENT_FIELDS}
                fresh = fresh.model_copy(update=carried)
            merged[item_id] = fresh
            if not fresh.is_summarized:
                needs.append(item_id)

        self.install(list(merged.values()), feed_key=key)
        logger.info(
            "item_store_merged",
            feed_key=key,
            items=len(merged),
            needs_enrichment=len(needs),
            skipped_old=skipped_old,
            force_refresh=force_refresh,
        )
        return MergedSet(items=list(merged.values()), needs_enrichment=needs, skipped_old=skipped_old)

    def install(self, items: Sequence[NewsItem], *, feed_key: Optional[str] = None) -> None:
        """Replace one feed's items with `items`, leaving other feeds alone."""
        key = feed_key or self.feed_key
        for item_id in [i for i, k in self._feed_of.items() if k == key]:
            self._items.pop(item_id, None)
            self._feed_of.pop(item_id, None)
        for item in items:
            self._items[item.id] = item
            self._feed_of[item.id] = key
        self._publish()

    # -------- Enrichment state -----------------------------------------------

    def mark_summarizing(self, item_ids: Sequence[str]) -> List[str]:
        """
        Move every still-pending id to Summarizing and publish at once.
        Returns the accepted ids; anything else is already taken or done.
        """
        accepted: List[str] = []
        for item_id in dict.fromkeys(item_ids):
            item = self._items.get(item_id)
            if item is None or not item.is_pending:
                continue
            self._items[item_id] = item.model_copy(update={"is_summarizing": True})
            accepted.append(item_id)
        if accepted:
            self._publish()
        return accepted

    def apply_update(self, item_id: str, changes: Dict[str, Any], *, generation: int) -> bool:
        """
        Read-modify-write one item by id, then persist its feed.
        Results from an older generation are dropped.
        """
        if generation != self.generation:
            logger.info(
                "item_store_stale_update_dropped",
                item_id=item_id,
                update_generation=generation,
                current_generation=self.generation,
            )
            return False
        current = self._items.get(item_id)
        if current is None:
            logger.info("item_store_update_missing_item", item_id=item_id)
            return False

        update = dict(changes)
        if current.is_summarized:
            # terminal once true
            update["is_summarized"] = True
        if update.get("is_summarized"):
            update["is_summarizing"] = False
            if update.get("summary", current.summary) is None:
                update["summary"] = current.description
        self._items[item_id] = current.model_copy(update=update)
        self._publish()
        self.persist(self._feed_of.get(item_id, self.feed_key))
        return True

    # -------- Persistence ----------------------------------------------------

    def persist(self, feed_key: Optional[str] = None) -> bool:
        """
        Write one feed's snapshot, without the transient is_summarizing flag.
        Returns False when the write failed; in-memory state is unaffected.
        """
        key = feed_key or self.feed_key
        snapshot = FeedSnapshot(items=self.items(key), timestamp=self._clock())
        payload = snapshot.model_dump_json(exclude={"items": {"__all__": {"is_summarizing"}}})
        try:
            self.cache.set(key, payload.encode("utf-8"))
        except PersistFailed as exc:
            logger.error("item_store_persist_failed", feed_key=key, **describe_error(exc))
            return False
        self.last_updated = snapshot.timestamp
        logger.debug("item_store_persisted", feed_key=key, items=len(snapshot.items))
        self._publish()
        return True

    def restore(self, feed_key: Optional[str] = None) -> Optional[FeedSnapshot]:
        """
        Read a feed's snapshot without installing it.
        Corrupt data counts as a miss and the entry is cleared; items that
        fail validation are dropped one by one.
        """
        key = feed_key or self.feed_key
        raw = self.cache.get(key)
        if raw is None:
            return None
        try:
            envelope = _SnapshotEnvelope.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as exc:
            logger.warning("item_store_cache_corrupt", feed_key=key, error=str(exc))
            self._delete_quietly(key)
            return None

        items: List[NewsItem] = []
        for raw_item in envelope.items:
            if not isinstance(raw_item, dict):
                continue
            try:
                items.append(NewsItem.model_validate({**raw_item, "is_summarizing": False}))
            except ValidationError:
                continue
        dropped = len(envelope.items) - len(items)
        if dropped:
            logger.warning("item_store_cache_invalid_items", feed_key=key, dropped=dropped)
        logger.info("item_store_restored", feed_key=key, items=len(items), timestamp=envelope.timestamp.isoformat())
        return FeedSnapshot(items=items, timestamp=envelope.timestamp)

    def _delete_quietly(self, key: str) -> None:
        try:
            self.cache.delete(key)
        except PersistFailed as exc:
            logger.error("item_store_cache_delete_failed", feed_key=key, **describe_error(exc))

    def clear(self, feed_key: Optional[str] = None) -> None:
        """Invalidate a feed's cache (all known feeds when None) and drop its items."""
        keys = [feed_key] if feed_key else (self.feed_keys() or [self.feed_key])
        for key in keys:
            self._delete_quietly(key)
            for item_id in [i for i, k in self._feed_of.items() if k == key]:
                self._items.pop(item_id, None)
                self._feed_of.pop(item_id, None)
        self.last_updated = None
        logger.info("item_store_cleared", feed_keys=keys)
        self._publish()
