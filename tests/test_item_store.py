from __future__ import annotations

import json
from typing import List

import pytest

from app.core.errors import PersistFailed
from services.cache_store import InMemoryKeyValueStore
from services.content_identity import make_item_id
from services.item_store import DEFAULT_FEED_KEY, ItemStore, StoreStatus, sort_for_display


def _id(entry) -> str:
    return make_item_id(entry.title, entry.published_at, entry.link)


def test_merge_new_entries_queues_all_and_computes_baseline(store, make_entry) -> None:
    entries = [make_entry("Great win for team"), make_entry("Storm damage", hours_ago=2)]

    merged = store.merge(entries)

    assert merged.needs_enrichment == [_id(e) for e in entries]
    first = store.get(_id(entries[0]))
    assert first.sentiment == "positive"
    assert first.summary is None
    assert first.is_summarized is False
    assert first.reading_time_seconds > 0
    assert len(first.keywords) <= 3


def test_merge_skips_items_outside_retention_and_duplicates(store, make_entry) -> None:
    fresh = make_entry("Fresh story")
    entries = [fresh, fresh, make_entry("Old story", hours_ago=30)]

    merged = store.merge(entries)

    assert [item.id for item in merged.items] == [_id(fresh)]
    assert merged.skipped_old == 1


def test_merge_excludes_unparseable_dates(store, make_entry) -> None:
    entry = make_entry("Dateless").model_copy(update={"published_at": "not a date"})

    merged = store.merge([entry])

    assert merged.items == []
    assert merged.skipped_old == 1


@pytest.mark.parametrize("force_refresh", [False, True])
def test_merge_preserves_existing_summary(store, make_entry, force_refresh: bool) -> None:
    entry = make_entry("Council approves budget")
    store.merge([entry])
    item_id = _id(entry)
    store.apply_update(
        item_id,
        {"summary": "S", "is_summarized": True, "llm_sentiment": "neutral", "llm_keywords": ["budget"]},
        generation=store.generation,
    )

    merged = store.merge([entry], force_refresh=force_refresh)

    item = store.get(item_id)
    assert item.summary == "S"
    assert item.is_summarized is True
    assert item.llm_keywords == ["budget"]
    assert merged.needs_enrichment == []


def test_force_refresh_rewrites_base_fields(store, make_entry) -> None:
    entry = make_entry("Council approves budget")
    store.merge([entry])
    changed = entry.model_copy(update={"description": "Updated description text.", "image_url": "https://img/1.jpg"})

    store.merge([changed], force_refresh=True)

    item = store.get(_id(entry))
    assert item.description == "Updated description text."
    assert item.image_url == "https://img/1.jpg"


def test_merge_requeues_known_pending_items_but_not_in_flight(store, make_entry) -> None:
    pending, busy = make_entry("Pending story"), make_entry("Busy story")
    store.merge([pending, busy])
    store.mark_summarizing([_id(busy)])

    merged = store.merge([pending, busy])

    assert merged.needs_enrichment == [_id(pending)]


def test_sort_for_display_puts_summarized_first_then_newest(make_item) -> None:
    old_done = make_item("Old done", hours_ago=5, summary="s", is_summarized=True)
    new_done = make_item("New done", hours_ago=1, summary="s", is_summarized=True)
    newest_pending = make_item("Newest pending", hours_ago=0.5)
    old_pending = make_item("Old pending", hours_ago=6)

    ordered = sort_for_display([old_pending, old_done, newest_pending, new_done])

    assert [item.title for item in ordered] == ["New done", "Old done", "Newest pending", "Old pending"]


def test_mark_summarizing_accepts_only_pending_ids(store, make_entry) -> None:
    a, b = make_entry("A story"), make_entry("B story")
    store.merge([a, b])
    store.apply_update(_id(b), {"summary": "done", "is_summarized": True}, generation=store.generation)

    accepted = store.mark_summarizing([_id(a), _id(a), _id(b), "missing"])

    assert accepted == [_id(a)]
    assert store.get(_id(a)).is_summarizing is True
    assert store.mark_summarizing([_id(a)]) == []
    assert store.status().summarizing_count == 1


def test_apply_update_is_terminal_and_clears_summarizing(store, make_entry) -> None:
    entry = make_entry("A story")
    store.merge([entry])
    item_id = _id(entry)
    store.mark_summarizing([item_id])

    assert store.apply_update(item_id, {"summary": "first", "is_summarized": True}, generation=store.generation)
    store.apply_update(item_id, {"summary": "second", "is_summarized": False}, generation=store.generation)

    item = store.get(item_id)
    assert item.is_summarized is True
    assert item.is_summarizing is False
    assert item.summary == "second"


def test_apply_update_from_stale_generation_is_dropped(store, make_entry) -> None:
    entry = make_entry("A story")
    store.merge([entry])
    item_id = _id(entry)
    store.mark_summarizing([item_id])
    old_generation = store.generation

    store.begin_generation()
    applied = store.apply_update(item_id, {"summary": "late", "is_summarized": True}, generation=old_generation)

    assert applied is False
    item = store.get(item_id)
    assert item.summary is None
    assert item.is_summarizing is False


def test_apply_update_for_missing_item_is_ignored(store) -> None:
    assert store.apply_update("nope", {"summary": "x", "is_summarized": True}, generation=store.generation) is False


def test_persist_strips_summarizing_and_restore_round_trips(store, cache, make_entry) -> None:
    entry = make_entry("A story")
    store.merge([entry])
    store.mark_summarizing([_id(entry)])

    assert store.persist() is True

    raw_items = json.loads(cache.get(DEFAULT_FEED_KEY))["items"]
    assert "is_summarizing" not in raw_items[0]
    snapshot = store.restore()
    assert [item.id for item in snapshot.items] == [_id(entry)]
    assert snapshot.items[0].is_summarizing is False
    assert store.last_updated is not None


def test_restore_treats_corrupt_cache_as_miss_and_clears_it(store, cache) -> None:
    cache.set(DEFAULT_FEED_KEY, b"{not json")

    assert store.restore() is None
    assert cache.get(DEFAULT_FEED_KEY) is None


def test_restore_drops_invalid_items_individually(store, cache, make_item) -> None:
    good = make_item("Good").model_dump(mode="json")
    bad = {**make_item("Bad").model_dump(mode="json"), "is_summarized": True, "summary": None}
    cache.set(
        DEFAULT_FEED_KEY,
        json.dumps({"items": [good, bad, "junk"], "timestamp": "2026-10-18T11:00:00Z"}).encode(),
    )

    snapshot = store.restore()

    assert [item.title for item in snapshot.items] == ["Good"]


class FailingStore(InMemoryKeyValueStore):
    def set(self, key: str, value: bytes) -> None:
        raise PersistFailed("disk_full", {"key": key})


def test_persist_failure_is_logged_and_memory_stays_authoritative(clock, make_entry) -> None:
    store = ItemStore(FailingStore(), clock=clock)
    entry = make_entry("A story")
    store.merge([entry])

    assert store.persist() is False
    assert store.apply_update(_id(entry), {"summary": "s", "is_summarized": True}, generation=store.generation)
    assert store.get(_id(entry)).summary == "s"
    assert store.last_updated is None


def test_filter_recent_respects_retention(store, make_item) -> None:
    recent = make_item("Recent", hours_ago=23)
    stale = make_item("Stale", hours_ago=25)

    assert store.filter_recent([recent, stale]) == [recent]


def test_feeds_are_installed_and_cleared_independently(store, cache, make_entry) -> None:
    a, b = make_entry("Feed A story"), make_entry("Feed B story")
    store.merge([a], feed_key="feed-a")
    store.merge([b], feed_key="feed-b")
    store.persist("feed-a")
    store.persist("feed-b")

    store.clear("feed-a")

    assert _id(a) not in store
    assert _id(b) in store
    assert cache.get("feed-a") is None
    assert cache.get("feed-b") is not None


def test_retain_feeds_drops_other_feeds(store, make_entry) -> None:
    store.merge([make_entry("Feed A story")], feed_key="feed-a")
    store.merge([make_entry("Feed B story")], feed_key="feed-b")

    store.retain_feeds(["feed-b"])

    assert store.feed_keys() == ["feed-b"]


def test_listeners_receive_status_and_can_unsubscribe(store, make_entry) -> None:
    seen: List[StoreStatus] = []
    unsubscribe = store.subscribe(seen.append)
    entry = make_entry("A story")

    store.merge([entry])
    store.mark_summarizing([_id(entry)])
    unsubscribe()
    store.begin_generation()

    assert seen[-1].summarizing_count == 1
    assert all(status.generation == 0 for status in seen)


def test_failing_listener_does_not_break_mutations(store, make_entry) -> None:
    def broken(_status: StoreStatus) -> None:
        raise ValueError("listener bug")

    store.subscribe(broken)
    store.merge([make_entry("A story")])

    assert len(store) == 1
