from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Dict, List, Optional

from app.core.logging import configure_logging, get_logger
from app.core.run_context import with_run_id
from app.models.news_item import NewsItem
from services.cache_store import InMemoryKeyValueStore, SQLiteKeyValueStore
from services.enrichment_queue import FAILED_SUMMARY
from services.item_store import StoreStatus
from services.news_session_service import NewsSession
from services.text_analysis_service import (
    categorize_news_item,
    generate_news_script,
    group_similar_news,
)

configure_logging(service_name="worker")
logger = get_logger().bind(worker="news_enrichment_bot")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="NewsEnrichmentBot: load a feed and print it once background enrichment settles."
    )
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--feed-url", type=str, help="Single RSS/Atom feed to load.")
    target.add_argument(
        "--all-sources",
        action="store_true",
        help="Combine every source from configs/news_sources.yml.",
    )
    parser.add_argument("--force-refresh", action="store_true", help="Bypass the cache and refetch.")
    parser.add_argument("--clear-cache", action="store_true", help="Invalidate the cache before loading.")
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum number of items to print (default: all).",
    )
    parser.add_argument(
        "--script",
        action="store_true",
        help="Print a plain-text briefing (similar stories grouped) instead of JSON lines.",
    )
    parser.add_argument("--cache-db", type=str, default=None, help="SQLite cache path override.")
    parser.add_argument(
        "--no-persist",
        action="store_true",
        help="Keep the cache in memory for this run only.",
    )
    return parser.parse_args(argv)


def _log_status(status: StoreStatus) -> None:
    logger.debug(
        "news_enrichment_status",
        summarizing=status.summarizing_count,
        generation=status.generation,
        last_updated=status.last_updated.isoformat() if status.last_updated else None,
    )


def render_item(item: NewsItem) -> str:
    """One JSON line per item, tagged with its display category."""
    payload = item.model_dump(mode="json", exclude={"is_summarizing"})
    payload["category"] = categorize_news_item(item.title, item.description)
    return json.dumps(payload, ensure_ascii=False)


def render_briefing(items: List[NewsItem]) -> str:
    sections = [generate_news_script(entry).strip() for entry in group_similar_news(items)]
    return "\n\n---\n\n".join(sections)


async def run_enrichment(
    *,
    feed_url: Optional[str],
    force_refresh: bool,
    clear_cache: bool,
    limit: Optional[int],
    script: bool = False,
    session: Optional[NewsSession] = None,
) -> int:
    """Load, wait for enrichment to settle, print display-ordered items."""
    session = session or NewsSession.create()
    unsubscribe = session.store.subscribe(_log_status)
    counters: Dict[str, int] = {"items": 0, "queued": 0, "summarized": 0, "remote": 0, "failed": 0}

    try:
        async with session:
            if clear_cache:
                result = await session.clear_cache(feed_url)
            elif feed_url:
                result = await session.load_feed(feed_url, force_refresh=force_refresh)
            else:
                result = await session.load_all_feeds(force_refresh=force_refresh)

            if result.error:
                logger.error("news_enrichment_load_failed", error=result.error, feed_url=feed_url)
                return 1

            counters["queued"] = len(result.queued)
            await session.wait_idle()

            items = session.display_items()
            if limit is not None:
                items = items[: max(0, limit)]
            for item in items:
                counters["items"] += 1
                if item.is_summarized:
                    counters["summarized"] += 1
                if item.llm_sentiment is not None:
                    counters["remote"] += 1
                if item.summary == FAILED_SUMMARY:
                    counters["failed"] += 1

            if script:
                sys.stdout.write(render_briefing(items) + "\n")
            else:
                for item in items:
                    sys.stdout.write(render_item(item) + "\n")
            sys.stdout.flush()

        logger.info("news_enrichment_bot_finished", **counters)
        return 0
    except Exception as exc:
        logger.error("news_enrichment_bot_failed", error=str(exc), **counters)
        return 1
    finally:
        unsubscribe()


async def main_async(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    cache = InMemoryKeyValueStore() if args.no_persist else SQLiteKeyValueStore(args.cache_db)
    with with_run_id():
        return await run_enrichment(
            feed_url=args.feed_url,
            force_refresh=args.force_refresh,
            clear_cache=args.clear_cache,
            limit=args.limit,
            script=args.script,
            session=NewsSession.create(cache=cache),
        )


def main() -> None:
    exit_code = asyncio.run(main_async())
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
