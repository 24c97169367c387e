"""
Background enrichment scheduler.

Per item: Pending -> Summarizing -> Done. Failures land in Done with a
sentinel summary and are never retried automatically.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Protocol, Sequence, Set

from app.config import settings
from app.core.errors import describe_error
from app.core.logging import get_logger
from app.core.run_context import set_generation
from app.models.news_item import NewsItem
from services.analysis_gateway import AnalysisGateway
from services.item_store import ItemStore
from services.text_analysis_service import calculate_reading_time

logger = get_logger()

FAILED_SUMMARY = "Could not summarize content."
NO_CONTENT_SUMMARY = "No content to summarize."


class ContentFetcher(Protocol):
    async def fetch_content(self, link: str) -> str: ...


class EnrichmentQueue:
    """
    Owns enrichment runs for one ItemStore.

    `enqueue()` moves accepted ids to Summarizing before returning, then
    processes them in the background in sequential batches of `batch_size`
    concurrent items with a fixed pause between batches. Each completed item
    is written back to the store (and persisted) on its own.
    """

    def __init__(
        self,
        store: ItemStore,
        gateway: AnalysisGateway,
        content_fetcher: ContentFetcher,
        *,
        batch_size: Optional[int] = None,
        batch_delay_ms: Optional[int] = None,
        item_timeout_s: Optional[float] = None,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.content_fetcher = content_fetcher
        self.batch_size = max(1, batch_size or settings.ENRICHMENT_BATCH_SIZE)
        delay_ms = settings.ENRICHMENT_BATCH_DELAY_MS if batch_delay_ms is None else batch_delay_ms
        self.batch_delay_s = max(0, delay_ms) / 1000
        self.item_timeout_s = item_timeout_s or settings.ENRICHMENT_ITEM_TIMEOUT_S
        self._runs: Set[asyncio.Task] = set()

    @property
    def active_runs(self) -> int:
        return len(self._runs)

    def enqueue(self, item_ids: Sequence[str]) -> Optional[asyncio.Task]:
        """
        Fire-and-forget. Must be called from inside a running event loop.
        Returns the run task, or None when nothing was still pending.
        """
        loop = asyncio.get_running_loop()
        accepted = self.store.mark_summarizing(item_ids)
        if not accepted:
            logger.debug("enrichment_nothing_to_do", requested=len(item_ids))
            return None

        generation = self.store.generation
        logger.info(
            "enrichment_enqueued",
            requested=len(item_ids),
            accepted=len(accepted),
            generation=generation,
        )
        task = loop.create_task(self._run(accepted, generation))
        self._runs.add(task)
        task.add_done_callback(self._runs.discard)
        return task

    async def drain(self) -> None:
        """Wait until every run started so far (and any started meanwhile) has finished."""
        while self._runs:
            await asyncio.gather(*list(self._runs), return_exceptions=True)

    async def _run(self, item_ids: List[str], generation: int) -> None:
        set_generation(generation)
        batches = [item_ids[i : i + self.batch_size] for i in range(0, len(item_ids), self.batch_size)]
        for idx, batch in enumerate(batches, start=1):
            if self.store.generation != generation:
                logger.info("enrichment_run_stale", remaining_batches=len(batches) - idx + 1)
                return
            logger.debug("enrichment_batch_started", batch=idx, total=len(batches), size=len(batch))
            await asyncio.gather(*(self._process_item(item_id, generation) for item_id in batch))
            if idx < len(batches):
                await asyncio.sleep(self.batch_delay_s)
        logger.info("enrichment_run_finished", items=len(item_ids))

    async def _process_item(self, item_id: str, generation: int) -> None:
        item = self.store.get(item_id)
        if item is None:
            return
        try:
            changes = await asyncio.wait_for(self._enrich(item), timeout=self.item_timeout_s)
        except asyncio.TimeoutError:
            logger.warning("enrichment_item_timeout", item_id=item_id, timeout_s=self.item_timeout_s)
            changes = {"summary": FAILED_SUMMARY, "is_summarized": True, "is_summarizing": False}
        except Exception as exc:
            logger.warning("enrichment_item_failed", item_id=item_id, **describe_error(exc))
            changes = {"summary": FAILED_SUMMARY, "is_summarized": True, "is_summarizing": False}
        self.store.apply_update(item_id, changes, generation=generation)

    async def _enrich(self, item: NewsItem) -> Dict[str, Any]:
        full_content = await self.content_fetcher.fetch_content(item.link)
        content = full_content or item.description
        if not content:
            return {"summary": NO_CONTENT_SUMMARY, "is_summarized": True, "is_summarizing": False}

        result = await self.gateway.analyze(item.title, content)
        changes: Dict[str, Any] = {
            "summary": result.summary,
            "is_summarized": True,
            "is_summarizing": False,
            "reading_time_seconds": (
                calculate_reading_time(full_content) if full_content else item.reading_time_seconds
            ),
        }
        if result.used_remote:
            changes["llm_sentiment"] = result.sentiment
            changes["llm_keywords"] = list(result.keywords)
        else:
            changes["sentiment"] = result.sentiment
            changes["keywords"] = list(result.keywords)
            changes["llm_sentiment"] = None
            changes["llm_keywords"] = None
        logger.info("enrichment_item_done", item_id=item.id, used_remote=result.used_remote)
        return changes
