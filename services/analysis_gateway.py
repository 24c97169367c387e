from __future__ import annotations

import asyncio
from typing import Optional, Protocol

from app.config import settings
from app.core.errors import ProviderError, describe_error
from app.core.logging import get_logger
from app.models.analysis import AnalysisResult, RemoteAnalysisPayload
from services.text_analysis_service import local_analysis

logger = get_logger()


class RemoteAnalyzer(Protocol):
    async def analyze(self, title: str, content: str) -> RemoteAnalysisPayload: ...


class AnalysisGateway:
    """
    Single entry point for article analysis.

    Uses the remote analyzer when one is configured and falls back to the
    local heuristics on any failure. `analyze()` never raises; the result's
    `used_remote` flag tells the caller which path produced it. A failed
    remote call is not retried.
    """

    def __init__(
        self,
        remote: Optional[RemoteAnalyzer] = None,
        *,
        timeout_s: Optional[float] = None,
        keyword_limit: Optional[int] = None,
    ) -> None:
        self.remote = remote
        self.timeout_s = timeout_s or settings.LLM_TIMEOUT_S
        self.keyword_limit = keyword_limit or settings.FALLBACK_KEYWORD_LIMIT

    @classmethod
    def from_settings(cls, *, system_prompt: Optional[str] = None) -> "AnalysisGateway":
        # Capability check only; no network probe.
        if not settings.LLM_API_KEY:
            logger.info("analysis_gateway_local_only", reason="no_llm_api_key")
            return cls(remote=None)
        from services.llm_analysis_service import LLMAnalysisService

        return cls(remote=LLMAnalysisService(system_prompt=system_prompt))

    @property
    def has_remote(self) -> bool:
        return self.remote is not None

    async def _try_remote(self, title: str, content: str) -> Optional[AnalysisResult]:
        if self.remote is None:
            return None
        try:
            payload = await asyncio.wait_for(
                self.remote.analyze(title, content),
                timeout=self.timeout_s,
            )
        except ProviderError as exc:
            logger.warning("analysis_remote_failed", title=title[:80], **describe_error(exc))
            return None
        except asyncio.TimeoutError:
            logger.warning("analysis_remote_timeout", title=title[:80], timeout_s=self.timeout_s)
            return None
        except Exception as exc:
            logger.warning("analysis_remote_unexpected_error", title=title[:80], **describe_error(exc))
            return None

        return AnalysisResult(
            summary=payload.summary,
            sentiment=payload.sentiment,
            keywords=list(payload.keywords),
            used_remote=True,
        )

    async def analyze(self, title: str, content: str) -> AnalysisResult:
        result = await self._try_remote(title, content)
        if result is not None:
            return result
        return local_analysis(title, content, keyword_limit=self.keyword_limit)
