from __future__ import annotations

import re
from typing import Optional, Sequence

import httpx
from bs4 import BeautifulSoup

from app.config import settings
from app.core.errors import ContentFetchFailed, describe_error
from app.core.logging import get_logger

logger = get_logger()

ARTICLE_SELECTORS: Sequence[str] = (
    "article", ".article", ".post-content", ".entry-content",
    ".content", "#content", "main", ".main", ".story-body", ".article-body",
    "[data-component='text-block']", ".zn-body__paragraph", ".pf-content",
)

_WHITESPACE_RE = re.compile(r"\s+")


def extract_article_text(html: str) -> str:
    """
    Pull readable text out of an article page.

    Tries the common article containers first, then all paragraphs, then the body.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    content = ""

    for selector in ARTICLE_SELECTORS:
        elements = soup.select(selector)
        if not elements:
            continue
        content = " ".join(el.get_text(" ") for el in elements if el.get_text(strip=True))
        if content.strip():
            break

    if not content.strip():
        content = " ".join(p.get_text(" ") for p in soup.find_all("p") if p.get_text(strip=True))

    if not content.strip() and soup.body is not None:
        content = soup.body.get_text(" ")

    return _WHITESPACE_RE.sub(" ", content).strip()


class ContentFetchService:
    """
    Best-effort article body fetcher.

    `fetch_content()` returns "" on any failure and never raises past this boundary.
    """

    def __init__(
        self,
        *,
        user_agent: Optional[str] = None,
        timeout_s: Optional[float] = None,
    ) -> None:
        self.user_agent = user_agent or settings.USER_AGENT
        self.timeout_s = timeout_s or settings.CONTENT_FETCH_TIMEOUT_S
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "ContentFetchService":
        self._client = httpx.AsyncClient(
            timeout=self.timeout_s,
            headers={"User-Agent": self.user_agent},
            follow_redirects=True,
        )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._client:
            await self._client.aclose()

    async def _fetch_html(self, link: str) -> str:
        if self._client is None:
            raise RuntimeError("ContentFetchService client not initialized")
        if not link or not link.startswith(("http://", "https://")):
            raise ContentFetchFailed("unsupported_link", {"link": link})
        try:
            response = await self._client.get(link)
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise ContentFetchFailed("http_error", {"link": link, "error": str(exc)}) from exc
        return response.text

    async def fetch_content(self, link: str) -> str:
        try:
            html = await self._fetch_html(link)
        except ContentFetchFailed as exc:
            logger.debug("content_fetch_failed", **describe_error(exc))
            return ""
        text = extract_article_text(html)
        logger.debug("content_fetch_success", link=link, length=len(text))
        return text
