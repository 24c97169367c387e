from __future__ import annotations

import re
from datetime import datetime, timezone
from email.utils import format_datetime
from html import unescape
from typing import Any, Dict, List, Optional

import feedparser
import httpx

from app.config import settings
from app.core.errors import FeedUnavailable
from app.core.logging import get_logger
from app.models.news_item import RawEntry

logger = get_logger()

MIN_FEED_BYTES = 100
FEED_ACCEPT = "application/rss+xml, application/xml, text/xml, */*"

_HTML_TAG_RE = re.compile(r"<[^>]+>")
_WHITESPACE_RE = re.compile(r"\s+")
_IMG_SRC_RE = re.compile(r'<img[^>]+src="([^"]+)"')


def _strip_html(value: str) -> str:
    text = unescape(value or "")
    text = _HTML_TAG_RE.sub(" ", text)
    text = _WHITESPACE_RE.sub(" ", text)
    return text.strip()


def _extract_image_url(entry: Dict[str, Any]) -> Optional[str]:
    for media in entry.get("media_content") or []:
        if isinstance(media, dict) and media.get("url"):
            return media["url"]
    for link in entry.get("enclosures") or entry.get("links") or []:
        if not isinstance(link, dict):
            continue
        if str(link.get("type") or "").startswith("image/") and link.get("href"):
            return link["href"]
    raw_description = entry.get("summary") or entry.get("description") or ""
    match = _IMG_SRC_RE.search(raw_description)
    if match:
        return match.group(1)
    return None


def _extract_published_at(entry: Dict[str, Any]) -> str:
    for key in ("published", "pubDate", "updated"):
        value = entry.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return format_datetime(datetime.now(timezone.utc), usegmt=True)


def entry_to_raw(entry: Dict[str, Any], source_name: Optional[str] = None) -> RawEntry:
    title = unescape(str(entry.get("title") or "").strip()) or "No title"
    link = str(entry.get("link") or "").strip() or "#"
    return RawEntry(
        title=title,
        description=_strip_html(entry.get("summary") or entry.get("description") or ""),
        published_at=_extract_published_at(entry),
        link=link,
        image_url=_extract_image_url(entry),
        source_name=source_name,
    )


def parse_feed(body: bytes, *, feed_url: str, source_name: Optional[str] = None) -> List[RawEntry]:
    """
    Parse an RSS/Atom document into raw entries.

    Raises:
        FeedUnavailable: body too short, unparseable, or without entries.
    """
    if len(body or b"") < MIN_FEED_BYTES:
        raise FeedUnavailable("feed_body_too_short", {"feed_url": feed_url, "length": len(body or b"")})

    parsed = feedparser.parse(body)
    entries = getattr(parsed, "entries", None) or []
    if getattr(parsed, "bozo", False) and not entries:
        raise FeedUnavailable(
            "feed_parse_error",
            {"feed_url": feed_url, "error": str(getattr(parsed, "bozo_exception", ""))},
        )
    if not entries:
        raise FeedUnavailable("feed_has_no_entries", {"feed_url": feed_url})

    return [entry_to_raw(entry, source_name) for entry in entries]


class FeedService:
    """Fetches and parses one feed. All failures surface as FeedUnavailable."""

    def __init__(
        self,
        *,
        user_agent: Optional[str] = None,
        timeout_s: Optional[float] = None,
    ) -> None:
        self.user_agent = user_agent or settings.USER_AGENT
        self.timeout_s = timeout_s or settings.FEED_FETCH_TIMEOUT_S
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "FeedService":
        self._client = httpx.AsyncClient(
            timeout=self.timeout_s,
            headers={"User-Agent": self.user_agent, "Accept": FEED_ACCEPT},
            follow_redirects=True,
        )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._client:
            await self._client.aclose()

    async def fetch_feed(self, feed_url: str, *, source_name: Optional[str] = None) -> List[RawEntry]:
        if self._client is None:
            raise RuntimeError("FeedService client not initialized")
        try:
            response = await self._client.get(feed_url)
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise FeedUnavailable("feed_fetch_failed", {"feed_url": feed_url, "error": str(exc)}) from exc

        entries = parse_feed(response.content, feed_url=feed_url, source_name=source_name)
        logger.info("feed_fetched", feed_url=feed_url, entries=len(entries))
        return entries
