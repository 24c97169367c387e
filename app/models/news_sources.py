"""
Feed registry.

`configs/news_sources.yml` lists the feeds the multi-source mode combines:

    sources:
      - name: "CBS News World"
        url: "https://www.cbsnews.com/world/"
        feed_url: "https://www.cbsnews.com/latest/rss/world"

A missing or unreadable file is not fatal: it yields no sources and an error log.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from app.core.logging import get_logger

logger = get_logger()

REPO_ROOT = Path(__file__).resolve().parents[2]
NEWS_SOURCES_YML = REPO_ROOT / "configs" / "news_sources.yml"


@dataclass(frozen=True)
class NewsSource:
    name: str
    url: str
    feed_url: str


def load_news_sources_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Raw YAML mapping, or {} when the file is missing, unreadable or not a mapping."""
    cfg_path = Path(path) if path else NEWS_SOURCES_YML
    try:
        data = yaml.safe_load(cfg_path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        logger.error("news_sources_missing", path=str(cfg_path))
        return {}
    except (OSError, yaml.YAMLError) as exc:
        logger.error("news_sources_unreadable", path=str(cfg_path), error=str(exc))
        return {}

    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.error("news_sources_bad_root", path=str(cfg_path), root_type=type(data).__name__)
        return {}
    return data


def _text(raw: Dict[str, Any], key: str) -> str:
    value = raw.get(key)
    return value.strip() if isinstance(value, str) else ""


def parse_news_sources(data: Dict[str, Any]) -> List[NewsSource]:
    """Build sources in file order; entries without name/feed_url and repeated feeds are skipped."""
    entries = data.get("sources")
    if not isinstance(entries, list):
        return []

    by_feed: Dict[str, NewsSource] = {}
    for position, raw in enumerate(entries):
        if not isinstance(raw, dict):
            logger.warning("news_source_skipped", position=position, reason="not_a_mapping")
            continue
        name, feed_url = _text(raw, "name"), _text(raw, "feed_url")
        if not (name and feed_url):
            logger.warning("news_source_skipped", position=position, reason="missing_fields")
            continue
        if feed_url in by_feed:
            logger.warning("news_source_skipped", position=position, reason="duplicate_feed", feed_url=feed_url)
            continue
        by_feed[feed_url] = NewsSource(name=name, url=_text(raw, "url") or feed_url, feed_url=feed_url)
    return list(by_feed.values())


@lru_cache(maxsize=1)
def get_all_news_sources() -> List[NewsSource]:
    return parse_news_sources(load_news_sources_config())


def find_source_by_feed_url(feed_url: str) -> Optional[NewsSource]:
    return next((s for s in get_all_news_sources() if s.feed_url == feed_url), None)
