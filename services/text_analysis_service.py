"""
Local, synchronous text heuristics.

This is the guaranteed-available analysis path: no I/O, no configuration.
The remote analyzer falls back to these when it is missing or fails.
"""

from __future__ import annotations

import math
import re
from typing import Any, Dict, List, Sequence

from app.models.analysis import AnalysisResult, Sentiment

POSITIVE_WORDS: Sequence[str] = (
    "good", "great", "excellent", "amazing", "wonderful", "fantastic",
    "positive", "success", "successful", "win", "happy", "glad", "celebrate",
    "improve", "improvement", "benefit", "achieve", "achievement", "progress",
)

NEGATIVE_WORDS: Sequence[str] = (
    "bad", "terrible", "horrible", "awful", "poor", "negative", "fail",
    "failure", "lose", "lost", "sad", "unfortunate", "tragic", "crisis",
    "problem", "issue", "decline", "decrease", "worst", "disaster", "controversy",
)

STOP_WORDS = frozenset((
    "a", "about", "above", "after", "again", "against", "all", "am", "an", "and",
    "any", "are", "as", "at", "be", "because", "been", "before", "being", "below",
    "between", "both", "but", "by", "could", "did", "do", "does", "doing", "down",
    "during", "each", "few", "for", "from", "further", "had", "has", "have", "having",
    "he", "he'd", "he'll", "he's", "her", "here", "here's", "hers", "herself", "him",
    "himself", "his", "how", "how's", "i", "i'd", "i'll", "i'm", "i've", "if", "in",
    "into", "is", "it", "it's", "its", "itself", "let's", "me", "more", "most", "my",
    "myself", "nor", "of", "on", "once", "only", "or", "other", "ought", "our", "ours",
    "ourselves", "out", "over", "own", "same", "she", "she'd", "she'll", "she's",
    "should", "so", "some", "such", "than", "that", "that's", "the", "their", "theirs",
    "them", "themselves", "then", "there", "there's", "these", "they", "they'd",
    "they'll", "they're", "they've", "this", "those", "through", "to", "too", "under",
    "until", "up", "very", "was", "we", "we'd", "we'll", "we're", "we've", "were",
    "what", "what's", "when", "when's", "where", "where's", "which", "while", "who",
    "who's", "whom", "why", "why's", "with", "would", "you", "you'd", "you'll",
    "you're", "you've", "your", "yours", "yourself", "yourselves",
))

WORDS_PER_MINUTE = 200
FALLBACK_SUMMARY_SENTENCES = 2
FALLBACK_SUMMARY_CHARS = 150

_PUNCTUATION_RE = re.compile(r"[^\w\s]")
_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]+")


def _lexicon_pattern(words: Sequence[str]) -> "re.Pattern[str]":
    return re.compile(r"\b(?:" + "|".join(re.escape(w) for w in words) + r")\b")


_POSITIVE_RE = _lexicon_pattern(POSITIVE_WORDS)
_NEGATIVE_RE = _lexicon_pattern(NEGATIVE_WORDS)


def analyze_sentiment(text: str) -> Sentiment:
    lowered = (text or "").lower()
    positive = len(_POSITIVE_RE.findall(lowered))
    negative = len(_NEGATIVE_RE.findall(lowered))
    if positive > negative:
        return "positive"
    if negative > positive:
        return "negative"
    return "neutral"


def extract_keywords(text: str, limit: int = 5) -> List[str]:
    """
    Top `limit` tokens by frequency; ties keep first-occurrence order.
    """
    if not text:
        return []
    clean = _PUNCTUATION_RE.sub("", text.lower())
    counts: Dict[str, int] = {}
    for word in clean.split():
        if len(word) <= 2 or word in STOP_WORDS:
            continue
        counts[word] = counts.get(word, 0) + 1
    # dicts keep insertion order and sorted() is stable
    ranked = sorted(counts.items(), key=lambda kv: -kv[1])
    return [word for word, _ in ranked[: max(0, limit)]]


def calculate_reading_time(text: str) -> int:
    word_count = len((text or "").split())
    return math.ceil(word_count / WORDS_PER_MINUTE * 60)


def fallback_summary(content: str) -> str:
    """First sentences of the content, or a truncated prefix when there are none."""
    sentences = _SENTENCE_RE.findall(content or "")
    summary = " ".join(s.strip() for s in sentences[:FALLBACK_SUMMARY_SENTENCES]).strip()
    if summary:
        return summary
    return (content or "")[:FALLBACK_SUMMARY_CHARS] + "..."


def local_analysis(title: str, content: str, *, keyword_limit: int = 5) -> AnalysisResult:
    combined = f"{title} {content}"
    return AnalysisResult(
        summary=fallback_summary(content),
        sentiment=analyze_sentiment(combined),
        keywords=extract_keywords(combined, keyword_limit),
        used_remote=False,
    )


# -------- Presentation helpers -----------------------------------------------

CATEGORY_KEYWORDS: Dict[str, Sequence[str]] = {
    "world": (
        "world", "global", "international", "country", "nation", "foreign", "diplomatic",
        "election", "politics", "president", "minister", "government", "war", "climate",
        "summit", "treaty", "united nations", "eu", "european union",
    ),
    "business": (
        "business", "economy", "economic", "market", "stock", "finance", "investment",
        "trade", "company", "corporate", "industry", "profit", "revenue", "startup",
        "entrepreneur", "inflation", "recession", "dollar", "euro", "bank", "tech",
    ),
    "sports": (
        "sports", "sport", "game", "match", "tournament", "championship", "league",
        "team", "player", "coach", "football", "soccer", "basketball", "baseball",
        "tennis", "golf", "olympic", "nba", "nfl", "nhl", "mlb", "fifa", "score",
    ),
    "entertainment": (
        "entertainment", "celebrity", "actor", "actress", "star", "hollywood", "tv",
        "television", "show", "series", "reality", "drama", "comedy", "gossip", "award",
    ),
    "music": (
        "music", "song", "album", "artist", "band", "concert", "festival", "tour",
        "singer", "musician", "pop", "rock", "rap", "hip hop", "jazz", "grammy",
    ),
    "movies": (
        "movie", "film", "cinema", "director", "box office", "trailer", "premiere",
        "hollywood", "actor", "actress", "oscar", "blockbuster", "review", "rating",
    ),
}

DEFAULT_CATEGORY = "world"


def categorize_news_item(title: str, description: str) -> str:
    # Substring match, first category wins.
    content = f"{title} {description}".lower()
    for category, keywords in CATEGORY_KEYWORDS.items():
        if any(keyword in content for keyword in keywords):
            return category
    return DEFAULT_CATEGORY


def _get(item: Any, field: str, default: Any = None) -> Any:
    if isinstance(item, dict):
        return item.get(field, default)
    return getattr(item, field, default)


def group_similar_news(items: Sequence[Any]) -> List[Any]:
    """
    Group items by sentiment, then by keyword overlap within a sentiment.

    Returns a mix of single items and group dicts
    ({"type": "group", "sentiment", "items", "keywords", "reading_time_seconds"}).
    Items without a sentiment are dropped.
    """
    buckets: Dict[str, List[Any]] = {"positive": [], "negative": [], "neutral": []}
    for item in items:
        sentiment = _get(item, "sentiment")
        if sentiment in buckets:
            buckets[sentiment].append(item)

    result: List[Any] = []
    for sentiment, members in buckets.items():
        if len(members) <= 1:
            result.extend(members)
            continue

        grouped = set()
        for i, current in enumerate(members):
            if i in grouped:
                continue
            grouped.add(i)
            current_keywords = set(_get(current, "keywords") or [])
            similar = [current]
            for j in range(i + 1, len(members)):
                if j in grouped:
                    continue
                if current_keywords & set(_get(members[j], "keywords") or []):
                    similar.append(members[j])
                    grouped.add(j)

            if len(similar) == 1:
                result.append(current)
                continue

            keywords: List[str] = []
            for member in similar:
                for keyword in _get(member, "keywords") or []:
                    if keyword not in keywords:
                        keywords.append(keyword)
            result.append({
                "type": "group",
                "sentiment": sentiment,
                "items": similar,
                "keywords": keywords,
                "reading_time_seconds": sum(_get(m, "reading_time_seconds") or 0 for m in similar),
            })
    return result


def generate_news_script(entry: Any, *, full_content: str = "") -> str:
    """Plain-text briefing for a single item or a group from group_similar_news()."""
    if isinstance(entry, dict) and entry.get("type") == "group":
        members = entry["items"]
        intro = f"A group of {len(members)} related stories with a {entry['sentiment']} outlook. "
        if entry.get("keywords"):
            intro += f"The key themes include {', '.join(entry['keywords'])}. "
        body = "Summary of connected stories:\n\n"
        for idx, member in enumerate(members, start=1):
            body += f'Story {idx}: "{_get(member, "title")}". '
            source_name = _get(member, "source_name")
            if source_name:
                body += f"From {source_name}. "
            body += "\n"
        return f"{intro}\n\n{body}"

    title = _get(entry, "title") or ""
    description = _get(entry, "description") or ""
    keywords = _get(entry, "keywords") or []
    source_name = _get(entry, "source_name")

    if full_content and len(full_content) > len(description):
        sentences = _SENTENCE_RE.findall(full_content)
        summary = " ".join(sentences[:10]).strip()
    else:
        summary = description

    script = f"{title}\n\n"
    if source_name:
        script += f"Source: {source_name}\n\n"
    script += f"{summary}\n\n"
    if keywords:
        script += f"Key topics: {', '.join(keywords)}"
    return script
