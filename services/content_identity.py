from __future__ import annotations

import re

_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9]")


def make_item_id(title: str, published_at: str, link: str) -> str:
    """
    Stable identifier for a feed entry, derived from its immutable fields.

    Pure and total: same (title, published_at, link) always yields the same id,
    across process restarts, so it doubles as the cross-session dedup key.
    """
    joined = f"{title or ''}-{published_at or ''}-{link or ''}"
    return _NON_ALNUM_RE.sub("", joined)
