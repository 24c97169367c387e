from __future__ import annotations

from services.content_identity import make_item_id


def test_same_fields_yield_same_id() -> None:
    a = make_item_id("Markets rally", "Sat, 17 Oct 2026 10:00:00 GMT", "https://example.com/a")
    b = make_item_id("Markets rally", "Sat, 17 Oct 2026 10:00:00 GMT", "https://example.com/a")
    assert a == b


def test_id_strips_non_alphanumeric_characters() -> None:
    item_id = make_item_id("Hello, World!", "2026-10-17", "https://x.io/1")
    assert item_id == "HelloWorld20261017httpsxio1"


def test_different_link_or_date_changes_id() -> None:
    base = make_item_id("Title", "2026-10-17", "https://example.com/a")
    assert make_item_id("Title", "2026-10-18", "https://example.com/a") != base
    assert make_item_id("Title", "2026-10-17", "https://example.com/b") != base
