from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from jobdesk.entity_store import InMemoryEntityStore, cursor_key, field_value
from jobdesk.errors import ValidationError
from jobdesk.runtime_profile import page_size_bounds, search_window

DEFAULT_SEARCH_FIELDS: tuple[str, ...] = (
    "customerSnapshot.name",
    "customerSnapshot.phone",
    "description",
    "licensePlate",
    "id",
)


@dataclass(frozen=True)
class Page:
    items: list[dict[str, Any]]
    next_cursor: str | None
    is_last: bool


def encode_cursor(order_value: Any, doc_id: str) -> str:
    raw = json.dumps([order_value, doc_id], ensure_ascii=True, separators=(",", ":"))
    return base64.urlsafe_b64encode(raw.encode("ascii")).decode("ascii").rstrip("=")


def decode_cursor(token: str) -> tuple[Any, str]:
    padded = token + "=" * ((4 - len(token) % 4) % 4)
    try:
        value = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
    except (binascii.Error, UnicodeError, json.JSONDecodeError, ValueError):
        raise ValidationError("invalid page cursor") from None
    if not isinstance(value, list) or len(value) != 2 or not isinstance(value[1], str):
        raise ValidationError("invalid page cursor")
    if value[0] is not None and (isinstance(value[0], bool) or not isinstance(value[0], (str, int, float))):
        raise ValidationError("invalid page cursor")
    return value[0], value[1]


def clamp_page_size(page_size: int | None) -> int:
    default, maximum = page_size_bounds()
    if page_size is None:
        return default
    if page_size < 1:
        raise ValidationError("page_size must be positive")
    return min(page_size, maximum)


def matches_search(row: dict[str, Any], term: str, fields: Sequence[str] = DEFAULT_SEARCH_FIELDS) -> bool:
    needle = term.strip().lower()
    if not needle:
        return True
    for path in fields:
        value = field_value(row, path)
        if value is not None and needle in str(value).lower():
            return True
    return False


def next_page(
    store: InMemoryEntityStore,
    collection: str,
    *,
    filters: Iterable[tuple[str, str, Any]] = (),
    order_by: str = "lastActivityAt",
    direction: str = "desc",
    cursor: str | None = None,
    page_size: int | None = None,
    search_term: str | None = None,
    search_fields: Sequence[str] = DEFAULT_SEARCH_FIELDS,
) -> Page:
    """Fetch one page of ``collection`` ordered by ``order_by`` then id.

    A search term switches to a single bounded window in the same order,
    filtered in memory; such a page is always the last one.
    """
    filters = list(filters)
    if search_term and search_term.strip():
        window = store.query(collection, filters=filters, order_by=order_by, direction=direction, limit=search_window())
        items = [row for row in window if matches_search(row, search_term, search_fields)]
        return Page(items=items, next_cursor=None, is_last=True)

    size = clamp_page_size(page_size)
    start_after = None
    if cursor:
        order_value, doc_id = decode_cursor(cursor)
        start_after = cursor_key(order_value, doc_id)
    try:
        rows = store.query(
            collection,
            filters=filters,
            order_by=order_by,
            direction=direction,
            start_after=start_after,
            limit=size + 1,
        )
    except TypeError:
        # order value type does not match the ordered field
        raise ValidationError("invalid page cursor") from None
    items = rows[:size]
    is_last = len(rows) <= size
    next_cursor = None
    if not is_last and items:
        last = items[-1]
        next_cursor = encode_cursor(field_value(last, order_by), str(last["id"]))
    return Page(items=items, next_cursor=next_cursor, is_last=is_last)


@dataclass
class PageBoundaryStack:
    """Start cursors of the pages visited so far; the first page starts at None."""

    starts: list[str | None] = field(default_factory=lambda: [None])

    @property
    def current(self) -> str | None:
        return self.starts[-1]

    @property
    def page_number(self) -> int:
        return len(self.starts)

    @property
    def can_go_back(self) -> bool:
        return len(self.starts) > 1

    def advance(self, next_cursor: str) -> str:
        self.starts.append(next_cursor)
        return next_cursor

    def back(self) -> str | None:
        if self.can_go_back:
            self.starts.pop()
        return self.current

    def reset(self) -> None:
        self.starts = [None]
