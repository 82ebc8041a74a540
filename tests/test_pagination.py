from __future__ import annotations

import pytest

from jobdesk.entity_store import SERVER_TIMESTAMP, InMemoryEntityStore
from jobdesk.errors import ValidationError
from jobdesk.pagination import PageBoundaryStack, decode_cursor, encode_cursor, next_page


def _store_with_jobs(count: int) -> InMemoryEntityStore:
    store = InMemoryEntityStore()
    for i in range(count):
        store.commit(
            store.batch().create(
                "jobs",
                f"job_{i:03d}",
                {
                    "status": "RECEIVED" if i % 2 else "DONE",
                    "lastActivityAt": SERVER_TIMESTAMP,
                    "customerSnapshot": {"name": f"Customer {i}", "phone": f"08{i:08d}"},
                    "description": "brake noise" if i == 7 else "service",
                    "licensePlate": f"PL-{i}",
                },
            )
        )
    return store


def test_forty_five_jobs_page_as_twenty_twenty_five():
    store = _store_with_jobs(45)

    first = next_page(store, "jobs", page_size=20)
    second = next_page(store, "jobs", page_size=20, cursor=first.next_cursor)
    third = next_page(store, "jobs", page_size=20, cursor=second.next_cursor)

    assert [len(p.items) for p in (first, second, third)] == [20, 20, 5]
    assert [p.is_last for p in (first, second, third)] == [False, False, True]
    assert third.next_cursor is None
    seen = [row["id"] for p in (first, second, third) for row in p.items]
    assert len(set(seen)) == 45
    assert seen[0] == "job_044"
    assert seen[-1] == "job_000"


def test_exact_multiple_does_not_produce_empty_page():
    store = _store_with_jobs(40)
    first = next_page(store, "jobs", page_size=20)
    second = next_page(store, "jobs", page_size=20, cursor=first.next_cursor)
    assert len(second.items) == 20
    assert second.is_last is True


def test_filters_apply_before_paging():
    store = _store_with_jobs(45)
    page = next_page(store, "jobs", filters=[("status", "==", "DONE")], page_size=50)
    assert len(page.items) == 23
    assert all(row["status"] == "DONE" for row in page.items)


def test_search_uses_one_window_and_is_last():
    store = _store_with_jobs(45)
    page = next_page(store, "jobs", search_term="BRAKE")
    assert [row["id"] for row in page.items] == ["job_007"]
    assert page.is_last is True
    assert page.next_cursor is None

    by_phone = next_page(store, "jobs", search_term="0800000012")
    assert [row["id"] for row in by_phone.items] == ["job_012"]


def test_search_window_is_bounded(monkeypatch):
    monkeypatch.setenv("JOBDESK_SEARCH_WINDOW", "10")
    store = _store_with_jobs(45)
    page = next_page(store, "jobs", search_term="customer")
    assert len(page.items) == 10
    assert page.items[0]["id"] == "job_044"


def test_page_size_is_clamped_and_validated(monkeypatch):
    monkeypatch.setenv("JOBDESK_PAGE_SIZE_MAX", "30")
    store = _store_with_jobs(45)
    assert len(next_page(store, "jobs", page_size=500).items) == 30
    assert len(next_page(store, "jobs").items) == 20
    with pytest.raises(ValidationError):
        next_page(store, "jobs", page_size=0)


def test_cursor_round_trip_and_garbage():
    assert decode_cursor(encode_cursor("2026-01-01T00:00:00+00:00", "job_1")) == ("2026-01-01T00:00:00+00:00", "job_1")
    with pytest.raises(ValidationError):
        decode_cursor("not-a-cursor")


def test_cursor_with_mismatched_order_value_is_rejected():
    store = _store_with_jobs(3)
    with pytest.raises(ValidationError):
        decode_cursor(encode_cursor({"a": 1}, "job_001"))
    with pytest.raises(ValidationError):
        next_page(store, "jobs", cursor=encode_cursor(5, "x"), page_size=2)


def test_page_boundary_stack_walks_back():
    store = _store_with_jobs(45)
    stack = PageBoundaryStack()
    first = next_page(store, "jobs", cursor=stack.current)
    second = next_page(store, "jobs", cursor=stack.advance(first.next_cursor))
    next_page(store, "jobs", cursor=stack.advance(second.next_cursor))
    assert stack.page_number == 3

    again_second = next_page(store, "jobs", cursor=stack.back())
    assert [r["id"] for r in again_second.items] == [r["id"] for r in second.items]
    again_first = next_page(store, "jobs", cursor=stack.back())
    assert [r["id"] for r in again_first.items] == [r["id"] for r in first.items]
    assert stack.can_go_back is False
    assert stack.back() is None
