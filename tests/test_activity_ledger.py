from __future__ import annotations

import pytest

from jobdesk.entity_store import InMemoryEntityStore
from jobdesk.errors import StoreConflict
from jobdesk.ledger import ActivityLedger, JobRef, activity_entry


def _seeded_store() -> InMemoryEntityStore:
    store = InMemoryEntityStore()
    store.commit(store.batch().create("jobs", "job_1", {"status": "IN_PROGRESS", "lastActivityAt": "2026-01-01T00:00:00"}))
    return store


def test_append_and_mutate_shares_one_server_timestamp():
    store = _seeded_store()
    ledger = ActivityLedger(store)
    ref = JobRef.active("job_1")

    out = ledger.append_and_mutate(
        ref,
        {"status": "WAITING_QUOTATION"},
        activity_entry(text="need parts", user_id="u_worker", user_name="Walt Worker", photos=["p.jpg"]),
    )

    job = store.get("jobs", "job_1")
    activity = store.get(ref.activities, out["activity_id"])
    assert job["status"] == "WAITING_QUOTATION"
    assert activity["text"] == "need parts"
    assert activity["photos"] == ["p.jpg"]
    assert activity["createdAt"] == job["lastActivityAt"] == out["server_time"]


def test_failed_unit_leaves_no_activity_and_no_job_change():
    store = _seeded_store()
    ledger = ActivityLedger(store)
    ref = JobRef.active("job_1")

    with pytest.raises(StoreConflict):
        ledger.append_and_mutate(
            ref,
            {"status": "DONE"},
            activity_entry(text="done", user_id="u", user_name="U"),
            expect={"status": "RECEIVED"},
        )

    assert store.get("jobs", "job_1")["status"] == "IN_PROGRESS"
    assert store.list_collection(ref.activities) == []


def test_caller_writes_join_the_same_unit():
    store = _seeded_store()
    ledger = ActivityLedger(store)
    batch = store.batch()
    batch.create("documents", "doc_1", {"status": "DRAFT"})
    batch.create("documents", "doc_1", {"status": "DRAFT"})

    with pytest.raises(StoreConflict):
        ledger.append_and_mutate(
            JobRef.active("job_1"),
            {},
            activity_entry(text="Created QUOTATION document: QT2026-0001", user_id="u", user_name="U"),
            batch,
        )
    assert store.get("documents", "doc_1") is None
    assert store.get("jobs", "job_1")["lastActivityAt"] == "2026-01-01T00:00:00"


def test_later_activities_sort_after_earlier_ones():
    store = _seeded_store()
    ledger = ActivityLedger(store)
    ref = JobRef.active("job_1")
    for i in range(5):
        ledger.append_and_mutate(ref, {}, activity_entry(text=f"note {i}", user_id="u", user_name="U"))

    rows = store.query(ref.activities, order_by="createdAt", direction="desc")
    assert [r["text"] for r in rows] == ["note 4", "note 3", "note 2", "note 1", "note 0"]
    assert store.get("jobs", "job_1")["lastActivityAt"] == rows[0]["createdAt"]
