from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from jobdesk.domain import ARCHIVE_INDEX_COLLECTION, JOBS_COLLECTION
from jobdesk.entity_store import InMemoryEntityStore, WriteBatch
from jobdesk.ledger import JobRef
from jobdesk.runtime_profile import archive_lookback_years

logger = logging.getLogger(__name__)

ARCHIVE_COLLECTION_PREFIX = "jobsArchive_"
SOURCES = {"active", "archive"}


def collection_for(source: str, year: int | None = None) -> str:
    if source == "active":
        return JOBS_COLLECTION
    if source == "archive":
        if year is None:
            raise ValueError("archive source needs a year")
        return f"{ARCHIVE_COLLECTION_PREFIX}{int(year)}"
    raise ValueError(f"unknown job source: {source}")


def year_from_date(value: Any) -> int | None:
    text = str(value or "").strip()
    if len(text) < 4 or not text[:4].isdigit():
        return None
    return int(text[:4])


def archive_year(job: Mapping[str, Any], *, now: datetime | None = None) -> int:
    """Year bucket of a closed job; jobs closed without a date fall into the current year."""
    year = year_from_date(job.get("closedDate"))
    if year is not None:
        return year
    return (now or datetime.now(UTC)).year


def locate_job(
    store: InMemoryEntityStore,
    job_id: str,
    *,
    now_year: int | None = None,
    lookback_years: int | None = None,
) -> tuple[JobRef, dict[str, Any]] | None:
    row = store.get(JOBS_COLLECTION, job_id)
    if row is not None:
        return JobRef.active(job_id), row

    index = store.get(ARCHIVE_INDEX_COLLECTION, job_id)
    if index is not None:
        collection = str(index.get("collection") or "")
        row = store.get(collection, job_id) if collection else None
        if row is not None:
            return JobRef(collection=collection, job_id=job_id), row
        logger.warning("archive_index_stale job_id=%s collection=%s", job_id, collection)

    current_year = now_year if now_year is not None else datetime.now(UTC).year
    span = lookback_years if lookback_years is not None else archive_lookback_years()
    for year in range(current_year, current_year - span, -1):
        collection = collection_for("archive", year)
        row = store.get(collection, job_id)
        if row is not None:
            logger.info("archive_probe_hit job_id=%s year=%s", job_id, year)
            return JobRef(collection=collection, job_id=job_id), row
    return None


def stage_move(
    store: InMemoryEntityStore,
    batch: WriteBatch,
    *,
    source: JobRef,
    target: JobRef,
    job: Mapping[str, Any],
    expect_status: str | None = None,
    expect_last_activity_at: Any = None,
) -> int:
    """Stage a move of the job and all of its activities; return the activity count.

    The job body is written as ``job`` (the caller applies its own patch first)
    and the index entry follows the job: written when the target is an archive,
    removed when the job comes back to the active collection.
    The source delete also expects the last activity time the caller read, so
    an activity appended after the listing fails the whole unit.
    """
    body = {k: v for k, v in job.items() if k != "id"}
    batch.set(target.collection, target.job_id, body)
    activities = store.list_collection(source.activities)
    for activity in activities:
        activity_id = str(activity.pop("id"))
        batch.set(target.activities, activity_id, activity)
        batch.delete(source.activities, activity_id)
    expect: dict[str, Any] = {}
    if expect_status:
        expect["status"] = expect_status
    if expect_last_activity_at is not None:
        expect["lastActivityAt"] = expect_last_activity_at
    batch.delete(source.collection, source.job_id, expect=expect or None)
    if target.collection == JOBS_COLLECTION:
        batch.delete(ARCHIVE_INDEX_COLLECTION, target.job_id)
    else:
        batch.set(
            ARCHIVE_INDEX_COLLECTION,
            target.job_id,
            {"collection": target.collection, "year": year_from_date(target.collection.removeprefix(ARCHIVE_COLLECTION_PREFIX))},
        )
    return len(activities)
