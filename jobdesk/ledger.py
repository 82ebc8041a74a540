from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from jobdesk.domain import ACTIVITIES, JOBS_COLLECTION
from jobdesk.entity_store import SERVER_TIMESTAMP, InMemoryEntityStore, WriteBatch, subcollection
from jobdesk.errors import StoreConflict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobRef:
    """Where a job currently lives: the active collection or a yearly archive."""

    collection: str
    job_id: str

    @property
    def activities(self) -> str:
        return subcollection(self.collection, self.job_id, ACTIVITIES)

    @classmethod
    def active(cls, job_id: str) -> "JobRef":
        return cls(collection=JOBS_COLLECTION, job_id=job_id)


def new_activity_id() -> str:
    return f"act_{uuid.uuid4().hex[:12]}"


def activity_entry(
    *,
    text: str,
    user_id: str,
    user_name: str,
    photos: Sequence[str] = (),
) -> dict[str, Any]:
    return {
        "text": text,
        "userId": user_id,
        "userName": user_name,
        "photos": list(photos),
        "createdAt": SERVER_TIMESTAMP,
    }


class ActivityLedger:
    """Writes a job mutation and its activity entry as one unit.

    Both the job's ``lastActivityAt`` and the activity's ``createdAt`` resolve
    to the same server timestamp, so the newest activity and the job's last
    activity time always agree.
    """

    def __init__(self, store: InMemoryEntityStore) -> None:
        self._store = store

    def stage(
        self,
        batch: WriteBatch,
        job_ref: JobRef,
        job_patch: Mapping[str, Any],
        activity: Mapping[str, Any],
        *,
        expect: Mapping[str, Any] | None = None,
        create_job: bool = False,
    ) -> str:
        activity_id = new_activity_id()
        patch = {**job_patch, "lastActivityAt": SERVER_TIMESTAMP}
        if create_job:
            batch.create(job_ref.collection, job_ref.job_id, patch)
        else:
            batch.update(job_ref.collection, job_ref.job_id, patch, expect=expect)
        batch.create(job_ref.activities, activity_id, {**activity, "createdAt": SERVER_TIMESTAMP})
        return activity_id

    def append_and_mutate(
        self,
        job_ref: JobRef,
        job_patch: Mapping[str, Any],
        activity: Mapping[str, Any],
        batch: WriteBatch | None = None,
        *,
        expect: Mapping[str, Any] | None = None,
        create_job: bool = False,
    ) -> dict[str, Any]:
        batch = batch if batch is not None else self._store.batch()
        activity_id = self.stage(batch, job_ref, job_patch, activity, expect=expect, create_job=create_job)
        try:
            server_time = self._store.commit(batch)
        except StoreConflict:
            logger.warning(
                "activity_unit_rejected collection=%s job_id=%s writes=%s",
                job_ref.collection,
                job_ref.job_id,
                len(batch),
            )
            raise
        logger.info(
            "activity_appended collection=%s job_id=%s activity_id=%s",
            job_ref.collection,
            job_ref.job_id,
            activity_id,
        )
        return {"activity_id": activity_id, "server_time": server_time}
