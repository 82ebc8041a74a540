from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from jobdesk.archive import archive_year, collection_for, locate_job, stage_move
from jobdesk.domain import (
    CLOSED,
    JOB_DEPARTMENTS,
    JOBS_COLLECTION,
    RECEIVED,
    USERS_COLLECTION,
    WAITING_CUSTOMER_PICKUP,
    Actor,
    dept_label,
)
from jobdesk.entity_store import DELETE_FIELD, SERVER_TIMESTAMP, InMemoryEntityStore
from jobdesk.errors import InvalidTransition, NotFound, ValidationError
from jobdesk.ledger import ActivityLedger, JobRef, activity_entry
from jobdesk.policy import require
from jobdesk.transitions import TransitionResult, apply_transition

logger = logging.getLogger(__name__)


VEHICLE_DETAIL_FIELDS: dict[str, str] = {
    "CAR_SERVICE": "carServiceDetails",
    "COMMONRAIL": "commonrailDetails",
    "MECHANIC": "mechanicDetails",
}
LOCKED_DETAIL_STATUSES = frozenset({CLOSED, WAITING_CUSTOMER_PICKUP})


def _job_view(ref: JobRef, row: Mapping[str, Any]) -> dict[str, Any]:
    return {**row, "id": ref.job_id, "collection": ref.collection}


class JobWorkflow:
    """Runs job triggers end to end: locate, decide, then write one unit."""

    def __init__(self, store: InMemoryEntityStore, *, clock: Any = None) -> None:
        self._store = store
        self._ledger = ActivityLedger(store)
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def ledger(self) -> ActivityLedger:
        return self._ledger

    def locate(self, job_id: str) -> tuple[JobRef, dict[str, Any]]:
        found = locate_job(self._store, job_id, now_year=self._clock().year)
        if found is None:
            raise NotFound(code="JOB_NOT_FOUND", message=f"job not found: {job_id}")
        return found

    def get_job(self, job_id: str) -> dict[str, Any]:
        ref, row = self.locate(job_id)
        return _job_view(ref, row)

    def list_activities(self, job_id: str) -> list[dict[str, Any]]:
        ref, _ = self.locate(job_id)
        return self._store.query(ref.activities, order_by="createdAt", direction="desc")

    def create_job(self, payload: Mapping[str, Any], actor: Actor) -> dict[str, Any]:
        require("CREATE_JOB", actor)
        department = str(payload.get("department") or "").strip().upper()
        if department not in JOB_DEPARTMENTS:
            raise ValidationError(f"unknown job department: {department or '-'}")
        customer = payload.get("customer") or {}
        name = str(customer.get("name") or "").strip()
        if not name:
            raise ValidationError("customer name is required")
        job_id = f"job_{uuid.uuid4().hex[:12]}"
        photos = [str(x) for x in payload.get("photos") or [] if str(x).strip()]
        job = {
            "status": RECEIVED,
            "department": department,
            "customerId": payload.get("customer_id"),
            "customerSnapshot": {"name": name, "phone": str(customer.get("phone") or "").strip()},
            "description": str(payload.get("description") or "").strip(),
            "licensePlate": str(payload.get("license_plate") or "").strip(),
            "officeNote": str(payload.get("office_note") or "").strip(),
            "photos": photos,
            "assigneeId": None,
            "assigneeName": None,
            "createdById": actor.id,
            "createdByName": actor.display_name,
            "isArchived": False,
            "createdAt": SERVER_TIMESTAMP,
        }
        ref = JobRef.active(job_id)
        self._ledger.append_and_mutate(
            ref,
            job,
            activity_entry(
                text=f"Job received for {dept_label(department)}",
                user_id=actor.id,
                user_name=actor.display_name,
                photos=photos,
            ),
            create_job=True,
        )
        logger.info("job_created job_id=%s department=%s", job_id, department)
        return self.get_job(job_id)

    def _worker_profile(self, worker_id: Any) -> dict[str, Any]:
        worker_id = str(worker_id or "").strip()
        if not worker_id:
            raise ValidationError("worker_id is required")
        row = self._store.get(USERS_COLLECTION, worker_id)
        if row is None:
            raise NotFound(code="USER_NOT_FOUND", message=f"user not found: {worker_id}")
        return row

    def apply(self, job_id: str, trigger: str, actor: Actor, **params: Any) -> dict[str, Any]:
        ref, job = self.locate(job_id)
        if trigger == "REASSIGN_WORKER" and "worker" not in params:
            params["worker"] = self._worker_profile(params.pop("worker_id", None))
        result = apply_transition(job, trigger, actor, **params)
        if trigger == "CLOSE_JOB":
            return self._close(ref, job, result, actor)
        if trigger == "REVERT_CLOSE" and ref.collection != JOBS_COLLECTION:
            return self._restore(ref, job, result, actor)
        self._ledger.append_and_mutate(
            ref,
            result.job_patch,
            self._activity(result, actor),
            expect={"status": result.old_status},
        )
        logger.info(
            "job_transition job_id=%s trigger=%s from=%s to=%s",
            job_id,
            "+".join(result.fired),
            result.old_status,
            result.new_status,
        )
        return self.get_job(job_id)

    def update_details(
        self,
        job_id: str,
        actor: Actor,
        *,
        description: str | None = None,
        office_note: str | None = None,
        vehicle_details: Mapping[str, Any] | None = None,
        technical_report: str | None = None,
    ) -> dict[str, Any]:
        """Edit free-form job fields; one activity line per edited field, no status change."""
        require("EDIT_JOB_DETAILS", actor)
        ref, job = self.locate(job_id)
        status = str(job.get("status") or "")
        if ref.collection != JOBS_COLLECTION or status in LOCKED_DETAIL_STATUSES:
            raise InvalidTransition(current_status=status, trigger="EDIT_DETAILS")
        patch: dict[str, Any] = {}
        lines: list[str] = []
        if description is not None:
            patch["description"] = description.strip()
            lines.append("Description updated")
        if office_note is not None:
            patch["officeNote"] = office_note.strip()
            lines.append("Office note updated")
        if vehicle_details is not None:
            field = VEHICLE_DETAIL_FIELDS.get(str(job.get("department") or ""))
            if field is None:
                raise ValidationError(f"no vehicle details for department: {job.get('department')}")
            patch[field] = dict(vehicle_details)
            lines.append("Vehicle/part details updated")
        if technical_report is not None:
            patch["technicalReport"] = technical_report.strip()
            lines.append("Technical report updated")
        if not patch:
            raise ValidationError("nothing to update")
        self._ledger.append_and_mutate(
            ref,
            patch,
            activity_entry(text="\n".join(lines), user_id=actor.id, user_name=actor.display_name),
            expect={"status": status},
        )
        logger.info("job_details_updated job_id=%s fields=%s", job_id, ",".join(sorted(patch)))
        return self.get_job(job_id)

    def add_note(self, job_id: str, actor: Actor, *, text: str = "", photos: list[str] | None = None) -> dict[str, Any]:
        return self.apply(job_id, "APPEND_NOTE", actor, text=text, photos=photos or [])

    def close_job(
        self,
        job_id: str,
        actor: Actor,
        *,
        closed_date: str,
        sales_doc: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        return self.apply(job_id, "CLOSE_JOB", actor, closed_date=closed_date, sales_doc=sales_doc)

    def archive_job(self, job_id: str, actor: Actor) -> dict[str, Any]:
        ref, job = self.locate(job_id)
        if ref.collection != JOBS_COLLECTION or job.get("status") != CLOSED:
            raise InvalidTransition(current_status=str(job.get("status") or ""), trigger="ARCHIVE_JOB")
        require("ARCHIVE_JOB", actor)
        target = JobRef(collection_for("archive", archive_year(job, now=self._clock())), job_id)
        body = {**job, "isArchived": True, "archivedAt": SERVER_TIMESTAMP}
        batch = self._store.batch()
        moved = stage_move(
            self._store,
            batch,
            source=ref,
            target=target,
            job=body,
            expect_status=CLOSED,
            expect_last_activity_at=job.get("lastActivityAt"),
        )
        self._store.commit(batch)
        logger.info("job_archived job_id=%s collection=%s activities=%s", job_id, target.collection, moved)
        return self.get_job(job_id)

    def archive_closed_jobs(self, actor: Actor, *, limit: int | None = None) -> list[str]:
        rows = self._store.query(
            JOBS_COLLECTION,
            filters=[("status", "==", CLOSED)],
            order_by="lastActivityAt",
            limit=limit,
        )
        archived: list[str] = []
        for row in rows:
            self.archive_job(str(row["id"]), actor)
            archived.append(str(row["id"]))
        return archived

    def _activity(self, result: TransitionResult, actor: Actor) -> dict[str, Any]:
        return activity_entry(
            text=result.activity_text,
            user_id=actor.id,
            user_name=actor.display_name,
            photos=result.photos,
        )

    def _close(self, ref: JobRef, job: Mapping[str, Any], result: TransitionResult, actor: Actor) -> dict[str, Any]:
        body = {**job, **result.job_patch, "isArchived": True, "archivedAt": SERVER_TIMESTAMP}
        target = JobRef(collection_for("archive", archive_year(body, now=self._clock())), ref.job_id)
        batch = self._store.batch()
        stage_move(
            self._store,
            batch,
            source=ref,
            target=target,
            job=body,
            expect_status=result.old_status,
            expect_last_activity_at=job.get("lastActivityAt"),
        )
        self._ledger.append_and_mutate(target, {}, self._activity(result, actor), batch)
        logger.info("job_closed job_id=%s collection=%s", ref.job_id, target.collection)
        return self.get_job(ref.job_id)

    def _restore(self, ref: JobRef, job: Mapping[str, Any], result: TransitionResult, actor: Actor) -> dict[str, Any]:
        body = {**job, **result.job_patch, "isArchived": False, "archivedAt": DELETE_FIELD}
        target = JobRef.active(ref.job_id)
        batch = self._store.batch()
        stage_move(
            self._store,
            batch,
            source=ref,
            target=target,
            job=body,
            expect_status=result.old_status,
            expect_last_activity_at=job.get("lastActivityAt"),
        )
        self._ledger.append_and_mutate(target, {}, self._activity(result, actor), batch)
        logger.info("job_restored job_id=%s from=%s", ref.job_id, ref.collection)
        return self.get_job(ref.job_id)
