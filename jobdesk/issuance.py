"""Document issuance and cancellation.

Every job-linked document write shares one unit with its job side effects:
the counter bump, the document itself, the active-document marker, the job
patch and the job activity. The marker id is derived from the job and the
document slot, and it is written with create-if-absent semantics, so two
concurrent issuances for the same slot cannot both commit.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Mapping
from datetime import UTC, date, datetime
from typing import Any

from jobdesk.archive import locate_job
from jobdesk.domain import (
    ACTIVE_DOC_MARKERS_COLLECTION,
    CANCELLED,
    DEFAULT_DOC_PREFIXES,
    DELIVERY_NOTE,
    DOC_COUNTER_FIELDS,
    DOC_COUNTERS_COLLECTION,
    DOC_PREFIX_SETTINGS_KEYS,
    DOC_SLOTS,
    DOC_STATUS_TRANSITIONS,
    DOC_TYPES,
    DOCUMENTS_COLLECTION,
    DRAFT,
    FINAL_BILLING_TYPES,
    OBLIGATIONS_COLLECTION,
    PAID,
    PENDING_REVIEW,
    QUOTATION,
    RECEIPT,
    SETTINGS_COLLECTION,
    TAX_INVOICE,
    Actor,
)
from jobdesk.entity_store import DELETE_FIELD, SERVER_TIMESTAMP, InMemoryEntityStore, WriteBatch
from jobdesk.errors import (
    DocumentLocked,
    DuplicateActive,
    InvalidTransition,
    NotFound,
    StoreConflict,
    ValidationError,
)
from jobdesk.ledger import ActivityLedger, JobRef, activity_entry
from jobdesk.policy import is_allowed, require
from jobdesk.transitions import apply_transition

logger = logging.getLogger(__name__)

ISSUE_TRIGGERS: dict[str, str] = {
    QUOTATION: "QUOTATION_ISSUED",
    DELIVERY_NOTE: "BILLING_ISSUED",
    TAX_INVOICE: "BILLING_ISSUED",
    RECEIPT: "RECEIPT_ISSUED",
}
EDITABLE_FIELDS = {"items", "grandTotal", "notes", "docDate", "dueDate", "customerSnapshot", "referencesDocIds"}


def marker_id(job_id: str, slot: str) -> str:
    return f"{job_id}__{slot}"


def _append_note(notes: Any, line: str) -> str:
    current = str(notes or "").rstrip()
    return f"{current}\n{line}" if current else line


def _grand_total(items: list[dict[str, Any]]) -> float:
    total = 0.0
    for item in items:
        total += float(item.get("quantity") or 0) * float(item.get("unitPrice") or 0)
    return round(total, 2)


def _doc_transition_error(doc: Mapping[str, Any], action: str) -> InvalidTransition:
    return InvalidTransition(
        current_status=str(doc.get("status") or ""),
        trigger=action,
        code="DOC_TRANSITION_INVALID",
    )


class DocumentIssuanceCoordinator:
    def __init__(self, store: InMemoryEntityStore, *, clock: Callable[[], datetime] | None = None) -> None:
        self._store = store
        self._ledger = ActivityLedger(store)
        self._clock = clock or (lambda: datetime.now(UTC))

    def get_document(self, doc_id: str) -> dict[str, Any]:
        row = self._store.get(DOCUMENTS_COLLECTION, doc_id)
        if row is None:
            raise NotFound(code="DOC_NOT_FOUND", message=f"document not found: {doc_id}")
        return row

    def list_job_documents(self, job_id: str) -> list[dict[str, Any]]:
        return self._store.query(
            DOCUMENTS_COLLECTION,
            filters=[("jobId", "==", job_id)],
            order_by="createdAt",
            direction="desc",
        )

    def find_active(self, job_id: str, kind: str) -> dict[str, Any] | None:
        """Return the non-cancelled document holding the slot of ``kind`` on the job."""
        slot = DOC_SLOTS.get(kind)
        if slot is None:
            return None
        marker = self._store.get(ACTIVE_DOC_MARKERS_COLLECTION, marker_id(job_id, slot))
        if marker is not None:
            doc = self._store.get(DOCUMENTS_COLLECTION, str(marker.get("docId") or ""))
            if doc is not None and doc.get("status") != CANCELLED:
                return doc
        kinds = [k for k, s in DOC_SLOTS.items() if s == slot]
        rows = self._store.query(
            DOCUMENTS_COLLECTION,
            filters=[("jobId", "==", job_id), ("docType", "in", kinds), ("status", "!=", CANCELLED)],
            order_by="createdAt",
            direction="desc",
            limit=1,
        )
        return rows[0] if rows else None

    def _doc_prefix(self, kind: str) -> str:
        settings = self._store.get(SETTINGS_COLLECTION, "documents") or {}
        prefix = str(settings.get(DOC_PREFIX_SETTINGS_KEYS[kind]) or "").strip()
        return prefix or DEFAULT_DOC_PREFIXES[kind]

    def _stage_doc_no(self, batch: WriteBatch, kind: str, year: int) -> str:
        counter_id = str(year)
        field = DOC_COUNTER_FIELDS[kind]
        counter = self._store.get(DOC_COUNTERS_COLLECTION, counter_id)
        if counter is None:
            next_value = 1
            batch.create(DOC_COUNTERS_COLLECTION, counter_id, {field: next_value})
        else:
            current = counter.get(field)
            next_value = int(current or 0) + 1
            batch.update(DOC_COUNTERS_COLLECTION, counter_id, {field: next_value}, expect={field: current})
        return f"{self._doc_prefix(kind)}{year}-{next_value:04d}"

    def _doc_date(self, payload: Mapping[str, Any]) -> str:
        raw = str(payload.get("doc_date") or "").strip()
        if not raw:
            return self._clock().date().isoformat()
        try:
            return date.fromisoformat(raw).isoformat()
        except ValueError:
            raise ValidationError(f"doc_date must be YYYY-MM-DD, got {raw}") from None

    def _locate(self, job_id: str) -> tuple[JobRef, dict[str, Any]]:
        found = locate_job(self._store, job_id, now_year=self._clock().year)
        if found is None:
            raise NotFound(code="JOB_NOT_FOUND", message=f"job not found: {job_id}")
        return found

    def _check_cancellable(self, doc: Mapping[str, Any], actor: Actor) -> None:
        require("CANCEL_DOCUMENT", actor)
        if CANCELLED not in DOC_STATUS_TRANSITIONS[str(doc["docType"])].get(str(doc["status"]), frozenset()):
            raise _doc_transition_error(doc, "CANCEL")

    def _raise_duplicate_from_marker(self, job_id: str, kind: str, exc: StoreConflict) -> None:
        existing = self.find_active(job_id, kind)
        if existing is not None:
            logger.warning(
                "doc_issue_lost_race job_id=%s kind=%s existing=%s", job_id, kind, existing.get("docNo")
            )
            raise DuplicateActive(existing=existing) from exc

    def issue(
        self,
        kind: str,
        payload: Mapping[str, Any],
        actor: Actor,
        *,
        submit_for_review: bool = False,
        replace_reason: str | None = None,
    ) -> dict[str, Any]:
        if kind not in DOC_TYPES:
            raise ValidationError(f"unknown document kind: {kind}")
        require("ISSUE_DOCUMENT", actor)
        job_id = str(payload.get("job_id") or "").strip() or None
        items = [dict(x) for x in payload.get("items") or []]
        doc_date = self._doc_date(payload)

        job_ref: JobRef | None = None
        job: dict[str, Any] | None = None
        existing: dict[str, Any] | None = None
        if job_id is not None:
            job_ref, job = self._locate(job_id)
            existing = self.find_active(job_id, kind)
            if existing is not None and not (replace_reason or "").strip():
                raise DuplicateActive(existing=existing)

        customer = payload.get("customer") or (job or {}).get("customerSnapshot") or {}
        if not str(customer.get("name") or "").strip():
            raise ValidationError("customer name is required")

        if job is not None:
            # Guards only; the real patch is derived after any replacement cancel.
            apply_transition(job, ISSUE_TRIGGERS[kind], actor, doc_id="", doc_no="", doc_type=kind)
        if existing is not None and job_id is not None:
            self._check_cancellable(existing, actor)
            self.cancel_and_replace(str(existing["id"]), replace_reason or "", actor)
            job_ref, job = self._locate(job_id)

        doc_id = f"doc_{uuid.uuid4().hex[:12]}"
        batch = self._store.batch()
        doc_no = self._stage_doc_no(batch, kind, int(doc_date[:4]))
        grand_total = payload.get("grand_total")
        document = {
            "docType": kind,
            "docNo": doc_no,
            "docDate": doc_date,
            "dueDate": payload.get("due_date"),
            "status": DRAFT,
            "jobId": job_id,
            "referencesDocIds": list(payload.get("references_doc_ids") or []),
            "items": items,
            "grandTotal": float(grand_total) if grand_total is not None else _grand_total(items),
            "notes": str(payload.get("notes") or ""),
            "customerSnapshot": {"name": customer.get("name"), "phone": customer.get("phone")},
            "arStatus": None,
            "createdById": actor.id,
            "createdByName": actor.display_name,
            "createdAt": SERVER_TIMESTAMP,
            "updatedAt": SERVER_TIMESTAMP,
        }

        if job_ref is not None and job is not None:
            result = apply_transition(
                job,
                ISSUE_TRIGGERS[kind],
                actor,
                doc_id=doc_id,
                doc_no=doc_no,
                doc_type=kind,
            )
            batch.create(DOCUMENTS_COLLECTION, doc_id, document)
            slot = DOC_SLOTS.get(kind)
            if slot is not None:
                batch.create(
                    ACTIVE_DOC_MARKERS_COLLECTION,
                    marker_id(job_ref.job_id, slot),
                    {"jobId": job_ref.job_id, "slot": slot, "docId": doc_id, "docType": kind},
                )
            try:
                self._ledger.append_and_mutate(
                    job_ref,
                    result.job_patch,
                    activity_entry(text=result.activity_text, user_id=actor.id, user_name=actor.display_name),
                    batch,
                    expect={"status": result.old_status},
                )
            except StoreConflict as exc:
                if exc.collection == ACTIVE_DOC_MARKERS_COLLECTION:
                    self._raise_duplicate_from_marker(job_ref.job_id, kind, exc)
                raise
        else:
            batch.create(DOCUMENTS_COLLECTION, doc_id, document)
            self._store.commit(batch)

        logger.info("doc_issued doc_id=%s doc_no=%s kind=%s job_id=%s", doc_id, doc_no, kind, job_id or "-")
        status = DRAFT
        if submit_for_review and PENDING_REVIEW in DOC_STATUS_TRANSITIONS[kind][DRAFT]:
            status = self.submit_for_review(doc_id, actor)["status"]
        return {"doc_id": doc_id, "doc_no": doc_no, "status": status}

    def _stage_cancel(self, batch: WriteBatch, doc: Mapping[str, Any], *, reason: str, note_line: str | None) -> None:
        if CANCELLED not in DOC_STATUS_TRANSITIONS[doc["docType"]].get(doc["status"], frozenset()):
            raise _doc_transition_error(doc, "CANCEL")
        patch: dict[str, Any] = {
            "status": CANCELLED,
            "cancelReason": reason,
            "cancelledAt": SERVER_TIMESTAMP,
            "updatedAt": SERVER_TIMESTAMP,
        }
        if note_line:
            patch["notes"] = _append_note(doc.get("notes"), note_line)
        batch.update(DOCUMENTS_COLLECTION, str(doc["id"]), patch, expect={"status": doc["status"]})
        job_id = doc.get("jobId")
        slot = DOC_SLOTS.get(str(doc["docType"]))
        if job_id and slot is not None:
            marker = self._store.get(ACTIVE_DOC_MARKERS_COLLECTION, marker_id(job_id, slot))
            if marker is not None and marker.get("docId") == doc["id"]:
                batch.delete(ACTIVE_DOC_MARKERS_COLLECTION, marker_id(job_id, slot), expect={"docId": doc["id"]})

    def _cancel(self, doc_id: str, reason: str, actor: Actor, *, replacing: bool) -> dict[str, Any]:
        require("CANCEL_DOCUMENT", actor)
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("a reason is required to cancel a document")
        doc = self.get_document(doc_id)
        note_line = None
        if replacing:
            note_line = f"[System] Cancelled by {actor.display_name} to issue a replacement. Reason: {reason}"
        batch = self._store.batch()
        self._stage_cancel(batch, doc, reason=reason, note_line=note_line)

        found = locate_job(self._store, str(doc["jobId"]), now_year=self._clock().year) if doc.get("jobId") else None
        if found is None:
            self._store.commit(batch)
        else:
            job_ref, job = found
            job_patch: dict[str, Any] = {}
            if job.get("salesDocId") == doc_id:
                job_patch = {"salesDocId": DELETE_FIELD, "salesDocNo": DELETE_FIELD, "salesDocType": DELETE_FIELD}
            text = f"Cancelled {doc['docType']} document: {doc['docNo']}"
            if replacing:
                text += " to issue a replacement"
            self._ledger.append_and_mutate(
                job_ref,
                job_patch,
                activity_entry(text=f"{text}. Reason: {reason}", user_id=actor.id, user_name=actor.display_name),
                batch,
            )
        logger.info("doc_cancelled doc_id=%s doc_no=%s replacing=%s", doc_id, doc["docNo"], replacing)
        return self.get_document(doc_id)

    def cancel(self, doc_id: str, reason: str, actor: Actor) -> dict[str, Any]:
        return self._cancel(doc_id, reason, actor, replacing=False)

    def cancel_and_replace(self, doc_id: str, reason: str, actor: Actor) -> dict[str, Any]:
        return self._cancel(doc_id, reason, actor, replacing=True)

    def submit_for_review(self, doc_id: str, actor: Actor, replace_reason: str | None = None) -> dict[str, Any]:
        require("SUBMIT_DOCUMENT", actor)
        doc = self.get_document(doc_id)
        kind = str(doc["docType"])
        if PENDING_REVIEW not in DOC_STATUS_TRANSITIONS[kind].get(str(doc["status"]), frozenset()):
            raise _doc_transition_error(doc, "SUBMIT_FOR_REVIEW")
        job_id = doc.get("jobId")

        slot = DOC_SLOTS.get(kind)
        delivery_notes: list[dict[str, Any]] = []
        if kind == TAX_INVOICE and job_id:
            delivery_notes = self._store.query(
                DOCUMENTS_COLLECTION,
                filters=[("jobId", "==", job_id), ("docType", "==", DELIVERY_NOTE), ("status", "!=", CANCELLED)],
            )
            if delivery_notes and not (replace_reason or "").strip():
                raise DuplicateActive(existing=delivery_notes[0])
        if job_id and slot is not None:
            holder = self.find_active(str(job_id), kind)
            replaced = {note["id"] for note in delivery_notes}
            if holder is not None and holder["id"] != doc_id and holder["id"] not in replaced:
                raise DuplicateActive(existing=holder)
        for note in delivery_notes:
            self._check_cancellable(note, actor)
        for note in delivery_notes:
            self.cancel_and_replace(str(note["id"]), replace_reason or "", actor)

        batch = self._store.batch()
        patch: dict[str, Any] = {
            "status": PENDING_REVIEW,
            "submittedAt": SERVER_TIMESTAMP,
            "updatedAt": SERVER_TIMESTAMP,
        }
        if job_id:
            patch["arStatus"] = "PENDING"
        batch.update(DOCUMENTS_COLLECTION, doc_id, patch, expect={"status": DRAFT})

        if job_id and slot is not None:
            marker = self._store.get(ACTIVE_DOC_MARKERS_COLLECTION, marker_id(job_id, slot))
            if marker is None:
                batch.create(
                    ACTIVE_DOC_MARKERS_COLLECTION,
                    marker_id(job_id, slot),
                    {"jobId": job_id, "slot": slot, "docId": doc_id, "docType": kind},
                )
            elif marker.get("docId") != doc_id:
                existing = self._store.get(DOCUMENTS_COLLECTION, str(marker.get("docId") or ""))
                if existing is not None and existing.get("status") != CANCELLED:
                    raise DuplicateActive(existing=existing)
                batch.set(
                    ACTIVE_DOC_MARKERS_COLLECTION,
                    marker_id(job_id, slot),
                    {"jobId": job_id, "slot": slot, "docId": doc_id, "docType": kind},
                )

        total = float(doc.get("grandTotal") or 0)
        if kind in FINAL_BILLING_TYPES and total > 0:
            batch.set(
                OBLIGATIONS_COLLECTION,
                f"ar_{doc_id}",
                {
                    "sourceDocId": doc_id,
                    "sourceDocNo": doc["docNo"],
                    "sourceDocType": kind,
                    "jobId": job_id,
                    "customerSnapshot": doc.get("customerSnapshot"),
                    "amountTotal": total,
                    "amountPaid": 0.0,
                    "balance": total,
                    "status": "UNPAID",
                    "createdAt": SERVER_TIMESTAMP,
                },
            )
        try:
            self._store.commit(batch)
        except StoreConflict as exc:
            if job_id and exc.collection == ACTIVE_DOC_MARKERS_COLLECTION:
                self._raise_duplicate_from_marker(str(job_id), kind, exc)
            raise
        logger.info("doc_submitted doc_id=%s doc_no=%s", doc_id, doc["docNo"])
        return self.get_document(doc_id)

    def mark_paid(self, doc_id: str, actor: Actor) -> dict[str, Any]:
        require("MARK_DOCUMENT_PAID", actor)
        doc = self.get_document(doc_id)
        if PAID not in DOC_STATUS_TRANSITIONS[str(doc["docType"])].get(str(doc["status"]), frozenset()):
            raise _doc_transition_error(doc, "MARK_PAID")
        batch = self._store.batch()
        patch: dict[str, Any] = {"status": PAID, "paidAt": SERVER_TIMESTAMP, "updatedAt": SERVER_TIMESTAMP}
        if doc.get("arStatus"):
            patch["arStatus"] = "PAID"
        batch.update(DOCUMENTS_COLLECTION, doc_id, patch, expect={"status": doc["status"]})
        obligation_id = f"ar_{doc_id}"
        obligation = self._store.get(OBLIGATIONS_COLLECTION, obligation_id)
        if obligation is not None:
            batch.update(
                OBLIGATIONS_COLLECTION,
                obligation_id,
                {"amountPaid": obligation.get("amountTotal"), "balance": 0.0, "status": "PAID"},
            )
        self._store.commit(batch)
        logger.info("doc_paid doc_id=%s doc_no=%s", doc_id, doc["docNo"])
        return self.get_document(doc_id)

    def update(self, doc_id: str, patch: Mapping[str, Any], actor: Actor) -> dict[str, Any]:
        require("EDIT_DOCUMENT", actor)
        doc = self.get_document(doc_id)
        status = str(doc["status"])
        if status in {PAID, CANCELLED}:
            raise DocumentLocked(doc_no=str(doc["docNo"]), status=status)
        if status == PENDING_REVIEW and not is_allowed("EDIT_REVIEWED_DOCUMENT", actor):
            raise DocumentLocked(doc_no=str(doc["docNo"]), status=status)
        unknown = sorted(set(patch) - EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"fields not editable: {', '.join(unknown)}")
        changes = dict(patch)
        if "items" in changes and "grandTotal" not in changes:
            changes["grandTotal"] = _grand_total([dict(x) for x in changes["items"] or []])
        if "docDate" in changes:
            changes["docDate"] = self._doc_date({"doc_date": changes["docDate"]})
        changes["updatedAt"] = SERVER_TIMESTAMP
        batch = self._store.batch()
        batch.update(DOCUMENTS_COLLECTION, doc_id, changes, expect={"status": status})
        self._store.commit(batch)
        logger.info("doc_updated doc_id=%s fields=%s", doc_id, ",".join(sorted(patch)))
        return self.get_document(doc_id)
