"""Job status transition engine.

The engine is pure: it reads the current job and the actor, decides, and
returns the single job patch and the single activity text that describe the
change. Writing them is the ledger's job, so a rejected trigger can never leave
a partial effect behind.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from jobdesk.domain import (
    CLOSED,
    DONE,
    IN_PROGRESS,
    IN_REPAIR_PROCESS,
    JOB_DEPARTMENTS,
    JOB_STATUSES,
    NON_TERMINAL_STATUSES,
    OFFICE_DEPARTMENT,
    PENDING_PARTS,
    RECEIVED,
    WAITING_APPROVE,
    WAITING_CUSTOMER_PICKUP,
    WAITING_QUOTATION,
    Actor,
    dept_label,
    job_status_label,
)
from jobdesk.entity_store import DELETE_FIELD
from jobdesk.errors import InvalidTransition, Unauthorized, ValidationError
from jobdesk.policy import is_allowed, require


@dataclass(frozen=True)
class TransitionResult:
    trigger: str
    old_status: str
    new_status: str
    job_patch: dict[str, Any]
    activity_text: str
    photos: tuple[str, ...] = ()
    fired: tuple[str, ...] = field(default=())

    @property
    def status_changed(self) -> bool:
        return self.old_status != self.new_status


ALLOWED_SOURCES: dict[str, frozenset[str]] = {
    "ACCEPT_JOB": frozenset({RECEIVED}),
    "REQUEST_QUOTATION": frozenset({IN_PROGRESS}),
    "MARK_DONE": frozenset({IN_PROGRESS, WAITING_QUOTATION, WAITING_APPROVE, IN_REPAIR_PROCESS}),
    "CUSTOMER_APPROVE": frozenset({WAITING_APPROVE}),
    "CUSTOMER_REJECT": frozenset({WAITING_APPROVE}),
    "PARTS_READY": frozenset({PENDING_PARTS}),
    "TRANSFER_DEPARTMENT": NON_TERMINAL_STATUSES,
    "REASSIGN_WORKER": NON_TERMINAL_STATUSES,
    "REVERT_CLOSE": frozenset({CLOSED, DONE}),
    "APPEND_NOTE": NON_TERMINAL_STATUSES,
    "AUTO_ESCALATE": frozenset({IN_PROGRESS}),
    "QUOTATION_ISSUED": frozenset({IN_PROGRESS, WAITING_QUOTATION, WAITING_APPROVE}),
    "BILLING_ISSUED": frozenset({DONE, WAITING_CUSTOMER_PICKUP}),
    "RECEIPT_ISSUED": frozenset(JOB_STATUSES),
    "CLOSE_JOB": frozenset({DONE, WAITING_CUSTOMER_PICKUP}),
}

TRIGGERS = frozenset(ALLOWED_SOURCES)


def status_line(old_status: str, new_status: str) -> str:
    return f'Status changed: "{job_status_label(old_status)}" -> "{job_status_label(new_status)}"'


def _text(old_status: str, new_status: str, *details: str) -> str:
    lines: list[str] = []
    if old_status != new_status:
        lines.append(status_line(old_status, new_status))
    lines.extend(x for x in details if x)
    return "\n".join(lines)


def _result(
    trigger: str,
    job: Mapping[str, Any],
    new_status: str,
    patch: dict[str, Any],
    *details: str,
    photos: tuple[str, ...] = (),
) -> TransitionResult:
    old_status = str(job.get("status") or "")
    job_patch = dict(patch)
    if new_status != old_status:
        job_patch["status"] = new_status
    return TransitionResult(
        trigger=trigger,
        old_status=old_status,
        new_status=new_status,
        job_patch=job_patch,
        activity_text=_text(old_status, new_status, *details),
        photos=photos,
        fired=(trigger,),
    )


def _accept_job(job: Mapping[str, Any], actor: Actor, params: Mapping[str, Any]) -> TransitionResult:
    if actor.role == "WORKER" and actor.department != job.get("department"):
        raise Unauthorized(action="ACCEPT_JOB", role=actor.role, department=actor.department)
    return _result(
        "ACCEPT_JOB",
        job,
        IN_PROGRESS,
        {"assigneeId": actor.id, "assigneeName": actor.display_name},
        f"Job accepted by {actor.display_name}",
    )


def _simple(trigger: str, new_status: str, detail: str) -> Callable[..., TransitionResult]:
    def _handler(job: Mapping[str, Any], actor: Actor, params: Mapping[str, Any]) -> TransitionResult:
        return _result(trigger, job, new_status, {}, detail)

    return _handler


def _customer_reject(job: Mapping[str, Any], actor: Actor, params: Mapping[str, Any]) -> TransitionResult:
    with_cost = bool(params.get("with_cost"))
    reason = str(params.get("reason") or "").strip()
    if with_cost:
        new_status = DONE
        summary = "Customer rejected the quotation (chargeable), sent to billing."
        notify = f"Notified department: {dept_label(OFFICE_DEPARTMENT)} (prepare bill)"
    else:
        new_status = CLOSED
        summary = "Customer rejected the quotation (no charge), job closed."
        notify = f"Notified department: {dept_label(str(job.get('department') or ''))} (return item to customer)"
    return _result(
        "CUSTOMER_REJECT",
        job,
        new_status,
        {},
        summary,
        f"Reason: {reason or '-'}",
        notify,
    )


def _transfer_department(job: Mapping[str, Any], actor: Actor, params: Mapping[str, Any]) -> TransitionResult:
    department = str(params.get("department") or "").strip().upper()
    if department not in JOB_DEPARTMENTS:
        raise ValidationError(f"unknown job department: {department or '-'}")
    if department == job.get("department"):
        raise ValidationError(f"job is already in department {department}")
    note = str(params.get("note") or "").strip()
    return _result(
        "TRANSFER_DEPARTMENT",
        job,
        RECEIVED,
        {"department": department, "assigneeId": None, "assigneeName": None},
        f"Department changed from {dept_label(job.get('department'))} to {dept_label(department)}. "
        f"Note: {note or '-'}",
    )


def _reassign_worker(job: Mapping[str, Any], actor: Actor, params: Mapping[str, Any]) -> TransitionResult:
    worker = params.get("worker")
    if not isinstance(worker, Mapping) or not worker.get("id"):
        raise ValidationError("worker is required")
    if worker.get("status") != "ACTIVE":
        raise ValidationError(f"worker {worker.get('id')} is not active")
    if worker.get("role") != "WORKER":
        raise ValidationError(f"user {worker.get('id')} is not a worker")
    if worker.get("department") != job.get("department"):
        raise ValidationError(
            f"worker {worker.get('id')} does not belong to department {job.get('department')}"
        )
    name = str(worker.get("displayName") or worker["id"])
    return _result(
        "REASSIGN_WORKER",
        job,
        str(job.get("status") or ""),
        {"assigneeId": worker["id"], "assigneeName": name},
        f"Worker changed to {name}",
    )


def _revert_close(job: Mapping[str, Any], actor: Actor, params: Mapping[str, Any]) -> TransitionResult:
    reason = str(params.get("reason") or "").strip()
    if not reason:
        raise ValidationError("a reason is required to revert a closed job")
    return _result(
        "REVERT_CLOSE",
        job,
        WAITING_CUSTOMER_PICKUP,
        {"pickupDate": DELETE_FIELD, "closedDate": DELETE_FIELD},
        f"Close reverted. Reason: {reason}",
    )


def _append_note(job: Mapping[str, Any], actor: Actor, params: Mapping[str, Any]) -> TransitionResult:
    text = str(params.get("text") or "").strip()
    photos = tuple(str(x) for x in (params.get("photos") or ()) if str(x).strip())
    if not text and not photos:
        raise ValidationError("a note needs text or at least one photo")
    note = _result("APPEND_NOTE", job, str(job.get("status") or ""), {}, text, photos=photos)
    if not should_auto_escalate(job, actor):
        return note
    escalation = _auto_escalate(job, actor, {})
    patch = {**note.job_patch, **escalation.job_patch}
    return TransitionResult(
        trigger="APPEND_NOTE",
        old_status=note.old_status,
        new_status=escalation.new_status,
        job_patch=patch,
        activity_text="\n".join(x for x in (escalation.activity_text, note.activity_text) if x),
        photos=photos,
        fired=("APPEND_NOTE", "AUTO_ESCALATE"),
    )


def should_auto_escalate(job: Mapping[str, Any], actor: Actor) -> bool:
    return (
        job.get("status") == IN_PROGRESS
        and actor.department != OFFICE_DEPARTMENT
        and is_allowed("AUTO_ESCALATE", actor)
    )


def _auto_escalate(job: Mapping[str, Any], actor: Actor, params: Mapping[str, Any]) -> TransitionResult:
    return _result("AUTO_ESCALATE", job, WAITING_QUOTATION, {})


def _quotation_issued(job: Mapping[str, Any], actor: Actor, params: Mapping[str, Any]) -> TransitionResult:
    doc_no = str(params.get("doc_no") or "")
    return _result("QUOTATION_ISSUED", job, WAITING_APPROVE, {}, f"Created QUOTATION document: {doc_no}")


def _billing_issued(job: Mapping[str, Any], actor: Actor, params: Mapping[str, Any]) -> TransitionResult:
    doc_type = str(params.get("doc_type") or "")
    doc_no = str(params.get("doc_no") or "")
    return _result(
        "BILLING_ISSUED",
        job,
        WAITING_CUSTOMER_PICKUP,
        {"salesDocId": params.get("doc_id"), "salesDocNo": doc_no, "salesDocType": doc_type},
        f"Created {doc_type} document: {doc_no}",
    )


def _receipt_issued(job: Mapping[str, Any], actor: Actor, params: Mapping[str, Any]) -> TransitionResult:
    doc_no = str(params.get("doc_no") or "")
    return _result("RECEIPT_ISSUED", job, str(job.get("status") or ""), {}, f"Created RECEIPT document: {doc_no}")


def _close_job(job: Mapping[str, Any], actor: Actor, params: Mapping[str, Any]) -> TransitionResult:
    closed_date = str(params.get("closed_date") or "").strip()
    try:
        date.fromisoformat(closed_date)
    except ValueError:
        raise ValidationError(f"closed_date must be YYYY-MM-DD, got {closed_date or '-'}") from None
    patch: dict[str, Any] = {
        "closedDate": closed_date,
        "pickupDate": closed_date,
        "closedById": actor.id,
        "closedByName": actor.display_name,
    }
    sales_doc = params.get("sales_doc")
    details = [f"Job closed on {closed_date}"]
    if isinstance(sales_doc, Mapping) and sales_doc.get("salesDocId"):
        patch["salesDocId"] = sales_doc["salesDocId"]
        patch["salesDocNo"] = sales_doc.get("salesDocNo")
        patch["salesDocType"] = sales_doc.get("salesDocType")
        details.append(f"Billed with {sales_doc.get('salesDocType')} {sales_doc.get('salesDocNo')}")
    return _result("CLOSE_JOB", job, CLOSED, patch, *details)


_HANDLERS: dict[str, Callable[[Mapping[str, Any], Actor, Mapping[str, Any]], TransitionResult]] = {
    "ACCEPT_JOB": _accept_job,
    "REQUEST_QUOTATION": _simple("REQUEST_QUOTATION", WAITING_QUOTATION, "Quotation requested"),
    "MARK_DONE": _simple("MARK_DONE", DONE, ""),
    "CUSTOMER_APPROVE": _simple("CUSTOMER_APPROVE", PENDING_PARTS, "Customer approved the quotation"),
    "CUSTOMER_REJECT": _customer_reject,
    "PARTS_READY": _simple("PARTS_READY", IN_REPAIR_PROCESS, "Parts are ready"),
    "TRANSFER_DEPARTMENT": _transfer_department,
    "REASSIGN_WORKER": _reassign_worker,
    "REVERT_CLOSE": _revert_close,
    "APPEND_NOTE": _append_note,
    "AUTO_ESCALATE": _auto_escalate,
    "QUOTATION_ISSUED": _quotation_issued,
    "BILLING_ISSUED": _billing_issued,
    "RECEIPT_ISSUED": _receipt_issued,
    "CLOSE_JOB": _close_job,
}


def _check_source(job: Mapping[str, Any], trigger: str) -> None:
    current_status = str(job.get("status") or "")
    allowed = ALLOWED_SOURCES[trigger]
    valid = current_status in allowed
    if trigger == "REVERT_CLOSE" and current_status == DONE:
        valid = bool(job.get("pickupDate"))
    if job.get("isArchived") and trigger not in {"REVERT_CLOSE", "RECEIPT_ISSUED"}:
        valid = False
    if not valid:
        raise InvalidTransition(current_status=current_status, trigger=trigger)


def apply_transition(job: Mapping[str, Any], trigger: str, actor: Actor, **params: Any) -> TransitionResult:
    handler = _HANDLERS.get(trigger)
    if handler is None:
        raise ValidationError(f"unknown trigger: {trigger}")
    _check_source(job, trigger)
    require(trigger, actor)
    return handler(job, actor, params)
