from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

JobTrigger = Literal[
    "ACCEPT_JOB",
    "REQUEST_QUOTATION",
    "MARK_DONE",
    "CUSTOMER_APPROVE",
    "CUSTOMER_REJECT",
    "PARTS_READY",
    "TRANSFER_DEPARTMENT",
    "REASSIGN_WORKER",
    "REVERT_CLOSE",
]
DocKind = Literal["QUOTATION", "DELIVERY_NOTE", "TAX_INVOICE", "RECEIPT"]


class CustomerSnapshot(BaseModel):
    name: str = Field(min_length=1)
    phone: str = ""


class JobCreateRequest(BaseModel):
    department: str
    customer: CustomerSnapshot
    customer_id: str | None = None
    description: str = ""
    license_plate: str = ""
    photos: list[str] = Field(default_factory=list)
    office_note: str = ""


class JobTransitionRequest(BaseModel):
    trigger: JobTrigger
    with_cost: bool = False
    reason: str = ""
    department: str | None = None
    note: str = ""
    worker_id: str | None = None


class JobNoteRequest(BaseModel):
    text: str = ""
    photos: list[str] = Field(default_factory=list)


class JobDetailsRequest(BaseModel):
    description: str | None = None
    office_note: str | None = None
    vehicle_details: dict[str, Any] | None = None
    technical_report: str | None = None


class JobCloseRequest(BaseModel):
    closed_date: str
    sales_doc_id: str | None = None


class DocumentItem(BaseModel):
    description: str
    quantity: float = Field(default=1, ge=0)
    unitPrice: float = Field(default=0, ge=0)


class DocumentIssueRequest(BaseModel):
    kind: DocKind
    job_id: str | None = None
    customer: CustomerSnapshot | None = None
    doc_date: str | None = None
    due_date: str | None = None
    items: list[DocumentItem] = Field(default_factory=list)
    grand_total: float | None = Field(default=None, ge=0)
    notes: str = ""
    references_doc_ids: list[str] = Field(default_factory=list)
    submit_for_review: bool = False
    replace_reason: str | None = None


class DocumentUpdateRequest(BaseModel):
    items: list[DocumentItem] | None = None
    grandTotal: float | None = Field(default=None, ge=0)
    notes: str | None = None
    docDate: str | None = None
    dueDate: str | None = None
    customerSnapshot: CustomerSnapshot | None = None
    referencesDocIds: list[str] | None = None


class DocumentCancelRequest(BaseModel):
    reason: str = Field(min_length=1)


class DocumentSubmitRequest(BaseModel):
    replace_reason: str | None = None


def success_envelope(data: Any, trace_id: str, message: str = "ok") -> dict[str, Any]:
    return {
        "success": True,
        "data": data,
        "message": message,
        "meta": {
            "trace_id": trace_id,
        },
    }


def error_envelope(
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    trace_id: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "retryable": retryable,
        "class": error_class,
    }
    if details is not None:
        error["details"] = details
    return {
        "success": False,
        "error": error,
        "meta": {
            "trace_id": trace_id,
        },
    }


def page_payload(page: Any) -> dict[str, Any]:
    return {"items": page.items, "next_cursor": page.next_cursor, "is_last": page.is_last}
