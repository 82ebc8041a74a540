from __future__ import annotations

from dataclasses import dataclass
from typing import Any

RECEIVED = "RECEIVED"
IN_PROGRESS = "IN_PROGRESS"
WAITING_QUOTATION = "WAITING_QUOTATION"
WAITING_APPROVE = "WAITING_APPROVE"
PENDING_PARTS = "PENDING_PARTS"
IN_REPAIR_PROCESS = "IN_REPAIR_PROCESS"
DONE = "DONE"
WAITING_CUSTOMER_PICKUP = "WAITING_CUSTOMER_PICKUP"
CLOSED = "CLOSED"

JOB_STATUSES: tuple[str, ...] = (
    RECEIVED,
    IN_PROGRESS,
    WAITING_QUOTATION,
    WAITING_APPROVE,
    PENDING_PARTS,
    IN_REPAIR_PROCESS,
    DONE,
    WAITING_CUSTOMER_PICKUP,
    CLOSED,
)
TERMINAL_STATUSES = frozenset({CLOSED})
NON_TERMINAL_STATUSES = frozenset(s for s in JOB_STATUSES if s not in TERMINAL_STATUSES)

JOB_STATUS_LABELS: dict[str, str] = {
    RECEIVED: "Waiting for technician",
    IN_PROGRESS: "In progress",
    WAITING_QUOTATION: "Waiting for quotation",
    WAITING_APPROVE: "Waiting for approval",
    PENDING_PARTS: "Preparing parts",
    IN_REPAIR_PROCESS: "Repair in process",
    DONE: "Done",
    WAITING_CUSTOMER_PICKUP: "Waiting for customer pickup",
    CLOSED: "Closed",
}

DEPARTMENTS: tuple[str, ...] = ("MANAGEMENT", "OFFICE", "CAR_SERVICE", "COMMONRAIL", "MECHANIC", "OUTSOURCE")
JOB_DEPARTMENTS: tuple[str, ...] = ("CAR_SERVICE", "COMMONRAIL", "MECHANIC", "OUTSOURCE")
OFFICE_DEPARTMENT = "OFFICE"

DEPARTMENT_LABELS: dict[str, str] = {
    "MANAGEMENT": "Management",
    "OFFICE": "Office",
    "CAR_SERVICE": "Car service",
    "COMMONRAIL": "Common rail",
    "MECHANIC": "Mechanic",
    "OUTSOURCE": "Outsource",
}

ROLES: tuple[str, ...] = ("ADMIN", "MANAGER", "OFFICER", "WORKER", "VIEWER")

QUOTATION = "QUOTATION"
DELIVERY_NOTE = "DELIVERY_NOTE"
TAX_INVOICE = "TAX_INVOICE"
RECEIPT = "RECEIPT"
DOC_TYPES: tuple[str, ...] = (QUOTATION, DELIVERY_NOTE, TAX_INVOICE, RECEIPT)

DRAFT = "DRAFT"
PENDING_REVIEW = "PENDING_REVIEW"
PAID = "PAID"
CANCELLED = "CANCELLED"

# Documents of one slot are mutually exclusive per job while not CANCELLED.
DOC_SLOTS: dict[str, str] = {
    QUOTATION: "QUOTATION",
    DELIVERY_NOTE: "FINAL_BILLING",
    TAX_INVOICE: "FINAL_BILLING",
}
FINAL_BILLING_TYPES = frozenset({DELIVERY_NOTE, TAX_INVOICE})

DOC_STATUS_TRANSITIONS: dict[str, dict[str, frozenset[str]]] = {
    QUOTATION: {
        DRAFT: frozenset({PENDING_REVIEW, CANCELLED}),
        PENDING_REVIEW: frozenset({PAID, CANCELLED}),
        PAID: frozenset(),
        CANCELLED: frozenset(),
    },
    DELIVERY_NOTE: {
        DRAFT: frozenset({PENDING_REVIEW, CANCELLED}),
        PENDING_REVIEW: frozenset({PAID, CANCELLED}),
        PAID: frozenset(),
        CANCELLED: frozenset(),
    },
    TAX_INVOICE: {
        DRAFT: frozenset({PENDING_REVIEW, CANCELLED}),
        PENDING_REVIEW: frozenset({PAID, CANCELLED}),
        PAID: frozenset(),
        CANCELLED: frozenset(),
    },
    RECEIPT: {
        DRAFT: frozenset({PAID, CANCELLED}),
        PAID: frozenset(),
        CANCELLED: frozenset(),
    },
}

DEFAULT_DOC_PREFIXES: dict[str, str] = {
    QUOTATION: "QT",
    DELIVERY_NOTE: "DN",
    TAX_INVOICE: "INV",
    RECEIPT: "RC",
}
DOC_PREFIX_SETTINGS_KEYS: dict[str, str] = {
    QUOTATION: "quotationPrefix",
    DELIVERY_NOTE: "deliveryNotePrefix",
    TAX_INVOICE: "taxInvoicePrefix",
    RECEIPT: "receiptPrefix",
}
DOC_COUNTER_FIELDS: dict[str, str] = {
    QUOTATION: "quotation",
    DELIVERY_NOTE: "deliveryNote",
    TAX_INVOICE: "taxInvoice",
    RECEIPT: "receipt",
}

JOBS_COLLECTION = "jobs"
DOCUMENTS_COLLECTION = "documents"
USERS_COLLECTION = "users"
ACTIVE_DOC_MARKERS_COLLECTION = "activeJobDocuments"
DOC_COUNTERS_COLLECTION = "documentCounters"
SETTINGS_COLLECTION = "settings"
OBLIGATIONS_COLLECTION = "accountingObligations"
ARCHIVE_INDEX_COLLECTION = "jobArchiveIndex"
ACTIVITIES = "activities"


def job_status_label(status: str | None) -> str:
    if not status:
        return ""
    return JOB_STATUS_LABELS.get(status, status)


def dept_label(department: str | None) -> str:
    if not department:
        return ""
    return DEPARTMENT_LABELS.get(department, department)


@dataclass(frozen=True)
class Actor:
    id: str
    display_name: str
    role: str
    department: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == "ADMIN"

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "Actor":
        department = str(claims.get("department") or "").strip().upper() or None
        return cls(
            id=str(claims.get("sub") or "").strip(),
            display_name=str(claims.get("name") or claims.get("sub") or "").strip(),
            role=str(claims.get("role") or "VIEWER").strip().upper(),
            department=department,
        )
