from __future__ import annotations

from dataclasses import dataclass

from jobdesk.domain import Actor
from jobdesk.errors import Unauthorized


@dataclass(frozen=True)
class Capability:
    """Roles allowed outright, plus departments whose staff are also allowed."""

    roles: frozenset[str]
    departments: frozenset[str] = frozenset()

    def allows(self, actor: Actor) -> bool:
        if actor.role == "VIEWER":
            return False
        if actor.role in self.roles:
            return True
        return actor.department is not None and actor.department in self.departments


STAFF = Capability(roles=frozenset({"ADMIN", "MANAGER", "OFFICER", "WORKER"}))
OFFICE_OR_MANAGEMENT = Capability(
    roles=frozenset({"ADMIN", "MANAGER"}),
    departments=frozenset({"OFFICE", "MANAGEMENT"}),
)
ADMIN_ONLY = Capability(roles=frozenset({"ADMIN"}))
DETAIL_EDITORS = Capability(
    roles=frozenset({"ADMIN", "MANAGER"}),
    departments=frozenset({"OFFICE", "MANAGEMENT", "CAR_SERVICE", "COMMONRAIL", "MECHANIC"}),
)

POLICY: dict[str, Capability] = {
    "CREATE_JOB": OFFICE_OR_MANAGEMENT,
    "EDIT_JOB_DETAILS": DETAIL_EDITORS,
    "ACCEPT_JOB": STAFF,
    "REQUEST_QUOTATION": STAFF,
    "MARK_DONE": STAFF,
    "APPEND_NOTE": STAFF,
    "AUTO_ESCALATE": STAFF,
    "CUSTOMER_APPROVE": OFFICE_OR_MANAGEMENT,
    "CUSTOMER_REJECT": OFFICE_OR_MANAGEMENT,
    "PARTS_READY": OFFICE_OR_MANAGEMENT,
    "CLOSE_JOB": OFFICE_OR_MANAGEMENT,
    "ARCHIVE_JOB": OFFICE_OR_MANAGEMENT,
    "QUOTATION_ISSUED": OFFICE_OR_MANAGEMENT,
    "BILLING_ISSUED": OFFICE_OR_MANAGEMENT,
    "RECEIPT_ISSUED": OFFICE_OR_MANAGEMENT,
    "ISSUE_DOCUMENT": OFFICE_OR_MANAGEMENT,
    "CANCEL_DOCUMENT": OFFICE_OR_MANAGEMENT,
    "SUBMIT_DOCUMENT": OFFICE_OR_MANAGEMENT,
    "EDIT_DOCUMENT": OFFICE_OR_MANAGEMENT,
    "MARK_DOCUMENT_PAID": Capability(roles=frozenset({"ADMIN", "MANAGER"}), departments=frozenset({"MANAGEMENT"})),
    "EDIT_REVIEWED_DOCUMENT": Capability(roles=frozenset({"ADMIN", "MANAGER"})),
    "TRANSFER_DEPARTMENT": ADMIN_ONLY,
    "REASSIGN_WORKER": ADMIN_ONLY,
    "REVERT_CLOSE": ADMIN_ONLY,
}


def is_allowed(action: str, actor: Actor) -> bool:
    capability = POLICY.get(action)
    if capability is None:
        return False
    return capability.allows(actor)


def require(action: str, actor: Actor) -> None:
    if not is_allowed(action, actor):
        raise Unauthorized(action=action, role=actor.role, department=actor.department)
