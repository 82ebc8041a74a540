from __future__ import annotations

from typing import Any


class ApiError(Exception):
    def __init__(
        self,
        *,
        code: str,
        message: str,
        error_class: str,
        retryable: bool,
        http_status: int,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.error_class = error_class
        self.retryable = retryable
        self.http_status = http_status
        self.details = details


class InvalidTransition(ApiError):
    def __init__(self, *, current_status: str, trigger: str, code: str = "JOB_TRANSITION_INVALID") -> None:
        super().__init__(
            code=code,
            message=f"invalid transition: {trigger} from {current_status}",
            error_class="business_rule",
            retryable=False,
            http_status=409,
            details={"current_status": current_status, "trigger": trigger},
        )
        self.current_status = current_status
        self.trigger = trigger


class Unauthorized(ApiError):
    def __init__(self, *, action: str, role: str, department: str | None) -> None:
        super().__init__(
            code="AUTH_FORBIDDEN",
            message=f"actor role={role} department={department or '-'} may not perform {action}",
            error_class="security_sensitive",
            retryable=False,
            http_status=403,
        )
        self.action = action


class DuplicateActive(ApiError):
    def __init__(self, *, existing: dict[str, Any]) -> None:
        super().__init__(
            code="DOC_DUPLICATE_ACTIVE",
            message=(
                f"job already has an active {existing.get('docType')} "
                f"({existing.get('docNo')}); cancel and replace it first"
            ),
            error_class="business_rule",
            retryable=False,
            http_status=409,
            details={
                "existing": {
                    "id": existing.get("id"),
                    "docNo": existing.get("docNo"),
                    "docType": existing.get("docType"),
                    "status": existing.get("status"),
                }
            },
        )
        self.existing = existing


class ValidationError(ApiError):
    def __init__(self, message: str) -> None:
        super().__init__(
            code="REQ_VALIDATION_FAILED",
            message=message,
            error_class="validation",
            retryable=False,
            http_status=400,
        )


class StoreConflict(ApiError):
    """The atomic write unit was rejected; nothing from it was committed."""

    def __init__(self, message: str, *, collection: str | None = None, doc_id: str | None = None) -> None:
        super().__init__(
            code="STORE_CONFLICT",
            message=message,
            error_class="transient",
            retryable=True,
            http_status=409,
        )
        self.collection = collection
        self.doc_id = doc_id


class NotFound(ApiError):
    def __init__(self, *, code: str, message: str) -> None:
        super().__init__(
            code=code,
            message=message,
            error_class="validation",
            retryable=False,
            http_status=404,
        )


class DocumentLocked(ApiError):
    def __init__(self, *, doc_no: str, status: str) -> None:
        super().__init__(
            code="DOC_LOCKED",
            message=f"document {doc_no} is {status} and locked against edits",
            error_class="business_rule",
            retryable=False,
            http_status=409,
        )
