from __future__ import annotations

import uuid
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from jobdesk.domain import Actor
from jobdesk.issuance import DocumentIssuanceCoordinator
from jobdesk.job_workflow import JobWorkflow
from jobdesk.schemas import error_envelope
from jobdesk.store_backends import store


def trace_id_from_request(request: Request) -> str:
    trace_id = getattr(request.state, "trace_id", None)
    if trace_id:
        return trace_id
    return uuid.uuid4().hex


def request_id_from_request(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    return f"req_{uuid.uuid4().hex[:12]}"


def actor_from_request(request: Request) -> Actor:
    actor = getattr(request.state, "actor", None)
    if isinstance(actor, Actor):
        return actor
    return Actor(id="anonymous", display_name="anonymous", role="VIEWER")


def job_workflow() -> JobWorkflow:
    return JobWorkflow(store)


def issuance_coordinator() -> DocumentIssuanceCoordinator:
    return DocumentIssuanceCoordinator(store)


def error_response(
    request: Request,
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    status_code: int,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_envelope(
            code=code,
            message=message,
            error_class=error_class,
            retryable=retryable,
            trace_id=trace_id_from_request(request),
            details=details,
        ),
    )
