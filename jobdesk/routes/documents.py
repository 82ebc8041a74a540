from __future__ import annotations

from fastapi import APIRouter, Header, Query, Request
from fastapi.responses import JSONResponse

from jobdesk.idempotency import run_idempotent
from jobdesk.repositories import DocumentsRepository
from jobdesk.routes._deps import actor_from_request, issuance_coordinator, trace_id_from_request
from jobdesk.schemas import (
    DocumentCancelRequest,
    DocumentIssueRequest,
    DocumentSubmitRequest,
    DocumentUpdateRequest,
    page_payload,
    success_envelope,
)
from jobdesk.store_backends import store

router = APIRouter(prefix="/api/v1", tags=["documents"])


@router.post("/documents")
def issue_document(
    payload: DocumentIssueRequest,
    request: Request,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    actor = actor_from_request(request)
    body = payload.model_dump(mode="json", exclude={"kind", "submit_for_review", "replace_reason"})
    data = run_idempotent(
        store,
        endpoint="POST:/api/v1/documents",
        actor_id=actor.id,
        idempotency_key=idempotency_key,
        payload=payload.model_dump(mode="json"),
        execute=lambda: issuance_coordinator().issue(
            payload.kind,
            body,
            actor,
            submit_for_review=payload.submit_for_review,
            replace_reason=payload.replace_reason,
        ),
    )
    return JSONResponse(
        status_code=201,
        content=success_envelope(data, trace_id_from_request(request)),
    )


@router.get("/documents")
def list_documents(
    request: Request,
    doc_type: str | None = Query(default=None),
    status: str | None = Query(default=None),
    job_id: str | None = Query(default=None),
    cursor: str | None = Query(default=None),
    page_size: int | None = Query(default=None),
    search: str | None = Query(default=None),
):
    page = DocumentsRepository(store).page(
        doc_type=doc_type,
        status=status,
        job_id=job_id,
        cursor=cursor,
        page_size=page_size,
        search=search,
    )
    return success_envelope(page_payload(page), trace_id_from_request(request))


@router.get("/documents/{doc_id}")
def get_document(doc_id: str, request: Request):
    return success_envelope(issuance_coordinator().get_document(doc_id), trace_id_from_request(request))


@router.patch("/documents/{doc_id}")
def update_document(doc_id: str, payload: DocumentUpdateRequest, request: Request):
    patch = payload.model_dump(mode="json", exclude_unset=True)
    data = issuance_coordinator().update(doc_id, patch, actor_from_request(request))
    return success_envelope(data, trace_id_from_request(request))


@router.post("/documents/{doc_id}/cancel")
def cancel_document(doc_id: str, payload: DocumentCancelRequest, request: Request):
    data = issuance_coordinator().cancel(doc_id, payload.reason, actor_from_request(request))
    return success_envelope(data, trace_id_from_request(request))


@router.post("/documents/{doc_id}/cancel-and-replace")
def cancel_and_replace_document(doc_id: str, payload: DocumentCancelRequest, request: Request):
    data = issuance_coordinator().cancel_and_replace(doc_id, payload.reason, actor_from_request(request))
    return success_envelope(data, trace_id_from_request(request))


@router.post("/documents/{doc_id}/submit-review")
def submit_document_for_review(doc_id: str, payload: DocumentSubmitRequest, request: Request):
    data = issuance_coordinator().submit_for_review(
        doc_id,
        actor_from_request(request),
        replace_reason=payload.replace_reason,
    )
    return success_envelope(data, trace_id_from_request(request))


@router.post("/documents/{doc_id}/mark-paid")
def mark_document_paid(doc_id: str, request: Request):
    data = issuance_coordinator().mark_paid(doc_id, actor_from_request(request))
    return success_envelope(data, trace_id_from_request(request))
