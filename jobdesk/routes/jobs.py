from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Header, Query, Request
from fastapi.responses import JSONResponse

from jobdesk.idempotency import run_idempotent
from jobdesk.repositories import JobsRepository, UsersRepository
from jobdesk.routes._deps import (
    actor_from_request,
    issuance_coordinator,
    job_workflow,
    trace_id_from_request,
)
from jobdesk.schemas import (
    JobCloseRequest,
    JobCreateRequest,
    JobDetailsRequest,
    JobNoteRequest,
    JobTransitionRequest,
    page_payload,
    success_envelope,
)
from jobdesk.store_backends import store

router = APIRouter(prefix="/api/v1", tags=["jobs"])


def _transition_params(payload: JobTransitionRequest) -> dict[str, Any]:
    if payload.trigger == "CUSTOMER_REJECT":
        return {"with_cost": payload.with_cost, "reason": payload.reason}
    if payload.trigger == "TRANSFER_DEPARTMENT":
        return {"department": payload.department, "note": payload.note}
    if payload.trigger == "REASSIGN_WORKER":
        return {"worker_id": payload.worker_id}
    if payload.trigger == "REVERT_CLOSE":
        return {"reason": payload.reason}
    return {}


@router.post("/jobs")
def create_job(
    payload: JobCreateRequest,
    request: Request,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    actor = actor_from_request(request)
    data = run_idempotent(
        store,
        endpoint="POST:/api/v1/jobs",
        actor_id=actor.id,
        idempotency_key=idempotency_key,
        payload=payload.model_dump(mode="json"),
        execute=lambda: job_workflow().create_job(payload.model_dump(mode="json"), actor),
    )
    return JSONResponse(
        status_code=201,
        content=success_envelope(data, trace_id_from_request(request)),
    )


@router.get("/jobs")
def list_jobs(
    request: Request,
    source: str = Query(default="active"),
    year: int | None = Query(default=None),
    status: str | None = Query(default=None),
    department: str | None = Query(default=None),
    assignee_id: str | None = Query(default=None),
    cursor: str | None = Query(default=None),
    page_size: int | None = Query(default=None),
    search: str | None = Query(default=None),
):
    page = JobsRepository(store).page(
        source=source,
        year=year,
        status=status,
        department=department,
        assignee_id=assignee_id,
        cursor=cursor,
        page_size=page_size,
        search=search,
    )
    return success_envelope(page_payload(page), trace_id_from_request(request))


@router.get("/jobs/{job_id}")
def get_job(job_id: str, request: Request):
    return success_envelope(job_workflow().get_job(job_id), trace_id_from_request(request))


@router.get("/jobs/{job_id}/activities")
def list_job_activities(job_id: str, request: Request):
    items = job_workflow().list_activities(job_id)
    return success_envelope({"items": items}, trace_id_from_request(request))


@router.get("/jobs/{job_id}/documents")
def list_job_documents(job_id: str, request: Request):
    job_workflow().locate(job_id)
    items = issuance_coordinator().list_job_documents(job_id)
    return success_envelope({"items": items}, trace_id_from_request(request))


@router.get("/jobs/{job_id}/worker-candidates")
def list_worker_candidates(job_id: str, request: Request):
    job = job_workflow().get_job(job_id)
    items = UsersRepository(store).list_workers(job["department"])
    return success_envelope({"items": items}, trace_id_from_request(request))


@router.post("/jobs/{job_id}/transitions")
def transition_job(
    job_id: str,
    payload: JobTransitionRequest,
    request: Request,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    actor = actor_from_request(request)
    data = run_idempotent(
        store,
        endpoint=f"POST:/api/v1/jobs/{job_id}/transitions",
        actor_id=actor.id,
        idempotency_key=idempotency_key,
        payload=payload.model_dump(mode="json"),
        execute=lambda: job_workflow().apply(job_id, payload.trigger, actor, **_transition_params(payload)),
    )
    return success_envelope(data, trace_id_from_request(request))


@router.post("/jobs/{job_id}/notes")
def add_job_note(
    job_id: str,
    payload: JobNoteRequest,
    request: Request,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    actor = actor_from_request(request)
    data = run_idempotent(
        store,
        endpoint=f"POST:/api/v1/jobs/{job_id}/notes",
        actor_id=actor.id,
        idempotency_key=idempotency_key,
        payload=payload.model_dump(mode="json"),
        execute=lambda: job_workflow().add_note(job_id, actor, text=payload.text, photos=payload.photos),
    )
    return success_envelope(data, trace_id_from_request(request))


@router.patch("/jobs/{job_id}/details")
def update_job_details(job_id: str, payload: JobDetailsRequest, request: Request):
    actor = actor_from_request(request)
    data = job_workflow().update_details(
        job_id,
        actor,
        description=payload.description,
        office_note=payload.office_note,
        vehicle_details=payload.vehicle_details,
        technical_report=payload.technical_report,
    )
    return success_envelope(data, trace_id_from_request(request))


@router.post("/jobs/{job_id}/close")
def close_job(job_id: str, payload: JobCloseRequest, request: Request):
    actor = actor_from_request(request)
    sales_doc = None
    if payload.sales_doc_id:
        doc = issuance_coordinator().get_document(payload.sales_doc_id)
        sales_doc = {"salesDocId": doc["id"], "salesDocNo": doc["docNo"], "salesDocType": doc["docType"]}
    data = job_workflow().close_job(job_id, actor, closed_date=payload.closed_date, sales_doc=sales_doc)
    return success_envelope(data, trace_id_from_request(request))


@router.post("/jobs/{job_id}/archive")
def archive_job(job_id: str, request: Request):
    data = job_workflow().archive_job(job_id, actor_from_request(request))
    return success_envelope(data, trace_id_from_request(request))
