from __future__ import annotations

import pytest

from jobdesk.archive import locate_job
from jobdesk.errors import InvalidTransition, NotFound, StoreConflict, Unauthorized, ValidationError
from jobdesk.store_backends import store


def _activities(workflow, job_id: str) -> list[dict]:
    return workflow.list_activities(job_id)


def _advance(workflow, actors, job_id: str, *triggers: str) -> dict:
    job = {}
    for trigger in triggers:
        actor = actors["worker"] if trigger in {"ACCEPT_JOB", "REQUEST_QUOTATION", "MARK_DONE"} else actors["office"]
        job = workflow.apply(job_id, trigger, actor)
    return job


def test_create_job_records_intake_activity(workflow, new_job):
    job = new_job()
    assert job["status"] == "RECEIVED"
    assert job["collection"] == "jobs"
    assert job["customerSnapshot"] == {"name": "Somchai Garage", "phone": "0812345678"}

    activities = _activities(workflow, job["id"])
    assert len(activities) == 1
    assert activities[0]["text"] == "Job received for Car service"
    assert activities[0]["createdAt"] == job["lastActivityAt"] == job["createdAt"]


def test_create_job_requires_known_department(workflow, actors):
    with pytest.raises(ValidationError):
        workflow.create_job({"department": "OFFICE", "customer": {"name": "A"}}, actors["office"])
    with pytest.raises(Unauthorized):
        workflow.create_job({"department": "MECHANIC", "customer": {"name": "A"}}, actors["worker"])


def test_each_transition_writes_one_activity_matching_last_activity(workflow, actors, new_job):
    job = new_job()
    job = _advance(workflow, actors, job["id"], "ACCEPT_JOB", "REQUEST_QUOTATION", "MARK_DONE")
    assert job["status"] == "DONE"
    activities = _activities(workflow, job["id"])
    assert len(activities) == 4
    assert activities[0]["createdAt"] == job["lastActivityAt"]
    assert activities[0]["text"] == 'Status changed: "Waiting for quotation" -> "Done"'


def test_rejected_transition_has_no_effect(workflow, actors, new_job):
    job = new_job()
    before = workflow.get_job(job["id"])
    with pytest.raises(InvalidTransition):
        workflow.apply(job["id"], "PARTS_READY", actors["office"])
    assert workflow.get_job(job["id"]) == before
    assert len(_activities(workflow, job["id"])) == 1


def test_customer_reject_without_cost_closes_with_single_activity(workflow, actors, new_job):
    job = new_job()
    job = _advance(workflow, actors, job["id"], "ACCEPT_JOB", "REQUEST_QUOTATION")
    store.commit(store.batch().update("jobs", job["id"], {"status": "WAITING_APPROVE"}))
    count_before = len(_activities(workflow, job["id"]))

    job = workflow.apply(job["id"], "CUSTOMER_REJECT", actors["office"], with_cost=False, reason="too expensive")

    assert job["status"] == "CLOSED"
    activities = _activities(workflow, job["id"])
    assert len(activities) == count_before + 1
    assert "Reason: too expensive" in activities[0]["text"]
    assert "Notified department: Car service" in activities[0]["text"]


def test_worker_note_escalates_in_progress_job(workflow, actors, new_job):
    job = new_job()
    workflow.apply(job["id"], "ACCEPT_JOB", actors["worker"])

    job = workflow.add_note(job["id"], actors["worker"], text="injector worn out", photos=["https://cdn/p1.jpg"])

    assert job["status"] == "WAITING_QUOTATION"
    latest = _activities(workflow, job["id"])[0]
    assert latest["text"] == 'Status changed: "In progress" -> "Waiting for quotation"\ninjector worn out'
    assert latest["photos"] == ["https://cdn/p1.jpg"]
    assert latest["createdAt"] == job["lastActivityAt"]


def test_reassign_worker_reads_user_profiles(workflow, actors, new_job):
    job = new_job()
    workflow.apply(job["id"], "ACCEPT_JOB", actors["worker"])

    job = workflow.apply(job["id"], "REASSIGN_WORKER", actors["admin"], worker_id="u_worker2")
    assert job["assigneeId"] == "u_worker2"
    assert job["assigneeName"] == "Wendy Worker"

    with pytest.raises(ValidationError):
        workflow.apply(job["id"], "REASSIGN_WORKER", actors["admin"], worker_id="u_mechanic")
    with pytest.raises(NotFound) as exc:
        workflow.apply(job["id"], "REASSIGN_WORKER", actors["admin"], worker_id="u_ghost")
    assert exc.value.code == "USER_NOT_FOUND"


def test_transfer_department_returns_job_to_queue(workflow, actors, new_job):
    job = new_job()
    workflow.apply(job["id"], "ACCEPT_JOB", actors["worker"])
    job = workflow.apply(job["id"], "TRANSFER_DEPARTMENT", actors["admin"], department="MECHANIC", note="gearbox")
    assert job["status"] == "RECEIVED"
    assert job["department"] == "MECHANIC"
    assert job["assigneeId"] is None


def test_close_job_moves_job_and_activities_to_archive(workflow, actors, new_job):
    job = new_job()
    job_id = job["id"]
    _advance(workflow, actors, job_id, "ACCEPT_JOB", "MARK_DONE")

    closed = workflow.close_job(job_id, actors["office"], closed_date="2026-03-15")

    assert closed["status"] == "CLOSED"
    assert closed["collection"] == "jobsArchive_2026"
    assert closed["isArchived"] is True
    assert closed["closedDate"] == "2026-03-15"
    assert closed["pickupDate"] == "2026-03-15"
    assert store.get("jobs", job_id) is None
    assert store.list_collection(f"jobs/{job_id}/activities") == []
    assert store.get("jobArchiveIndex", job_id) == {"id": job_id, "collection": "jobsArchive_2026", "year": 2026}

    activities = _activities(workflow, job_id)
    assert len(activities) == 4
    assert activities[0]["text"].startswith('Status changed: "Done" -> "Closed"')
    assert activities[0]["createdAt"] == closed["lastActivityAt"]


def test_locate_falls_back_to_year_probe_without_index(workflow, actors, new_job):
    job = new_job()
    job_id = job["id"]
    _advance(workflow, actors, job_id, "ACCEPT_JOB", "MARK_DONE")
    workflow.close_job(job_id, actors["office"], closed_date="2024-12-30")
    store.commit(store.batch().delete("jobArchiveIndex", job_id))

    found = locate_job(store, job_id, now_year=2026, lookback_years=5)
    assert found is not None
    assert found[0].collection == "jobsArchive_2024"
    assert locate_job(store, job_id, now_year=2026, lookback_years=2) is None


def test_revert_close_of_archived_job_restores_it(workflow, actors, new_job):
    job = new_job()
    job_id = job["id"]
    _advance(workflow, actors, job_id, "ACCEPT_JOB", "MARK_DONE")
    workflow.close_job(job_id, actors["office"], closed_date="2026-03-15")

    with pytest.raises(Unauthorized):
        workflow.apply(job_id, "REVERT_CLOSE", actors["office"], reason="wrong job")
    with pytest.raises(ValidationError):
        workflow.apply(job_id, "REVERT_CLOSE", actors["admin"], reason="")

    job = workflow.apply(job_id, "REVERT_CLOSE", actors["admin"], reason="customer did not pick up")

    assert job["status"] == "WAITING_CUSTOMER_PICKUP"
    assert job["collection"] == "jobs"
    assert job["isArchived"] is False
    assert "pickupDate" not in job
    assert "closedDate" not in job
    assert "archivedAt" not in job
    assert store.get("jobsArchive_2026", job_id) is None
    assert store.get("jobArchiveIndex", job_id) is None
    activities = _activities(workflow, job_id)
    assert len(activities) == 5
    assert "Close reverted. Reason: customer did not pick up" in activities[0]["text"]


def test_archive_job_moves_closed_active_job(workflow, actors, new_job):
    job = new_job()
    job_id = job["id"]
    with pytest.raises(InvalidTransition):
        workflow.archive_job(job_id, actors["office"])

    store.commit(store.batch().update("jobs", job_id, {"status": "CLOSED", "closedDate": "2025-11-02"}))
    archived = workflow.archive_job(job_id, actors["office"])
    assert archived["collection"] == "jobsArchive_2025"
    assert archived["lastActivityAt"] == job["lastActivityAt"]
    assert len(_activities(workflow, job_id)) == 1


def test_archive_closed_jobs_sweeps_only_closed(workflow, actors, new_job):
    open_job = new_job()
    closed_job = new_job()
    store.commit(store.batch().update("jobs", closed_job["id"], {"status": "CLOSED", "closedDate": "2026-01-05"}))

    archived = workflow.archive_closed_jobs(actors["admin"])
    assert archived == [closed_job["id"]]
    assert workflow.get_job(open_job["id"])["collection"] == "jobs"


def test_unknown_job_is_not_found(workflow):
    with pytest.raises(NotFound) as exc:
        workflow.get_job("job_missing")
    assert exc.value.code == "JOB_NOT_FOUND"


def test_close_fails_when_activity_lands_during_move(workflow, actors, new_job, monkeypatch):
    job = new_job()
    job_id = job["id"]
    _advance(workflow, actors, job_id, "ACCEPT_JOB", "MARK_DONE")
    real_list_collection = store.list_collection
    state = {"noted": False}

    def _list_with_late_note(collection):
        if collection == f"jobs/{job_id}/activities" and not state["noted"]:
            state["noted"] = True
            workflow.add_note(job_id, actors["office"], text="late note")
        return real_list_collection(collection)

    monkeypatch.setattr(store, "list_collection", _list_with_late_note)
    with pytest.raises(StoreConflict):
        workflow.close_job(job_id, actors["office"], closed_date="2026-05-01")
    monkeypatch.undo()

    current = store.get("jobs", job_id)
    assert current["status"] == "DONE"
    assert store.get("jobArchiveIndex", job_id) is None
    assert store.list_collection("jobsArchive_2026") == []
    texts = [a["text"] for a in _activities(workflow, job_id)]
    assert texts[0] == "late note"
    assert len(texts) == 4


def test_update_details_writes_patch_and_activity_together(workflow, actors, new_job):
    job = new_job()
    job_id = job["id"]

    updated = workflow.update_details(
        job_id,
        actors["worker"],
        description="Brake squeal, front left",
        technical_report="Pads worn to 2mm",
    )

    assert updated["description"] == "Brake squeal, front left"
    assert updated["technicalReport"] == "Pads worn to 2mm"
    assert updated["status"] == "RECEIVED"
    activities = _activities(workflow, job_id)
    assert activities[0]["text"] == "Description updated\nTechnical report updated"
    assert activities[0]["createdAt"] == updated["lastActivityAt"]


def test_update_details_guards(workflow, actors, new_job):
    job = new_job()
    job_id = job["id"]
    outsource = new_job(department="OUTSOURCE")

    with pytest.raises(ValidationError):
        workflow.update_details(job_id, actors["office"])
    with pytest.raises(ValidationError):
        workflow.update_details(outsource["id"], actors["office"], vehicle_details={"brand": "Hino"})
    with pytest.raises(Unauthorized):
        workflow.update_details(job_id, actors["viewer"], office_note="x")

    _advance(workflow, actors, job_id, "ACCEPT_JOB", "MARK_DONE")
    workflow.close_job(job_id, actors["office"], closed_date="2026-03-15")
    with pytest.raises(InvalidTransition):
        workflow.update_details(job_id, actors["admin"], office_note="too late")
    assert len(_activities(workflow, job_id)) == 4
