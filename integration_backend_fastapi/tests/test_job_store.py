from datetime import timedelta

import pytest

from app.core.exceptions import InvalidTransitionError
from app.helpers import job_store
from app.helpers.integration_types import IntegrationEntityType, JobStatus


def _submit(db, company_id="acme", entity_type=IntegrationEntityType.locations, name="locations.csv"):
    return job_store.submit_job(db, company_id, entity_type, f"file:///tmp/{name}", name, 128)


def _reload(session_factory, job_id):
    with session_factory() as session:
        return job_store.get_job(session, job_id)


def test_submit_job_creates_pending_job(db, session_factory):
    job_id = _submit(db)

    job = _reload(session_factory, job_id)
    assert job.status == JobStatus.pending.value
    assert job.entity_type == "locations"
    assert job.errors == []
    assert (job.total_rows, job.processed_rows, job.limited_rows) == (0, 0, 0)


@pytest.mark.parametrize("company_id, file_size", [("", 10), ("acme", -1)])
def test_submit_job_rejects_bad_input(db, company_id, file_size):
    with pytest.raises(ValueError):
        job_store.submit_job(db, company_id, "locations", "file:///x.csv", "x.csv", file_size)


def test_submit_job_rejects_unknown_entity_type(db):
    with pytest.raises(ValueError):
        job_store.submit_job(db, "acme", "pumps", "file:///x.csv", "x.csv", 10)


def test_claim_is_granted_once(db, session_factory):
    job_id = _submit(db)

    with session_factory() as first, session_factory() as second:
        assert job_store.claim_job(first, job_id) is True
        assert job_store.claim_job(second, job_id) is False

    assert _reload(session_factory, job_id).status == JobStatus.processing.value


def test_completed_job_cannot_be_claimed_again(db, session_factory):
    job_id = _submit(db)
    job_store.claim_job(db, job_id)
    job_store.mark_completed(db, job_id, job_store.JobProgress(total_rows=1, processed_rows=1, success_rows=1))

    assert job_store.claim_job(db, job_id) is False
    job = _reload(session_factory, job_id)
    assert job.status == JobStatus.completed.value
    assert job.completed_at is not None


def test_mark_failed_requires_processing(db, session_factory):
    job_id = _submit(db)

    assert job_store.mark_failed(db, job_id, "boom") is False
    assert _reload(session_factory, job_id).status == JobStatus.pending.value


def test_force_fail_claims_pending_job_first(db, session_factory):
    job_id = _submit(db)

    assert job_store.force_fail(db, job_id, "Unexpected error: boom") is True
    job = _reload(session_factory, job_id)
    assert job.status == JobStatus.failed.value
    assert job.failure_reason == "Unexpected error: boom"


def test_checkpoint_only_while_processing(db, session_factory):
    job_id = _submit(db)
    progress = job_store.JobProgress(total_rows=5, processed_rows=2, success_rows=1, error_rows=1)
    progress.errors.append({"row": 2, "field": "name", "value": "", "message": "name is required"})

    job_store.checkpoint_progress(db, job_id, progress)
    assert _reload(session_factory, job_id).processed_rows == 0

    job_store.claim_job(db, job_id)
    job_store.checkpoint_progress(db, job_id, progress)

    job = _reload(session_factory, job_id)
    assert (job.total_rows, job.processed_rows, job.error_rows) == (5, 2, 1)
    assert job.errors[0]["field"] == "name"


@pytest.mark.parametrize(
    "current, target",
    [
        (JobStatus.pending, JobStatus.completed),
        (JobStatus.completed, JobStatus.processing),
        (JobStatus.failed, JobStatus.pending),
    ],
)
def test_check_transition_rejects_invalid_edges(current, target):
    with pytest.raises(InvalidTransitionError):
        job_store.check_transition(current, target)


def test_list_jobs_is_tenant_scoped_and_paginated(db):
    ids = [_submit(db, name=f"file{i}.csv") for i in range(3)]
    _submit(db, company_id="globex")

    items, total = job_store.list_jobs(db, "acme", page=1, limit=2)
    assert total == 3
    assert len(items) == 2
    assert all(job.company_id == "acme" for job in items)

    page_two, _ = job_store.list_jobs(db, "acme", page=2, limit=2)
    assert {job.id for job in items + page_two} == set(ids)


def test_get_job_for_tenant_hides_other_tenants(db):
    job_id = _submit(db)

    assert job_store.get_job_for_tenant(db, "acme", job_id) is not None
    assert job_store.get_job_for_tenant(db, "globex", job_id) is None


def test_reset_stale_jobs_returns_processing_job_to_pending(db, session_factory):
    job_id = _submit(db)
    job_store.claim_job(db, job_id)
    job_store.checkpoint_progress(db, job_id, job_store.JobProgress(total_rows=10, processed_rows=4))

    cutoff = job_store.utc_now() + timedelta(minutes=1)
    reset_ids = job_store.reset_stale_jobs(db, cutoff)

    assert reset_ids == [job_id]
    job = _reload(session_factory, job_id)
    assert job.status == JobStatus.pending.value
    assert job.processed_rows == 0


def test_reset_stale_jobs_ignores_recent_and_terminal_jobs(db):
    recent_id = _submit(db)
    done_id = _submit(db, name="done.csv")
    job_store.claim_job(db, done_id)
    job_store.mark_completed(db, done_id, job_store.JobProgress())

    cutoff = job_store.utc_now() - timedelta(minutes=30)

    assert job_store.reset_stale_jobs(db, cutoff) == []
    assert recent_id not in job_store.reset_stale_jobs(db, cutoff, company_id="acme")


def test_serialize_job_counts_errors(db):
    job_id = _submit(db)
    job = job_store.get_job(db, job_id)

    data = job_store.serialize_job(job)
    assert data["error_count"] == 0
    assert "errors" not in data
    assert job_store.serialize_job(job, include_errors=True)["errors"] == []
