from datetime import timedelta

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from app.main import app
from app.db.session import get_db
from app.helpers import job_store
from app.helpers.integration_types import IntegrationEntityType, JobStatus
from app.models.integration_job import IntegrationJob
from app.services.job_runner import OUTCOME_COMPLETED, JobRunner

from conftest import make_auth_header

LOCATIONS_CSV = b"internalCode,name,parentInternalCode\nPLANT,Plant,\nLINE-A,Line A,PLANT\n"


@pytest.fixture
def client(session_factory, upload_dir):
    """
    TestClient for /api/integration with the database swapped for in-memory SQLite.
    """
    # Disable DB prewarm during app lifespan to avoid requiring real DB_URL
    import app.main as main_module

    async def _noop_prewarm(app_logger):  # type: ignore[unused-argument]
        return None

    main_module._prewarm_database = _noop_prewarm  # type: ignore[assignment]

    def _override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _override_get_db

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()


def _upload(client, files, entity_type="locations", headers=None):
    return client.post(
        "/api/integration/upload",
        data={"type": entity_type},
        files=[("files", item) for item in files],
        headers=headers if headers is not None else make_auth_header(),
    )


def _submit(session_factory, company_id="acme", name="locations.csv"):
    with session_factory() as db:
        return job_store.submit_job(
            db, company_id, IntegrationEntityType.locations, f"file:///tmp/{name}", name, 10
        )


# =============================================================================
# Upload
# =============================================================================

def test_upload_queues_one_pending_job_per_file(client, session_factory, upload_dir):
    response = _upload(
        client,
        [
            ("plants.csv", LOCATIONS_CSV, "text/csv"),
            ("lines.csv", LOCATIONS_CSV, "text/csv"),
        ],
    )

    assert response.status_code == status.HTTP_202_ACCEPTED
    body = response.json()
    assert body["message"] == "2 file(s) uploaded successfully"
    assert len(body["job_ids"]) == 2

    with session_factory() as db:
        job = job_store.get_job(db, body["job_ids"][0])
        assert job.status == JobStatus.pending.value
        assert job.company_id == "acme"
        assert job.file_name == "plants.csv"
        assert job.file_size == len(LOCATIONS_CSV)
        assert job.file_url.startswith("file://")

    assert len(list((upload_dir / "acme").iterdir())) == 2


def test_uploaded_file_is_processed_by_runner(client, session_factory):
    response = _upload(client, [("plants.csv", LOCATIONS_CSV, "text/csv")])
    job_id = response.json()["job_ids"][0]

    JobRunner(session_factory).run(job_id)

    job_response = client.get(f"/api/integration/jobs/{job_id}", headers=make_auth_header())
    assert job_response.status_code == status.HTTP_200_OK
    data = job_response.json()
    assert data["status"] == JobStatus.completed.value
    assert (data["total_rows"], data["success_rows"], data["error_rows"]) == (2, 2, 0)


def test_upload_rejects_invalid_type(client):
    response = _upload(client, [("plants.csv", LOCATIONS_CSV, "text/csv")], entity_type="pumps")

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"] == "Invalid type"


def test_upload_rejects_unsupported_file_and_queues_nothing(client, session_factory):
    response = _upload(
        client,
        [
            ("plants.csv", LOCATIONS_CSV, "text/csv"),
            ("notes.txt", b"hello", "text/plain"),
        ],
    )

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert "notes.txt" in response.json()["detail"]
    with session_factory() as db:
        assert db.query(IntegrationJob).count() == 0


def test_empty_upload_completes_with_zero_rows(client, session_factory):
    response = _upload(client, [("plants.csv", b"", "text/csv")])

    assert response.status_code == status.HTTP_202_ACCEPTED
    job_id = response.json()["job_ids"][0]

    assert JobRunner(session_factory).run(job_id).outcome == OUTCOME_COMPLETED

    data = client.get(f"/api/integration/jobs/{job_id}", headers=make_auth_header()).json()
    assert data["status"] == JobStatus.completed.value
    assert (data["file_size"], data["total_rows"], data["processed_rows"]) == (0, 0, 0)


def test_upload_requires_editor(client):
    response = _upload(
        client,
        [("plants.csv", LOCATIONS_CSV, "text/csv")],
        headers=make_auth_header(roles=("VIEWER",)),
    )

    assert response.status_code == status.HTTP_403_FORBIDDEN


def test_upload_requires_tenant_claim(client):
    response = _upload(
        client,
        [("plants.csv", LOCATIONS_CSV, "text/csv")],
        headers=make_auth_header(company_id=None),
    )

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["detail"] == "Access token missing company"


def test_requests_without_token_are_rejected(client):
    response = client.get("/api/integration/jobs")

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.headers["X-Request-ID"]


# =============================================================================
# Jobs
# =============================================================================

def test_list_jobs_only_shows_own_tenant(client, session_factory):
    own = [_submit(session_factory, name=f"file{i}.csv") for i in range(3)]
    _submit(session_factory, company_id="globex")

    response = client.get("/api/integration/jobs?page=1&limit=2", headers=make_auth_header())

    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert body["total_items"] == 3
    assert body["total_pages"] == 2
    assert body["items_per_page"] == 2
    assert len(body["jobs"]) == 2
    assert {job["id"] for job in body["jobs"]} <= set(own)


def test_list_jobs_filters_by_status(client, session_factory):
    pending_id = _submit(session_factory)
    claimed_id = _submit(session_factory)
    with session_factory() as db:
        job_store.claim_job(db, claimed_id)

    response = client.get("/api/integration/jobs?status=pending", headers=make_auth_header())

    assert [job["id"] for job in response.json()["jobs"]] == [pending_id]


def test_get_job_of_other_tenant_is_not_found(client, session_factory):
    job_id = _submit(session_factory, company_id="globex")

    response = client.get(f"/api/integration/jobs/{job_id}", headers=make_auth_header())

    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json()["detail"] == "Job not found"


def _finish_job(session_factory, job_id, progress):
    with session_factory() as db:
        job_store.claim_job(db, job_id)
        job_store.mark_completed(db, job_id, progress)


def test_job_errors_include_truncation_notice(client, session_factory):
    job_id = _submit(session_factory)
    progress = job_store.JobProgress(
        total_rows=150, processed_rows=100, success_rows=99, error_rows=1, limited_rows=50
    )
    progress.errors.append({"row": 4, "field": "name", "value": "", "message": "name is required"})
    _finish_job(session_factory, job_id, progress)

    response = client.get(f"/api/integration/jobs/{job_id}/errors", headers=make_auth_header())

    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert body["total_errors"] == 1
    assert body["errors"] == [{"row": 4, "field": "name", "value": "", "message": "name is required"}]
    assert body["limited_rows"] == 50
    assert body["truncation_notice"].startswith("Only the first 100 rows were processed")


def test_failed_job_errors_show_only_failure_reason(client, session_factory):
    job_id = _submit(session_factory)
    with session_factory() as db:
        job_store.claim_job(db, job_id)
        job_store.mark_failed(db, job_id, "Failed to fetch file: HTTP 404")

    body = client.get(f"/api/integration/jobs/{job_id}/errors", headers=make_auth_header()).json()

    assert body["status"] == JobStatus.failed.value
    assert body["errors"] == []
    assert body["failure_reason"] == "Failed to fetch file: HTTP 404"
    assert body["truncation_notice"] is None


# =============================================================================
# Queue, stats, diagnostics
# =============================================================================

def test_queue_status_for_tenant(client, session_factory):
    _submit(session_factory)
    _submit(session_factory, company_id="globex")

    body = client.get("/api/integration/queue", headers=make_auth_header()).json()

    assert body["pending_jobs"] == 1
    assert body["next_job_to_process"]["file_name"] == "locations.csv"


def test_global_queue_status_requires_admin(client, session_factory):
    _submit(session_factory)
    _submit(session_factory, company_id="globex")

    forbidden = client.get("/api/integration/queue?scope=global", headers=make_auth_header())
    allowed = client.get(
        "/api/integration/queue?scope=global", headers=make_auth_header(roles=("ADMIN",))
    )

    assert forbidden.status_code == status.HTTP_403_FORBIDDEN
    assert allowed.status_code == status.HTTP_200_OK
    assert allowed.json()["pending_jobs"] == 2


def test_stats_endpoint(client, session_factory):
    job_id = _submit(session_factory)
    _finish_job(session_factory, job_id, job_store.JobProgress(total_rows=1, processed_rows=1, success_rows=1))
    _submit(session_factory)

    body = client.get("/api/integration/stats?days=7", headers=make_auth_header()).json()

    assert body["total_jobs"] == 2
    assert body["success_rate"] == 50.0
    assert body["jobs_by_type"] == {"locations": 2}


def test_stats_rejects_out_of_range_days(client):
    response = client.get("/api/integration/stats?days=0", headers=make_auth_header())

    assert response.status_code == 422


def _make_stuck(session_factory, company_id="acme"):
    job_id = _submit(session_factory, company_id=company_id)
    old = job_store.utc_now() - timedelta(hours=2)
    with session_factory() as db:
        job_store.claim_job(db, job_id)
        db.query(IntegrationJob).filter(IntegrationJob.id == job_id).update(
            {"updated_at": old}, synchronize_session=False
        )
        db.commit()
    return job_id


def test_diagnose_lists_stuck_jobs(client, session_factory):
    stuck_id = _make_stuck(session_factory)

    body = client.get("/api/integration/diagnose", headers=make_auth_header()).json()

    assert [job["id"] for job in body["stuck_jobs"]] == [stuck_id]
    assert body["stuck_jobs"][0]["stuck_for_minutes"] >= 119


def test_reset_stuck_jobs_requires_admin(client, session_factory):
    stuck_id = _make_stuck(session_factory)

    forbidden = client.post("/api/integration/reset-stuck-jobs", headers=make_auth_header())
    assert forbidden.status_code == status.HTTP_403_FORBIDDEN

    response = client.post(
        "/api/integration/reset-stuck-jobs", headers=make_auth_header(roles=("ADMIN",))
    )

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["message"] == "Reset 1 stuck jobs to pending"
    with session_factory() as db:
        assert job_store.get_job(db, stuck_id).status == JobStatus.pending.value
