# tests/test_http_app.py
"""
Tests for the HTTP surface:
- admin-token enforcement
- bulk reschedule keeps "absent" distinct from null
- bulk create, manual dispatch triggers, error envelopes
"""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from conftest import DAY, FakeJobRepository, at, make_job
from poolroute.config import settings
from poolroute.core.dispatch.customer import DrainReport
from poolroute.core.dispatch.digest import DigestWindow, PassReport
from poolroute.core.dispatch.jobs import get_customer_dispatcher, get_digest_dispatcher, get_route_service
from poolroute.core.errors import CommitError
from poolroute.core.scheduling.pending import UNSET
from poolroute.infra.pg_job_repo_async import get_job_repo
from poolroute.transport.http_app import app

TOKEN = "k3v9-Qm2x-Lp7w-Zr4t-Hs8n-Bd6c-Fy1j"
AUTH = {"Authorization": f"Bearer {TOKEN}"}


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(settings, "admin_token", TOKEN)
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


@pytest.fixture
def route_service():
    service = MagicMock()
    service.update_jobs = AsyncMock(return_value=2)
    service.bulk_create = AsyncMock(return_value=[make_job("new-1", hour=9, technician_id=None)])
    app.dependency_overrides[get_route_service] = lambda: service
    return service


class TestAuth:
    def test_health_is_public(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_missing_token(self, client, route_service):
        response = client.post("/routes/bulk-reschedule", json={"updates": []})
        assert response.status_code == 401
        assert response.json() == {"error": "Authentication required"}

    def test_wrong_token(self, client, route_service):
        response = client.post(
            "/routes/bulk-reschedule",
            json={"updates": []},
            headers={"Authorization": "Bearer nope"},
        )
        assert response.status_code == 401

    def test_unconfigured_token_is_unavailable(self, client, route_service, monkeypatch):
        monkeypatch.setattr(settings, "admin_token", None)
        response = client.post("/routes/bulk-reschedule", json={"updates": []}, headers=AUTH)
        assert response.status_code == 503

    def test_security_headers(self, client):
        response = client.get("/health")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert "X-Request-ID" in response.headers


class TestBulkReschedule:
    def test_absent_and_null_fields_stay_distinct(self, client, route_service):
        response = client.post("/routes/bulk-reschedule", headers=AUTH, json={"updates": [
            {"jobId": "a", "sortOrder": 1},
            {"jobId": "b", "technicianId": None, "scheduledDate": "2024-06-03T13:00:00-04:00"},
        ]})

        assert response.status_code == 200
        assert response.json() == {"ok": True, "updated": 2}
        first, second = route_service.update_jobs.await_args.args[0]
        assert first.job_id == "a"
        assert first.patch.sort_order == 1
        assert first.patch.technician_id is UNSET
        assert second.patch.technician_id is None
        assert second.patch.scheduled_date == at(DAY, 13)

    def test_commit_failure_is_error_envelope(self, client, route_service):
        route_service.update_jobs.side_effect = CommitError("Failed to persist job updates")

        response = client.post("/routes/bulk-reschedule", headers=AUTH, json={"updates": [{"jobId": "a", "sortOrder": 0}]})

        assert response.status_code == 502
        assert response.json() == {"error": "Failed to persist job updates"}

    def test_missing_job_id_rejected(self, client, route_service):
        response = client.post("/routes/bulk-reschedule", headers=AUTH, json={"updates": [{"sortOrder": 0}]})

        assert response.status_code == 422
        route_service.update_jobs.assert_not_awaited()


class TestBulkCreate:
    def test_creates_and_returns_wire_jobs(self, client, route_service):
        response = client.post("/jobs/bulk-create", headers=AUTH, json={
            "date": "2024-06-03",
            "jobs": [{"customerId": "c1", "propertyId": "p1", "scheduledTime": "09:00", "type": "ON_DEMAND"}],
        })

        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert body["created"][0]["id"] == "new-1"
        assert body["created"][0]["scheduledDate"] == "2024-06-03T09:00:00-04:00"
        day, specs = route_service.bulk_create.await_args.args
        assert day == DAY
        assert specs[0].customer_id == "c1"
        assert specs[0].kind == "ON_DEMAND"


class TestRouteJobs:
    def test_lists_jobs_in_range(self, client):
        repo = FakeJobRepository([make_job("a", DAY, 9), make_job("b", DAY, 23, 30)])
        app.dependency_overrides[get_job_repo] = lambda: repo

        response = client.get("/routes/jobs?start=2024-06-03&end=2024-06-03", headers=AUTH)

        assert response.status_code == 200
        assert [j["id"] for j in response.json()["jobs"]] == ["a", "b"]

    def test_inverted_range_rejected(self, client):
        app.dependency_overrides[get_job_repo] = lambda: FakeJobRepository()

        response = client.get("/routes/jobs?start=2024-06-04&end=2024-06-03", headers=AUTH)

        assert response.status_code == 400
        assert response.json() == {"error": "end must not be before start"}


class TestAdminDispatch:
    def test_run_digest_window(self, client):
        dispatcher = MagicMock()
        dispatcher.run_window = AsyncMock(return_value=PassReport(window="MIDDAY", route_date=DAY, groups=1, sent=1))
        app.dependency_overrides[get_digest_dispatcher] = lambda: dispatcher

        response = client.post("/admin/digests/midday/run", headers=AUTH)

        assert response.status_code == 200
        assert response.json()["sent"] == 1
        assert response.json()["route_date"] == "2024-06-03"
        dispatcher.run_window.assert_awaited_once_with(DigestWindow.MIDDAY)

    def test_unknown_window_rejected(self, client):
        dispatcher = MagicMock()
        dispatcher.run_window = AsyncMock()
        app.dependency_overrides[get_digest_dispatcher] = lambda: dispatcher

        response = client.post("/admin/digests/brunch/run", headers=AUTH)

        assert response.status_code == 400
        assert "Unknown digest window" in response.json()["error"]
        dispatcher.run_window.assert_not_awaited()

    def test_drain_customer_notifications(self, client):
        dispatcher = MagicMock()
        dispatcher.drain = AsyncMock(return_value=DrainReport(processed=3, sent=2, failed=1))
        app.dependency_overrides[get_customer_dispatcher] = lambda: dispatcher

        response = client.post("/admin/notifications/drain", headers=AUTH)

        assert response.json() == {"processed": 3, "sent": 2, "failed": 1, "errors": 0}

    def test_scheduler_status_without_scheduler(self, client):
        app.state.scheduler = None

        response = client.get("/admin/scheduler", headers=AUTH)

        assert response.json() == {"running": False, "tasks": []}
