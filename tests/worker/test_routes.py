"""
Tests for the worker HTTP endpoints.

The app is built with test services: a SQLite store, a mocked tracking
client, a mocked token endpoint and a recording scheduler.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import requests
from fastapi.testclient import TestClient

from returnsync.clients.oauth import GmailTokenManager
from returnsync.db import UnitOfWork
from returnsync.models.item import RefundStatus, TrackedItem, TrackingInfo, TrackingStatus
from returnsync.worker.main import create_app
from returnsync.worker.services import build_services

TRACKING_NUMBER = "1Z999AA10123456784"
EARLIER = datetime(2026, 1, 25, 8, 0, tzinfo=timezone.utc)


def make_response(payload=None, status_code: int = 200) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(str(status_code))
    return response


@pytest.fixture
def oauth_http() -> MagicMock:
    http = MagicMock()
    http.post.return_value = make_response(
        {"access_token": "at-1", "refresh_token": "rt-1", "expires_in": 3600}
    )
    http.get.return_value = make_response({"emailAddress": "user@gmail.com"})
    return http


@pytest.fixture
def tracking_client() -> MagicMock:
    client = MagicMock()
    client.fetch.return_value = TrackingInfo(
        tracking_number=TRACKING_NUMBER,
        carrier="ups",
        status=TrackingStatus.DELIVERED,
    )
    return client


@pytest.fixture
def services(database, tracking_client, oauth_http, delivery, fake_scheduler):
    return build_services(
        connection=database,
        tracking_client=tracking_client,
        token_manager=GmailTokenManager(
            database,
            client_id="client-123",
            redirect_uri="com.test:/oauth2callback",
            session=oauth_http,
        ),
        delivery=delivery,
        scheduler=fake_scheduler,
    )


@pytest.fixture
def client(services):
    with TestClient(create_app(lambda: services)) as test_client:
        yield test_client


@pytest.fixture
def shipped_item(database) -> TrackedItem:
    item = TrackedItem(
        id="nike",
        product_name="Air Max 90",
        retailer="Nike",
        refund_status=RefundStatus.SHIPPED,
        tracking_number=TRACKING_NUMBER,
        tracking_info=TrackingInfo(
            tracking_number=TRACKING_NUMBER,
            carrier="ups",
            status=TrackingStatus.IN_TRANSIT,
            last_updated=EARLIER,
        ),
    )
    with UnitOfWork(database) as uow:
        uow.items.save_all([item])
        uow.commit()
    return item


class TestHealthEndpoints:
    def test_root_endpoint(self, client: TestClient):
        response = client.get("/")
        assert response.status_code == 200

        data = response.json()
        assert data["service"] == "returnsync Worker API"
        assert data["status"] == "operational"

    def test_health_endpoint(self, client: TestClient):
        response = client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "returnsync-worker"


class TestStartup:
    def test_registers_job_and_schedules_first_grant(self, client, services, fake_scheduler):
        job_id = services.supervisor.job_id

        assert fake_scheduler.is_registered(job_id)
        assert list(fake_scheduler.pending) == [job_id]


class TestSyncRefreshEndpoint:
    def test_runs_sync(self, client, services, shipped_item, delivery, database):
        response = client.post(
            "/tasks/sync-refresh",
            json={"job_id": services.supervisor.job_id},
            headers={"X-CloudTasks-TaskName": "grant-1"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "success"
        assert data["result"]["items_updated"] == 1
        assert data["result"]["transitions"] == 1
        assert data["result"]["timed_out"] is False

        with UnitOfWork(database) as uow:
            stored = uow.items.get("nike")
        assert stored.refund_status == RefundStatus.RECEIVED
        assert [n.type for n in delivery.sent] == ["tracking_update"]

    def test_repeated_grant_is_ignored(self, client, services, shipped_item, tracking_client):
        payload = {"job_id": services.supervisor.job_id}
        headers = {"X-CloudTasks-TaskName": "grant-1"}

        first = client.post("/tasks/sync-refresh", json=payload, headers=headers)
        second = client.post("/tasks/sync-refresh", json=payload, headers=headers)

        assert first.json()["status"] == "success"
        assert second.status_code == 200
        assert second.json()["status"] == "duplicate"
        assert tracking_client.fetch.call_count == 1

    def test_each_grant_schedules_the_next(self, client, services, fake_scheduler):
        before = len(fake_scheduler.requests)

        client.post("/tasks/sync-refresh", json={"job_id": services.supervisor.job_id})

        assert len(fake_scheduler.requests) == before + 1

    def test_failed_run_still_answers_ok(self, client, services, shipped_item, tracking_client):
        tracking_client.fetch.side_effect = requests.ConnectionError("down")

        response = client.post(
            "/tasks/sync-refresh", json={"job_id": services.supervisor.job_id}
        )

        assert response.status_code == 200
        assert response.json()["status"] == "failed"
        assert response.json()["result"]["items_failed"] == 1

    def test_unknown_job(self, client):
        response = client.post("/tasks/sync-refresh", json={"job_id": "no-such-job"})
        assert response.status_code == 404

    def test_invalid_payload(self, client):
        response = client.post("/tasks/sync-refresh", json={})
        assert response.status_code == 422


class TestOAuthEndpoints:
    def test_status_when_disconnected(self, client):
        response = client.get("/oauth/gmail")
        assert response.json() == {"connected": False, "provider_email": None}

    def test_authorize_url(self, client):
        response = client.get("/oauth/gmail/authorize", params={"state": "xyz"})

        url = response.json()["authorization_url"]
        assert "client_id=client-123" in url
        assert "state=xyz" in url

    def test_exchange_and_logout(self, client, database):
        response = client.post("/oauth/gmail/exchange", json={"code": "auth-code"})

        assert response.status_code == 200
        assert response.json() == {"status": "connected", "provider_email": "user@gmail.com"}
        assert client.get("/oauth/gmail").json() == {
            "connected": True,
            "provider_email": "user@gmail.com",
        }
        with UnitOfWork(database) as uow:
            assert uow.oauth_sessions.get("gmail").refresh_token == "rt-1"

        response = client.delete("/oauth/gmail")

        assert response.json() == {"status": "disconnected"}
        assert client.get("/oauth/gmail").json()["connected"] is False
        with UnitOfWork(database) as uow:
            assert uow.oauth_sessions.get("gmail") is None

    def test_rejected_code(self, client, oauth_http):
        oauth_http.post.return_value = make_response({"error": "invalid_grant"}, 400)

        response = client.post("/oauth/gmail/exchange", json={"code": "bad"})

        assert response.status_code == 400

    def test_token_endpoint_down(self, client, oauth_http):
        oauth_http.post.side_effect = requests.ConnectionError("down")

        response = client.post("/oauth/gmail/exchange", json={"code": "auth-code"})

        assert response.status_code == 502
