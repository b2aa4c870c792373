"""
Tests for the HTTP boundary.

The coordinator is a MagicMock placed on app.state; auth and the database
session are replaced through app.dependency_overrides. Read endpoints use
the in-memory SQLite store.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from planner_core.api import deps
from planner_core.core.config import settings
from planner_core.core.errors import (
    CapacityExceededError,
    EnqueueError,
    EventNotFoundError,
    PersistError,
    QueueClosedError,
    ValidationError,
)
from planner_core.crud import generation_batch as batch_crud
from planner_core.crud import ticket as ticket_crud
from planner_core.main import app
from planner_core.schemas.ticket_generation import AcceptResult, Attendee
from planner_core.schemas.token import TokenPayload

INTERNAL = {"X-Internal-Api-Key": settings.INTERNAL_API_KEY}


def override_get_current_user():
    return TokenPayload(sub="user_123", orgId="org_abc")


@pytest.fixture
def coordinator():
    coordinator = MagicMock()
    coordinator.is_shut_down = False
    coordinator.ready = True
    coordinator.is_alive.return_value = True
    coordinator.status.return_value = {"consuming": True}
    return coordinator


@pytest.fixture
def client(coordinator, session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[deps.get_db] = override_get_db
    app.dependency_overrides[deps.get_current_user] = override_get_current_user
    app.state.coordinator = coordinator

    # No context manager: the lifespan (real broker) is not started.
    yield TestClient(app)

    app.dependency_overrides.clear()
    app.state.coordinator = None


def _accepted(correlation_id="corr-1"):
    return AcceptResult(
        tickets=["tkt_1", "tkt_2"],
        correlation_id=correlation_id,
        enqueued_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        job_id="1",
    )


BODY = {"event_id": "evt_1", "ticket_type_id": "tt_general", "quantity": 2}


class TestBulkGeneration:

    def test_accepted(self, client, coordinator):
        coordinator.accept_bulk_generation.return_value = _accepted()

        response = client.post("/api/v1/tickets/bulk", json=BODY)

        assert response.status_code == 202
        data = response.json()
        assert data["tickets"] == ["tkt_1", "tkt_2"]
        assert data["correlation_id"] == "corr-1"
        assert data["status"] == "PENDING"
        kwargs = coordinator.accept_bulk_generation.call_args.kwargs
        assert kwargs["requester_id"] == "user_123"
        assert kwargs["quantity"] == 2

    def test_options_are_forwarded(self, client, coordinator):
        coordinator.accept_bulk_generation.return_value = _accepted()
        body = dict(BODY, options={"priority": 3, "delay_ms": 100, "ticket_type": "vip"})

        client.post("/api/v1/tickets/bulk", json=body)

        options = coordinator.accept_bulk_generation.call_args.kwargs["options"]
        assert options.priority == 3
        assert options.delay_ms == 100
        assert options.ticket_type.value == "vip"

    @pytest.mark.parametrize("quantity", [0, 101])
    def test_quantity_out_of_range(self, client, coordinator, quantity):
        response = client.post("/api/v1/tickets/bulk", json=dict(BODY, quantity=quantity))

        assert response.status_code == 422
        coordinator.accept_bulk_generation.assert_not_called()

    def test_capacity_exceeded(self, client, coordinator):
        coordinator.accept_bulk_generation.side_effect = CapacityExceededError("evt_1", 2)

        response = client.post("/api/v1/tickets/bulk", json=BODY)

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "CAPACITY_EXCEEDED"

    def test_event_not_found(self, client, coordinator):
        coordinator.accept_bulk_generation.side_effect = EventNotFoundError("evt_1")

        response = client.post("/api/v1/tickets/bulk", json=BODY)

        assert response.status_code == 404

    def test_validation_error(self, client, coordinator):
        coordinator.accept_bulk_generation.side_effect = ValidationError("more attendees than tickets requested")

        response = client.post("/api/v1/tickets/bulk", json=BODY)

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"

    def test_enqueue_error_reports_queue_error_tickets(self, client, coordinator):
        coordinator.accept_bulk_generation.side_effect = EnqueueError(
            "broker down", correlation_id="corr-9", ticket_ids=["tkt_1"], compensated=True
        )

        response = client.post("/api/v1/tickets/bulk", json=BODY)

        assert response.status_code == 500
        detail = response.json()["detail"]
        assert detail["status"] == "QUEUE_ERROR"
        assert detail["correlation_id"] == "corr-9"
        assert detail["tickets"] == ["tkt_1"]

    def test_persist_error(self, client, coordinator):
        coordinator.accept_bulk_generation.side_effect = PersistError("db down")

        response = client.post("/api/v1/tickets/bulk", json=BODY)

        assert response.status_code == 500
        assert response.json()["detail"]["code"] == "PERSIST_ERROR"

    def test_shutting_down(self, client, coordinator):
        coordinator.accept_bulk_generation.side_effect = QueueClosedError("TICKET_GENERATION")

        response = client.post("/api/v1/tickets/bulk", json=BODY)

        assert response.status_code == 503

    def test_requires_authentication(self, client, coordinator):
        del app.dependency_overrides[deps.get_current_user]

        response = client.post("/api/v1/tickets/bulk", json=BODY)

        assert response.status_code == 401
        coordinator.accept_bulk_generation.assert_not_called()


class TestReadEndpoints:

    def _seed(self, session_factory, event_id):
        with session_factory() as db:
            tickets = ticket_crud.insert_batch(
                db,
                event_id=event_id,
                ticket_type_id="tt_general",
                requester_id="user_123",
                correlation_id="corr-read",
                attendees=[Attendee(name="G", email="g@example.com")] * 2,
            )
            ids = [t.id for t in tickets]
            batch_crud.create(
                db, correlation_id="corr-read", event_id=event_id,
                requester_id="user_123", ticket_ids=ids, priority=1, delay_ms=0,
            )
            ticket_crud.apply_error(db, ticket_id=ids[0], event_id=event_id, error_message="boom")
            db.commit()
        return ids

    def test_get_batch(self, client, session_factory, make_event):
        event_id = make_event()
        ids = self._seed(session_factory, event_id)

        response = client.get("/api/v1/tickets/batches/corr-read")

        assert response.status_code == 200
        data = response.json()
        assert data["batch"]["correlation_id"] == "corr-read"
        assert sorted(t["id"] for t in data["tickets"]) == sorted(ids)
        assert data["status_counts"]["ERROR"] == 1
        assert data["status_counts"]["PENDING"] == 1

    def test_get_unknown_batch(self, client):
        response = client.get("/api/v1/tickets/batches/nope")

        assert response.status_code == 404

    def test_status_counts(self, client, session_factory, make_event):
        event_id = make_event()
        self._seed(session_factory, event_id)

        response = client.get(f"/api/v1/tickets/events/{event_id}/status-counts")

        assert response.status_code == 200
        assert response.json() == {"PENDING": 1, "QUEUE_ERROR": 0, "GENERATED": 0, "ERROR": 1}

    def test_status_counts_unknown_event(self, client):
        response = client.get("/api/v1/tickets/events/evt_missing/status-counts")

        assert response.status_code == 404


class TestOperatorEndpoints:

    def test_retry_requires_internal_key(self, client, coordinator):
        response = client.post("/api/v1/tickets/batches/corr-1/retry")

        assert response.status_code == 401
        coordinator.retry_queue_errors.assert_not_called()

    def test_retry(self, client, coordinator):
        coordinator.retry_queue_errors.return_value = _accepted("corr-1")

        response = client.post("/api/v1/tickets/batches/corr-1/retry", headers=INTERNAL)

        assert response.status_code == 202
        coordinator.retry_queue_errors.assert_called_once_with("corr-1")

    def test_queue_stats(self, client, coordinator):
        coordinator.stats.return_value = {
            "REQUEST": {"waiting": 2, "delayed": 0, "active": 1, "completed": 5, "failed": 0},
            "RESPONSE": {"waiting": 0, "delayed": 0, "active": 0, "completed": 5, "failed": 1},
        }

        response = client.get("/api/v1/queues/stats", headers=INTERNAL)

        assert response.status_code == 200
        assert response.json()["REQUEST"]["waiting"] == 2
        assert response.json()["RESPONSE"]["failed"] == 1


class TestHealth:

    def test_health(self, client):
        assert client.get("/health").status_code == 200

    def test_ready(self, client):
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_not_ready(self, client, coordinator):
        coordinator.ready = False

        assert client.get("/health/ready").status_code == 503

    def test_not_ready_without_coordinator(self, client):
        app.state.coordinator = None

        assert client.get("/health/ready").status_code == 503
        assert client.get("/health/live").status_code == 503

    def test_live(self, client):
        assert client.get("/health/live").status_code == 200

    def test_endpoints_unavailable_after_shutdown(self, client, coordinator):
        coordinator.is_shut_down = True

        response = client.post("/api/v1/tickets/bulk", json=BODY)

        assert response.status_code == 503
