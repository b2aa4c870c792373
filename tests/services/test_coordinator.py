"""
Tests for the coordinator lifecycle: startup against the broker, readiness,
liveness, stats and the single graceful shutdown.

Queues run on the in-process memory broker with job history in fakeredis.
"""

import threading
import uuid
from unittest.mock import MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from planner_core.core.config import Settings
from planner_core.core.errors import BrokerUnavailableError, QueueClosedError
from planner_core.crud import ticket as ticket_crud
from planner_core.schemas.ticket_generation import TicketStatus
from planner_core.services.ticket_generation.coordinator import (
    REQUEST,
    RESPONSE,
    TicketGenerationCoordinator,
)

COORDINATOR = "planner_core.services.ticket_generation.coordinator"


class TestCoordinatorLifecycle:

    @pytest.fixture(autouse=True)
    def setup(self, session_factory, celery_app, fake_redis):
        self.config = Settings(
            HANDLER_TIMEOUT_SECONDS=0.5,
            SHUTDOWN_GRACE_SECONDS=10,
            RESPONSE_CONCURRENCY=2,
            RESPONSE_QUEUE_NAME=f"TICKET_GENERATED_{uuid.uuid4().hex[:8]}",
        )
        self.celery_app = celery_app
        self.fake_redis = fake_redis
        self.redis = MagicMock(wraps=fake_redis)
        self.engine = MagicMock()
        self.session_factory = session_factory

    def _make(self, consume_responses=False, enable_scheduler=False):
        return TicketGenerationCoordinator(
            redis_client=self.redis,
            celery_app=self.celery_app,
            session_factory=self.session_factory,
            engine=self.engine,
            config=self.config,
            consume_responses=consume_responses,
            enable_scheduler=enable_scheduler,
        )

    def test_not_ready_before_start(self):
        coordinator = self._make()

        assert coordinator.ready is False
        assert coordinator.is_alive() is False

    def test_start_makes_coordinator_ready(self):
        coordinator = self._make()

        coordinator.start()

        assert coordinator.ready is True
        assert coordinator.is_alive() is True
        self.redis.ping.assert_called()

    def test_start_without_broker_fails(self):
        self.redis.ping.side_effect = RedisConnectionError("connection refused")
        coordinator = self._make()

        with pytest.raises(BrokerUnavailableError):
            coordinator.start()
        assert coordinator.ready is False

    def test_queues_use_configured_names_and_policies(self):
        self.config = Settings(REQUEST_MAX_ATTEMPTS=5, RESPONSE_BACKOFF_MS=250)
        coordinator = self._make()

        assert coordinator.request_queue.name == "TICKET_GENERATION"
        assert coordinator.response_queue.name == "TICKET_GENERATED"
        assert coordinator.request_queue.task_name == "planner.TICKET_GENERATION"
        assert coordinator.request_queue.options.max_attempts == 5
        assert coordinator.response_queue.options.backoff_ms == 250

    def test_start_registers_response_consumer(self):
        coordinator = self._make(consume_responses=True)

        coordinator.start()
        try:
            assert coordinator.response_queue.is_consuming
            assert coordinator.is_alive() is True
            assert coordinator.response_queue.task_name in self.celery_app.tasks
            assert coordinator.status()["consuming"] is True
        finally:
            coordinator.shutdown()

    def test_start_runs_scheduler(self):
        scheduler = MagicMock()
        with patch(f"{COORDINATOR}.build_scheduler", return_value=scheduler) as build:
            coordinator = self._make(enable_scheduler=True)
            coordinator.start()

        build.assert_called_once_with(self.session_factory)
        scheduler.start.assert_called_once()

        coordinator.shutdown()
        scheduler.shutdown.assert_called_once_with(wait=False)

    def test_stats_covers_both_queues(self):
        coordinator = self._make()
        self.fake_redis.rpush(coordinator.request_queue.name, "m")
        for i in range(3):
            coordinator.response_queue.ledger.completed(f"r{i}")

        stats = coordinator.stats()

        assert set(stats) == {REQUEST, RESPONSE}
        assert stats[REQUEST]["waiting"] == 1
        assert stats[RESPONSE]["completed"] == 3

    def test_failed_jobs_reads_the_named_queue(self):
        coordinator = self._make()
        coordinator.request_queue.get_failed = MagicMock(return_value=["req"])
        coordinator.response_queue.get_failed = MagicMock(return_value=["resp"])

        assert coordinator.failed_jobs(REQUEST, limit=5) == ["req"]
        assert coordinator.failed_jobs() == ["resp"]
        coordinator.request_queue.get_failed.assert_called_once_with(5)
        coordinator.response_queue.get_failed.assert_called_once_with(20)

    def test_accept_delegates_to_accepter(self):
        coordinator = self._make()
        coordinator.accepter = MagicMock()

        coordinator.accept_bulk_generation("evt_1", "tt_general", 2, "user_123")

        coordinator.accepter.accept_bulk_generation.assert_called_once_with(
            "evt_1", "tt_general", 2, "user_123", None
        )

    # ------------------------------------------------------------------ #
    # Shutdown
    # ------------------------------------------------------------------ #

    def test_shutdown_releases_resources(self):
        coordinator = self._make(consume_responses=True)
        coordinator.start()

        assert coordinator.shutdown() is True

        assert coordinator.ready is False
        assert coordinator.is_alive() is False
        assert coordinator.request_queue.is_closed
        assert coordinator.response_queue.is_closed
        assert not coordinator.response_queue.is_consuming
        self.engine.dispose.assert_called_once()
        self.redis.close.assert_called_once()

    def test_shutdown_runs_once(self):
        coordinator = self._make()
        coordinator.start()

        coordinator.shutdown()
        coordinator.shutdown()

        self.engine.dispose.assert_called_once()
        self.redis.close.assert_called_once()

    def test_no_publishes_after_shutdown(self):
        coordinator = self._make()
        coordinator.start()
        coordinator.accepter = MagicMock()
        coordinator.shutdown()

        with pytest.raises(QueueClosedError):
            coordinator.accept_bulk_generation("evt_1", "tt_general", 1, "user_123")
        with pytest.raises(QueueClosedError):
            coordinator.retry_queue_errors("corr-1")
        with pytest.raises(QueueClosedError):
            coordinator.request_queue.publish({"kind": "REQUEST"})
        coordinator.accepter.accept_bulk_generation.assert_not_called()

    def test_shutdown_reports_handlers_past_grace(self):
        coordinator = self._make()
        coordinator.start()
        coordinator.response_queue = MagicMock()
        coordinator.response_queue.close.return_value = False

        assert coordinator.shutdown(grace_seconds=0.1) is False
        coordinator.response_queue.close.assert_called_once_with(timeout=0.1)
        # The pool is still released.
        self.engine.dispose.assert_called_once()

    def test_cannot_restart_after_shutdown(self):
        coordinator = self._make()
        coordinator.start()
        coordinator.shutdown()

        with pytest.raises(RuntimeError):
            coordinator.start()


class TestShutdownDrainsResponses:
    """A RESPONSE being applied when shutdown starts is allowed to finish."""

    @pytest.fixture(autouse=True)
    def setup(self, session_factory, make_event, celery_app, fake_redis):
        config = Settings(
            RESPONSE_CONCURRENCY=1,
            REQUEST_QUEUE_NAME=f"TICKET_GENERATION_{uuid.uuid4().hex[:8]}",
            RESPONSE_QUEUE_NAME=f"TICKET_GENERATED_{uuid.uuid4().hex[:8]}",
        )
        self.session_factory = session_factory
        self.coordinator = TicketGenerationCoordinator(
            redis_client=fake_redis,
            celery_app=celery_app,
            session_factory=session_factory,
            engine=MagicMock(),
            config=config,
            consume_responses=True,
            enable_scheduler=False,
        )
        self.coordinator.start()
        self.event_id = make_event()
        self.accepted = self.coordinator.accept_bulk_generation(self.event_id, "tt_general", 2, "user_123")

        # The handler opens its session only once the test lets it.
        self.started, self.release = threading.Event(), threading.Event()

        def _held_session():
            self.started.set()
            self.release.wait(10)
            return session_factory()

        self.coordinator.consumer.session_factory = _held_session
        yield
        self.release.set()
        self.coordinator.response_queue.close(timeout=10)

    def _publish_response(self):
        self.coordinator.response_queue.publish({
            "correlationId": self.accepted.correlation_id,
            "eventId": self.event_id,
            "results": [
                {"ticketId": ticket_id, "qrCode": f"Q{i}", "checksum": f"H{i}", "pdfUrl": f"U{i}"}
                for i, ticket_id in enumerate(self.accepted.tickets, start=1)
            ],
            "errors": [],
        })

    def _statuses(self):
        with self.session_factory() as db:
            return {t.status for t in ticket_crud.find_by_correlation(db, self.accepted.correlation_id)}

    def _shutdown_in_background(self, grace_seconds):
        drained = []
        thread = threading.Thread(
            target=lambda: drained.append(self.coordinator.shutdown(grace_seconds=grace_seconds))
        )
        thread.start()
        return thread, drained

    def test_in_flight_response_finishes_before_shutdown_returns(self):
        self._publish_response()
        assert self.started.wait(10)

        thread, drained = self._shutdown_in_background(grace_seconds=10)
        thread.join(0.5)
        assert thread.is_alive()
        assert self.coordinator.response_queue.in_flight == 1

        self.release.set()
        thread.join(15)

        assert drained == [True]
        assert self._statuses() == {TicketStatus.GENERATED.value}
        assert self.coordinator.response_queue.stats()["completed"] == 1

    def test_grace_period_elapsing_is_reported(self):
        self._publish_response()
        assert self.started.wait(10)

        thread, drained = self._shutdown_in_background(grace_seconds=0.2)
        thread.join(10)

        assert drained == [False]
        assert self._statuses() == {TicketStatus.PENDING.value}

        # The handler still completes; its message is acked late, not lost.
        self.release.set()
        assert self.coordinator.response_queue.close(timeout=10) is True
        assert self._statuses() == {TicketStatus.GENERATED.value}
