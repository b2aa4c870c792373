# planner_core/services/ticket_generation/coordinator.py
import logging
import threading
from typing import Callable, Dict, List, Optional

from celery import Celery
from redis import Redis
from redis.exceptions import RedisError
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from planner_core.core.config import Settings, settings as default_settings
from planner_core.core.errors import BrokerUnavailableError, QueueClosedError
from planner_core.core.kafka_producer import close_kafka_singleton
from planner_core.queue.celery_queue import CeleryQueue, Job, QueueOptions
from planner_core.scheduler import build_scheduler, get_scheduler_status
from planner_core.schemas.ticket_generation import AcceptResult, GenerationOptions
from planner_core.services.ticket_generation.accepter import RequestAccepter
from planner_core.services.ticket_generation.response_consumer import ResponseConsumer

logger = logging.getLogger(__name__)

REQUEST = "REQUEST"
RESPONSE = "RESPONSE"


class TicketGenerationCoordinator:
    """
    Owns the pipeline's lifecycle: broker connection, both queues, the
    response consumer, the maintenance scheduler and the database engine.

    Built once at process startup and handed to whoever needs it (the HTTP
    layer via app.state, the standalone consumer via run_response_consumer).
    shutdown() runs at most once.
    """

    def __init__(
        self,
        *,
        redis_client: Optional[Redis] = None,
        celery_app: Optional[Celery] = None,
        session_factory: Optional[Callable[[], Session]] = None,
        engine: Optional[Engine] = None,
        config: Settings = default_settings,
        consume_responses: Optional[bool] = None,
        enable_scheduler: Optional[bool] = None,
    ):
        if session_factory is None:
            from planner_core.db.session import SessionLocal, engine as default_engine

            session_factory = SessionLocal
            engine = engine or default_engine
        if redis_client is None:
            from planner_core.db.redis import get_redis_client

            redis_client = get_redis_client()
        if celery_app is None:
            from planner_core.worker import celery_app

        self.config = config
        self.redis = redis_client
        self.celery_app = celery_app
        self.session_factory = session_factory
        self.engine = engine
        self.consume_responses = (
            config.CONSUME_RESPONSES_IN_API if consume_responses is None else consume_responses
        )
        self.enable_scheduler = config.ENABLE_SCHEDULER if enable_scheduler is None else enable_scheduler

        self.request_queue = CeleryQueue(
            config.REQUEST_QUEUE_NAME,
            celery_app,
            redis_client,
            QueueOptions(
                max_attempts=config.REQUEST_MAX_ATTEMPTS,
                backoff_ms=config.REQUEST_BACKOFF_MS,
                remove_on_complete=config.REQUEST_REMOVE_ON_COMPLETE,
                remove_on_fail=config.REQUEST_REMOVE_ON_FAIL,
            ),
            prefix=config.QUEUE_PREFIX,
            handler_timeout=config.HANDLER_TIMEOUT_SECONDS,
            worker_pool=config.RESPONSE_WORKER_POOL,
        )
        self.response_queue = CeleryQueue(
            config.RESPONSE_QUEUE_NAME,
            celery_app,
            redis_client,
            QueueOptions(
                max_attempts=config.RESPONSE_MAX_ATTEMPTS,
                backoff_ms=config.RESPONSE_BACKOFF_MS,
                remove_on_complete=config.RESPONSE_REMOVE_ON_COMPLETE,
                remove_on_fail=config.RESPONSE_REMOVE_ON_FAIL,
            ),
            prefix=config.QUEUE_PREFIX,
            handler_timeout=config.HANDLER_TIMEOUT_SECONDS,
            worker_pool=config.RESPONSE_WORKER_POOL,
        )
        self.accepter = RequestAccepter(session_factory, self.request_queue)
        self.consumer = ResponseConsumer(session_factory)
        self.scheduler = None

        self._ready = False
        self._started = False
        self._shut_down = False
        self._lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    @property
    def ready(self) -> bool:
        return self._ready and not self._shut_down

    @property
    def is_shut_down(self) -> bool:
        return self._shut_down

    def is_alive(self) -> bool:
        """Liveness: started, not shut down, and consumer workers running if configured."""
        if not self._started or self._shut_down:
            return False
        if self.consume_responses and not self.response_queue.is_consuming:
            return False
        return True

    def start(self) -> None:
        with self._lock:
            if self._started:
                logger.warning("Coordinator already started")
                return
            if self._shut_down:
                raise RuntimeError("Coordinator has been shut down")

            logger.info("Starting ticket generation coordinator...")
            try:
                self.redis.ping()
            except RedisError as e:
                logger.error(f"Cannot reach the broker: {e}")
                raise BrokerUnavailableError("Broker connection is required for the generation queues", e) from e
            logger.info("Broker connection established")

            if self.consume_responses:
                self.response_queue.consume(self.consumer.handle, concurrency=self.config.RESPONSE_CONCURRENCY)

            if self.enable_scheduler:
                self.scheduler = build_scheduler(self.session_factory)
                self.scheduler.start()

            self._started = True
            self._ready = self.request_queue.ping() and self.response_queue.ping()
            logger.info(f"Ticket generation coordinator started (ready={self._ready})")

    def shutdown(self, grace_seconds: Optional[float] = None) -> bool:
        """
        Stop publishes, drain in-flight handlers for up to `grace_seconds`,
        close both queues and release the database pool.

        Returns True when every handler finished within the grace period.
        Handlers still running afterwards leave their jobs unacked; those are
        redelivered after restart.
        """
        with self._lock:
            if self._shut_down:
                return True
            self._shut_down = True
            self._ready = False

        grace = self.config.SHUTDOWN_GRACE_SECONDS if grace_seconds is None else grace_seconds
        logger.info(f"Shutting down ticket generation coordinator (grace={grace}s)...")

        self.request_queue.close(timeout=0)
        if self.scheduler is not None:
            self.scheduler.shutdown(wait=False)
            self.scheduler = None

        drained = self.response_queue.close(timeout=grace)
        if not drained:
            logger.error("Shutdown grace period elapsed with handlers still running")

        if self.engine is not None:
            self.engine.dispose()
        try:
            self.redis.close()
        except RedisError as e:
            logger.warning(f"Error closing broker connection: {e}")
        close_kafka_singleton()

        logger.info("Ticket generation coordinator stopped")
        return drained

    # ------------------------------------------------------------------ #
    # Operations
    # ------------------------------------------------------------------ #

    def accept_bulk_generation(
        self,
        event_id: str,
        ticket_type_id: str,
        quantity: int,
        requester_id: str,
        options: Optional[GenerationOptions] = None,
    ) -> AcceptResult:
        if self._shut_down:
            raise QueueClosedError(self.request_queue.name)
        return self.accepter.accept_bulk_generation(event_id, ticket_type_id, quantity, requester_id, options)

    def retry_queue_errors(self, correlation_id: str) -> AcceptResult:
        if self._shut_down:
            raise QueueClosedError(self.request_queue.name)
        return self.accepter.retry_queue_errors(correlation_id)

    def stats(self) -> Dict[str, Dict[str, int]]:
        return {
            REQUEST: self.request_queue.stats(),
            RESPONSE: self.response_queue.stats(),
        }

    def failed_jobs(self, queue: str = RESPONSE, limit: int = 20) -> List[Job]:
        target = self.request_queue if queue == REQUEST else self.response_queue
        return target.get_failed(limit)

    def status(self) -> dict:
        return {
            "ready": self.ready,
            "alive": self.is_alive(),
            "consuming": self.response_queue.is_consuming,
            "in_flight": self.response_queue.in_flight,
            "scheduler": get_scheduler_status(self.scheduler),
        }
