# planner_core/queue/celery_queue.py
"""
Queue transport on Celery.

Each CeleryQueue is one named broker queue plus one task name,
`{prefix}.{name}`. Producers publish with send_task, so the far side of a
queue (the renderer, for REQUEST) only has to register a task under that
name. consume() registers the task around the caller's handler and runs an
embedded Celery worker that listens on this queue alone.

Handlers return an Outcome and the task maps it onto Celery: ACK returns,
RETRY goes through task.retry() with exponential backoff until max_attempts,
POISON and exhausted retries fail the task, which puts it on the failed
sideline kept by the JobLedger.
"""
import json
import logging
import socket
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from celery import Celery, Task
from celery.platforms import EX_OK
from celery.worker import state as worker_state
from kombu.exceptions import OperationalError
from redis import Redis
from redis.exceptions import RedisError

from planner_core.core.errors import QueueClosedError
from planner_core.queue.ledger import JobLedger, now_ms
from planner_core.queue.outcome import HandlerOutcome, Outcome
from planner_core.worker import MAX_PRIORITY, PRIORITY_SEP

logger = logging.getLogger(__name__)

# The hard limit kills a handler that ignored its soft time limit.
HARD_TIME_LIMIT_MARGIN = 5.0


def backoff_delay_ms(base_ms: int, attempts_made: int) -> int:
    """Exponential backoff: base, 2*base, 4*base, ... for the 1st, 2nd, 3rd retry."""
    return base_ms * (2 ** max(attempts_made - 1, 0))


def clamp_priority(priority: int) -> int:
    return min(max(int(priority), 0), MAX_PRIORITY)


def broker_queue_keys(name: str) -> List[str]:
    """The Redis lists the broker keeps for one queue, highest priority first."""
    return [name] + [f"{name}{PRIORITY_SEP}{p}" for p in range(1, MAX_PRIORITY + 1)]


def decode_payload(payload: Any) -> Any:
    """JSON text is decoded; anything unparseable is handed over as-is."""
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="replace")
    if isinstance(payload, str):
        try:
            return json.loads(payload)
        except ValueError:
            return payload
    return payload


@dataclass(frozen=True)
class QueueOptions:
    max_attempts: int = 3
    backoff_ms: int = 1000
    remove_on_complete: int = 10
    remove_on_fail: int = 50


@dataclass
class Job:
    id: str
    queue: str
    data: Any
    priority: int = 0
    attempts_made: int = 0
    max_attempts: int = 1
    timestamp: int = 0
    failed_reason: Optional[str] = None

    @classmethod
    def from_entry(cls, queue: str, entry: Dict[str, Any], max_attempts: int) -> "Job":
        return cls(
            id=str(entry.get("id")),
            queue=queue,
            data=entry.get("data"),
            priority=int(entry.get("priority") or 0),
            attempts_made=int(entry.get("attempts_made") or 0),
            max_attempts=max_attempts,
            timestamp=int(entry.get("finished_at") or 0),
            failed_reason=entry.get("failed_reason"),
        )


Handler = Callable[[Job], Optional[Outcome]]


class RetryableJobError(Exception):
    """Passed to task.retry() for a RETRY outcome; carries the backoff."""

    def __init__(self, reason: str, countdown: float):
        self.countdown = countdown
        super().__init__(reason)


class FailedJobError(Exception):
    """Fails the task without another attempt."""


class QueueTask(Task):
    """Base for the tasks a CeleryQueue registers; keeps the ledger in step."""

    transport = None

    def before_start(self, task_id, args, kwargs):
        self.transport._job_started(task_id)

    def on_success(self, retval, task_id, args, kwargs):
        self.transport.ledger.completed(task_id, retval)

    def on_retry(self, exc, task_id, args, kwargs, einfo):
        countdown = getattr(exc, "countdown", 0) or 0
        self.transport.ledger.retrying(task_id, now_ms() + int(countdown * 1000))

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        self.transport._job_failed(task_id, args, exc, self.request)

    def after_return(self, status, retval, task_id, args, kwargs, einfo):
        self.transport._job_returned(task_id)


class CeleryQueue:
    """One named queue: publish, consume with N handlers, stats, close."""

    def __init__(
        self,
        name: str,
        app: Celery,
        redis_client: Redis,
        options: QueueOptions,
        *,
        prefix: str = "planner",
        handler_timeout: float = 30.0,
        worker_pool: str = "threads",
    ):
        self.name = name
        self.app = app
        self.redis = redis_client
        self.options = options
        self.handler_timeout = handler_timeout
        self.worker_pool = worker_pool
        self.task_name = f"{prefix}.{name}"
        self.ledger = JobLedger(
            name,
            redis_client,
            prefix=prefix,
            remove_on_complete=options.remove_on_complete,
            remove_on_fail=options.remove_on_fail,
            lock_ms=int((handler_timeout + HARD_TIME_LIMIT_MARGIN) * 1000),
        )

        self._closed = threading.Event()
        self._worker = None
        self._worker_thread: Optional[threading.Thread] = None
        self._in_flight = 0
        self._in_flight_lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    @property
    def is_closed(self) -> bool:
        return self._closed.is_set()

    @property
    def is_consuming(self) -> bool:
        return self._worker_thread is not None and self._worker_thread.is_alive()

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def ping(self) -> bool:
        try:
            with self.app.connection_for_write() as conn:
                conn.ensure_connection(max_retries=1)
            return bool(self.redis.ping())
        except (OperationalError, RedisError, OSError) as e:
            logger.error(f"Queue {self.name} ping failed: {e}")
            return False

    def stats(self) -> Dict[str, int]:
        """Waiting counts the broker backlog over every priority level."""
        pipe = self.redis.pipeline(transaction=False)
        for key in broker_queue_keys(self.name):
            pipe.llen(key)
        waiting = sum(int(n or 0) for n in pipe.execute())
        return {"waiting": waiting, **self.ledger.counts()}

    def get_failed(self, limit: int = 20) -> List[Job]:
        """Jobs on the failed sideline, newest first, for operator inspection."""
        return [
            Job.from_entry(self.name, entry, self.options.max_attempts)
            for entry in self.ledger.failed_entries(limit)
        ]

    # ------------------------------------------------------------------ #
    # Producer side
    # ------------------------------------------------------------------ #

    def publish(self, payload: Dict[str, Any], priority: int = 1, delay_ms: int = 0) -> str:
        """
        Send one message to the queue. Returns the job id.

        Raises QueueClosedError once close() has been called. Broker errors
        (kombu OperationalError once the publish retries are spent) propagate
        to the caller.
        """
        if self.is_closed:
            raise QueueClosedError(self.name)

        result = self.app.send_task(
            self.task_name,
            args=[payload],
            queue=self.name,
            priority=clamp_priority(priority),
            countdown=delay_ms / 1000 if delay_ms > 0 else None,
        )
        logger.debug(f"Queue {self.name}: published job {result.id} (priority={priority}, delay_ms={delay_ms})")
        return result.id

    # ------------------------------------------------------------------ #
    # Consumer side
    # ------------------------------------------------------------------ #

    def register(self, handler: Handler) -> Task:
        """Register this queue's task around `handler` on the Celery app."""
        queue = self
        if self.task_name in self.app.tasks:
            self.app.tasks.unregister(self.task_name)

        @self.app.task(
            bind=True,
            base=QueueTask,
            shared=False,
            name=self.task_name,
            queue=self.name,
            transport=self,
            acks_late=True,
            reject_on_worker_lost=True,
            max_retries=self.options.max_attempts - 1,
            soft_time_limit=self.handler_timeout,
            time_limit=self.handler_timeout + HARD_TIME_LIMIT_MARGIN,
        )
        def run_handler(task, payload=None):
            job = queue._job_for(task.request, payload)
            try:
                outcome = handler(job)
            except Exception as e:
                logger.error(f"Queue {queue.name}: job {job.id} handler raised: {e}", exc_info=True)
                outcome = Outcome.retry(str(e) or e.__class__.__name__)
            return queue._settle(task, job, outcome or Outcome.ack())

        return run_handler

    def consume(self, handler: Handler, concurrency: int = 1) -> None:
        """Run an embedded worker feeding up to `concurrency` jobs at a time to `handler`."""
        if self.is_closed:
            raise QueueClosedError(self.name)
        if self._worker_thread is not None:
            raise RuntimeError(f"Queue {self.name} already has a consumer registered")

        self.register(handler)
        worker_state.should_stop = None
        self._worker = self.app.WorkController(
            hostname=f"{self.name}@{socket.gethostname()}",
            pool=self.worker_pool,
            concurrency=concurrency,
            queues=[self.name],
            prefetch_multiplier=1,
            without_heartbeat=True,
            without_mingle=True,
            without_gossip=True,
        )
        self._worker_thread = threading.Thread(
            target=self._worker.start,
            name=f"{self.name}-consumer",
            daemon=True,
        )
        self._worker_thread.start()
        logger.info(f"Queue {self.name}: consuming with {concurrency} {self.worker_pool} worker(s)")

    def _job_for(self, request, payload: Any) -> Job:
        delivery_info = request.delivery_info or {}
        return Job(
            id=request.id,
            queue=self.name,
            data=decode_payload(payload),
            priority=delivery_info.get("priority") or 0,
            attempts_made=request.retries or 0,
            max_attempts=self.options.max_attempts,
            timestamp=now_ms(),
        )

    def _settle(self, task: Task, job: Job, outcome: Outcome) -> Any:
        if outcome.tag == HandlerOutcome.ACK:
            return outcome.result

        attempt = job.attempts_made + 1
        if outcome.tag == HandlerOutcome.POISON:
            logger.error(f"Queue {self.name}: job {job.id} moved to failed (poison): {outcome.reason}")
            raise FailedJobError(outcome.reason)
        if attempt >= job.max_attempts:
            logger.error(
                f"Queue {self.name}: job {job.id} moved to failed after "
                f"{attempt}/{job.max_attempts} attempts: {outcome.reason}"
            )
            raise FailedJobError(outcome.reason)

        countdown = backoff_delay_ms(self.options.backoff_ms, attempt) / 1000
        logger.warning(
            f"Queue {self.name}: job {job.id} scheduled for retry in {countdown}s "
            f"(attempt {attempt}/{job.max_attempts}): {outcome.reason}"
        )
        raise task.retry(exc=RetryableJobError(outcome.reason, countdown), countdown=countdown)

    def _job_started(self, job_id: str) -> None:
        with self._in_flight_lock:
            self._in_flight += 1
        self.ledger.started(job_id)

    def _job_returned(self, job_id: str) -> None:
        with self._in_flight_lock:
            self._in_flight = max(self._in_flight - 1, 0)
        self.ledger.finished(job_id)

    def _job_failed(self, job_id: str, args, exc: BaseException, request) -> None:
        data = decode_payload(args[0]) if args else None
        priority = (getattr(request, "delivery_info", None) or {}).get("priority") or 0
        attempts = (getattr(request, "retries", 0) or 0) + 1
        self.ledger.failed(job_id, data, str(exc) or exc.__class__.__name__, attempts, priority)

    # ------------------------------------------------------------------ #
    # Shutdown
    # ------------------------------------------------------------------ #

    def close(self, timeout: Optional[float] = None) -> bool:
        """
        Refuse new publishes and stop the embedded worker, waiting up to
        `timeout` seconds for running handlers. Returns True once drained.

        A handler still running afterwards has not acknowledged its message;
        the broker redelivers it when the visibility timeout lapses.
        Calling close() again waits for the same worker once more.
        """
        self._closed.set()
        thread = self._worker_thread
        if thread is None:
            logger.info(f"Queue {self.name} closed")
            return True

        # The flag Celery's own SIGTERM handler sets: warm shutdown.
        worker_state.should_stop = EX_OK
        thread.join(timeout)
        if thread.is_alive():
            logger.error(
                f"Queue {self.name}: {self._in_flight} handler(s) still running after "
                f"{timeout}s; their messages stay unacknowledged and will be redelivered"
            )
            return False

        worker_state.should_stop = None
        logger.info(f"Queue {self.name} closed")
        return True
