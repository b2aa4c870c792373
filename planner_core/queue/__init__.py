# planner_core/queue/__init__.py

from .celery_queue import CeleryQueue, Job, QueueOptions, backoff_delay_ms, decode_payload
from .ledger import JobLedger
from .outcome import HandlerOutcome, Outcome

__all__ = [
    "CeleryQueue",
    "HandlerOutcome",
    "Job",
    "JobLedger",
    "Outcome",
    "QueueOptions",
    "backoff_delay_ms",
    "decode_payload",
]
