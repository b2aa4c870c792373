# planner_core/core/errors.py
"""
Typed errors raised by the ticket generation pipeline.

In-process callers (the HTTP layer, operator tooling) see these. The message
driven side never raises them past the queue transport; it reports a
HandlerOutcome instead.
"""
from typing import List, Optional


class TicketGenerationError(Exception):
    """Base class for pipeline errors."""

    code = "TICKET_GENERATION_ERROR"

    def __init__(self, message: str, retryable: bool = False):
        self.message = message
        self.retryable = retryable
        super().__init__(message)


class ValidationError(TicketGenerationError):
    code = "VALIDATION_ERROR"


class EventNotFoundError(ValidationError):
    code = "EVENT_NOT_FOUND"

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Event {event_id} not found")


class CapacityExceededError(TicketGenerationError):
    code = "CAPACITY_EXCEEDED"

    def __init__(self, event_id: str, requested: int):
        self.event_id = event_id
        self.requested = requested
        super().__init__(
            f"Event {event_id} does not have capacity for {requested} more tickets"
        )


class PersistError(TicketGenerationError):
    code = "PERSIST_ERROR"

    def __init__(self, message: str):
        super().__init__(message, retryable=True)


class EnqueueError(TicketGenerationError):
    """
    Raised when the broker publish fails after the tickets were committed.

    `compensated` tells whether the tickets were moved to QUEUE_ERROR; when it
    is False they are still PENDING and the timeout sweep will error them.
    """

    code = "ENQUEUE_ERROR"

    def __init__(
        self,
        message: str,
        correlation_id: str,
        ticket_ids: List[str],
        compensated: bool = True,
    ):
        self.correlation_id = correlation_id
        self.ticket_ids = list(ticket_ids)
        self.compensated = compensated
        super().__init__(message, retryable=True)


class BatchNotFoundError(TicketGenerationError):
    code = "BATCH_NOT_FOUND"

    def __init__(self, correlation_id: str):
        self.correlation_id = correlation_id
        super().__init__(f"Generation batch {correlation_id} not found")


class QueueClosedError(TicketGenerationError):
    code = "QUEUE_CLOSED"

    def __init__(self, queue_name: str):
        self.queue_name = queue_name
        super().__init__(f"Queue {queue_name} is closed to new publishes")


class BrokerUnavailableError(TicketGenerationError):
    code = "BROKER_UNAVAILABLE"

    def __init__(self, message: str, cause: Optional[Exception] = None):
        self.cause = cause
        super().__init__(message, retryable=True)
