# planner_core/services/ticket_generation/accepter.py
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from planner_core.core.errors import (
    BatchNotFoundError,
    CapacityExceededError,
    EnqueueError,
    EventNotFoundError,
    PersistError,
    ValidationError,
)
from planner_core.crud.crud_event import event as event_crud
from planner_core.crud.crud_generation_batch import generation_batch as batch_crud
from planner_core.crud.crud_ticket import ticket as ticket_crud
from planner_core.models.ticket import Ticket
from planner_core.queue.celery_queue import CeleryQueue
from planner_core.schemas.ticket_generation import (
    DEFAULT_ATTENDEE_EMAIL,
    DEFAULT_ATTENDEE_NAME,
    MAX_BULK_QUANTITY,
    AcceptResult,
    Attendee,
    GenerationOptions,
    GenerationRequestMessage,
    RequestOptions,
    TicketDescriptor,
    TicketStatus,
    TicketType,
)
from planner_core.utils.kafka_helpers import (
    TICKET_GENERATION_ENQUEUE_FAILED,
    TICKET_GENERATION_REQUESTED,
    publish_generation_event,
)

logger = logging.getLogger(__name__)


def _descriptor(ticket: Ticket) -> TicketDescriptor:
    return TicketDescriptor(
        id=ticket.id,
        event_id=ticket.event_id,
        user_id=ticket.user_id,
        type=TicketType(ticket.type),
        attendee=Attendee(
            name=ticket.attendee_name,
            email=ticket.attendee_email,
            phone=ticket.attendee_phone,
        ),
    )


class RequestAccepter:
    """
    Turns a bulk generation intent into PENDING tickets plus one REQUEST.

    The database commit and the broker publish are two separate steps. When
    the publish fails after the commit, the tickets are moved to
    QUEUE_ERROR by a compensating update and the caller gets EnqueueError.
    No database connection is held while talking to the broker.
    """

    def __init__(self, session_factory: Callable[[], Session], request_queue: CeleryQueue):
        self.session_factory = session_factory
        self.request_queue = request_queue

    # ------------------------------------------------------------------ #
    # AcceptBulkGeneration
    # ------------------------------------------------------------------ #

    def accept_bulk_generation(
        self,
        event_id: str,
        ticket_type_id: str,
        quantity: int,
        requester_id: str,
        options: Optional[GenerationOptions] = None,
    ) -> AcceptResult:
        options = options or GenerationOptions()
        self._validate(event_id, ticket_type_id, quantity, requester_id, options)

        correlation_id = str(uuid.uuid4())
        attendees = self._attendees_for(quantity, options.attendees)

        db = self.session_factory()
        try:
            if not event_crud.reserve_capacity(db, event_id=event_id, quantity=quantity):
                if event_crud.get(db, event_id) is None:
                    raise EventNotFoundError(event_id)
                raise CapacityExceededError(event_id, quantity)

            tickets = ticket_crud.insert_batch(
                db,
                event_id=event_id,
                ticket_type_id=ticket_type_id,
                requester_id=requester_id,
                correlation_id=correlation_id,
                attendees=attendees,
                ticket_type=options.ticket_type,
            )
            ticket_ids = [t.id for t in tickets]
            descriptors = [_descriptor(t) for t in tickets]
            batch_crud.create(
                db,
                correlation_id=correlation_id,
                event_id=event_id,
                requester_id=requester_id,
                ticket_ids=ticket_ids,
                priority=options.priority,
                delay_ms=options.delay_ms,
            )
            db.commit()
        except (EventNotFoundError, CapacityExceededError):
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to persist generation batch for event {event_id}: {e}", exc_info=True)
            raise PersistError(f"Could not persist tickets for event {event_id}") from e
        finally:
            db.close()

        logger.info(
            f"Created {quantity} PENDING tickets for event {event_id} "
            f"(correlation_id={correlation_id})"
        )
        return self._enqueue(
            event_id=event_id,
            correlation_id=correlation_id,
            ticket_ids=ticket_ids,
            descriptors=descriptors,
            priority=options.priority,
            delay_ms=options.delay_ms,
        )

    # ------------------------------------------------------------------ #
    # Operator retry: QUEUE_ERROR -> PENDING -> re-enqueue
    # ------------------------------------------------------------------ #

    def retry_queue_errors(self, correlation_id: str) -> AcceptResult:
        """Re-enqueue the batch's QUEUE_ERROR tickets under the same correlation id."""
        db = self.session_factory()
        try:
            batch = batch_crud.get(db, correlation_id)
            if batch is None:
                raise BatchNotFoundError(correlation_id)

            stuck = [
                t for t in ticket_crud.find_by_correlation(db, correlation_id)
                if t.status == TicketStatus.QUEUE_ERROR.value
            ]
            if not stuck:
                raise ValidationError(f"Batch {correlation_id} has no tickets in QUEUE_ERROR")

            ticket_ids = [t.id for t in stuck]
            if ticket_crud.mark_pending(db, ticket_ids) != len(ticket_ids):
                raise ValidationError(f"Batch {correlation_id} is being retried concurrently")

            descriptors = [_descriptor(t) for t in stuck]
            event_id, priority = batch.event_id, batch.priority
            db.commit()
        except (BatchNotFoundError, ValidationError):
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to reset batch {correlation_id} for retry: {e}", exc_info=True)
            raise PersistError(f"Could not reset batch {correlation_id} for retry") from e
        finally:
            db.close()

        logger.info(f"Retrying {len(ticket_ids)} QUEUE_ERROR ticket(s) for batch {correlation_id}")
        return self._enqueue(
            event_id=event_id,
            correlation_id=correlation_id,
            ticket_ids=ticket_ids,
            descriptors=descriptors,
            priority=priority,
            delay_ms=0,
        )

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    @staticmethod
    def _validate(event_id, ticket_type_id, quantity, requester_id, options: GenerationOptions) -> None:
        if not event_id:
            raise ValidationError("event_id is required")
        if not ticket_type_id:
            raise ValidationError("ticket_type_id is required")
        if not requester_id:
            raise ValidationError("requester_id is required")
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise ValidationError("quantity must be an integer")
        if quantity < 1 or quantity > MAX_BULK_QUANTITY:
            raise ValidationError(f"quantity must be between 1 and {MAX_BULK_QUANTITY}")
        if len(options.attendees) > quantity:
            raise ValidationError("more attendees than tickets requested")

    @staticmethod
    def _attendees_for(quantity: int, attendees: List[Attendee]) -> List[Attendee]:
        placeholder = Attendee(name=DEFAULT_ATTENDEE_NAME, email=DEFAULT_ATTENDEE_EMAIL)
        return list(attendees) + [placeholder] * (quantity - len(attendees))

    def _enqueue(
        self,
        *,
        event_id: str,
        correlation_id: str,
        ticket_ids: List[str],
        descriptors: List[TicketDescriptor],
        priority: int,
        delay_ms: int,
    ) -> AcceptResult:
        enqueued_at = datetime.now(timezone.utc)
        message = GenerationRequestMessage(
            correlation_id=correlation_id,
            event_id=event_id,
            tickets=descriptors,
            options=RequestOptions(priority=priority, delay_ms=delay_ms),
            timestamp=enqueued_at,
        )
        try:
            job_id = self.request_queue.publish(
                message.model_dump(mode="json"), priority=priority, delay_ms=delay_ms
            )
        except Exception as e:
            logger.error(
                f"Publish failed for batch {correlation_id} (event {event_id}): {e}",
                exc_info=True,
            )
            compensated = self._compensate(correlation_id, ticket_ids, str(e))
            publish_generation_event(
                TICKET_GENERATION_ENQUEUE_FAILED,
                correlation_id,
                event_id,
                ticketIds=ticket_ids,
                compensated=compensated,
                error=str(e),
            )
            raise EnqueueError(
                f"Tickets were created but could not be queued for generation: {e}",
                correlation_id=correlation_id,
                ticket_ids=ticket_ids,
                compensated=compensated,
            ) from e

        self._record_enqueued(correlation_id, job_id, enqueued_at)
        logger.info(
            f"Ticket generation request sent: correlation_id={correlation_id} "
            f"event_id={event_id} tickets={len(ticket_ids)} job_id={job_id}"
        )
        publish_generation_event(
            TICKET_GENERATION_REQUESTED,
            correlation_id,
            event_id,
            ticketIds=ticket_ids,
            jobId=job_id,
        )
        return AcceptResult(
            tickets=ticket_ids,
            correlation_id=correlation_id,
            status=TicketStatus.PENDING,
            enqueued_at=enqueued_at,
            job_id=job_id,
        )

    def _compensate(self, correlation_id: str, ticket_ids: List[str], error: str) -> bool:
        """PENDING -> QUEUE_ERROR for the batch. Returns False if the update itself failed."""
        db = self.session_factory()
        try:
            updated = ticket_crud.mark_queue_error(db, ticket_ids)
            batch_crud.mark_queue_error(db, correlation_id=correlation_id, error=error)
            db.commit()
            logger.warning(f"Marked {updated} ticket(s) QUEUE_ERROR for batch {correlation_id}")
            return True
        except SQLAlchemyError as e:
            db.rollback()
            logger.critical(
                f"Compensating update failed for batch {correlation_id}; "
                f"{len(ticket_ids)} ticket(s) left PENDING: {e}",
                exc_info=True,
            )
            return False
        finally:
            db.close()

    def _record_enqueued(self, correlation_id: str, job_id: str, enqueued_at: datetime) -> None:
        db = self.session_factory()
        try:
            batch_crud.mark_enqueued(db, correlation_id=correlation_id, job_id=job_id, enqueued_at=enqueued_at)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(f"Could not record job {job_id} on batch {correlation_id}: {e}")
        finally:
            db.close()
