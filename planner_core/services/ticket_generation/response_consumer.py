# planner_core/services/ticket_generation/response_consumer.py
import logging
from dataclasses import asdict, dataclass, field
from typing import Callable, List

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from planner_core.crud.crud_generation_batch import generation_batch as batch_crud
from planner_core.crud.crud_ticket import ticket as ticket_crud
from planner_core.queue.outcome import Outcome
from planner_core.queue.celery_queue import Job
from planner_core.schemas.ticket_generation import GenerationResponseMessage, TicketStatus
from planner_core.utils.kafka_helpers import (
    TICKET_GENERATION_APPLIED,
    publish_generation_event,
    publish_poison_alert,
)

logger = logging.getLogger(__name__)


@dataclass
class ApplySummary:
    generated: List[str] = field(default_factory=list)
    errored: List[str] = field(default_factory=list)
    duplicates: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    unknown: List[str] = field(default_factory=list)

    @property
    def matched(self) -> int:
        return len(self.generated) + len(self.errored) + len(self.duplicates) + len(self.skipped)

    def as_dict(self) -> dict:
        return asdict(self)


class ResponseConsumer:
    """
    Applies RESPONSE messages from the renderer to the ticket rows.

    Safe under redelivery: every write is conditional on the current status,
    so applying the same message twice leaves the same final state. All
    updates for one message commit in a single transaction; the message is
    acked only after that commit.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def handle(self, job: Job) -> Outcome:
        try:
            message = GenerationResponseMessage.model_validate(job.data)
        except PydanticValidationError as e:
            reason = f"unparseable response: {e.error_count()} validation error(s)"
            logger.error(f"Poison response in job {job.id}: {e}")
            publish_poison_alert(
                job.data.get("correlation_id") if isinstance(job.data, dict) else None,
                job.data.get("event_id") if isinstance(job.data, dict) else None,
                job.id,
                reason,
            )
            return Outcome.poison(reason)

        logger.info(
            f"Received generation response: correlation_id={message.correlation_id} "
            f"event_id={message.event_id} results={len(message.results)} "
            f"errors={len(message.errors)} source={message.source}"
        )

        try:
            summary = self.apply(message)
        except SQLAlchemyError as e:
            logger.error(
                f"Transient failure applying response {message.correlation_id}: {e}",
                exc_info=True,
            )
            return Outcome.retry(f"database error: {e.__class__.__name__}")

        referenced = len(message.results) + len(message.errors)
        if referenced and summary.matched == 0:
            reason = "response references only unknown tickets"
            if job.attempts_made + 1 >= job.max_attempts:
                publish_poison_alert(
                    message.correlation_id, message.event_id, job.id, reason, summary.unknown
                )
            return Outcome.retry(reason)

        publish_generation_event(
            TICKET_GENERATION_APPLIED,
            message.correlation_id,
            message.event_id,
            generated=len(summary.generated),
            errored=len(summary.errored),
            duplicates=len(summary.duplicates),
            unknown=len(summary.unknown),
        )
        return Outcome.ack(result=summary.as_dict())

    def apply(self, message: GenerationResponseMessage) -> ApplySummary:
        """Apply all successes and errors of one response in one transaction."""
        summary = ApplySummary()
        unmatched_results = []
        unmatched_errors = []

        db = self.session_factory()
        try:
            for result in message.results:
                updated = ticket_crud.apply_success(
                    db,
                    ticket_id=result.ticket_id,
                    event_id=message.event_id,
                    qr_payload=result.qr_payload,
                    checksum=result.checksum,
                    artifact_url=result.artifact_url,
                    generated_at=result.generated_at,
                )
                if updated:
                    summary.generated.append(result.ticket_id)
                else:
                    unmatched_results.append(result)

            for failure in message.errors:
                updated = ticket_crud.apply_error(
                    db,
                    ticket_id=failure.ticket_id,
                    event_id=message.event_id,
                    error_message=failure.error_message,
                )
                if updated:
                    summary.errored.append(failure.ticket_id)
                else:
                    unmatched_errors.append(failure)

            rows = ticket_crud.get_status_rows(
                db,
                event_id=message.event_id,
                ids=[r.ticket_id for r in unmatched_results] + [f.ticket_id for f in unmatched_errors],
            )
            for result in unmatched_results:
                row = rows.get(result.ticket_id)
                if row is None:
                    logger.warning(
                        f"Ticket {result.ticket_id} from response {message.correlation_id} not found; skipping"
                    )
                    summary.unknown.append(result.ticket_id)
                elif row.checksum == result.checksum:
                    summary.duplicates.append(result.ticket_id)
                else:
                    logger.warning(
                        f"Ticket {result.ticket_id} is already {row.status} with a different "
                        f"checksum; keeping the stored artifact"
                    )
                    summary.skipped.append(result.ticket_id)

            for failure in unmatched_errors:
                row = rows.get(failure.ticket_id)
                if row is None:
                    logger.warning(
                        f"Ticket {failure.ticket_id} from response {message.correlation_id} not found; skipping"
                    )
                    summary.unknown.append(failure.ticket_id)
                elif row.status == TicketStatus.ERROR.value:
                    summary.duplicates.append(failure.ticket_id)
                else:
                    logger.info(f"Ignoring error for ticket {failure.ticket_id} in status {row.status}")
                    summary.skipped.append(failure.ticket_id)

            if summary.matched:
                batch_crud.mark_response_applied(
                    db,
                    correlation_id=message.correlation_id,
                    had_errors=bool(message.errors),
                )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info(
            f"Applied response {message.correlation_id}: generated={len(summary.generated)} "
            f"errored={len(summary.errored)} duplicates={len(summary.duplicates)} "
            f"skipped={len(summary.skipped)} unknown={len(summary.unknown)}"
        )
        return summary
