# planner_core/crud/crud_ticket.py
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from planner_core.models.ticket import Ticket, allowed_prior_statuses
from planner_core.schemas.ticket_generation import Attendee, TicketStatus, TicketType


class CRUDTicket:
    """
    Ticket state store.

    Every status write is a conditional UPDATE gated on the statuses the
    state machine allows before the target status, so concurrent or
    redelivered writers can never move a ticket backwards. None of these
    methods commit; the caller owns the transaction.
    """

    def get(self, db: Session, ticket_id: str) -> Optional[Ticket]:
        return db.query(Ticket).filter(Ticket.id == ticket_id).first()

    def insert_batch(
        self,
        db: Session,
        *,
        event_id: str,
        ticket_type_id: str,
        requester_id: str,
        correlation_id: str,
        attendees: List[Attendee],
        ticket_type: TicketType = TicketType.STANDARD,
    ) -> List[Ticket]:
        """Insert one PENDING ticket per attendee, all sharing the correlation id."""
        now = datetime.now(timezone.utc)
        tickets = [
            Ticket(
                event_id=event_id,
                ticket_type_id=ticket_type_id,
                user_id=requester_id,
                type=TicketType(ticket_type).value,
                attendee_name=attendee.name,
                attendee_email=attendee.email,
                attendee_phone=attendee.phone,
                status=TicketStatus.PENDING.value,
                correlation_id=correlation_id,
                created_at=now,
                updated_at=now,
            )
            for attendee in attendees
        ]
        db.add_all(tickets)
        db.flush()
        return tickets

    def _transition(
        self,
        db: Session,
        ids: Iterable[str],
        target: TicketStatus,
        values: dict,
        event_id: Optional[str] = None,
    ) -> int:
        ids = list(ids)
        if not ids:
            return 0
        query = db.query(Ticket).filter(
            Ticket.id.in_(ids),
            Ticket.status.in_(allowed_prior_statuses(target)),
        )
        if event_id is not None:
            query = query.filter(Ticket.event_id == event_id)
        values = dict(values)
        values[Ticket.status] = target.value
        values[Ticket.updated_at] = datetime.now(timezone.utc)
        return query.update(values, synchronize_session=False)

    def mark_queue_error(self, db: Session, ids: Iterable[str]) -> int:
        """Compensating update after a failed publish: PENDING -> QUEUE_ERROR."""
        return self._transition(db, ids, TicketStatus.QUEUE_ERROR, {})

    def mark_pending(self, db: Session, ids: Iterable[str]) -> int:
        """Operator retry: QUEUE_ERROR -> PENDING ahead of a re-enqueue."""
        return self._transition(db, ids, TicketStatus.PENDING, {})

    def apply_success(
        self,
        db: Session,
        *,
        ticket_id: str,
        event_id: str,
        qr_payload: str,
        checksum: str,
        artifact_url: str,
        generated_at: Optional[datetime] = None,
    ) -> int:
        """Move a ticket to GENERATED. Returns the affected row count (0 or 1)."""
        return self._transition(
            db,
            [ticket_id],
            TicketStatus.GENERATED,
            {
                Ticket.qr_payload: qr_payload,
                Ticket.checksum: checksum,
                Ticket.artifact_url: artifact_url,
                Ticket.generated_at: generated_at or datetime.now(timezone.utc),
                Ticket.error_message: None,
            },
            event_id=event_id,
        )

    def apply_error(self, db: Session, *, ticket_id: str, event_id: str, error_message: str) -> int:
        """Move a ticket to ERROR. Returns the affected row count (0 or 1)."""
        return self._transition(
            db,
            [ticket_id],
            TicketStatus.ERROR,
            {Ticket.error_message: error_message},
            event_id=event_id,
        )

    def expire_stale_pending(self, db: Session, *, older_than: datetime, error_message: str) -> List[str]:
        """Error out PENDING tickets created before `older_than`. Returns the ids actually moved."""
        stmt = (
            update(Ticket)
            .where(
                Ticket.status == TicketStatus.PENDING.value,
                Ticket.created_at < older_than,
            )
            .values({
                Ticket.status: TicketStatus.ERROR.value,
                Ticket.error_message: error_message,
                Ticket.updated_at: datetime.now(timezone.utc),
            })
            .returning(Ticket.id)
            .execution_options(synchronize_session=False)
        )
        return list(db.execute(stmt).scalars().all())

    def find_by_correlation(self, db: Session, correlation_id: str) -> List[Ticket]:
        return db.query(Ticket).filter(
            Ticket.correlation_id == correlation_id
        ).order_by(Ticket.created_at, Ticket.id).all()

    def get_status_rows(self, db: Session, *, event_id: str, ids: Iterable[str]) -> Dict[str, Any]:
        """(id, status, checksum) for each id that exists for the event, keyed by id."""
        ids = list(ids)
        if not ids:
            return {}
        rows = db.query(Ticket.id, Ticket.status, Ticket.checksum).filter(
            Ticket.event_id == event_id,
            Ticket.id.in_(ids),
        ).all()
        return {row.id: row for row in rows}

    def count_by_status(self, db: Session, event_id: str) -> Dict[str, int]:
        counts = {status.value: 0 for status in TicketStatus}
        rows = db.query(Ticket.status, func.count(Ticket.id)).filter(
            Ticket.event_id == event_id
        ).group_by(Ticket.status).all()
        for status, count in rows:
            counts[status] = count
        return counts

    def count_not_generated(self, db: Session, correlation_id: str) -> int:
        return db.query(func.count(Ticket.id)).filter(
            Ticket.correlation_id == correlation_id,
            Ticket.status != TicketStatus.GENERATED.value,
        ).scalar()


ticket = CRUDTicket()
