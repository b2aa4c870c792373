# planner_core/models/ticket.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text, UniqueConstraint

from planner_core.db.base_class import Base
from planner_core.schemas.ticket_generation import TicketStatus, TicketType


# Allowed status transitions. GENERATED is terminal; QUEUE_ERROR only goes
# back through PENDING (operator re-enqueue) or straight to GENERATED when a
# response for a publish that looked failed still arrives.
TICKET_TRANSITIONS = {
    TicketStatus.PENDING: frozenset({TicketStatus.QUEUE_ERROR, TicketStatus.GENERATED, TicketStatus.ERROR}),
    TicketStatus.QUEUE_ERROR: frozenset({TicketStatus.PENDING, TicketStatus.GENERATED}),
    TicketStatus.ERROR: frozenset({TicketStatus.GENERATED}),
    TicketStatus.GENERATED: frozenset(),
}


def can_transition(current: TicketStatus, target: TicketStatus) -> bool:
    return TicketStatus(target) in TICKET_TRANSITIONS[TicketStatus(current)]


def allowed_prior_statuses(target: TicketStatus) -> list:
    """Statuses a ticket may be in for a conditional update to `target`."""
    return sorted(
        status.value
        for status, targets in TICKET_TRANSITIONS.items()
        if TicketStatus(target) in targets
    )


class Ticket(Base):
    """A ticket row created PENDING by the accepter and moved by the consumer."""
    __tablename__ = "tickets"
    __table_args__ = (
        UniqueConstraint("event_id", "id", name="uq_tickets_event_id_id"),
        Index("ix_tickets_event_id_status", "event_id", "status"),
        Index("ix_tickets_correlation_id", "correlation_id"),
    )

    id = Column(String, primary_key=True, default=lambda: f"tkt_{uuid.uuid4().hex[:12]}")
    event_id = Column(String, ForeignKey("events.id"), nullable=False)
    ticket_type_id = Column(String, nullable=False)

    # Owner information
    user_id = Column(String, nullable=True, index=True)
    type = Column(String(20), nullable=False, default=TicketType.STANDARD.value)
    attendee_name = Column(String(255), nullable=False)
    attendee_email = Column(String(255), nullable=False)
    attendee_phone = Column(String(50), nullable=True)

    status = Column(String(20), nullable=False, default=TicketStatus.PENDING.value)

    # Set only in GENERATED
    qr_payload = Column(Text, nullable=True)
    checksum = Column(String(255), nullable=True)
    artifact_url = Column(Text, nullable=True)
    generated_at = Column(DateTime(timezone=True), nullable=True)

    # Set only in ERROR
    error_message = Column(Text, nullable=True)

    correlation_id = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    @property
    def is_terminal(self) -> bool:
        return self.status == TicketStatus.GENERATED.value

    @property
    def can_retry_enqueue(self) -> bool:
        return self.status == TicketStatus.QUEUE_ERROR.value
