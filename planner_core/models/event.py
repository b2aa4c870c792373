# planner_core/models/event.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String

from planner_core.db.base_class import Base


class Event(Base):
    """
    The part of an event the generation pipeline needs: its seat counter.

    `tickets_remaining` is only ever changed through a conditional
    decrement (see crud_event.reserve_capacity).
    """
    __tablename__ = "events"
    __table_args__ = (
        CheckConstraint("tickets_remaining >= 0", name="ck_events_tickets_remaining"),
    )

    id = Column(String, primary_key=True, default=lambda: f"evt_{uuid.uuid4().hex[:12]}")
    name = Column(String(255), nullable=False)
    organizer_id = Column(String, nullable=True, index=True)

    capacity = Column(Integer, nullable=False)
    tickets_remaining = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
