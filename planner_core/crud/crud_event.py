# planner_core/crud/crud_event.py
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from planner_core.models.event import Event


class CRUDEvent:
    """Event lookups and the seat counter. Callers own the transaction."""

    def get(self, db: Session, event_id: str) -> Optional[Event]:
        return db.query(Event).filter(Event.id == event_id).first()

    def create(self, db: Session, *, name: str, capacity: int, event_id: Optional[str] = None) -> Event:
        db_obj = Event(name=name, capacity=capacity, tickets_remaining=capacity)
        if event_id:
            db_obj.id = event_id
        db.add(db_obj)
        db.flush()
        return db_obj

    def reserve_capacity(self, db: Session, *, event_id: str, quantity: int) -> bool:
        """
        Take `quantity` seats from the event in a single conditional UPDATE.

        Two concurrent reservations for the last seats are serialized by the
        row lock the UPDATE takes; the loser sees zero affected rows.
        Returns False when the event lacks capacity (or does not exist).
        """
        updated = db.query(Event).filter(
            Event.id == event_id,
            Event.tickets_remaining >= quantity,
        ).update(
            {
                Event.tickets_remaining: Event.tickets_remaining - quantity,
                Event.updated_at: datetime.now(timezone.utc),
            },
            synchronize_session=False,
        )
        return updated == 1


event = CRUDEvent()
