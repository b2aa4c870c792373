# planner_core/models/generation_batch.py
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text

from planner_core.db.base_class import Base
from planner_core.schemas.ticket_generation import BatchStatus


class GenerationBatch(Base):
    """
    One bulk generation request, keyed by its correlation id.

    Kept for observability and operator retries; reclaimed once every ticket
    in it is GENERATED and the retention window has passed.
    """
    __tablename__ = "ticket_generation_batches"

    correlation_id = Column(String, primary_key=True)
    event_id = Column(String, ForeignKey("events.id"), nullable=False, index=True)
    requester_id = Column(String, nullable=False)

    ticket_ids = Column(JSON, nullable=False, default=list)
    priority = Column(Integer, nullable=False, default=1)
    delay_ms = Column(Integer, nullable=False, default=0)
    attempts = Column(Integer, nullable=False, default=0)

    status = Column(String(20), nullable=False, default=BatchStatus.PENDING.value, index=True)
    job_id = Column(String, nullable=True)
    last_error = Column(Text, nullable=True)

    enqueued_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
