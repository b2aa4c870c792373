# planner_core/crud/crud_generation_batch.py
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from planner_core.crud.crud_ticket import ticket as ticket_crud
from planner_core.models.generation_batch import GenerationBatch
from planner_core.schemas.ticket_generation import BatchStatus


class CRUDGenerationBatch:
    """Batch records (one per correlation id). Callers own the transaction."""

    def get(self, db: Session, correlation_id: str) -> Optional[GenerationBatch]:
        return db.query(GenerationBatch).filter(
            GenerationBatch.correlation_id == correlation_id
        ).first()

    def get_by_event(self, db: Session, event_id: str, limit: int = 50, offset: int = 0) -> List[GenerationBatch]:
        return db.query(GenerationBatch).filter(
            GenerationBatch.event_id == event_id
        ).order_by(GenerationBatch.created_at.desc()).limit(limit).offset(offset).all()

    def create(
        self,
        db: Session,
        *,
        correlation_id: str,
        event_id: str,
        requester_id: str,
        ticket_ids: List[str],
        priority: int,
        delay_ms: int,
    ) -> GenerationBatch:
        now = datetime.now(timezone.utc)
        db_obj = GenerationBatch(
            correlation_id=correlation_id,
            event_id=event_id,
            requester_id=requester_id,
            ticket_ids=list(ticket_ids),
            priority=priority,
            delay_ms=delay_ms,
            attempts=0,
            status=BatchStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        db.add(db_obj)
        db.flush()
        return db_obj

    def _update(self, db: Session, correlation_id: str, values: dict) -> int:
        values = dict(values)
        values[GenerationBatch.updated_at] = datetime.now(timezone.utc)
        return db.query(GenerationBatch).filter(
            GenerationBatch.correlation_id == correlation_id
        ).update(values, synchronize_session=False)

    def mark_enqueued(self, db: Session, *, correlation_id: str, job_id: str, enqueued_at: datetime) -> int:
        return self._update(db, correlation_id, {
            GenerationBatch.status: BatchStatus.ENQUEUED.value,
            GenerationBatch.job_id: job_id,
            GenerationBatch.enqueued_at: enqueued_at,
            GenerationBatch.attempts: GenerationBatch.attempts + 1,
            GenerationBatch.last_error: None,
        })

    def mark_queue_error(self, db: Session, *, correlation_id: str, error: str) -> int:
        return self._update(db, correlation_id, {
            GenerationBatch.status: BatchStatus.QUEUE_ERROR.value,
            GenerationBatch.attempts: GenerationBatch.attempts + 1,
            GenerationBatch.last_error: error,
        })

    def mark_response_applied(self, db: Session, *, correlation_id: str, had_errors: bool) -> int:
        status = BatchStatus.PARTIAL if had_errors else BatchStatus.COMPLETED
        return self._update(db, correlation_id, {
            GenerationBatch.status: status.value,
            GenerationBatch.completed_at: datetime.now(timezone.utc),
        })

    def reclaim_completed(self, db: Session, *, older_than: datetime, limit: int = 500) -> List[str]:
        """
        Delete batch records whose response was applied before `older_than`
        and whose tickets are all GENERATED. Returns the reclaimed ids.
        """
        candidates = db.query(GenerationBatch).filter(
            GenerationBatch.status.in_([BatchStatus.COMPLETED.value, BatchStatus.PARTIAL.value]),
            GenerationBatch.completed_at != None,  # noqa: E711
            GenerationBatch.completed_at < older_than,
        ).limit(limit).all()

        reclaimed = []
        for batch in candidates:
            if ticket_crud.count_not_generated(db, batch.correlation_id) == 0:
                db.delete(batch)
                reclaimed.append(batch.correlation_id)
        db.flush()
        return reclaimed


generation_batch = CRUDGenerationBatch()
