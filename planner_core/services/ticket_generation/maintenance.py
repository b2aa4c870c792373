# planner_core/services/ticket_generation/maintenance.py
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from planner_core.core.config import settings
from planner_core.crud.crud_generation_batch import generation_batch as batch_crud
from planner_core.crud.crud_ticket import ticket as ticket_crud

logger = logging.getLogger(__name__)

GENERATION_TIMEOUT_MESSAGE = "generation_timeout"


def expire_stale_pending(session_factory: Callable[[], Session], timeout_minutes: int = None) -> dict:
    """
    Error out tickets that stayed PENDING longer than the timeout.

    A response that arrives later still upgrades them to GENERATED.
    """
    if timeout_minutes is None:
        timeout_minutes = settings.PENDING_TIMEOUT_MINUTES
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=timeout_minutes)
    db = session_factory()
    try:
        expired = ticket_crud.expire_stale_pending(
            db, older_than=cutoff, error_message=GENERATION_TIMEOUT_MESSAGE
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Stale PENDING sweep failed: {e}", exc_info=True)
        return {"expired": 0, "error": str(e)}
    finally:
        db.close()

    if expired:
        logger.warning(f"Timed out {len(expired)} ticket(s) stuck in PENDING for over {timeout_minutes} min")
    return {"expired": len(expired)}


def reclaim_completed_batches(session_factory: Callable[[], Session], retention_hours: int = None) -> dict:
    """Delete batch records once all their tickets are GENERATED and retention has passed."""
    if retention_hours is None:
        retention_hours = settings.BATCH_RETENTION_HOURS
    cutoff = datetime.now(timezone.utc) - timedelta(hours=retention_hours)
    db = session_factory()
    try:
        reclaimed = batch_crud.reclaim_completed(db, older_than=cutoff)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Batch reclamation failed: {e}", exc_info=True)
        return {"reclaimed": 0, "error": str(e)}
    finally:
        db.close()

    if reclaimed:
        logger.info(f"Reclaimed {len(reclaimed)} completed generation batch record(s)")
    return {"reclaimed": len(reclaimed)}
