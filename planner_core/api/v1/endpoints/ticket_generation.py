# planner_core/api/v1/endpoints/ticket_generation.py
import logging
from typing import Dict

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from planner_core.api import deps
from planner_core.core.errors import (
    BatchNotFoundError,
    CapacityExceededError,
    EnqueueError,
    EventNotFoundError,
    QueueClosedError,
    TicketGenerationError,
    ValidationError,
)
from planner_core.crud import event as event_crud
from planner_core.crud import generation_batch as batch_crud
from planner_core.crud import ticket as ticket_crud
from planner_core.schemas.ticket_generation import (
    AcceptResult,
    BatchDetail,
    BulkGenerationRequest,
    GenerationBatchRead,
    TicketRead,
    TicketStatus,
)
from planner_core.schemas.token import TokenPayload
from planner_core.services.ticket_generation.coordinator import TicketGenerationCoordinator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tickets", tags=["Ticket Generation"])


def _to_http(exc: TicketGenerationError) -> HTTPException:
    """Map pipeline errors onto HTTP responses."""
    if isinstance(exc, EnqueueError):
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "code": exc.code,
                "message": exc.message,
                "correlation_id": exc.correlation_id,
                "tickets": exc.ticket_ids,
                "status": TicketStatus.QUEUE_ERROR.value if exc.compensated else TicketStatus.PENDING.value,
                "compensated": exc.compensated,
            },
        )
    detail = {"code": exc.code, "message": exc.message}
    if isinstance(exc, (EventNotFoundError, BatchNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)
    if isinstance(exc, CapacityExceededError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)
    if isinstance(exc, QueueClosedError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)
    # PersistError and anything unexpected
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)


@router.post(
    "/bulk",
    response_model=AcceptResult,
    status_code=status.HTTP_202_ACCEPTED,
)
def create_bulk_generation(
    request_in: BulkGenerationRequest,
    coordinator: TicketGenerationCoordinator = Depends(deps.get_coordinator),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """
    Create PENDING tickets for an event and queue them for generation.

    Returns 202 with the ticket ids and the batch correlation id. QR codes
    and documents arrive later through the response queue.
    """
    try:
        return coordinator.accept_bulk_generation(
            event_id=request_in.event_id,
            ticket_type_id=request_in.ticket_type_id,
            quantity=request_in.quantity,
            requester_id=current_user.sub,
            options=request_in.options,
        )
    except TicketGenerationError as e:
        logger.warning(f"Bulk generation rejected for event {request_in.event_id}: {e.code} {e.message}")
        raise _to_http(e)


@router.get("/batches/{correlation_id}", response_model=BatchDetail)
def get_batch(
    correlation_id: str,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    batch = batch_crud.get(db, correlation_id)
    if batch is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Batch not found")

    tickets = ticket_crud.find_by_correlation(db, correlation_id)
    counts = {s.value: 0 for s in TicketStatus}
    for t in tickets:
        counts[t.status] = counts.get(t.status, 0) + 1

    return BatchDetail(
        batch=GenerationBatchRead.model_validate(batch),
        tickets=[TicketRead.model_validate(t) for t in tickets],
        status_counts=counts,
    )


@router.get("/events/{event_id}/status-counts", response_model=Dict[str, int])
def get_status_counts(
    event_id: str,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """Number of tickets per status for the event. Every status is present."""
    if event_crud.get(db, event_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Event not found")
    return ticket_crud.count_by_status(db, event_id)


@router.post(
    "/batches/{correlation_id}/retry",
    response_model=AcceptResult,
    status_code=status.HTTP_202_ACCEPTED,
)
def retry_batch(
    correlation_id: str,
    coordinator: TicketGenerationCoordinator = Depends(deps.get_coordinator),
    api_key: str = Depends(deps.get_internal_api_key),
):
    """Operator action: re-queue the batch's QUEUE_ERROR tickets."""
    try:
        return coordinator.retry_queue_errors(correlation_id)
    except TicketGenerationError as e:
        logger.warning(f"Retry of batch {correlation_id} failed: {e.code} {e.message}")
        raise _to_http(e)
