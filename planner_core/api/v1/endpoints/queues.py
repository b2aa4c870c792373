# planner_core/api/v1/endpoints/queues.py
from typing import Dict

from fastapi import APIRouter, Depends

from planner_core.api import deps
from planner_core.schemas.ticket_generation import QueueStats
from planner_core.services.ticket_generation.coordinator import TicketGenerationCoordinator

router = APIRouter(prefix="/queues", tags=["Queues"])


@router.get("/stats", response_model=Dict[str, QueueStats])
def queue_stats(
    coordinator: TicketGenerationCoordinator = Depends(deps.get_coordinator),
    api_key: str = Depends(deps.get_internal_api_key),
):
    """Job counts for the request and response queues."""
    return coordinator.stats()
