# planner_core/api/v1/api.py

from fastapi import APIRouter

from planner_core.api.v1.endpoints import queues, ticket_generation

api_router = APIRouter()

api_router.include_router(ticket_generation.router)
api_router.include_router(queues.router)
