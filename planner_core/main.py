# planner_core/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from planner_core.api.v1.api import api_router
from planner_core.api.v1.endpoints import health
from planner_core.core.config import settings
from planner_core.services.ticket_generation.coordinator import TicketGenerationCoordinator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    coordinator = TicketGenerationCoordinator()
    # A missing broker aborts startup with BrokerUnavailableError.
    coordinator.start()
    app.state.coordinator = coordinator
    try:
        yield
    finally:
        logger.info("Application shutting down...")
        coordinator.shutdown()


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="""
        Bulk ticket generation for events.

        Tickets are created PENDING and handed to the rendering service
        through a Redis-backed queue; the rendered QR codes and documents
        come back on a second queue and move the tickets to GENERATED.

        Most endpoints require JWT authentication via the `Authorization: Bearer <token>` header.
        Operator endpoints require the `X-Internal-Api-Key` header.
        """,
    lifespan=lifespan,
)

origins = [
    "http://localhost:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api/v1")
app.include_router(health.router)


@app.get("/")
def read_root():
    return {"status": "Ticket generation coordinator is running"}
