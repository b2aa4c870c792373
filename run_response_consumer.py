#!/usr/bin/env python3
"""
Ticket Generation Response Consumer

Runs the response side of the pipeline without the HTTP API: applies
rendered tickets from the TICKET_GENERATED queue to the database and runs
the maintenance sweeps. Use this when CONSUME_RESPONSES_IN_API is off.

SIGTERM / SIGINT trigger a graceful shutdown: in-flight responses get
SHUTDOWN_GRACE_SECONDS to finish before the process exits.
"""
import logging
import signal
import sys
import threading

from planner_core.core.config import settings
from planner_core.core.errors import BrokerUnavailableError
from planner_core.services.ticket_generation.coordinator import TicketGenerationCoordinator

logging.basicConfig(
    level=logging.INFO,
    format='[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def run_consumer() -> int:
    logger.info("=" * 60)
    logger.info("Ticket Generation Response Consumer Starting...")
    logger.info(f"Broker: {settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}")
    logger.info(f"Queues: {settings.REQUEST_QUEUE_NAME} -> {settings.RESPONSE_QUEUE_NAME}")
    logger.info(f"Concurrency: {settings.RESPONSE_CONCURRENCY}")
    logger.info("=" * 60)

    coordinator = TicketGenerationCoordinator(consume_responses=True)
    stop = threading.Event()

    def _request_stop(signum, frame):
        logger.info(f"Received signal {signum}, shutting down response consumer...")
        stop.set()

    signal.signal(signal.SIGTERM, _request_stop)
    signal.signal(signal.SIGINT, _request_stop)

    try:
        coordinator.start()
    except BrokerUnavailableError as e:
        logger.error(f"Cannot start: {e.message}")
        return 1

    while not stop.wait(timeout=5):
        if not coordinator.is_alive():
            logger.error("Response consumer workers stopped unexpectedly")
            break

    drained = coordinator.shutdown()
    return 0 if drained else 1


if __name__ == "__main__":
    sys.exit(run_consumer())
