# planner_core/utils/kafka_helpers.py
"""
Publishes ticket generation lifecycle events to Kafka.
Uses the singleton producer from planner_core.core.kafka_producer.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from planner_core.core.kafka_producer import get_kafka_singleton

logger = logging.getLogger(__name__)

# Kafka Topics
TOPIC_TICKET_GENERATION_EVENTS = "ticket.generation.events.v1"

TICKET_GENERATION_REQUESTED = "TICKET_GENERATION_REQUESTED"
TICKET_GENERATION_ENQUEUE_FAILED = "TICKET_GENERATION_ENQUEUE_FAILED"
TICKET_GENERATION_APPLIED = "TICKET_GENERATION_APPLIED"
TICKET_GENERATION_POISONED = "TICKET_GENERATION_POISONED"


def publish_generation_event(
    event_type: str,
    correlation_id: Optional[str],
    event_id: Optional[str],
    **payload,
) -> bool:
    """
    Publish one lifecycle event, keyed by correlation id.

    Fire-and-forget: a missing or failing Kafka never affects the pipeline.

    Returns:
        bool: True if published successfully, False otherwise
    """
    try:
        producer = get_kafka_singleton()

        if producer is None:
            logger.debug(f"Kafka producer unavailable, skipping {event_type}")
            return False

        event_data = {
            "type": event_type,
            "correlationId": correlation_id,
            "eventId": event_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **payload,
        }

        future = producer.send(
            TOPIC_TICKET_GENERATION_EVENTS,
            key=(correlation_id or "").encode("utf-8"),
            value=event_data,
        )
        future.get(timeout=5)

        logger.info(f"Published {event_type} for correlation {correlation_id}")
        return True

    except Exception as e:
        logger.error(f"Failed to publish {event_type}: {e}", exc_info=True)
        return False


def publish_poison_alert(
    correlation_id: Optional[str],
    event_id: Optional[str],
    job_id: str,
    reason: str,
    ticket_ids: Optional[List[str]] = None,
) -> bool:
    """Alert operators that a response was sidelined as poison."""
    return publish_generation_event(
        TICKET_GENERATION_POISONED,
        correlation_id,
        event_id,
        jobId=job_id,
        reason=reason,
        ticketIds=ticket_ids or [],
    )
