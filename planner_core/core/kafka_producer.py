# planner_core/core/kafka_producer.py

import json
import logging
import threading

from kafka import KafkaProducer
from kafka.errors import KafkaError

from planner_core.core.config import settings

logger = logging.getLogger(__name__)

_producer = None
_producer_lock = threading.Lock()


def get_kafka_singleton():
    """
    Returns the process-wide Kafka producer, creating it on first use.

    Returns None when Kafka is not configured or unreachable; callers treat
    lifecycle events as best effort.
    """
    global _producer
    if not settings.KAFKA_BOOTSTRAP_SERVERS:
        return None
    with _producer_lock:
        if _producer is None:
            try:
                _producer = KafkaProducer(
                    bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
                    value_serializer=lambda v: json.dumps(v, default=str).encode("utf-8"),
                    request_timeout_ms=5000,
                )
            except KafkaError as e:
                logger.warning(f"Kafka producer unavailable: {e}")
                return None
        return _producer


def close_kafka_singleton():
    global _producer
    with _producer_lock:
        if _producer is not None:
            _producer.flush()
            _producer.close()
            _producer = None
