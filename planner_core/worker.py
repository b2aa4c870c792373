# planner_core/worker.py
"""
Celery application for the ticket generation queues.

Both queues live on the Redis broker: REQUEST carries work to the renderer,
RESPONSE carries results back to the planner. Messages are acknowledged
only after the handler returns, so a crashed or killed worker leaves them
on the broker for redelivery.
"""

import ssl
from typing import Optional

from celery import Celery

from planner_core.core.config import Settings, settings

# Redis priorities: 0 is dequeued first, 9 last.
MAX_PRIORITY = 9
# Priority lists are named `{queue}{sep}{priority}`; priority 0 is the bare queue name.
PRIORITY_SEP = ":"


def _ensure_ssl_params(url: str) -> str:
    """Append ssl_cert_reqs for rediss:// URLs (required by Celery)."""
    if url and url.startswith("rediss://") and "ssl_cert_reqs" not in url:
        separator = "&" if "?" in url else "?"
        return f"{url}{separator}ssl_cert_reqs=CERT_NONE"
    return url


def create_celery_app(
    config: Settings = settings,
    broker_url: Optional[str] = None,
    backend_url: Optional[str] = None,
) -> Celery:
    broker = _ensure_ssl_params(broker_url or config.broker_url)
    backend = _ensure_ssl_params(backend_url or broker)

    app = Celery("planner_core", broker=broker, backend=backend)
    app.conf.update(
        # Task settings
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,

        # Task execution
        task_acks_late=True,  # Acknowledge after the handler returns
        task_reject_on_worker_lost=True,  # Requeue if the worker dies
        worker_prefetch_multiplier=1,  # Never hold more messages than running handlers

        # Result backend
        result_expires=3600,

        # Publishing: bounded retries on broker connection errors
        task_publish_retry=True,
        task_publish_retry_policy={
            "max_retries": 3,
            "interval_start": 0,
            "interval_step": 1,
            "interval_max": 5,
        },
        broker_connection_timeout=config.BROKER_PUBLISH_TIMEOUT_SECONDS,
        broker_connection_retry_on_startup=True,

        # Priority-FIFO per queue: one Redis list per priority level
        task_default_priority=1,
        task_queue_max_priority=MAX_PRIORITY,
        broker_transport_options={
            "queue_order_strategy": "priority",
            "priority_steps": list(range(MAX_PRIORITY + 1)),
            "sep": PRIORITY_SEP,
            "visibility_timeout": config.BROKER_VISIBILITY_TIMEOUT_SECONDS,
            "socket_timeout": config.BROKER_PUBLISH_TIMEOUT_SECONDS,
            "socket_connect_timeout": config.BROKER_PUBLISH_TIMEOUT_SECONDS,
        },

        # SSL for rediss:// connections
        broker_use_ssl={"ssl_cert_reqs": ssl.CERT_NONE} if broker.startswith("rediss://") else None,
        redis_backend_use_ssl={"ssl_cert_reqs": ssl.CERT_NONE} if backend.startswith("rediss://") else None,
    )
    return app


celery_app = create_celery_app()
