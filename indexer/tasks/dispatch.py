"""Dispatch queue facade used by the API to hand work to the workers."""

import logging
from typing import Any, Dict

from celery import Celery

from indexer.core.exceptions import ValidationError
from indexer.models.job import JobType
from indexer.tasks.celery_app import (
    QUEUE_NAMES, SETUP_QUEUE, celery_app, process_webhook_event, setup_indexing_job,
)

logger = logging.getLogger(__name__)

# Broker publish retry; enqueue returns only once the broker holds the message
PUBLISH_RETRY_POLICY = {
    "max_retries": 3,
    "interval_start": 0.2,
    "interval_step": 0.5,
    "interval_max": 2,
}


class DispatchQueue:
    """Explicitly constructed producer side of the named work queues.

    The API builds one in its lifespan, calls ``start``/``stop`` around it,
    and injects it per request; tests swap in a recording fake.
    """

    def __init__(self, app: Celery = celery_app):
        self.app = app

    def start(self) -> bool:
        """Check the broker is reachable. Returns False instead of raising."""
        try:
            with self.app.connection_for_write() as conn:
                conn.ensure_connection(max_retries=1)
            logger.info("Dispatch queue broker connected")
            return True
        except Exception as e:  # kombu surfaces transport-specific errors
            logger.warning("Dispatch queue broker not available: %s", e)
            return False

    def stop(self) -> None:
        """Release pooled broker connections."""
        self.app.pool.force_close_all()

    def enqueue(self, queue_name: str, payload: Dict[str, Any]) -> str:
        """Durably enqueue a payload on a named queue and return the task id."""
        if queue_name not in QUEUE_NAMES:
            raise ValidationError(f"Unknown queue: {queue_name}")

        if queue_name == SETUP_QUEUE:
            result = setup_indexing_job.apply_async(
                kwargs={"job_id": payload["job_id"]},
                queue=SETUP_QUEUE,
                retry=True,
                retry_policy=PUBLISH_RETRY_POLICY,
            )
        else:
            result = process_webhook_event.apply_async(
                kwargs={
                    "job_type": queue_name,
                    "job_id": payload["job_id"],
                    "payload": payload["payload"],
                },
                queue=queue_name,
                retry=True,
                retry_policy=PUBLISH_RETRY_POLICY,
            )
        logger.debug("Enqueued task %s on %s for job %s", result.id, queue_name, payload["job_id"])
        return result.id

    def enqueue_setup(self, job_id: int) -> str:
        return self.enqueue(SETUP_QUEUE, {"job_id": job_id})

    def enqueue_event(self, job_type: JobType, job_id: int, payload: Any) -> str:
        return self.enqueue(JobType(job_type).value, {"job_id": job_id, "payload": payload})
