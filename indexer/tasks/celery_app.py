"""Celery app and tasks: the setup queue and one queue per job type."""

import logging
from typing import Any, Dict

from celery import Celery
from celery.signals import worker_process_init
from sqlalchemy.orm import Session

from indexer.core.config import settings
from indexer.core.crypto import get_vault
from indexer.core.exceptions import IndexerError, NotFoundError, ProcessingError, NON_RETRYABLE_ERRORS
from indexer.db.session import SessionLocal
from indexer.models.job import JobType
from indexer.processors.builtin import get_processor
from indexer.services.job_service import JobService
from indexer.services.webhook_provisioner import webhook_provisioner

logger = logging.getLogger(__name__)

SETUP_QUEUE = "setup"
QUEUE_NAMES = (SETUP_QUEUE,) + tuple(t.value for t in JobType)

celery_app = Celery(
    "indexer",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_default_queue=SETUP_QUEUE,
    # At-least-once: ack after the handler returns, redeliver if a worker dies
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    worker_concurrency=settings.WORKER_CONCURRENCY,
    task_soft_time_limit=300,
    task_time_limit=360,
    result_expires=3600,
)


@worker_process_init.connect
def _init_worker(**_):
    """Fail the worker process early if the vault key is unusable."""
    get_vault()


def retry_countdown(retries: int) -> int:
    """Exponential backoff for redelivered processing tasks."""
    return settings.PROCESSING_RETRY_DELAY_SECONDS * (2 ** retries)


def drop_event(db: Session, job_type: str, job_id: int, exc: IndexerError, attempts: int) -> Dict[str, Any]:
    """Give up on a payload: record it against the job and fail the job."""
    logger.error(
        "Dropping %s payload for job %s after %d attempt(s): %s", job_type, job_id, attempts, exc.message
    )
    job = JobService.find(db, job_id)
    if job is not None:
        JobService.mark_failed(
            db, job,
            f"Dropped {job_type} payload after {attempts} attempt(s)",
            {"error": exc.message, "attempts": attempts},
        )
    return {"success": False, "dropped": True, "error": exc.message}


def run_setup(db: Session, job_id: int, provisioner=webhook_provisioner) -> Dict[str, Any]:
    try:
        return JobService.provision(db, job_id, provisioner)
    except NotFoundError as e:
        logger.warning("Setup skipped: %s", e.message)
        return {"success": False, "error": e.message}


@celery_app.task(bind=True, name="setup_indexing_job")
def setup_indexing_job(self, job_id: int) -> dict:
    """Provision the provider webhook for a new job.

    Retries happen inside the provisioner; this task itself never retries, so
    a failed setup yields exactly one error log.
    """
    db = SessionLocal()
    try:
        return run_setup(db, job_id)
    finally:
        db.close()


@celery_app.task(bind=True, name="process_webhook_event", max_retries=settings.PROCESSING_MAX_RETRIES)
def process_webhook_event(self, job_type: str, job_id: int, payload: Any) -> dict:
    """Run the job type's processor over one webhook payload."""
    db = SessionLocal()
    try:
        processor = get_processor(job_type, db)
        return processor.process(job_id, payload)
    except ProcessingError as exc:
        if self.request.retries < self.max_retries:
            countdown = retry_countdown(self.request.retries)
            logger.warning(
                "Job %s %s payload failed, retry %d/%d in %ss",
                job_id, job_type, self.request.retries + 1, self.max_retries, countdown,
            )
            raise self.retry(exc=exc, countdown=countdown)
        return drop_event(db, job_type, job_id, exc, self.request.retries + 1)
    except NON_RETRYABLE_ERRORS as exc:
        return drop_event(db, job_type, job_id, exc, self.request.retries + 1)
    finally:
        db.close()
