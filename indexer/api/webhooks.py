"""Webhook ingress: provider callbacks feeding the per-job-type queues."""

import logging

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from indexer.api.deps import get_dispatch_queue
from indexer.db.session import get_db
from indexer.core.exceptions import NotFoundError, ValidationError
from indexer.core.security import verify_webhook_auth
from indexer.models.job import JobStatus
from indexer.schemas.schemas import WebhookAccepted
from indexer.services.job_service import job_service, parse_job_type

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

# Deliveries for jobs in any other status are acknowledged and dropped
ACCEPTING_STATUSES = {JobStatus.pending, JobStatus.active}


@router.post(
    "/{job_type}/{job_id}",
    response_model=WebhookAccepted,
    dependencies=[Depends(verify_webhook_auth)],
)
def receive_webhook(
    job_type: str,
    job_id: int,
    payload=Body(...),
    db: Session = Depends(get_db),
    dispatch=Depends(get_dispatch_queue),
):
    """Validate the target job and enqueue the payload for its processor."""
    parsed_type = parse_job_type(job_type)
    job = job_service.find(db, job_id)
    if not job:
        raise NotFoundError("Indexing job not found")
    if job.job_type != parsed_type:
        raise ValidationError("Job type does not match the indexing job")
    if not isinstance(payload, (dict, list)):
        raise ValidationError("Webhook body must be a JSON object or array")

    if JobStatus(job.status) not in ACCEPTING_STATUSES:
        logger.info("Ignoring webhook for job %s in status %s", job_id, job.status)
        return WebhookAccepted(queued=False)

    dispatch.enqueue_event(parsed_type, job_id, payload)
    logger.info("Received webhook for job %s", job_id)
    return WebhookAccepted()
