"""Job registry: validation, CRUD, state machine and webhook setup."""

import logging
from typing import Dict, Any, List, Optional, Type

import pydantic
from sqlalchemy.orm import Session

from indexer.core.exceptions import ValidationError, NotFoundError, ProvisioningError
from indexer.models.job import IndexingJob, JobType, JobStatus, ALLOWED_TRANSITIONS
from indexer.schemas.schemas import (
    JobCreate, NftBidsConfig, NftPricesConfig, TokenBorrowingConfig, TokenPricesConfig,
)
from indexer.services.connection_service import ConnectionService
from indexer.services.job_log_service import JobLogService
from indexer.services.schema_provisioner import validate_table_name

logger = logging.getLogger(__name__)

JOB_CONFIG_SCHEMAS: Dict[JobType, Type[pydantic.BaseModel]] = {
    JobType.nft_bids: NftBidsConfig,
    JobType.nft_prices: NftPricesConfig,
    JobType.token_borrowing: TokenBorrowingConfig,
    JobType.token_prices: TokenPricesConfig,
}

# Statuses a caller may request directly; the rest are driven by the workers
USER_SETTABLE_STATUSES = {JobStatus.active, JobStatus.paused, JobStatus.completed}


def parse_job_type(job_type: Any) -> JobType:
    try:
        return JobType(job_type)
    except ValueError:
        allowed = ", ".join(f"'{t.value}'" for t in JobType)
        raise ValidationError(f"Invalid job_type: must be one of {allowed}")


def parse_configuration(job_type: JobType, configuration: Any) -> Dict[str, Any]:
    """Validate a configuration against its job type's schema and normalize it."""
    if not isinstance(configuration, dict):
        raise ValidationError("Invalid configuration: must be a JSON object")
    schema = JOB_CONFIG_SCHEMAS[job_type]
    try:
        return schema.model_validate(configuration).model_dump()
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or "configuration"
        raise ValidationError(f"Invalid configuration for {job_type.value}: {field}: {first['msg']}")


class JobService:
    """Manages indexing jobs and their lifecycle."""

    @staticmethod
    def create(db: Session, owner_id: int, data: JobCreate, dispatch) -> IndexingJob:
        """Validate, persist as ``pending`` and enqueue the setup task."""
        job_type = parse_job_type(data.job_type)
        configuration = parse_configuration(job_type, data.configuration)
        target_table = validate_table_name(data.target_table)
        ConnectionService.get_owned(db, data.db_connection_id, owner_id)

        job = IndexingJob(
            owner_id=owner_id,
            db_connection_id=data.db_connection_id,
            job_type=job_type,
            configuration=configuration,
            target_table=target_table,
            status=JobStatus.pending,
        )
        db.add(job)
        db.commit()
        db.refresh(job)

        try:
            dispatch.enqueue_setup(job.id)
        except Exception as e:
            JobService.mark_failed(db, job, "Could not enqueue indexing job setup", {"error": str(e)})
            raise
        logger.info("Created %s job %s for owner %s", job_type.value, job.id, owner_id)
        return job

    @staticmethod
    def get(db: Session, job_id: int, owner_id: int) -> IndexingJob:
        job = db.query(IndexingJob).filter(
            IndexingJob.id == job_id,
            IndexingJob.owner_id == owner_id,
        ).first()
        if not job:
            raise NotFoundError("Indexing job not found")
        return job

    @staticmethod
    def find(db: Session, job_id: int) -> Optional[IndexingJob]:
        """Look a job up without an ownership check (workers, webhook ingress)."""
        return db.query(IndexingJob).filter(IndexingJob.id == job_id).first()

    @staticmethod
    def list_by_owner(db: Session, owner_id: int) -> List[IndexingJob]:
        return (
            db.query(IndexingJob)
            .filter(IndexingJob.owner_id == owner_id)
            .order_by(IndexingJob.created_at.desc(), IndexingJob.id.desc())
            .all()
        )

    @staticmethod
    def transition(db: Session, job: IndexingJob, new_status: JobStatus) -> IndexingJob:
        """Move a job to ``new_status`` if the state machine allows it."""
        current = JobStatus(job.status)
        if current == new_status:
            return job
        if new_status not in ALLOWED_TRANSITIONS[current]:
            raise ValidationError(
                f"Cannot move job from '{current.value}' to '{new_status.value}'"
            )
        job.status = new_status
        db.commit()
        db.refresh(job)
        return job

    @staticmethod
    def update_status(db: Session, job_id: int, owner_id: int, status: str) -> IndexingJob:
        """Caller-driven pause/resume/complete."""
        job = JobService.get(db, job_id, owner_id)
        try:
            new_status = JobStatus(status)
        except ValueError:
            raise ValidationError(f"Invalid status: {status}")
        if new_status not in USER_SETTABLE_STATUSES:
            raise ValidationError(f"Status '{status}' cannot be set directly")
        if new_status == JobStatus.active and JobStatus(job.status) != JobStatus.paused:
            raise ValidationError("Only a paused job can be resumed")
        JobService.transition(db, job, new_status)
        JobLogService.info(db, job.id, f"Job status changed to {new_status.value}")
        return job

    @staticmethod
    def mark_failed(
        db: Session, job: IndexingJob, message: str, details: Optional[Dict[str, Any]] = None
    ) -> None:
        """Move a job to ``failed`` and record one error log entry."""
        if JobStatus.failed in ALLOWED_TRANSITIONS[JobStatus(job.status)]:
            job.status = JobStatus.failed
            db.commit()
        JobLogService.error(db, job.id, message, details)

    @staticmethod
    def provision(db: Session, job_id: int, provisioner) -> Dict[str, Any]:
        """Create the provider webhook for a pending job and activate it.

        Safe to run more than once for the same job: anything past ``pending``
        is left alone.
        """
        job = JobService.find(db, job_id)
        if not job:
            raise NotFoundError(f"Indexing job {job_id} not found")
        if job.webhook_id or JobStatus(job.status) != JobStatus.pending:
            logger.info("Job %s already set up (status=%s), skipping", job_id, job.status)
            return {"success": True, "skipped": True, "webhook_id": job.webhook_id}

        try:
            webhook_id = provisioner.create_subscription(job)
        except (ProvisioningError, ValidationError) as e:
            logger.error("Setup of job %s failed: %s", job_id, e.message)
            JobService.mark_failed(db, job, "Indexing job setup failed", {"error": e.message})
            return {"success": False, "error": e.message}
        except Exception as e:
            logger.exception("Setup of job %s failed unexpectedly", job_id)
            db.rollback()
            JobService.mark_failed(
                db, job, "Indexing job setup failed", {"error": f"{type(e).__name__}: {e}"}
            )
            raise

        # The job may have been deleted while the provider call was in flight
        if not db.query(IndexingJob.id).filter(IndexingJob.id == job_id).first():
            logger.warning("Job %s vanished during setup, removing webhook %s", job_id, webhook_id)
            try:
                provisioner.delete_subscription(webhook_id)
            except ProvisioningError as e:
                logger.error("Could not remove orphaned webhook %s: %s", webhook_id, e.message)
            return {"success": False, "error": "job deleted during setup"}

        job.webhook_id = webhook_id
        JobService.transition(db, job, JobStatus.active)
        JobLogService.info(
            db, job.id, "Indexing job setup successful", {"webhook_id": webhook_id}
        )
        return {"success": True, "webhook_id": webhook_id}

    @staticmethod
    def delete(db: Session, job_id: int, owner_id: int, provisioner) -> None:
        """Deprovision the webhook (best effort), then remove the job."""
        job = JobService.get(db, job_id, owner_id)
        if job.webhook_id:
            try:
                provisioner.delete_subscription(job.webhook_id)
            except ProvisioningError as e:
                logger.warning(
                    "Could not delete webhook %s for job %s: %s", job.webhook_id, job.id, e.message
                )
        db.delete(job)
        db.commit()
        logger.info("Deleted job %s", job_id)


job_service = JobService()
