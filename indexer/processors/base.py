"""Base class for event processors."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError, StatementError
from sqlalchemy.orm import Session

from indexer.connectors.base import ConnectorBase
from indexer.connectors.postgres import get_connector
from indexer.core.exceptions import (
    IndexerError, NotFoundError, PayloadError, ProcessingError, ValidationError,
)
from indexer.models.connection import DatabaseConnection
from indexer.models.job import IndexingJob, JobStatus, JobType
from indexer.processors.extractors import transactions_from_payload
from indexer.services.connection_service import ConnectionService
from indexer.services.job_log_service import JobLogService
from indexer.services.schema_provisioner import ensure_table

logger = logging.getLogger(__name__)

# (sql, bind params) for one row-level statement
Write = Tuple[str, Dict[str, Any]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def build_upsert(
    table: str, columns: Sequence[str], conflict: Sequence[str], update: Sequence[str]
) -> str:
    """INSERT ... ON CONFLICT (natural key) DO UPDATE for ``table``."""
    assignments = ", ".join(f"{col} = EXCLUDED.{col}" for col in update)
    return (
        f"INSERT INTO {table} ({', '.join(columns)}) "
        f"VALUES ({', '.join(':' + col for col in columns)}) "
        f"ON CONFLICT ({', '.join(conflict)}) DO UPDATE SET {assignments}"
    )


class EventProcessor(ABC):
    """Turns one webhook payload into idempotent writes in a tenant table.

    Subclasses declare the transaction types they consume and the writes a
    single transaction produces. Writes are upserts keyed by a natural dedup
    key (or deletes by key), so replaying a payload converges on the same
    rows and the dispatch queue may deliver at-least-once.
    """

    job_type: JobType
    transaction_types: Tuple[str, ...] = ()
    label: str = "transactions"

    def __init__(
        self,
        db: Session,
        connector_factory: Callable[[str], ConnectorBase] = get_connector,
        now: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.connector_factory = connector_factory
        self.now = now

    @abstractmethod
    def build_writes(self, job: IndexingJob, tx: Dict[str, Any]) -> List[Write]:
        """Statements for one matching transaction; empty to skip it."""
        ...

    def _resolve(self, job_id: int) -> Tuple[IndexingJob, DatabaseConnection]:
        job = self.db.query(IndexingJob).filter(IndexingJob.id == job_id).first()
        if not job:
            raise NotFoundError(f"Job with ID {job_id} not found")
        if JobType(job.job_type) != self.job_type:
            raise ValidationError(f"Job {job_id} is a {job.job_type.value} job, not {self.job_type.value}")
        connection = None
        if job.db_connection_id is not None:
            connection = self.db.query(DatabaseConnection).filter(
                DatabaseConnection.id == job.db_connection_id
            ).first()
        if not connection:
            raise NotFoundError(f"Database connection for job {job_id} not found")
        return job, connection

    def process(self, job_id: int, payload: Any) -> Dict[str, Any]:
        """Process one webhook payload for a job.

        Raises:
            NotFoundError: The job or its connection no longer exists.
            ProcessingError: The tenant database failed; worth retrying.
            PayloadError: Anything else went wrong; not worth retrying.
        """
        job = self.db.query(IndexingJob).filter(IndexingJob.id == job_id).first()
        if job is not None and JobStatus(job.status) in (JobStatus.failed, JobStatus.completed):
            logger.info("Job %s is %s, dropping payload", job_id, job.status)
            return {"success": True, "processedCount": 0, "skipped": True}

        transactions = transactions_from_payload(payload)
        try:
            job, connection = self._resolve(job_id)
            with self.connector_factory("postgres") as connector:
                connector.connect(ConnectionService.load_config(connection))
                ensure_table(connector, job.job_type, job.target_table)
                processed = self._write_batch(connector, job, transactions)
        except SQLAlchemyError as e:
            message = str(getattr(e, "orig", None) or e).splitlines()[0]
            self._log_failure(job_id, message)
            raise ProcessingError(f"Tenant database error: {message}") from e
        except IndexerError as e:
            self._log_failure(job_id, e.message)
            raise
        except Exception as e:  # a processor bug must still reach the job log
            message = f"{type(e).__name__}: {e}"
            self._log_failure(job_id, message)
            raise PayloadError(f"Unexpected error processing payload: {message}") from e

        JobLogService.info(
            self.db,
            job_id,
            f"Processed {processed} {self.label}",
            {"processedCount": processed, "totalTransactions": len(transactions)},
        )
        return {"success": True, "processedCount": processed}

    def _write_batch(
        self, connector: ConnectorBase, job: IndexingJob, transactions: List[Dict[str, Any]]
    ) -> int:
        processed = 0
        with connector.begin() as conn:
            for tx in transactions:
                if tx.get("type") not in self.transaction_types:
                    continue
                for sql, params in self.build_writes(job, tx):
                    try:
                        with conn.begin_nested():
                            conn.execute(text(sql), params)
                    except StatementError as e:
                        if isinstance(e, OperationalError) or getattr(e, "connection_invalidated", False):
                            raise
                        # The tenant rejected this row's data; keep the rest of the batch
                        logger.warning(
                            "Job %s skipped transaction %s: %s",
                            job.id, tx.get("signature"), type(e.orig).__name__,
                        )
                        continue
                    processed += 1
        return processed

    def _log_failure(self, job_id: int, message: str) -> None:
        logger.error("Error processing %s for job %s: %s", self.label, job_id, message)
        self.db.rollback()
        if self.db.query(IndexingJob.id).filter(IndexingJob.id == job_id).first():
            JobLogService.error(
                self.db, job_id, f"Error processing {self.label}", {"error": message}
            )
