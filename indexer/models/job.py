"""Indexing job model and its state machine."""

import enum

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum, JSON, func
from indexer.db.base import Base


class JobType(str, enum.Enum):
    nft_bids = "nft_bids"
    nft_prices = "nft_prices"
    token_borrowing = "token_borrowing"
    token_prices = "token_prices"


class JobStatus(str, enum.Enum):
    pending = "pending"
    active = "active"
    paused = "paused"
    completed = "completed"
    failed = "failed"


# failed and completed are terminal; only deletion removes such a job
ALLOWED_TRANSITIONS = {
    JobStatus.pending: {JobStatus.active, JobStatus.failed},
    JobStatus.active: {JobStatus.paused, JobStatus.completed, JobStatus.failed},
    JobStatus.paused: {JobStatus.active, JobStatus.completed, JobStatus.failed},
    JobStatus.completed: set(),
    JobStatus.failed: set(),
}


class IndexingJob(Base):
    """A standing subscription mapping an on-chain event filter to a tenant table."""
    __tablename__ = "indexing_jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(Integer, nullable=False, index=True)
    # SET NULL: deleting a connection leaves the job in place, its writes then fail
    db_connection_id = Column(
        Integer, ForeignKey("database_connections.id", ondelete="SET NULL"), nullable=True
    )
    job_type = Column(Enum(JobType), nullable=False)
    configuration = Column(JSON, nullable=False, default=dict)
    target_table = Column(String(128), nullable=False)
    status = Column(Enum(JobStatus), default=JobStatus.pending, nullable=False)
    webhook_id = Column(String(255), nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)
