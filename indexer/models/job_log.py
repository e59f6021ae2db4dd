"""Job log model: append-only."""

import enum

from sqlalchemy import Column, Integer, Text, DateTime, ForeignKey, Enum, JSON, func
from indexer.db.base import Base


class LogLevel(str, enum.Enum):
    info = "info"
    warning = "warning"
    error = "error"


class JobLog(Base):
    """Per-job audit trail of setup and processing outcomes.

    This table is APPEND-ONLY: rows are never updated, and only disappear
    with their job.
    """
    __tablename__ = "job_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(
        Integer, ForeignKey("indexing_jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    log_level = Column(Enum(LogLevel), nullable=False)
    message = Column(Text, nullable=False)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False, index=True)
