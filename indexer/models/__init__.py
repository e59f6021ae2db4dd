"""Models package: import all models so metadata creation can discover them."""

from indexer.models.connection import DatabaseConnection
from indexer.models.job import IndexingJob, JobType, JobStatus, ALLOWED_TRANSITIONS
from indexer.models.job_log import JobLog, LogLevel

__all__ = [
    "DatabaseConnection",
    "IndexingJob", "JobType", "JobStatus", "ALLOWED_TRANSITIONS",
    "JobLog", "LogLevel",
]
