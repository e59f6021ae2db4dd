"""Job log service: append-only, per-job audit trail."""

from typing import Optional, Any, Dict, List

from sqlalchemy.orm import Session

from indexer.models.job_log import JobLog, LogLevel


class JobLogService:
    """Records job log entries and reads them back most-recent-first."""

    @staticmethod
    def log(
        db: Session,
        job_id: int,
        level: LogLevel,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> JobLog:
        """Write a single job log record.

        This method commits immediately so the entry survives a rollback of
        whatever failed around it.
        """
        entry = JobLog(
            job_id=job_id,
            log_level=level,
            message=message,
            details=details,
        )
        db.add(entry)
        db.commit()
        return entry

    @staticmethod
    def info(db: Session, job_id: int, message: str, details: Optional[Dict[str, Any]] = None) -> JobLog:
        return JobLogService.log(db, job_id, LogLevel.info, message, details)

    @staticmethod
    def warning(db: Session, job_id: int, message: str, details: Optional[Dict[str, Any]] = None) -> JobLog:
        return JobLogService.log(db, job_id, LogLevel.warning, message, details)

    @staticmethod
    def error(db: Session, job_id: int, message: str, details: Optional[Dict[str, Any]] = None) -> JobLog:
        return JobLogService.log(db, job_id, LogLevel.error, message, details)

    @staticmethod
    def list_for_job(db: Session, job_id: int, limit: int = 100) -> List[JobLog]:
        """Return the newest ``limit`` entries for a job."""
        return (
            db.query(JobLog)
            .filter(JobLog.job_id == job_id)
            .order_by(JobLog.created_at.desc(), JobLog.id.desc())
            .limit(limit)
            .all()
        )


job_log_service = JobLogService()
