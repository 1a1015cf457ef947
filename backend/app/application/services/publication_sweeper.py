import logging
from dataclasses import dataclass, field
from datetime import timedelta
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from app.application.services.job_notifier import JobStatusNotifier, RedisJobStatusNotifier
from app.application.services.job_store import (
    fail_job,
    get_job,
    list_retryable_failed,
    list_stale_processing,
    purge_terminal_jobs,
    reset_to_pending,
    serialize_job,
)
from app.application.services.publication_queue import enqueue
from app.core.config import settings
from app.domain.models.publication_job_event import PublicationJobEventType
from app.infrastructure.observability.metrics import increment_background_counter

logger = logging.getLogger(__name__)

STALE_JOB_ERROR_MESSAGE = "Job timed out during processing"


@dataclass
class SweepSummary:
    recovered: list[UUID] = field(default_factory=list)
    requeued: list[UUID] = field(default_factory=list)
    purged: int = 0

    def as_dict(self) -> dict:
        return {
            "recovered": len(self.recovered),
            "requeued": len(self.requeued),
            "purged": self.purged,
        }


def recover_stale_jobs(db: Session, *, staleness_minutes: int | None = None) -> list[UUID]:
    """Fail jobs stuck in ``processing`` past the staleness window so they become retry candidates."""
    window = timedelta(minutes=staleness_minutes or settings.job_staleness_minutes)
    recovered: list[UUID] = []
    for job_id in list_stale_processing(db, older_than=window):
        if fail_job(
            db,
            job_id,
            STALE_JOB_ERROR_MESSAGE,
            retryable=True,
            error_code="processing_timeout",
            event_type=PublicationJobEventType.TIMED_OUT,
        ):
            recovered.append(job_id)
    if recovered:
        logger.warning("publication_stale_jobs_recovered total=%s window=%s", len(recovered), window)
    return recovered


def promote_retryable_jobs(
    db: Session,
    *,
    cooldown_minutes: int | None = None,
    queue_name: str | None = None,
) -> list[UUID]:
    """Reset retry-eligible failures to ``pending`` and enqueue a fresh notice in the same transaction."""
    cooldown = timedelta(minutes=cooldown_minutes if cooldown_minutes is not None else settings.retry_cooldown_minutes)
    requeued: list[UUID] = []
    for job_id in list_retryable_failed(db, cooldown=cooldown):
        if reset_to_pending(db, job_id):
            enqueue(db, job_id, queue_name=queue_name)
            requeued.append(job_id)
    if requeued:
        logger.info("publication_failed_jobs_requeued total=%s", len(requeued))
    return requeued


def purge_expired_jobs(db: Session, *, retention_days: int | None = None) -> int:
    return purge_terminal_jobs(db, older_than=timedelta(days=retention_days or settings.job_retention_days))


def _notify(db: Session, notifier: JobStatusNotifier, job_ids: list[UUID]) -> None:
    for job_id in job_ids:
        job = get_job(db, job_id)
        if job is not None:
            notifier.job_changed(serialize_job(job))


def run_sweep(
    session_factory: sessionmaker | None = None,
    *,
    notifier: JobStatusNotifier | None = None,
    include_purge: bool = False,
    staleness_minutes: int | None = None,
    cooldown_minutes: int | None = None,
    retention_days: int | None = None,
    queue_name: str | None = None,
) -> SweepSummary:
    if session_factory is None:
        from app.infrastructure.db.session import SessionLocal

        session_factory = SessionLocal
    notifier = notifier or RedisJobStatusNotifier()
    summary = SweepSummary()

    with session_factory() as db:
        summary.recovered = recover_stale_jobs(db, staleness_minutes=staleness_minutes)
        db.commit()
        _notify(db, notifier, summary.recovered)

    with session_factory() as db:
        summary.requeued = promote_retryable_jobs(db, cooldown_minutes=cooldown_minutes, queue_name=queue_name)
        db.commit()
        _notify(db, notifier, summary.requeued)

    if include_purge:
        with session_factory() as db:
            summary.purged = purge_expired_jobs(db, retention_days=retention_days)
            db.commit()

    increment_background_counter("publication_stale_jobs_recovered_total", len(summary.recovered))
    increment_background_counter("publication_jobs_requeued_total", len(summary.requeued))
    logger.info(
        "publication_sweep_finished recovered=%s requeued=%s purged=%s",
        len(summary.recovered),
        len(summary.requeued),
        summary.purged,
    )
    return summary
