"""Persistent job records for the publication pipeline.

Every status change is a single conditional UPDATE guarded by the expected
current status (compare-and-swap). A transition that loses the race returns
``False`` and leaves the row untouched, so two workers can never both move the
same job forward. Callers own the transaction: these helpers flush but never
commit, and the matching ``PublicationJobEvent`` row is written in the same
transaction as the state change.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from app.application.services.platform_limits import find_media_limit_violations, parse_option_id
from app.application.services.publication_queue import queue_length
from app.domain.models.publication_job import (
    SUPPORTED_PLATFORMS,
    TERMINAL_STATUSES,
    PublicationJob,
    PublicationJobStatus,
)
from app.domain.models.publication_job_event import PublicationJobEvent, PublicationJobEventType
from app.domain.models.publication_queue_message import PublicationQueueMessage

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3


class PublicationValidationError(ValueError):
    error_code = "validation_error"


@dataclass(frozen=True)
class QueueMetrics:
    queue_length: int
    pending: int
    processing: int
    completed_last_hour: int
    failed_last_hour: int

    def as_dict(self) -> dict:
        return {
            "queue_length": self.queue_length,
            "pending": self.pending,
            "processing": self.processing,
            "completed_last_hour": self.completed_last_hour,
            "failed_last_hour": self.failed_last_hour,
        }


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _isoformat(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.isoformat()


def serialize_job(job: PublicationJob) -> dict:
    return {
        "job_id": str(job.id),
        "user_id": str(job.user_id),
        "platform": job.platform,
        "status": job.status,
        "retry_count": job.retry_count,
        "max_retries": job.max_retries,
        "error_message": job.error_message,
        "error_code": job.error_code,
        "is_retryable": job.is_retryable,
        "platform_response": job.platform_response,
        "metadata": job.metadata_json or {},
        "created_at": _isoformat(job.created_at),
        "started_at": _isoformat(job.started_at),
        "completed_at": _isoformat(job.completed_at),
    }


def _reload(db: Session, job_id: UUID) -> PublicationJob | None:
    return db.execute(
        select(PublicationJob).where(PublicationJob.id == job_id).execution_options(populate_existing=True)
    ).scalar_one_or_none()


def _record_event(
    db: Session,
    job: PublicationJob,
    event_type: PublicationJobEventType,
    metadata: dict | None = None,
) -> None:
    db.add(
        PublicationJobEvent(
            job_id=job.id,
            user_id=job.user_id,
            event_type=event_type.value,
            status=job.status,
            attempt=job.retry_count,
            metadata_json=metadata or {},
        )
    )


def _compare_and_swap(db: Session, job_id: UUID, *, expected: PublicationJobStatus, values: dict, extra_where=()) -> bool:
    result = db.execute(
        update(PublicationJob)
        .where(PublicationJob.id == job_id, PublicationJob.status == expected.value, *extra_where)
        .values(updated_at=_utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def validate_job_request(platform: str, content: dict | None) -> str:
    normalized_platform = (platform or "").strip().lower()
    if normalized_platform not in SUPPORTED_PLATFORMS:
        raise PublicationValidationError(f"Unsupported platform: {platform}")
    if not isinstance(content, dict) or not content:
        raise PublicationValidationError("Job content must be a non-empty object")

    media_files = content.get("mediaFiles") or content.get("media_files") or []
    if not isinstance(media_files, list):
        raise PublicationValidationError("Job media files must be a list")
    option_id = content.get("optionId") or content.get("option_id") or ""
    _, variant = parse_option_id(option_id) if option_id else (normalized_platform, None)
    violations = find_media_limit_violations(normalized_platform, media_files, variant=variant)
    if violations:
        raise PublicationValidationError("; ".join(violations))
    return normalized_platform


def create_job(
    db: Session,
    *,
    user_id: UUID,
    platform: str,
    content: dict,
    metadata: dict | None = None,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> PublicationJob:
    normalized_platform = validate_job_request(platform, content)
    if max_retries < 1:
        raise PublicationValidationError("max_retries must be at least 1")

    job = PublicationJob(
        user_id=user_id,
        platform=normalized_platform,
        content=content,
        status=PublicationJobStatus.PENDING.value,
        retry_count=0,
        max_retries=max_retries,
        is_retryable=True,
        metadata_json=metadata or {},
    )
    db.add(job)
    db.flush()
    _record_event(db, job, PublicationJobEventType.ENQUEUED, {"platform": normalized_platform})
    logger.info(
        "publication_job_created job_id=%s user_id=%s platform=%s max_retries=%s",
        job.id,
        user_id,
        normalized_platform,
        max_retries,
    )
    return job


def get_job(db: Session, job_id: UUID) -> PublicationJob | None:
    return _reload(db, job_id)


def get_job_for_user(db: Session, job_id: UUID, user_id: UUID) -> PublicationJob | None:
    return db.execute(
        select(PublicationJob).where(PublicationJob.id == job_id, PublicationJob.user_id == user_id)
    ).scalar_one_or_none()


def list_jobs_for_user(
    db: Session,
    user_id: UUID,
    *,
    status: str | None = None,
    platform: str | None = None,
    limit: int = 50,
) -> list[PublicationJob]:
    query = select(PublicationJob).where(PublicationJob.user_id == user_id)
    if status:
        query = query.where(PublicationJob.status == status)
    if platform:
        query = query.where(PublicationJob.platform == platform)
    query = query.order_by(PublicationJob.created_at.desc()).limit(limit)
    return list(db.execute(query).scalars().all())


def claim_for_processing(db: Session, job_id: UUID) -> bool:
    now = _utcnow()
    claimed = _compare_and_swap(
        db,
        job_id,
        expected=PublicationJobStatus.PENDING,
        values={
            "status": PublicationJobStatus.PROCESSING.value,
            "started_at": now,
            "retry_count": PublicationJob.retry_count + 1,
        },
    )
    if not claimed:
        logger.warning("publication_job_claim_rejected job_id=%s reason=not_pending", job_id)
        return False

    job = _reload(db, job_id)
    _record_event(db, job, PublicationJobEventType.PROCESSING_STARTED)
    logger.info(
        "publication_job_claimed job_id=%s platform=%s attempt=%s",
        job_id,
        job.platform,
        job.retry_count,
    )
    return True


def complete_job(db: Session, job_id: UUID, platform_response: dict | None) -> bool:
    completed = _compare_and_swap(
        db,
        job_id,
        expected=PublicationJobStatus.PROCESSING,
        values={
            "status": PublicationJobStatus.COMPLETED.value,
            "completed_at": _utcnow(),
            "platform_response": platform_response or {},
            "error_message": None,
            "error_code": None,
        },
    )
    if not completed:
        logger.warning("publication_job_complete_rejected job_id=%s reason=not_processing", job_id)
        return False

    job = _reload(db, job_id)
    _record_event(db, job, PublicationJobEventType.COMPLETED)
    logger.info("publication_job_completed job_id=%s platform=%s", job_id, job.platform)
    return True


def fail_job(
    db: Session,
    job_id: UUID,
    error_message: str,
    *,
    retryable: bool = True,
    error_code: str | None = None,
    event_type: PublicationJobEventType = PublicationJobEventType.FAILED,
) -> bool:
    failed = _compare_and_swap(
        db,
        job_id,
        expected=PublicationJobStatus.PROCESSING,
        values={
            "status": PublicationJobStatus.FAILED.value,
            "completed_at": _utcnow(),
            "error_message": error_message,
            "error_code": error_code,
            "is_retryable": retryable,
        },
    )
    if not failed:
        logger.warning("publication_job_fail_rejected job_id=%s reason=not_processing", job_id)
        return False

    job = _reload(db, job_id)
    _record_event(db, job, event_type, {"error_code": error_code, "retryable": retryable})
    logger.warning(
        "publication_job_failed job_id=%s platform=%s attempt=%s retryable=%s error_code=%s error=%s",
        job_id,
        job.platform,
        job.retry_count,
        retryable,
        error_code,
        error_message,
    )
    return True


def reset_to_pending(db: Session, job_id: UUID) -> bool:
    reset = _compare_and_swap(
        db,
        job_id,
        expected=PublicationJobStatus.FAILED,
        values={
            "status": PublicationJobStatus.PENDING.value,
            "started_at": None,
            "completed_at": None,
            "error_message": None,
            "error_code": None,
        },
        extra_where=(
            PublicationJob.retry_count < PublicationJob.max_retries,
            PublicationJob.is_retryable.is_(True),
        ),
    )
    if not reset:
        logger.warning("publication_job_reset_rejected job_id=%s reason=not_retryable_failed", job_id)
        return False

    job = _reload(db, job_id)
    _record_event(db, job, PublicationJobEventType.REQUEUED)
    logger.info(
        "publication_job_reset_to_pending job_id=%s attempt=%s max_retries=%s",
        job_id,
        job.retry_count,
        job.max_retries,
    )
    return True


def list_stale_processing(db: Session, *, older_than: timedelta) -> list[UUID]:
    cutoff = _utcnow() - older_than
    return list(
        db.execute(
            select(PublicationJob.id)
            .where(
                PublicationJob.status == PublicationJobStatus.PROCESSING.value,
                PublicationJob.started_at < cutoff,
            )
            .order_by(PublicationJob.started_at.asc())
        ).scalars().all()
    )


def list_retryable_failed(db: Session, *, cooldown: timedelta) -> list[UUID]:
    cutoff = _utcnow() - cooldown
    return list(
        db.execute(
            select(PublicationJob.id)
            .where(
                PublicationJob.status == PublicationJobStatus.FAILED.value,
                PublicationJob.is_retryable.is_(True),
                PublicationJob.retry_count < PublicationJob.max_retries,
                PublicationJob.completed_at < cutoff,
            )
            .order_by(PublicationJob.completed_at.asc())
        ).scalars().all()
    )


def count_active_processing(db: Session, *, staleness_window: timedelta) -> int:
    cutoff = _utcnow() - staleness_window
    return int(
        db.execute(
            select(func.count(PublicationJob.id)).where(
                PublicationJob.status == PublicationJobStatus.PROCESSING.value,
                PublicationJob.started_at >= cutoff,
            )
        ).scalar_one()
    )


def purge_terminal_jobs(db: Session, *, older_than: timedelta) -> int:
    cutoff = _utcnow() - older_than
    job_ids = list(
        db.execute(
            select(PublicationJob.id).where(
                PublicationJob.status.in_(sorted(TERMINAL_STATUSES)),
                PublicationJob.completed_at < cutoff,
            )
        ).scalars().all()
    )
    if not job_ids:
        return 0

    db.execute(delete(PublicationJobEvent).where(PublicationJobEvent.job_id.in_(job_ids)))
    db.execute(delete(PublicationQueueMessage).where(PublicationQueueMessage.job_id.in_(job_ids)))
    db.execute(
        delete(PublicationJob)
        .where(PublicationJob.id.in_(job_ids))
        .execution_options(synchronize_session=False)
    )
    logger.info("publication_jobs_purged total=%s cutoff=%s", len(job_ids), cutoff.isoformat())
    return len(job_ids)


def _count_status(db: Session, status: PublicationJobStatus, *, completed_since: datetime | None = None) -> int:
    query = select(func.count(PublicationJob.id)).where(PublicationJob.status == status.value)
    if completed_since is not None:
        query = query.where(PublicationJob.completed_at >= completed_since)
    return int(db.execute(query).scalar_one())


def get_queue_metrics(db: Session, *, queue_name: str | None = None) -> QueueMetrics:
    one_hour_ago = _utcnow() - timedelta(hours=1)
    return QueueMetrics(
        queue_length=queue_length(db, queue_name=queue_name),
        pending=_count_status(db, PublicationJobStatus.PENDING),
        processing=_count_status(db, PublicationJobStatus.PROCESSING),
        completed_last_hour=_count_status(db, PublicationJobStatus.COMPLETED, completed_since=one_hour_ago),
        failed_last_hour=_count_status(db, PublicationJobStatus.FAILED, completed_since=one_hour_ago),
    )
