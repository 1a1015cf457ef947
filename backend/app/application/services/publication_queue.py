"""Table-backed at-least-once queue of job notices.

A dequeued message is leased, not removed: its ``visible_at`` moves forward by
the visibility timeout and it becomes deliverable again unless it is acked
before then. Messages only carry a job id; the job row stays the source of
truth.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.domain.models.publication_queue_message import PublicationQueueMessage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueueLease:
    message_id: int
    job_id: UUID
    read_count: int


def _queue(queue_name: str | None) -> str:
    return queue_name or settings.publication_queue_name


def enqueue(db: Session, job_id: UUID, *, queue_name: str | None = None, delay_seconds: int = 0) -> int:
    now = datetime.now(UTC)
    message = PublicationQueueMessage(
        queue_name=_queue(queue_name),
        job_id=job_id,
        read_count=0,
        enqueued_at=now,
        visible_at=now + timedelta(seconds=max(0, delay_seconds)),
    )
    db.add(message)
    db.flush()
    logger.info("publication_queue_enqueued message_id=%s job_id=%s", message.id, job_id)
    return message.id


def dequeue(
    db: Session,
    *,
    batch_size: int,
    visibility_timeout_seconds: int,
    queue_name: str | None = None,
) -> list[QueueLease]:
    if batch_size <= 0:
        return []

    now = datetime.now(UTC)
    rows = db.execute(
        select(PublicationQueueMessage)
        .where(
            PublicationQueueMessage.queue_name == _queue(queue_name),
            PublicationQueueMessage.visible_at <= now,
        )
        .order_by(PublicationQueueMessage.id.asc())
        .limit(batch_size)
        .with_for_update(skip_locked=True)
    ).scalars().all()

    leases: list[QueueLease] = []
    invisible_until = now + timedelta(seconds=visibility_timeout_seconds)
    for row in rows:
        row.visible_at = invisible_until
        row.read_count = (row.read_count or 0) + 1
        leases.append(QueueLease(message_id=row.id, job_id=row.job_id, read_count=row.read_count))
    db.flush()

    if leases:
        logger.info(
            "publication_queue_dequeued total=%s visibility_timeout_seconds=%s",
            len(leases),
            visibility_timeout_seconds,
        )
    return leases


def ack(db: Session, message_id: int) -> bool:
    result = db.execute(
        delete(PublicationQueueMessage)
        .where(PublicationQueueMessage.id == message_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning("publication_queue_ack_missing message_id=%s", message_id)
        return False
    return True


def queue_length(db: Session, *, queue_name: str | None = None) -> int:
    return int(
        db.execute(
            select(func.count(PublicationQueueMessage.id)).where(
                PublicationQueueMessage.queue_name == _queue(queue_name)
            )
        ).scalar_one()
    )
