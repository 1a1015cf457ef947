from datetime import UTC, datetime, timedelta

from sqlalchemy import select

from app.application.services.job_store import create_job
from app.application.services.publication_queue import ack, dequeue, enqueue, queue_length
from app.domain.models.publication_queue_message import PublicationQueueMessage


def _job_id(db, user_id):
    job = create_job(db, user_id=user_id, platform="x", content={"caption": "queued"})
    db.flush()
    return job.id


def test_dequeue_leases_messages_until_visibility_timeout(db, user_id):
    first = _job_id(db, user_id)
    second = _job_id(db, user_id)
    enqueue(db, first)
    enqueue(db, second)
    db.commit()

    leases = dequeue(db, batch_size=5, visibility_timeout_seconds=300)
    db.commit()
    assert [lease.job_id for lease in leases] == [first, second]
    assert all(lease.read_count == 1 for lease in leases)

    # Leased messages are invisible but still counted.
    assert dequeue(db, batch_size=5, visibility_timeout_seconds=300) == []
    assert queue_length(db) == 2


def test_unacked_message_is_redelivered_after_timeout(db, user_id):
    job_id = _job_id(db, user_id)
    message_id = enqueue(db, job_id)
    db.commit()

    assert len(dequeue(db, batch_size=1, visibility_timeout_seconds=300)) == 1
    db.commit()

    message = db.execute(
        select(PublicationQueueMessage).where(PublicationQueueMessage.id == message_id)
    ).scalar_one()
    message.visible_at = datetime.now(UTC) - timedelta(seconds=1)
    db.commit()

    redelivered = dequeue(db, batch_size=1, visibility_timeout_seconds=300)
    assert len(redelivered) == 1
    assert redelivered[0].message_id == message_id
    assert redelivered[0].read_count == 2


def test_ack_removes_message_once(db, user_id):
    message_id = enqueue(db, _job_id(db, user_id))
    db.commit()

    assert ack(db, message_id) is True
    assert ack(db, message_id) is False
    db.commit()
    assert queue_length(db) == 0


def test_delayed_message_is_not_visible_yet(db, user_id):
    enqueue(db, _job_id(db, user_id), delay_seconds=120)
    db.commit()

    assert dequeue(db, batch_size=5, visibility_timeout_seconds=300) == []
    assert dequeue(db, batch_size=0, visibility_timeout_seconds=300) == []
    assert queue_length(db) == 1


def test_queues_are_isolated_by_name(db, user_id):
    enqueue(db, _job_id(db, user_id), queue_name="publication_jobs_priority")
    db.commit()

    assert dequeue(db, batch_size=5, visibility_timeout_seconds=300) == []
    leases = dequeue(db, batch_size=5, visibility_timeout_seconds=300, queue_name="publication_jobs_priority")
    assert len(leases) == 1
    assert queue_length(db) == 0
    assert queue_length(db, queue_name="publication_jobs_priority") == 1
