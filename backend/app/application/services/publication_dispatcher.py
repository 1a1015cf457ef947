"""One dispatch cycle: lease job notices, claim jobs, run adapters, record outcomes.

Overlapping cycles (two beat ticks, two workers) are tolerated. The job-level
compare-and-swap guarantees a job runs at most once per claim; the concurrency
ceiling is computed from the store at the start of each cycle and is therefore
best-effort across simultaneous cycles.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import timedelta
from time import perf_counter
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.application.services.job_notifier import JobStatusNotifier, RedisJobStatusNotifier
from app.application.services.job_store import (
    claim_for_processing,
    complete_job,
    count_active_processing,
    fail_job,
    get_job,
    serialize_job,
)
from app.application.services.publication_queue import QueueLease, ack, dequeue
from app.core.config import settings
from app.domain.models.publication_job import PublicationJobStatus
from app.infrastructure.logging.context import reset_job_id, set_job_id
from app.infrastructure.observability.metrics import increment_background_counter, observe_job_execution
from app.integrations.credential_provider import CredentialError, CredentialProvider, StoredCredentialProvider
from app.integrations.platform_adapters import (
    AdapterError,
    AdapterResolutionError,
    BasePlatformAdapter,
    get_platform_adapter,
)

logger = logging.getLogger(__name__)

AdapterResolver = Callable[[str], BasePlatformAdapter]


@dataclass(frozen=True)
class JobExecutionResult:
    job_id: UUID
    platform: str
    success: bool
    retryable: bool
    duration_ms: int
    platform_response: dict = field(default_factory=dict)
    error: str | None = None
    error_code: str | None = None


@dataclass
class DispatchCycleSummary:
    skipped: bool = False
    in_flight: int = 0
    dequeued: int = 0
    discarded: int = 0
    executed: int = 0
    completed: int = 0
    failed: int = 0

    def as_dict(self) -> dict:
        return {
            "skipped": self.skipped,
            "in_flight": self.in_flight,
            "dequeued": self.dequeued,
            "discarded": self.discarded,
            "executed": self.executed,
            "completed": self.completed,
            "failed": self.failed,
        }


@dataclass(frozen=True)
class ClaimedJob:
    job_id: UUID
    message_id: int
    user_id: UUID
    platform: str
    content: dict


class PublicationDispatcher:
    def __init__(
        self,
        *,
        session_factory: sessionmaker | None = None,
        credential_provider: CredentialProvider | None = None,
        adapter_resolver: AdapterResolver | None = None,
        notifier: JobStatusNotifier | None = None,
        concurrency_limit: int | None = None,
        visibility_timeout_seconds: int | None = None,
        execution_timeout_seconds: float | None = None,
        staleness_minutes: int | None = None,
        queue_name: str | None = None,
    ) -> None:
        if session_factory is None:
            from app.infrastructure.db.session import SessionLocal

            session_factory = SessionLocal
        self.session_factory = session_factory
        self.credential_provider = credential_provider or StoredCredentialProvider(session_factory)
        self.adapter_resolver = adapter_resolver or get_platform_adapter
        self.notifier = notifier or RedisJobStatusNotifier()
        self.concurrency_limit = concurrency_limit or settings.dispatch_concurrency_limit
        self.visibility_timeout_seconds = visibility_timeout_seconds or settings.dispatch_visibility_timeout_seconds
        self.execution_timeout_seconds = execution_timeout_seconds or settings.job_execution_timeout_seconds
        self.staleness_window = timedelta(minutes=staleness_minutes or settings.job_staleness_minutes)
        self.queue_name = queue_name

    async def run_cycle(self) -> DispatchCycleSummary:
        summary = DispatchCycleSummary()
        with self.session_factory() as db:
            summary.in_flight = count_active_processing(db, staleness_window=self.staleness_window)
            capacity = self.concurrency_limit - summary.in_flight
            if capacity <= 0:
                summary.skipped = True
                logger.info(
                    "publication_dispatch_skipped in_flight=%s concurrency_limit=%s",
                    summary.in_flight,
                    self.concurrency_limit,
                )
                return summary
            leases = dequeue(
                db,
                batch_size=capacity,
                visibility_timeout_seconds=self.visibility_timeout_seconds,
                queue_name=self.queue_name,
            )
            db.commit()

        summary.dequeued = len(leases)
        claimed_jobs: list[ClaimedJob] = []
        for lease in leases:
            claimed = await asyncio.to_thread(self._claim, lease)
            if claimed is None:
                summary.discarded += 1
            else:
                claimed_jobs.append(claimed)

        if claimed_jobs:
            semaphore = asyncio.Semaphore(self.concurrency_limit)
            results = await asyncio.gather(*(self._run_job(job, semaphore) for job in claimed_jobs))
            for result in results:
                summary.executed += 1
                if result.success:
                    summary.completed += 1
                else:
                    summary.failed += 1

        logger.info(
            "publication_dispatch_cycle_finished in_flight=%s dequeued=%s discarded=%s completed=%s failed=%s",
            summary.in_flight,
            summary.dequeued,
            summary.discarded,
            summary.completed,
            summary.failed,
        )
        return summary

    def _claim(self, lease: QueueLease) -> ClaimedJob | None:
        with self.session_factory() as db:
            job = get_job(db, lease.job_id)
            if job is None or job.status != PublicationJobStatus.PENDING.value:
                # Redelivered or stale notice: the job already moved on.
                ack(db, lease.message_id)
                db.commit()
                logger.info(
                    "publication_job_notice_discarded job_id=%s message_id=%s status=%s read_count=%s",
                    lease.job_id,
                    lease.message_id,
                    job.status if job is not None else "missing",
                    lease.read_count,
                )
                return None

            if not claim_for_processing(db, job.id):
                ack(db, lease.message_id)
                db.commit()
                return None
            db.commit()

            job = get_job(db, lease.job_id)
            snapshot = serialize_job(job)
            claimed = ClaimedJob(
                job_id=job.id,
                message_id=lease.message_id,
                user_id=job.user_id,
                platform=job.platform,
                content=dict(job.content or {}),
            )
        self.notifier.job_changed(snapshot)
        return claimed

    async def _run_job(self, job: ClaimedJob, semaphore: asyncio.Semaphore) -> JobExecutionResult:
        async with semaphore:
            job_token = set_job_id(str(job.job_id))
            try:
                result = await self._execute(job)
                await asyncio.to_thread(self._record_result, job, result)
            finally:
                reset_job_id(job_token)
            return result

    async def _execute(self, job: ClaimedJob) -> JobExecutionResult:
        started_at = perf_counter()
        await asyncio.to_thread(increment_background_counter, "publish_attempts_total")

        def _failure(error: str, *, retryable: bool, error_code: str) -> JobExecutionResult:
            return JobExecutionResult(
                job_id=job.job_id,
                platform=job.platform,
                success=False,
                retryable=retryable,
                duration_ms=int((perf_counter() - started_at) * 1000),
                error=error,
                error_code=error_code,
            )

        try:
            adapter = self.adapter_resolver(job.platform)
            platform_response = await asyncio.wait_for(
                self._publish(adapter, job),
                timeout=self.execution_timeout_seconds,
            )
        except asyncio.TimeoutError:
            return _failure(
                f"Job exceeded execution budget of {self.execution_timeout_seconds:g}s",
                retryable=True,
                error_code="adapter_timeout",
            )
        except (AdapterResolutionError, CredentialError) as exc:
            return _failure(str(exc), retryable=False, error_code=exc.error_code)
        except AdapterError as exc:
            return _failure(str(exc), retryable=exc.retryable, error_code=exc.error_code)
        except Exception as exc:
            logger.exception("publication_job_unhandled_exception job_id=%s platform=%s", job.job_id, job.platform)
            return _failure(str(exc) or exc.__class__.__name__, retryable=True, error_code="unhandled_adapter_exception")

        return JobExecutionResult(
            job_id=job.job_id,
            platform=job.platform,
            success=True,
            retryable=False,
            duration_ms=int((perf_counter() - started_at) * 1000),
            platform_response=platform_response or {},
        )

    async def _publish(self, adapter: BasePlatformAdapter, job: ClaimedJob) -> dict:
        # Token lookup counts against the execution budget.
        credential = await asyncio.to_thread(self.credential_provider.get_valid_token, job.user_id, job.platform)
        return await adapter.publish(credential, job.content)

    def _record_result(self, job: ClaimedJob, result: JobExecutionResult) -> None:
        observe_job_execution(job.platform, "completed" if result.success else "failed", result.duration_ms / 1000.0)
        if not result.success:
            increment_background_counter("publish_failures_total")

        snapshot = None
        try:
            with self.session_factory() as db:
                if result.success:
                    written = complete_job(db, job.job_id, result.platform_response)
                else:
                    written = fail_job(
                        db,
                        job.job_id,
                        result.error or "Publication failed",
                        retryable=result.retryable,
                        error_code=result.error_code,
                    )
                # The notice is acked whatever the outcome; retries are the sweeper's decision.
                ack(db, job.message_id)
                db.commit()
                if written:
                    snapshot = serialize_job(get_job(db, job.job_id))
        except SQLAlchemyError:
            # Message stays leased and the job stays processing; the staleness sweep recovers it.
            logger.exception("publication_job_result_write_failed job_id=%s success=%s", job.job_id, result.success)
            return

        logger.info(
            "publication_job_executed job_id=%s platform=%s success=%s retryable=%s duration_ms=%s",
            job.job_id,
            job.platform,
            result.success,
            result.retryable,
            result.duration_ms,
        )
        if snapshot is not None:
            self.notifier.job_changed(snapshot)
