from __future__ import annotations

import logging
from contextlib import contextmanager
from time import perf_counter

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from redis.exceptions import RedisError
from starlette.responses import Response

logger = logging.getLogger(__name__)

REQUESTS_TOTAL = Counter(
    "total_requests",
    "Total HTTP requests",
    labelnames=("method", "path", "status"),
)
REQUEST_LATENCY_SECONDS = Histogram(
    "request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path"),
)
DB_QUERY_DURATION_SECONDS = Histogram(
    "db_query_duration_seconds",
    "Database query duration in seconds",
    labelnames=("operation",),
)
REDIS_LATENCY_SECONDS = Histogram(
    "redis_latency_seconds",
    "Redis command latency in seconds",
    labelnames=("operation",),
)
PUBLISH_ATTEMPTS_TOTAL = Counter(
    "publish_attempts_total",
    "Number of publication job executions started by the dispatcher",
)
PUBLISH_FAILURES_TOTAL = Counter(
    "publish_failures_total",
    "Number of publication job executions that ended in failure",
)
JOBS_REQUEUED_TOTAL = Counter(
    "publication_jobs_requeued_total",
    "Number of failed publication jobs re-queued by the sweeper",
)
STALE_JOBS_RECOVERED_TOTAL = Counter(
    "publication_stale_jobs_recovered_total",
    "Number of processing jobs failed by the sweeper for exceeding the staleness window",
)
JOB_EXECUTION_SECONDS = Histogram(
    "publication_job_execution_seconds",
    "Wall-clock duration of a single publication job execution",
    labelnames=("platform", "outcome"),
)

BACKGROUND_COUNTER_KEYS = {
    "publish_attempts_total": "metrics:publish_attempts_total",
    "publish_failures_total": "metrics:publish_failures_total",
    "publication_jobs_requeued_total": "metrics:publication_jobs_requeued_total",
    "publication_stale_jobs_recovered_total": "metrics:publication_stale_jobs_recovered_total",
}
_BACKGROUND_COLLECTORS = {
    "publish_attempts_total": PUBLISH_ATTEMPTS_TOTAL,
    "publish_failures_total": PUBLISH_FAILURES_TOTAL,
    "publication_jobs_requeued_total": JOBS_REQUEUED_TOTAL,
    "publication_stale_jobs_recovered_total": STALE_JOBS_RECOVERED_TOTAL,
}
_last_background_counter_values: dict[str, float] = {
    metric_name: 0.0 for metric_name in BACKGROUND_COUNTER_KEYS
}


def record_request(method: str, path: str, status_code: int, duration_seconds: float) -> None:
    REQUESTS_TOTAL.labels(method=method, path=path, status=str(status_code)).inc()
    REQUEST_LATENCY_SECONDS.labels(method=method, path=path).observe(duration_seconds)


def observe_db_query(duration_seconds: float, operation: str = "sql") -> None:
    DB_QUERY_DURATION_SECONDS.labels(operation=operation).observe(duration_seconds)


def observe_redis_latency(duration_seconds: float, operation: str) -> None:
    REDIS_LATENCY_SECONDS.labels(operation=operation).observe(duration_seconds)


def observe_job_execution(platform: str, outcome: str, duration_seconds: float) -> None:
    JOB_EXECUTION_SECONDS.labels(platform=platform, outcome=outcome).observe(duration_seconds)


def increment_background_counter(metric_name: str, amount: int = 1) -> None:
    """Counters bumped inside Celery workers live in Redis so the API process can export them."""
    redis_key = BACKGROUND_COUNTER_KEYS.get(metric_name)
    if redis_key is None or amount <= 0:
        return
    try:
        from app.infrastructure.cache.redis_client import get_redis_client

        redis_client = get_redis_client()
        with measure_redis("metrics_background_counter_incr"):
            redis_client.incrby(redis_key, amount)
    except RedisError as exc:
        # Metrics writes never interrupt job processing.
        logger.debug("background_counter_incr_failed metric=%s reason=%s", metric_name, exc)


def _sync_background_counters_from_redis() -> None:
    try:
        from app.infrastructure.cache.redis_client import get_redis_client

        redis_client = get_redis_client()
        with measure_redis("metrics_background_counter_sync"):
            raw_values = redis_client.mget(list(BACKGROUND_COUNTER_KEYS.values()))
    except RedisError as exc:
        logger.debug("background_counter_sync_failed reason=%s", exc)
        return

    for idx, metric_name in enumerate(BACKGROUND_COUNTER_KEYS):
        raw_value = raw_values[idx] if raw_values else None
        current_value = float(raw_value or 0.0)
        delta = current_value - _last_background_counter_values.get(metric_name, 0.0)
        if delta > 0:
            _BACKGROUND_COLLECTORS[metric_name].inc(delta)
        _last_background_counter_values[metric_name] = current_value


@contextmanager
def measure_redis(operation: str):
    started_at = perf_counter()
    try:
        yield
    finally:
        observe_redis_latency(perf_counter() - started_at, operation=operation)


def metrics_response() -> Response:
    _sync_background_counters_from_redis()
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
