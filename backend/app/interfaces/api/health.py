from time import perf_counter

from fastapi import APIRouter, Response, status
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.application.services.publication_queue import queue_length
from app.core.config import settings
from app.infrastructure.cache.redis_client import get_redis_client
from app.infrastructure.db.session import SessionLocal
from app.infrastructure.observability.metrics import measure_redis, metrics_response
from app.integrations.platform_adapters import list_registered_platforms

router = APIRouter()


def _probe_database() -> dict:
    try:
        started_at = perf_counter()
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
            depth = queue_length(db)
        return {
            "status": "up",
            "latency_ms": round((perf_counter() - started_at) * 1000, 2),
            "queue_depth": depth,
        }
    except SQLAlchemyError:
        return {"status": "down", "latency_ms": None, "queue_depth": None}


def _probe_redis() -> dict:
    try:
        redis_client = get_redis_client()
        started_at = perf_counter()
        with measure_redis("health_ping"):
            redis_client.ping()
        latency_ms = round((perf_counter() - started_at) * 1000, 2)
        with measure_redis("health_worker_heartbeat_check"):
            worker_alive = bool(redis_client.exists(settings.worker_heartbeat_key))
        return {"status": "up", "latency_ms": latency_ms, "worker_alive": worker_alive}
    except RedisError:
        return {"status": "down", "latency_ms": None, "worker_alive": False}


@router.get("/health", status_code=status.HTTP_200_OK)
def health_check() -> dict:
    database = _probe_database()
    redis = _probe_redis()
    healthy = database["status"] == "up" and redis["status"] == "up" and redis["worker_alive"]

    return {
        "status": "ok" if healthy else "degraded",
        "services": {
            "api": "up",
            "database": database["status"],
            "redis": redis["status"],
            "worker_alive": redis["worker_alive"],
            "db_latency_ms": database["latency_ms"],
            "redis_latency_ms": redis["latency_ms"],
            "publication_queue_depth": database["queue_depth"],
            "publication_adapters": list_registered_platforms(),
        },
    }


@router.get("/ready", status_code=status.HTTP_200_OK)
def readiness_check(response: Response) -> dict:
    payload = health_check()
    if payload["status"] != "ok":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "not_ready", "services": payload["services"]}
    return {"status": "ready", "services": payload["services"]}


@router.get("/metrics", include_in_schema=False)
def metrics():
    return metrics_response()
