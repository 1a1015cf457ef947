from functools import lru_cache

from redis import Redis

from app.core.config import settings


@lru_cache(maxsize=1)
def _client_for(url: str) -> Redis:
    return Redis.from_url(url, decode_responses=True, socket_connect_timeout=2.0, socket_timeout=5.0)


def get_redis_client() -> Redis:
    return _client_for(settings.cache_redis_url)
