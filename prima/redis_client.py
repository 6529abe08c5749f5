"""Redis client helper with connection pooling."""

from __future__ import annotations

from prima import settings

REDIS_DISABLED_URL = "memory://"
DEFAULT_REDIS_MAX_CONNECTIONS = 20
DEFAULT_REDIS_CONNECT_TIMEOUT_SECONDS = 2.0
DEFAULT_REDIS_SOCKET_TIMEOUT_SECONDS = 2.0

_sync_client = None


def get_redis_url() -> str | None:
    url = settings.REDIS_URL
    if not url or url.strip().lower() == REDIS_DISABLED_URL:
        return None
    return url.strip()


def get_sync_redis_client():
    url = get_redis_url()
    if not url:
        return None

    global _sync_client
    if _sync_client is None:
        import redis

        pool = redis.ConnectionPool.from_url(
            url,
            max_connections=DEFAULT_REDIS_MAX_CONNECTIONS,
            socket_connect_timeout=DEFAULT_REDIS_CONNECT_TIMEOUT_SECONDS,
            socket_timeout=DEFAULT_REDIS_SOCKET_TIMEOUT_SECONDS,
            retry_on_timeout=True,
        )
        _sync_client = redis.Redis(connection_pool=pool)
    return _sync_client


def close_redis_client() -> None:
    global _sync_client
    if _sync_client is not None:
        _sync_client.close()
        _sync_client = None
