# Redis client helper: opt-in, fail-open access to a shared Redis connection.
# Controlled by REDIS_ENABLED and REDIS_URL; used by the rate limiter and live-event fan-out.
import logging
import os
from typing import Optional

import redis

_logger = logging.getLogger("libyastay.redis")

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")


# Basic truthy parser for env flags (1, true, yes, on)
def _truthy(val: Optional[str]) -> bool:
    if val is None:
        return False
    return val.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def is_redis_enabled() -> bool:
    return _truthy(os.getenv("REDIS_ENABLED", "false"))


# Cached command client and a one-shot initialization guard.
# Once initialization is attempted and fails, the process stays fail-open.
_client: Optional[redis.Redis] = None
_initialized = False


def get_redis() -> Optional[redis.Redis]:
    """
    Return the shared command client if Redis is enabled and reachable, otherwise None.

    Short socket timeouts keep request handlers from stalling on a slow Redis.
    """
    global _client, _initialized
    if not is_redis_enabled():
        return None
    if _client is not None:
        return _client
    if _initialized:
        return None

    try:
        _client = redis.Redis.from_url(
            REDIS_URL,
            socket_timeout=0.25,
            socket_connect_timeout=0.25,
            retry_on_timeout=False,
            health_check_interval=0,
        )
        _client.ping()
        _logger.info("redis.connected", extra={"url": REDIS_URL})
        return _client
    except redis.RedisError as exc:
        _logger.warning("redis.unavailable", extra={"error": str(exc)})
        _client = None
        return None
    finally:
        _initialized = True


def new_pubsub_connection() -> redis.Redis:
    """
    Dedicated connection for a blocking Pub/Sub listener.

    No read timeout: the listener parks on the socket until a message arrives.
    Raises redis.RedisError when the server is unreachable; callers retry with backoff.
    """
    client = redis.Redis.from_url(REDIS_URL, socket_connect_timeout=1.0, health_check_interval=30)
    client.ping()
    return client
