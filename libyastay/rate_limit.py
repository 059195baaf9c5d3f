# Redis-backed fixed-window rate limiter for HTTP writes.
# - Per-IP counters, keys rl:v1:ip:{ip}:{scope}, TTL-based window.
# - Fail-open when Redis is disabled or unreachable so the API stays usable in dev or outages.
import logging
import os
from typing import Callable, Literal, Optional

import redis
from fastapi import Request, status

from .errors import ApiError
from .redis_client import get_redis, is_redis_enabled

logger = logging.getLogger("libyastay.rate_limit")

Scope = Literal["login", "signup", "write"]

_SCOPE_DEFAULTS = {"login": 10, "signup": 5, "write": 30}


def _to_int(val: Optional[str], default: int) -> int:
    try:
        return int(val) if val is not None else default
    except ValueError:
        return default


def _window_seconds() -> int:
    return _to_int(os.getenv("RATE_LIMIT_WINDOW_SECONDS"), 60)


# RATE_LIMIT_LOGIN_PER_WINDOW / RATE_LIMIT_SIGNUP_PER_WINDOW / RATE_LIMIT_WRITE_PER_WINDOW
def _limit_for_scope(scope: Scope) -> int:
    return _to_int(os.getenv(f"RATE_LIMIT_{scope.upper()}_PER_WINDOW"), _SCOPE_DEFAULTS[scope])


def _client_ip(request: Request) -> str:
    # Remote address only; X-Forwarded-For is not trusted here.
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def rate_limit(scope: Scope) -> Callable[[Request], None]:
    """
    Build a dependency enforcing a fixed window per client IP and scope.

    The first hit in a window sets the TTL; later hits share that expiry.
    Exceeding the cap raises 429 RATE_LIMITED with a Retry-After header.
    """
    window = _window_seconds()
    limit = _limit_for_scope(scope)

    def _dependency(request: Request) -> None:
        if not is_redis_enabled():
            return
        r = get_redis()
        if r is None:
            return

        ip = _client_ip(request)
        key = f"rl:v1:ip:{ip}:{scope}"
        try:
            current = r.incr(key, amount=1)
            if current == 1:
                r.expire(key, window)
            if current <= limit:
                return
            ttl = r.ttl(key)
        except redis.RedisError as exc:
            logger.warning("rate_limit.fail_open", extra={"scope": scope, "ip": ip, "error": str(exc)})
            return

        retry_after = ttl if isinstance(ttl, int) and ttl > 0 else window
        raise ApiError(
            status.HTTP_429_TOO_MANY_REQUESTS,
            "Too many requests, try again later",
            "RATE_LIMITED",
            details={"scope": scope, "limit": limit, "window_seconds": window, "retry_after": retry_after},
            headers={"Retry-After": str(retry_after)},
        )

    return _dependency
