"""
Redis-backed request budget for the login check endpoint.

Fixed-window counters (INCR + EXPIRE) keyed by client IP and window index,
shared by every worker. This limiter is auxiliary: if Redis is unavailable
the request is allowed and the login guard still applies.
"""

import logging
import time

from fastapi import Request

from resilience.core.config import settings
from resilience.core.errors import rate_limited
from resilience.core.redis import get_redis
from resilience.utils.request import get_client_ip

logger = logging.getLogger(__name__)

KEY_PREFIX = "ratelimit:login_check:"


async def check_fixed_window(
    subject: str,
    limit: int,
    window_seconds: int,
    now: float | None = None,
) -> None:
    """
    Count one request for ``subject`` in the current window.

    Raises:
        HTTPError: 429 with Retry-After once the window budget is spent
    """
    now = time.time() if now is None else now
    window = int(now // window_seconds)
    key = f"{KEY_PREFIX}{subject}:{window}"

    try:
        redis = await get_redis()
        pipe = redis.pipeline()
        pipe.incr(key)
        pipe.expire(key, window_seconds + 1)
        results = await pipe.execute()
        count = int(results[0])
    except Exception as e:
        logger.warning("Login check rate limit unavailable, allowing request: %s", e)
        return

    if count > limit:
        retry_after = max(1, int((window + 1) * window_seconds - now))
        logger.warning("Login check budget exhausted for %s: %d/%d", subject, count, limit)
        raise rate_limited(retry_after, details={"limit": limit, "window_seconds": window_seconds})


async def login_check_rate_limit(request: Request) -> None:
    """Per-IP budget for /login/check. A limit of 0 turns it off."""
    if settings.LOGIN_CHECK_REQUESTS_PER_WINDOW <= 0:
        return
    await check_fixed_window(
        get_client_ip(request),
        settings.LOGIN_CHECK_REQUESTS_PER_WINDOW,
        settings.LOGIN_CHECK_WINDOW_SECONDS,
    )
