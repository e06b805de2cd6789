import logging
import time
from typing import Optional
from redis.asyncio import Redis, from_url
from cms_infra.core.config import REDIS_RETRY_SECONDS, REDIS_URL

log = logging.getLogger(__name__)

_client: Optional[Redis] = None
_ready = False
_retry_at = 0.0  # time.monotonic() before which a not-ready client is left alone


async def init_redis(url: str = REDIS_URL) -> Optional[Redis]:
    """
    Connects to the shared counter store. A missing URL or a failed ping is not fatal:
    the client stays unset and rate limiting runs on the local fallback.
    """
    global _client, _ready, _retry_at
    if not url:
        log.warning("REDIS_URL not set; rate limiting uses the in-process fallback only.")
        return None

    client = from_url(url, decode_responses=True, socket_timeout=1.0, socket_connect_timeout=1.0)
    try:
        await client.ping()
    except Exception as e:
        log.warning(f"Redis connect failed ({e}); rate limiting falls back to in-process counters.")
        await client.aclose()
        return None

    _client, _ready, _retry_at = client, True, 0.0
    log.info("Connected to Redis")
    return client


def get_redis() -> Optional[Redis]:
    return _client


def is_ready() -> bool:
    return _client is not None and _ready


def mark_unavailable(retry_after: float = REDIS_RETRY_SECONDS):
    """Takes the store out of rotation after a connection failure; `ensure_ready` pings it again later."""
    global _ready, _retry_at
    if _ready:
        log.warning(f"Redis unavailable; using in-process counters for at least {retry_after:g}s.")
    _ready = False
    _retry_at = time.monotonic() + retry_after


async def health_check() -> bool:
    if _client is None:
        return False
    try:
        await _client.ping()
        return True
    except Exception as e:
        log.debug(f"Redis health check failed: {e}")
        return False


async def ensure_ready(retry_after: float = REDIS_RETRY_SECONDS) -> bool:
    """
    True when the store can take traffic. A store marked unavailable is pinged at most
    once per `retry_after` seconds and put back in rotation when the ping succeeds.
    """
    global _ready, _retry_at
    if _client is None:
        return False
    if _ready:
        return True
    if time.monotonic() < _retry_at:
        return False

    # Push the next attempt out first so concurrent callers don't all ping
    _retry_at = time.monotonic() + retry_after
    if await health_check():
        _ready = True
        log.info("Redis reachable again; shared rate limiting resumed.")
    return _ready


async def close_redis():
    global _client, _ready
    if _client is None:
        return
    _ready = False
    try:
        await _client.aclose()
    finally:
        _client = None
    log.info("Redis connection closed.")
