"""Shared Redis connection used to fan realtime events out across workers."""
from __future__ import annotations

from dataclasses import dataclass

from redis.asyncio import Redis

from ticketsync.core.config import get_settings
from ticketsync.core.logging import log_info, log_warning

__all__ = ["get_redis_client", "close_redis_client"]


@dataclass
class _RedisHandle:
    client: Redis | None = None
    url: str | None = None


_handle = _RedisHandle()


def get_redis_client() -> Redis | None:
    """Return the process-wide client, or ``None`` when ``REDIS_URL`` is unset or invalid."""

    if _handle.client is not None:
        return _handle.client
    url = get_settings().redis_url
    if not url:
        return None
    try:
        _handle.client = Redis.from_url(url, decode_responses=True)
    except ValueError as exc:
        log_warning("Invalid REDIS_URL; realtime relay disabled", error=str(exc))
        return None
    _handle.url = url
    log_info("Redis client configured")
    return _handle.client


async def close_redis_client() -> None:
    client = _handle.client
    _handle.client = None
    _handle.url = None
    if client is not None:
        await client.aclose()
