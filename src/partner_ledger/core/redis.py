from __future__ import annotations

from collections.abc import Awaitable

from redis.asyncio import Redis

from partner_ledger.core.config import Settings, get_settings

_REDIS: Redis | None = None


async def init_redis(settings: Settings | None = None) -> Redis:
    """Initialise and cache the Redis client shared by every worker task."""

    global _REDIS
    if _REDIS is not None:
        return _REDIS

    settings = settings or get_settings()
    client = Redis.from_url(
        settings.redis.url,
        encoding="utf-8",
        decode_responses=True,
        socket_timeout=settings.redis.socket_timeout_seconds,
    )

    ping_result: bool | Awaitable[bool] = client.ping()
    if isinstance(ping_result, Awaitable):
        ping_value: bool = await ping_result
    else:
        ping_value = ping_result

    if not isinstance(ping_value, bool):
        raise RuntimeError(f"Expected bool from ping(), got {type(ping_value)}")
    _REDIS = client
    return _REDIS


async def get_redis(settings: Settings | None = None) -> Redis:
    return await init_redis(settings)


async def close_redis() -> None:
    global _REDIS
    if _REDIS is None:
        return

    await _REDIS.aclose()
    _REDIS = None
