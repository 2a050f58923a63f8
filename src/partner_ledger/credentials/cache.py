"""Redis-backed cache for level-1 provider credentials.

Every worker reads the same keys, so a rotation committed by one worker is
visible to all of them as soon as :meth:`CredentialCache.invalidate` runs.
"""

from __future__ import annotations

import uuid
from typing import Any

import orjson
import structlog
from redis.asyncio import Redis

from .enums import Provider
from .types import ResolvedCredential

logger = structlog.get_logger(__name__)


class CredentialCache:
    """Entries live under ``<prefix>:<owner_id>:<provider>`` and expire after ``ttl_seconds``."""

    def __init__(
        self,
        redis: Redis,
        *,
        ttl_seconds: int = 300,
        prefix: str = "credentials",
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._redis = redis
        self._ttl = ttl_seconds
        self._prefix = prefix

    def key(self, owner_id: uuid.UUID, provider: Provider) -> str:
        return f"{self._prefix}:{owner_id}:{provider.value}"

    async def get(
        self, owner_id: uuid.UUID, provider: Provider
    ) -> ResolvedCredential | None:
        key = self.key(owner_id, provider)
        raw = await self._redis.get(key)
        if raw is None:
            return None
        try:
            return _decode(raw)
        except (orjson.JSONDecodeError, KeyError, TypeError, ValueError):
            logger.warning("credential_cache_entry_dropped", key=key)
            await self._redis.delete(key)
            return None

    async def put(self, credential: ResolvedCredential) -> None:
        await self._redis.setex(
            self.key(credential.owner_id, credential.provider),
            self._ttl,
            orjson.dumps(_encode(credential)),
        )

    async def invalidate(
        self, owner_id: uuid.UUID, provider: Provider | None = None
    ) -> None:
        """Drop one entry, or every provider of ``owner_id`` when none is given."""
        providers = [provider] if provider is not None else list(Provider)
        await self._redis.delete(*(self.key(owner_id, item) for item in providers))

    async def clear(self) -> None:
        keys = [key async for key in self._redis.scan_iter(match=f"{self._prefix}:*")]
        if keys:
            await self._redis.delete(*keys)


def _encode(credential: ResolvedCredential) -> dict[str, Any]:
    return {
        "owner_id": str(credential.owner_id),
        "provider": credential.provider.value,
        "opcode": credential.opcode,
        "secret": credential.secret,
        "token": credential.token,
    }


def _decode(raw: str | bytes) -> ResolvedCredential:
    payload = orjson.loads(raw)
    return ResolvedCredential(
        owner_id=uuid.UUID(payload["owner_id"]),
        provider=Provider(payload["provider"]),
        opcode=payload["opcode"],
        secret=payload["secret"],
        token=payload["token"],
    )
