"""Ban Cache — best-effort per-tenant set of banned addresses in Redis.

Never the source of truth. Every failure (no client, connection error,
timeout) is logged and absorbed; ``contains`` reports it through its ``ok``
flag so callers can tell "not a member" apart from "cache unavailable".
"""

import asyncio
from typing import Iterable, Optional

import redis.asyncio as aioredis

from ..utils.logging import get_logger

logger = get_logger("engine.ban_cache")

# Errors a cache call may raise that must never escape this module
_CACHE_ERRORS = (aioredis.RedisError, OSError, asyncio.TimeoutError)


class BanCache:
    """Set-valued cache keyed by tenant id."""

    def __init__(
        self,
        client: Optional[aioredis.Redis],
        key_prefix: str = "banned_ips",
        timeout: float = 0.25,
    ):
        self._client = client
        self._key_prefix = key_prefix
        self._timeout = timeout

    @property
    def available(self) -> bool:
        return self._client is not None

    def key(self, tenant_id: str) -> str:
        return f"{self._key_prefix}:{tenant_id}"

    async def add(self, tenant_id: str, address: str, timeout: float | None = None) -> bool:
        """Idempotent set-insert. Returns False if the write did not happen."""
        return await self._write("sadd", tenant_id, address, timeout)

    async def remove(self, tenant_id: str, address: str, timeout: float | None = None) -> bool:
        """Idempotent set-remove. Returns False if the write did not happen."""
        return await self._write("srem", tenant_id, address, timeout)

    async def contains(
        self, tenant_id: str, address: str, timeout: float | None = None
    ) -> tuple[bool, bool]:
        """Return ``(is_member, ok)``; ``ok`` is False when the cache could not answer."""
        if self._client is None:
            return False, False
        budget = self._budget(timeout)
        if budget <= 0:
            return False, False
        try:
            member = await asyncio.wait_for(
                self._client.sismember(self.key(tenant_id), address), timeout=budget
            )
            return bool(member), True
        except _CACHE_ERRORS as e:
            logger.warning(
                "ban_cache_lookup_failed",
                tenant_id=tenant_id,
                address=address,
                error=str(e) or type(e).__name__,
            )
            return False, False

    async def replace(
        self, tenant_id: str, addresses: Iterable[str], timeout: float | None = None
    ) -> bool:
        """Atomically rewrite the tenant's set with ``addresses``."""
        if self._client is None:
            return False
        budget = self._budget(timeout)
        if budget <= 0:
            return False
        members = list(addresses)
        key = self.key(tenant_id)

        async def _rewrite() -> None:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.delete(key)
                if members:
                    pipe.sadd(key, *members)
                await pipe.execute()

        try:
            await asyncio.wait_for(_rewrite(), timeout=budget)
            return True
        except _CACHE_ERRORS as e:
            logger.warning(
                "ban_cache_replace_failed",
                tenant_id=tenant_id,
                size=len(members),
                error=str(e) or type(e).__name__,
            )
            return False

    async def ping(self) -> bool:
        if self._client is None:
            return False
        try:
            return bool(await asyncio.wait_for(self._client.ping(), timeout=self._timeout))
        except _CACHE_ERRORS:
            return False

    def _budget(self, timeout: float | None) -> float:
        return self._timeout if timeout is None else min(timeout, self._timeout)

    async def _write(self, command: str, tenant_id: str, address: str, timeout: float | None) -> bool:
        if self._client is None:
            return False
        budget = self._budget(timeout)
        if budget <= 0:
            logger.warning("ban_cache_deadline_exceeded", command=command, tenant_id=tenant_id)
            return False
        try:
            await asyncio.wait_for(
                getattr(self._client, command)(self.key(tenant_id), address), timeout=budget
            )
            return True
        except _CACHE_ERRORS as e:
            logger.warning(
                f"ban_cache_{command}_failed",
                tenant_id=tenant_id,
                address=address,
                error=str(e) or type(e).__name__,
            )
            return False
