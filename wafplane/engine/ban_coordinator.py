"""Ban Coordinator — keeps the ban store and the ban cache consistent.

Writes go to the store first (the durability point) and are then mirrored
into the cache best-effort. Reads trust a positive cache hit and re-verify
everything else against the store, so a cold, evicted or unreachable cache
only costs latency, never correctness. Store and cache calls are strictly
sequential: a store session is always released before the cache is touched.
"""

import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from ..auth.context import RequestContext
from ..exceptions import InternalError, NotFoundError, ValidationError
from ..utils.input_validators import validate_ip_or_cidr, validate_site_id, validate_source
from ..utils.logging import get_logger
from .ban_cache import BanCache
from .ban_store import SOURCE_BULK, SOURCE_MANUAL, BanStore, BannedEntry

logger = get_logger("engine.ban_coordinator")

# Ten years; longer bans should be permanent
MAX_DURATION_MINUTES = 10 * 365 * 24 * 60


@dataclass
class BulkOutcome:
    """Result of a partial-success batch; ``results`` has one item per input element."""

    succeeded: int = 0
    total: int = 0
    results: list[dict] = field(default_factory=list)


class BanCoordinator:
    """Public ban-management contract over a BanStore and a BanCache."""

    def __init__(
        self,
        store: BanStore,
        cache: BanCache,
        store_timeout: float = 5.0,
        cache_timeout: float = 0.25,
    ):
        self.store = store
        self.cache = cache
        self._store_timeout = store_timeout
        self._cache_timeout = cache_timeout

    # --- Create ---

    async def create_ban(
        self,
        ctx: RequestContext,
        address: str,
        reason: str = "",
        site_id: Optional[str] = None,
        duration_minutes: Optional[int] = None,
        source: Optional[str] = None,
    ) -> BannedEntry:
        """Validate, upsert into the store, then mirror into the cache."""
        entry = self._build_entry(ctx, address, reason, site_id, duration_minutes, source)
        persisted = await self.store.create(entry, timeout=self._store_budget(ctx))
        await self.cache.add(ctx.tenant_key, persisted.address, timeout=self._cache_budget(ctx))
        logger.info(
            "ban_created",
            tenant_id=ctx.tenant_key,
            ban_id=persisted.id,
            address=persisted.address,
            source=persisted.source,
            permanent=persisted.permanent,
        )
        return persisted

    async def bulk_create(
        self,
        ctx: RequestContext,
        addresses: list[str],
        reason: str = "",
        duration_minutes: Optional[int] = None,
    ) -> BulkOutcome:
        """Ban each address independently; invalid or failing elements are skipped."""
        outcome = BulkOutcome(total=len(addresses))
        for raw in addresses:
            try:
                entry = self._build_entry(
                    ctx, raw, reason, None, duration_minutes, SOURCE_BULK
                )
                persisted = await self.store.create(entry, timeout=self._store_budget(ctx))
            except ValidationError as e:
                outcome.results.append({"ipAddress": raw, "status": "invalid", "detail": e.detail})
                continue
            except InternalError as e:
                logger.warning(
                    "bulk_ban_element_failed", tenant_id=ctx.tenant_key, address=raw, error=e.detail
                )
                outcome.results.append({"ipAddress": raw, "status": "failed", "detail": e.detail})
                continue
            await self.cache.add(ctx.tenant_key, persisted.address, timeout=self._cache_budget(ctx))
            outcome.succeeded += 1
            outcome.results.append({"ipAddress": persisted.address, "status": "created", "id": persisted.id})

        logger.info(
            "bulk_ban_completed",
            tenant_id=ctx.tenant_key,
            created=outcome.succeeded,
            total=outcome.total,
        )
        return outcome

    # --- Delete ---

    async def delete_ban(self, ctx: RequestContext, ban_id: str) -> str:
        """Delete by id; the cache is only touched after the store confirms the delete."""
        address = await self.store.delete(ban_id, ctx.tenant_key, timeout=self._store_budget(ctx))
        await self.cache.remove(ctx.tenant_key, address, timeout=self._cache_budget(ctx))
        logger.info("ban_deleted", tenant_id=ctx.tenant_key, ban_id=ban_id, address=address)
        return address

    async def delete_by_address(self, ctx: RequestContext, address: str) -> bool:
        normalized = self._validate_address(address)
        await self.store.delete_by_address(
            normalized, ctx.tenant_key, timeout=self._store_budget(ctx)
        )
        await self.cache.remove(ctx.tenant_key, normalized, timeout=self._cache_budget(ctx))
        logger.info("ban_deleted_by_address", tenant_id=ctx.tenant_key, address=normalized)
        return True

    async def bulk_delete(self, ctx: RequestContext, ban_ids: list[str]) -> BulkOutcome:
        """Delete each id independently. No rollback across the batch."""
        outcome = BulkOutcome(total=len(ban_ids))
        for ban_id in ban_ids:
            try:
                address = await self.store.delete(
                    ban_id, ctx.tenant_key, timeout=self._store_budget(ctx)
                )
            except NotFoundError:
                outcome.results.append({"id": ban_id, "status": "not_found"})
                continue
            except InternalError as e:
                logger.warning(
                    "bulk_unban_element_failed", tenant_id=ctx.tenant_key, ban_id=ban_id, error=e.detail
                )
                outcome.results.append({"id": ban_id, "status": "failed", "detail": e.detail})
                continue
            await self.cache.remove(ctx.tenant_key, address, timeout=self._cache_budget(ctx))
            outcome.succeeded += 1
            outcome.results.append({"id": ban_id, "status": "deleted", "ipAddress": address})

        logger.info(
            "bulk_unban_completed",
            tenant_id=ctx.tenant_key,
            deleted=outcome.succeeded,
            total=outcome.total,
        )
        return outcome

    # --- Reads ---

    async def check(self, ctx: RequestContext, address: str) -> bool:
        """Is ``address`` banned for the caller's tenant?

        A positive cache hit short-circuits. A negative answer or an
        unavailable cache falls through to the store, which is authoritative.
        """
        normalized = self._validate_address(address)
        is_member, ok = await self.cache.contains(
            ctx.tenant_key, normalized, timeout=self._cache_budget(ctx)
        )
        if ok and is_member:
            return True
        if not ok:
            logger.debug("ban_check_cache_unavailable", tenant_id=ctx.tenant_key)
        count = await self.store.count_active(
            normalized, ctx.tenant_key, timeout=self._store_budget(ctx)
        )
        return count > 0

    async def get_ban(self, ctx: RequestContext, ban_id: str) -> BannedEntry:
        return await self.store.get(ban_id, ctx.tenant_key, timeout=self._store_budget(ctx))

    async def list_bans(
        self,
        ctx: RequestContext,
        site_id: Optional[str] = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[BannedEntry], int]:
        try:
            site = validate_site_id(site_id)
        except ValueError as e:
            raise ValidationError(str(e)) from None
        return await self.store.list(
            ctx.tenant_key, site, page=page, limit=limit, timeout=self._store_budget(ctx)
        )

    async def stats(self, ctx: RequestContext) -> dict:
        return await self.store.stats(ctx.tenant_key, timeout=self._store_budget(ctx))

    async def rebuild_cache(self, ctx: RequestContext) -> int:
        """Re-project the tenant's active bans into the cache.

        Returns the number of addresses written, 0 if the cache rejected the
        rewrite. Stale members (expired or deleted bans) are dropped.
        """
        addresses = await self.store.active_addresses(
            ctx.tenant_key, timeout=self._store_budget(ctx)
        )
        replaced = await self.cache.replace(
            ctx.tenant_key, addresses, timeout=self._cache_budget(ctx)
        )
        logger.info(
            "ban_cache_rebuilt",
            tenant_id=ctx.tenant_key,
            addresses=len(addresses),
            written=replaced,
        )
        return len(addresses) if replaced else 0

    # --- Helpers ---

    def _build_entry(
        self,
        ctx: RequestContext,
        address: str,
        reason: str,
        site_id: Optional[str],
        duration_minutes: Optional[int],
        source: Optional[str],
    ) -> BannedEntry:
        normalized = self._validate_address(address)
        try:
            site = validate_site_id(site_id)
            tag = validate_source(source, default=SOURCE_MANUAL)
        except ValueError as e:
            raise ValidationError(str(e)) from None

        now = self.store.now()
        expires_at = None
        if duration_minutes is not None and duration_minutes > 0:
            if duration_minutes > MAX_DURATION_MINUTES:
                raise ValidationError(
                    f"duration must be at most {MAX_DURATION_MINUTES} minutes"
                )
            try:
                expires_at = now + timedelta(minutes=duration_minutes)
            except OverflowError:
                raise ValidationError("duration is out of range") from None

        return BannedEntry(
            id=str(uuid.uuid4()),
            tenant_id=ctx.tenant_key,
            site_id=site,
            address=normalized,
            reason=reason or "",
            source=tag,
            expires_at=expires_at,
            created_at=now,
        )

    @staticmethod
    def _validate_address(address: str) -> str:
        try:
            return validate_ip_or_cidr(address)
        except ValueError as e:
            raise ValidationError(str(e)) from None

    def _store_budget(self, ctx: RequestContext) -> float:
        return ctx.time_left(self._store_timeout)

    def _cache_budget(self, ctx: RequestContext) -> float:
        return ctx.time_left(self._cache_timeout)
