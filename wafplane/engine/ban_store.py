"""Ban Store — durable, authoritative CRUD over the banned_ips table.

Every public method is tenant-scoped, opens its own session from the shared
session factory and releases it before returning, and is bounded by a
timeout. Driver failures and timeouts surface as ``InternalError``;
constraint violations as ``ValidationError``; missing rows as
``NotFoundError``.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy import and_, case, delete, func, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..exceptions import InternalError, NotFoundError, ValidationError
from ..models.banned_ip import BannedIP
from ..utils.input_validators import address_in_network, is_network, validate_ip_or_cidr
from ..utils.logging import get_logger

logger = get_logger("engine.ban_store")

SOURCE_MANUAL = "manual"
SOURCE_BULK = "bulk"

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class BannedEntry:
    """One ban of an address or CIDR block, optionally scoped to a site."""

    id: str
    tenant_id: str
    address: str
    reason: str = ""
    source: str = SOURCE_MANUAL
    site_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def permanent(self) -> bool:
        return self.expires_at is None

    def is_active(self, now: datetime) -> bool:
        return self.expires_at is None or self.expires_at > now

    @classmethod
    def from_row(cls, row: BannedIP) -> "BannedEntry":
        return cls(
            id=row.id,
            tenant_id=row.tenant_id,
            site_id=row.site_id,
            address=row.ip_address,
            reason=row.reason,
            source=row.source,
            expires_at=_as_utc(row.expires_at),
            created_at=_as_utc(row.created_at),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenantId": self.tenant_id,
            "siteId": self.site_id,
            "ipAddress": self.address,
            "reason": self.reason,
            "source": self.source,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class BanStore:
    """Source of truth for bans. Never talks to the cache."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        timeout: float = 5.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._timeout = timeout
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    # --- Writes ---

    async def create(self, entry: BannedEntry, timeout: float | None = None) -> BannedEntry:
        """Upsert a ban keyed on (tenant, site, address) and return the persisted row.

        On conflict only ``reason`` and ``expires_at`` change; the original
        ``id`` and ``created_at`` are kept.
        """
        try:
            address = validate_ip_or_cidr(entry.address)
        except ValueError as e:
            raise ValidationError(str(e)) from None

        values = {
            "id": entry.id or str(uuid.uuid4()),
            "tenant_id": entry.tenant_id,
            "site_id": entry.site_id,
            "site_scope": entry.site_id or "",
            "ip_address": address,
            "reason": entry.reason or "",
            "source": entry.source or SOURCE_MANUAL,
            "expires_at": entry.expires_at,
            "created_at": entry.created_at or self.now(),
        }

        async def _op() -> BannedEntry:
            async with self._session_factory() as session:
                await session.execute(self._upsert_statement(session, values))
                row = (
                    await session.execute(
                        select(BannedIP).where(
                            BannedIP.tenant_id == values["tenant_id"],
                            BannedIP.site_scope == values["site_scope"],
                            BannedIP.ip_address == address,
                        )
                    )
                ).scalar_one()
                persisted = BannedEntry.from_row(row)
                await session.commit()
                return persisted

        return await self._run(_op, "create", timeout)

    async def delete(self, ban_id: str, tenant_id: str, timeout: float | None = None) -> str:
        """Delete one ban by id and return its address."""

        async def _op() -> str:
            async with self._session_factory() as session:
                address = (
                    await session.execute(
                        select(BannedIP.ip_address).where(
                            BannedIP.id == ban_id,
                            BannedIP.tenant_id == tenant_id,
                        )
                    )
                ).scalar_one_or_none()
                if address is None:
                    raise NotFoundError("Ban not found")
                result = await session.execute(
                    delete(BannedIP).where(
                        BannedIP.id == ban_id,
                        BannedIP.tenant_id == tenant_id,
                    )
                )
                if result.rowcount == 0:
                    # Lost a race with a concurrent delete
                    await session.rollback()
                    raise NotFoundError("Ban not found")
                await session.commit()
                return address

        return await self._run(_op, "delete", timeout)

    async def delete_by_address(
        self, address: str, tenant_id: str, timeout: float | None = None
    ) -> bool:
        """Delete every ban on ``address`` in the tenant, across all site scopes."""
        normalized = self._normalize(address)

        async def _op() -> bool:
            async with self._session_factory() as session:
                result = await session.execute(
                    delete(BannedIP).where(
                        BannedIP.ip_address == normalized,
                        BannedIP.tenant_id == tenant_id,
                    )
                )
                if result.rowcount == 0:
                    await session.rollback()
                    raise NotFoundError("Ban not found")
                await session.commit()
                return True

        return await self._run(_op, "delete_by_address", timeout)

    # --- Reads ---

    async def get(self, ban_id: str, tenant_id: str, timeout: float | None = None) -> BannedEntry:
        async def _op() -> BannedEntry:
            async with self._session_factory() as session:
                row = (
                    await session.execute(
                        select(BannedIP).where(
                            BannedIP.id == ban_id,
                            BannedIP.tenant_id == tenant_id,
                        )
                    )
                ).scalar_one_or_none()
                if row is None:
                    raise NotFoundError("Ban not found")
                return BannedEntry.from_row(row)

        return await self._run(_op, "get", timeout)

    async def list(
        self,
        tenant_id: str,
        site_id: str | None = None,
        page: int = 1,
        limit: int = 50,
        timeout: float | None = None,
    ) -> tuple[list[BannedEntry], int]:
        """Active bans newest first, plus the total of active bans matching the filter."""
        page = max(page, 1)
        limit = max(limit, 1)
        now = self.now()
        filters = [BannedIP.tenant_id == tenant_id, self._active_clause(now)]
        if site_id:
            filters.append(BannedIP.site_id == site_id)

        async def _op() -> tuple[list[BannedEntry], int]:
            async with self._session_factory() as session:
                total = await session.scalar(
                    select(func.count()).select_from(BannedIP).where(*filters)
                )
                rows = (
                    await session.execute(
                        select(BannedIP)
                        .where(*filters)
                        .order_by(BannedIP.created_at.desc(), BannedIP.id.desc())
                        .limit(limit)
                        .offset((page - 1) * limit)
                    )
                ).scalars().all()
                return [BannedEntry.from_row(r) for r in rows], int(total or 0)

        return await self._run(_op, "list", timeout)

    async def count_active(
        self, address: str, tenant_id: str, timeout: float | None = None
    ) -> int:
        """Count active bans covering ``address``.

        A literal matches rows with the same literal and active CIDR rows that
        contain it. A CIDR argument only matches the identical CIDR.
        """
        normalized = self._normalize(address)
        now = self.now()

        async def _op() -> int:
            async with self._session_factory() as session:
                if is_network(normalized):
                    count = await session.scalar(
                        select(func.count()).select_from(BannedIP).where(
                            BannedIP.tenant_id == tenant_id,
                            BannedIP.ip_address == normalized,
                            self._active_clause(now),
                        )
                    )
                    return int(count or 0)

                candidates = (
                    await session.execute(
                        select(BannedIP.ip_address).where(
                            BannedIP.tenant_id == tenant_id,
                            self._active_clause(now),
                            or_(
                                BannedIP.ip_address == normalized,
                                BannedIP.ip_address.contains("/"),
                            ),
                        )
                    )
                ).scalars().all()
                return sum(
                    1
                    for candidate in candidates
                    if candidate == normalized
                    or (is_network(candidate) and address_in_network(normalized, candidate))
                )

        return await self._run(_op, "count_active", timeout)

    async def stats(self, tenant_id: str, timeout: float | None = None) -> dict:
        """Aggregate counts for the tenant in one statement."""
        now = self.now()
        active = self._active_clause(now)
        stmt = select(
            func.count(),
            func.sum(case((active, 1), else_=0)),
            func.sum(case((BannedIP.expires_at.is_(None), 1), else_=0)),
            func.sum(
                case(
                    (and_(BannedIP.expires_at.is_not(None), BannedIP.expires_at > now), 1),
                    else_=0,
                )
            ),
            func.sum(case((BannedIP.source == SOURCE_MANUAL, 1), else_=0)),
            func.sum(case((BannedIP.source != SOURCE_MANUAL, 1), else_=0)),
        ).where(BannedIP.tenant_id == tenant_id)

        async def _op() -> dict:
            async with self._session_factory() as session:
                row = (await session.execute(stmt)).one()
            total, active_n, permanent, temporary, manual, automatic = (int(v or 0) for v in row)
            return {
                "total": total,
                "active": active_n,
                "permanent": permanent,
                "temporary": temporary,
                "manual": manual,
                "automatic": automatic,
            }

        return await self._run(_op, "stats", timeout)

    async def active_addresses(self, tenant_id: str, timeout: float | None = None) -> list[str]:
        """Distinct addresses with at least one active ban in the tenant."""
        now = self.now()

        async def _op() -> list[str]:
            async with self._session_factory() as session:
                rows = (
                    await session.execute(
                        select(BannedIP.ip_address)
                        .where(BannedIP.tenant_id == tenant_id, self._active_clause(now))
                        .distinct()
                    )
                ).scalars().all()
                return list(rows)

        return await self._run(_op, "active_addresses", timeout)

    # --- Helpers ---

    @staticmethod
    def _active_clause(now: datetime):
        return or_(BannedIP.expires_at.is_(None), BannedIP.expires_at > now)

    @staticmethod
    def _normalize(address: str) -> str:
        try:
            return validate_ip_or_cidr(address)
        except ValueError as e:
            raise ValidationError(str(e)) from None

    @staticmethod
    def _upsert_statement(session: AsyncSession, values: dict):
        dialect = session.bind.dialect.name
        if dialect == "postgresql":
            stmt = postgresql.insert(BannedIP).values(**values)
        elif dialect == "sqlite":
            stmt = sqlite.insert(BannedIP).values(**values)
        else:
            raise InternalError(f"Ban upsert is not supported on {dialect}")
        return stmt.on_conflict_do_update(
            index_elements=["tenant_id", "site_scope", "ip_address"],
            set_={"reason": stmt.excluded.reason, "expires_at": stmt.excluded.expires_at},
        )

    async def _run(
        self,
        op: Callable[[], Awaitable[T]],
        action: str,
        timeout: float | None,
    ) -> T:
        budget = self._timeout if timeout is None else min(timeout, self._timeout)
        if budget <= 0:
            logger.warning("ban_store_deadline_exceeded", action=action)
            raise InternalError(f"Deadline exceeded before {action}")
        try:
            return await asyncio.wait_for(op(), timeout=budget)
        except asyncio.TimeoutError:
            logger.error("ban_store_timeout", action=action, timeout=budget)
            raise InternalError(f"Ban store timed out during {action}") from None
        except IntegrityError as e:
            logger.warning("ban_store_constraint_violation", action=action, error=str(e.orig))
            raise ValidationError(f"Constraint violation during {action}") from e
        except OverflowError:
            # Bound parameter too large for the driver
            raise ValidationError(f"Value out of range during {action}") from None
        except (SQLAlchemyError, OSError) as e:
            logger.error("ban_store_error", action=action, error=str(e))
            raise InternalError(f"Ban store failed during {action}") from e
