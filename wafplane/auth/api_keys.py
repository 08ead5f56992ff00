"""Tenant-scoped API key lifecycle: issue, list and revoke.

Only the SHA-256 hash of a key is stored. The raw key is returned once, by
``issue_api_key``, and cannot be recovered afterwards.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..exceptions import InternalError, NotFoundError, ValidationError
from ..models.api_key import APIKey
from ..utils.logging import get_logger
from ..utils.security import generate_api_key

logger = get_logger("auth.api_keys")


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def key_to_dict(key: APIKey) -> dict:
    """Public view of a key record; never includes the hash."""
    return {
        "id": key.id,
        "name": key.name,
        "keyPrefix": key.key_prefix,
        "createdAt": _iso(key.created_at),
        "lastUsed": _iso(key.last_used),
        "expiresAt": _iso(key.expires_at),
        "revoked": key.revoked,
    }


async def issue_api_key(
    session_factory: async_sessionmaker[AsyncSession],
    tenant_id: str,
    name: str,
    expires_at: Optional[datetime] = None,
) -> tuple[str, APIKey]:
    """Create a key for ``tenant_id``. Returns (raw_key, record)."""
    if expires_at is not None:
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if expires_at <= datetime.now(timezone.utc):
            raise ValidationError("expiresAt must be in the future")

    raw_key, key_hash, key_prefix = generate_api_key()
    record = APIKey(
        tenant_id=tenant_id,
        key_hash=key_hash,
        key_prefix=key_prefix,
        name=name,
        expires_at=expires_at,
        revoked=False,
    )
    try:
        async with session_factory() as session:
            session.add(record)
            await session.commit()
            await session.refresh(record)
    except SQLAlchemyError as e:
        logger.error("api_key_issue_failed", tenant_id=tenant_id, error=str(e))
        raise InternalError("Could not issue API key") from e

    logger.info("api_key_issued", tenant_id=tenant_id, key_id=record.id, key_prefix=key_prefix)
    return raw_key, record


async def list_api_keys(
    session_factory: async_sessionmaker[AsyncSession],
    tenant_id: str,
) -> list[APIKey]:
    """All keys of a tenant, revoked ones included, newest first."""
    try:
        async with session_factory() as session:
            result = await session.execute(
                select(APIKey)
                .where(APIKey.tenant_id == tenant_id)
                .order_by(APIKey.created_at.desc(), APIKey.id.desc())
            )
            return list(result.scalars().all())
    except SQLAlchemyError as e:
        logger.error("api_key_list_failed", tenant_id=tenant_id, error=str(e))
        raise InternalError("Could not list API keys") from e


async def revoke_api_key(
    session_factory: async_sessionmaker[AsyncSession],
    tenant_id: str,
    key_id: int,
) -> APIKey:
    """Mark a key revoked. Keys of other tenants are reported as not found."""
    try:
        async with session_factory() as session:
            record = (
                await session.execute(
                    select(APIKey).where(APIKey.id == key_id, APIKey.tenant_id == tenant_id)
                )
            ).scalar_one_or_none()
            if record is None:
                raise NotFoundError("API key not found")
            record.revoked = True
            await session.commit()
    except SQLAlchemyError as e:
        logger.error("api_key_revoke_failed", tenant_id=tenant_id, key_id=key_id, error=str(e))
        raise InternalError("Could not revoke API key") from e

    logger.info("api_key_revoked", tenant_id=tenant_id, key_id=key_id)
    return record
