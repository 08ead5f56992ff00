"""FastAPI dependency providers and the tenant auth boundary."""

import uuid
from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .auth.context import RequestContext
from .config import WafPlaneConfig
from .models.api_key import APIKey
from .utils.logging import get_logger
from .utils.security import decode_access_token, hash_api_key

_dep_logger = get_logger("dependencies")

security_scheme = HTTPBearer(auto_error=False)


def get_app_config(request: Request) -> WafPlaneConfig:
    """Config assembled once by ``create_app``."""
    return request.app.state.config


def get_db_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    return request.app.state.session_factory


async def _tenant_for_api_key(
    api_key: str,
    session_factory: async_sessionmaker[AsyncSession],
) -> Optional[str]:
    """Resolve an API key to its tenant id, or None if unknown, revoked or expired."""
    key_hash = hash_api_key(api_key)
    try:
        async with session_factory() as session:
            record = (
                await session.execute(
                    select(APIKey).where(
                        APIKey.key_hash == key_hash,
                        APIKey.revoked.is_(False),
                    )
                )
            ).scalar_one_or_none()
            if record is None:
                return None

            now = datetime.now(timezone.utc)
            expires_at = record.expires_at
            if expires_at is not None and expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            if expires_at is not None and expires_at <= now:
                return None

            record.last_used = now
            tenant_id = record.tenant_id
            await session.commit()
            return tenant_id
    except SQLAlchemyError as e:
        _dep_logger.error("api_key_lookup_failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication backend unavailable",
        )


def _parse_tenant(value) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


async def get_request_context(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
    config: WafPlaneConfig = Depends(get_app_config),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),
) -> RequestContext:
    """Authenticate the caller and build the typed request context.

    ``X-API-Key`` is checked first, then a Bearer JWT carrying a
    ``tenant_id`` claim. The resulting tenant is trusted by every layer below.
    """
    request_id = getattr(request.state, "request_id", None)
    tenant: Optional[uuid.UUID] = None
    subject = "anonymous"
    method = ""

    api_key = request.headers.get("X-API-Key")
    if api_key:
        tenant = _parse_tenant(await _tenant_for_api_key(api_key, session_factory))
        if tenant is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or expired API key",
            )
        subject = f"api_key:{api_key[:8]}"
        method = "api_key"
    else:
        if credentials is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authentication required",
                headers={"WWW-Authenticate": "Bearer"},
            )
        payload = decode_access_token(
            credentials.credentials,
            config.secret_key,
            config.jwt_algorithm,
        )
        if payload is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or expired token",
                headers={"WWW-Authenticate": "Bearer"},
            )
        tenant = _parse_tenant(payload.get("tenant_id"))
        if tenant is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token carries no tenant",
                headers={"WWW-Authenticate": "Bearer"},
            )
        subject = str(payload.get("sub", "unknown"))
        method = "jwt"

    structlog.contextvars.bind_contextvars(tenant_id=str(tenant))
    return RequestContext.with_timeout(
        tenant,
        config.request_timeout_seconds,
        subject=subject,
        auth_method=method,
        request_id=request_id,
    )
