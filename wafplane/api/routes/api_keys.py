"""API key management routes for the caller's tenant."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ...auth.api_keys import issue_api_key, key_to_dict, list_api_keys, revoke_api_key
from ...auth.context import RequestContext
from ...dependencies import get_request_context


class CreateAPIKeyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1, max_length=255)
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")


def create_router(session_factory: async_sessionmaker[AsyncSession]) -> APIRouter:
    router = APIRouter(prefix="/api-keys", tags=["api-keys"])

    @router.post("", status_code=status.HTTP_201_CREATED)
    async def create_api_key(
        body: CreateAPIKeyRequest,
        ctx: RequestContext = Depends(get_request_context),
    ):
        """Issue a key for the caller's tenant. The raw key is returned only here."""
        raw_key, record = await issue_api_key(
            session_factory, ctx.tenant_key, body.name, expires_at=body.expires_at
        )
        return {"key": raw_key, "apiKey": key_to_dict(record)}

    @router.get("")
    async def get_api_keys(ctx: RequestContext = Depends(get_request_context)):
        keys = await list_api_keys(session_factory, ctx.tenant_key)
        return {"apiKeys": [key_to_dict(k) for k in keys]}

    @router.delete("/{key_id}")
    async def delete_api_key(key_id: int, ctx: RequestContext = Depends(get_request_context)):
        record = await revoke_api_key(session_factory, ctx.tenant_key, key_id)
        return {"id": record.id, "status": "revoked"}

    return router
