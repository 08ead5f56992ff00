"""IP ban management routes."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field

from ...auth.context import RequestContext
from ...dependencies import get_request_context
from ...engine.ban_coordinator import MAX_DURATION_MINUTES, BanCoordinator

MAX_PAGE = 1_000_000


class CreateBanRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ip_address: str = Field(alias="ipAddress", min_length=1, max_length=64)
    site_id: Optional[str] = Field(default=None, alias="siteId")
    reason: str = Field(default="", max_length=1000)
    duration: Optional[int] = Field(default=None, le=MAX_DURATION_MINUTES)  # minutes; None or <= 0 means permanent
    source: Optional[str] = None


class BulkCreateRequest(BaseModel):
    ips: list[str] = Field(max_length=10_000)
    reason: str = Field(default="", max_length=1000)
    duration: Optional[int] = Field(default=None, le=MAX_DURATION_MINUTES)


class BulkDeleteRequest(BaseModel):
    ids: list[str] = Field(max_length=10_000)


def create_router(
    coordinator: BanCoordinator,
    default_page_size: int = 50,
    max_page_size: int = 500,
) -> APIRouter:
    """Build the /bans router bound to one coordinator instance."""
    router = APIRouter(prefix="/bans", tags=["bans"])

    @router.get("")
    async def list_bans(
        site_id: Optional[str] = Query(None, alias="siteId"),
        page: int = Query(1, ge=1, le=MAX_PAGE),
        limit: int = Query(default_page_size, ge=1, le=max_page_size),
        ctx: RequestContext = Depends(get_request_context),
    ):
        """List active bans, newest first."""
        bans, total = await coordinator.list_bans(ctx, site_id=site_id, page=page, limit=limit)
        return {
            "bans": [b.to_dict() for b in bans],
            "total": total,
            "page": page,
            "limit": limit,
            "totalPages": (total + limit - 1) // limit,
        }

    @router.post("", status_code=status.HTTP_201_CREATED)
    async def create_ban(
        body: CreateBanRequest,
        ctx: RequestContext = Depends(get_request_context),
    ):
        """Ban an address or CIDR block. Re-banning updates reason and expiry."""
        ban = await coordinator.create_ban(
            ctx,
            body.ip_address,
            reason=body.reason,
            site_id=body.site_id,
            duration_minutes=body.duration,
            source=body.source,
        )
        return {"ban": ban.to_dict()}

    @router.get("/stats")
    async def ban_stats(ctx: RequestContext = Depends(get_request_context)):
        return {"stats": await coordinator.stats(ctx)}

    @router.get("/check/{ip:path}")
    async def check_ban(ip: str, ctx: RequestContext = Depends(get_request_context)):
        """Membership check used by the data plane."""
        return {"banned": await coordinator.check(ctx, ip)}

    @router.post("/bulk")
    async def bulk_create(
        body: BulkCreateRequest,
        ctx: RequestContext = Depends(get_request_context),
    ):
        """Partial-success batch ban; each element reports its own outcome."""
        outcome = await coordinator.bulk_create(
            ctx, body.ips, reason=body.reason, duration_minutes=body.duration
        )
        return {"created": outcome.succeeded, "total": outcome.total, "results": outcome.results}

    @router.delete("/bulk")
    async def bulk_delete(
        body: BulkDeleteRequest,
        ctx: RequestContext = Depends(get_request_context),
    ):
        outcome = await coordinator.bulk_delete(ctx, body.ids)
        return {"deleted": outcome.succeeded, "total": outcome.total, "results": outcome.results}

    @router.post("/cache/rebuild")
    async def rebuild_cache(ctx: RequestContext = Depends(get_request_context)):
        """Re-project the tenant's active bans into the cache."""
        return {"cached": await coordinator.rebuild_cache(ctx)}

    @router.delete("/ip/{ip:path}")
    async def delete_ban_by_ip(ip: str, ctx: RequestContext = Depends(get_request_context)):
        await coordinator.delete_by_address(ctx, ip)
        return {"success": True}

    @router.get("/{ban_id}")
    async def get_ban(ban_id: str, ctx: RequestContext = Depends(get_request_context)):
        ban = await coordinator.get_ban(ctx, ban_id)
        return {"ban": ban.to_dict()}

    @router.delete("/{ban_id}")
    async def delete_ban(ban_id: str, ctx: RequestContext = Depends(get_request_context)):
        await coordinator.delete_ban(ctx, ban_id)
        return {"success": True}

    return router
