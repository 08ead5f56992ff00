"""Unauthenticated system routes: root, health and module info."""

from fastapi import APIRouter, Request

from ...database import ping_database
from ...utils.cache import ping_redis

router = APIRouter(tags=["system"])


@router.get("/")
async def root(request: Request):
    config = request.app.state.config
    return {
        "name": config.app_name,
        "version": config.app_version,
        "status": "operational",
    }


@router.get("/health")
async def health(request: Request):
    """Store and cache reachability. A down cache degrades, it does not fail."""
    state = request.app.state
    database_ok = await ping_database(state.session_factory)
    cache_ok = await ping_redis(state.redis)
    if not database_ok:
        overall = "unhealthy"
    elif not cache_ok:
        overall = "degraded"
    else:
        overall = "ok"
    return {
        "status": overall,
        "version": state.config.app_version,
        "database": "connected" if database_ok else "disconnected",
        "cache": "connected" if cache_ok else "disconnected",
    }


@router.get("/api/info")
async def info(request: Request):
    state = request.app.state
    return {
        "name": state.config.app_name,
        "version": state.config.app_version,
        "modules": state.registry.describe(),
        "apiVersions": ["v1"],
    }
