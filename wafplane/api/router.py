"""Master API routers — module routes are mounted onto these by the registry."""

from fastapi import APIRouter, Depends

from ..dependencies import get_request_context

API_PREFIX = "/api/v1"


def build_api_routers() -> tuple[APIRouter, APIRouter]:
    """Return (public_router, protected_router) sharing the API prefix.

    Every route on the protected router resolves a tenant before its
    handler runs.
    """
    public_router = APIRouter(prefix=API_PREFIX)
    protected_router = APIRouter(
        prefix=API_PREFIX,
        dependencies=[Depends(get_request_context)],
    )
    return public_router, protected_router
