"""API keys module — tenants issue and revoke their own programmatic keys."""

from typing import Optional

from fastapi import APIRouter
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..api.routes.api_keys import create_router
from .base_module import BaseModule, ModuleDependencies, MountPoint


class ApiKeysModule(BaseModule):
    name = "api_keys"
    version = "2.0.0"
    mount_point = MountPoint.PROTECTED

    def __init__(self):
        super().__init__()
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    def init(self, deps: ModuleDependencies) -> None:
        self._session_factory = deps.session_factory
        self.initialized = True

    def mount(self, router: APIRouter) -> None:
        if self._session_factory is None:
            raise RuntimeError("ApiKeysModule.mount called before init")
        router.include_router(create_router(self._session_factory))

    async def shutdown(self) -> None:
        self._session_factory = None
        await super().shutdown()
