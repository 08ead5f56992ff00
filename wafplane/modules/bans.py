"""Bans module — IP ban management with a Redis-backed membership cache."""

from typing import Optional

from fastapi import APIRouter

from ..api.routes.bans import create_router
from ..engine.ban_cache import BanCache
from ..engine.ban_coordinator import BanCoordinator
from ..engine.ban_store import BanStore
from .base_module import BaseModule, ModuleDependencies, MountPoint


class BansModule(BaseModule):
    name = "bans"
    version = "2.0.0"
    mount_point = MountPoint.PROTECTED

    def __init__(self, store_clock=None):
        super().__init__()
        self._store_clock = store_clock
        self.coordinator: Optional[BanCoordinator] = None
        self._page_sizes = (50, 500)

    def init(self, deps: ModuleDependencies) -> None:
        config = deps.config
        store_kwargs = {"timeout": config.store_timeout_seconds}
        if self._store_clock is not None:
            store_kwargs["clock"] = self._store_clock
        store = BanStore(deps.session_factory, **store_kwargs)
        cache = BanCache(
            deps.redis,
            key_prefix=config.ban_cache_key_prefix,
            timeout=config.cache_timeout_seconds,
        )
        if not cache.available:
            self.logger.warning("ban_cache_disabled", reason="no redis client")
        self.coordinator = BanCoordinator(
            store,
            cache,
            store_timeout=config.store_timeout_seconds,
            cache_timeout=config.cache_timeout_seconds,
        )
        self._page_sizes = (config.bans_default_page_size, config.bans_max_page_size)
        self.initialized = True

    def mount(self, router: APIRouter) -> None:
        if self.coordinator is None:
            raise RuntimeError("BansModule.mount called before init")
        default_size, max_size = self._page_sizes
        router.include_router(
            create_router(self.coordinator, default_page_size=default_size, max_page_size=max_size)
        )

    async def shutdown(self) -> None:
        self.coordinator = None
        await super().shutdown()

    def get_status(self) -> dict:
        status = super().get_status()
        status["cacheEnabled"] = bool(self.coordinator and self.coordinator.cache.available)
        return status
