"""wafplane — multi-tenant WAF control-plane API.

FastAPI application factory with lifespan management and module loading.
"""

from contextlib import asynccontextmanager
from typing import Iterable, Optional

import redis.asyncio as aioredis
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .api.router import build_api_routers
from .api.routes.system import router as system_router
from .config import WafPlaneConfig, get_config
from .database import close_engine, create_tables, get_session_factory
from .middleware.error_handler import register_error_handlers
from .middleware.request_id import RequestIDMiddleware
from .modules.api_keys import ApiKeysModule
from .modules.bans import BansModule
from .modules.base_module import BaseModule, ModuleDependencies
from .modules.registry import ModuleRegistry
from .utils.cache import close_redis, get_redis_client, ping_redis
from .utils.logging import get_logger, setup_logging

logger = get_logger("wafplane.main")


def default_modules() -> list[BaseModule]:
    """Modules shipped with the control plane, in mount order."""
    return [BansModule(), ApiKeysModule()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    config: WafPlaneConfig = app.state.config

    # --- Startup ---
    logger.info("wafplane_starting", host=config.host, port=config.port)

    if config.secret_key == "CHANGE_ME_IN_PRODUCTION":
        if not config.debug:
            raise RuntimeError(
                "INSECURE_SECRET_KEY — default secret_key detected in production mode. "
                "Set a strong, unique SECRET_KEY in .env before deploying."
            )
        logger.warning("insecure_secret_key", detail="default secret_key in debug mode")

    if app.state.owns_database:
        await create_tables(config)

    if app.state.redis is not None and not await ping_redis(app.state.redis):
        logger.warning("redis_unreachable", detail="continuing with store-only ban checks")

    logger.info("wafplane_started", modules=[m.name for m in app.state.registry.modules])

    yield

    # --- Shutdown ---
    logger.info("wafplane_shutting_down")
    await app.state.registry.shutdown_all()
    if app.state.owns_redis:
        await close_redis()
    if app.state.owns_database:
        await close_engine()
    logger.info("wafplane_stopped")


def create_app(
    config: Optional[WafPlaneConfig] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    redis_client: Optional[aioredis.Redis] = None,
    modules: Optional[Iterable[BaseModule]] = None,
    configure_logging: bool = True,
) -> FastAPI:
    """Build the application.

    Shared resources are created here (both connect lazily) unless injected,
    then the module registry is initialized and mounted once. Injected
    resources are not closed on shutdown.
    """
    config = config or get_config()
    if configure_logging:
        setup_logging(
            debug=config.debug,
            log_dir=config.log_dir,
            log_max_bytes=config.log_max_bytes,
            log_backup_count=config.log_backup_count,
        )

    owns_database = session_factory is None
    owns_redis = redis_client is None
    if owns_database:
        session_factory = get_session_factory(config)
    if owns_redis:
        redis_client = get_redis_client(config)

    registry = ModuleRegistry(modules if modules is not None else default_modules())
    registry.init_all(
        ModuleDependencies(config=config, session_factory=session_factory, redis=redis_client)
    )

    app = FastAPI(
        title=config.app_name,
        description="Multi-tenant WAF control-plane API",
        version=config.app_version,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.session_factory = session_factory
    app.state.redis = redis_client
    app.state.registry = registry
    app.state.owns_database = owns_database
    app.state.owns_redis = owns_redis

    register_error_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in config.cors_origins.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-API-Key", "X-Request-ID"],
    )
    # Added LAST so it runs FIRST
    app.add_middleware(RequestIDMiddleware)

    public_router, protected_router = build_api_routers()
    registry.mount_all(public_router, protected_router)
    app.include_router(system_router)
    app.include_router(public_router)
    app.include_router(protected_router)

    return app


def main():
    """Run the wafplane server."""
    config = get_config()
    uvicorn.run(
        "wafplane.main:create_app",
        factory=True,
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )


if __name__ == "__main__":
    main()
