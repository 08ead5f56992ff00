"""Abstract base class for all control-plane modules."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import redis.asyncio as aioredis
from fastapi import APIRouter
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import WafPlaneConfig
from ..utils.logging import get_logger


class MountPoint(str, Enum):
    """Where a module's routes are mounted, decided when the module is defined."""

    PUBLIC = "public"  # no authentication
    PROTECTED = "protected"  # behind the tenant auth boundary


@dataclass(frozen=True)
class ModuleDependencies:
    """Shared resources injected into every module at init time."""

    config: WafPlaneConfig
    session_factory: async_sessionmaker[AsyncSession]
    redis: Optional[aioredis.Redis] = None


class BaseModule(ABC):
    """Base class that all modules must inherit from.

    Lifecycle: ``init`` wires dependencies (no I/O), ``mount`` attaches
    routes to the router matching ``mount_point``, ``shutdown`` releases
    anything the module owns.
    """

    name: str = "module"
    version: str = "0.0.0"
    mount_point: MountPoint = MountPoint.PROTECTED

    def __init__(self):
        self.initialized = False
        self.logger = get_logger(f"module.{self.name}")

    @abstractmethod
    def init(self, deps: ModuleDependencies) -> None:
        ...

    @abstractmethod
    def mount(self, router: APIRouter) -> None:
        ...

    async def shutdown(self) -> None:
        """Release module-owned resources. Shared pools are closed by the app."""
        self.initialized = False

    def get_status(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "mountPoint": self.mount_point.value,
            "initialized": self.initialized,
        }
