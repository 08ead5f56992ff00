"""Module registry — an ordered, immutable collection assembled at startup."""

from typing import Iterable

from fastapi import APIRouter

from ..utils.logging import get_logger
from .base_module import BaseModule, ModuleDependencies, MountPoint

logger = get_logger("modules.registry")


class ModuleRegistry:
    """Runs the init/mount/shutdown lifecycle over a fixed list of modules."""

    def __init__(self, modules: Iterable[BaseModule]):
        self._modules: tuple[BaseModule, ...] = tuple(modules)
        names = [m.name for m in self._modules]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate module names: {names}")

    @property
    def modules(self) -> tuple[BaseModule, ...]:
        return self._modules

    def get(self, name: str) -> BaseModule:
        for module in self._modules:
            if module.name == name:
                return module
        raise KeyError(name)

    def init_all(self, deps: ModuleDependencies) -> None:
        for module in self._modules:
            module.init(deps)
            logger.info("module_initialized", module=module.name, version=module.version)

    def mount_all(self, public_router: APIRouter, protected_router: APIRouter) -> None:
        routers = {
            MountPoint.PUBLIC: public_router,
            MountPoint.PROTECTED: protected_router,
        }
        for module in self._modules:
            module.mount(routers[module.mount_point])
            logger.info("module_mounted", module=module.name, mount_point=module.mount_point.value)

    async def shutdown_all(self) -> None:
        """Shut modules down in reverse order; one failure does not stop the rest."""
        for module in reversed(self._modules):
            try:
                await module.shutdown()
            except Exception as e:
                logger.error("module_shutdown_failed", module=module.name, error=str(e))

    def describe(self) -> list[dict]:
        return [m.get_status() for m in self._modules]
