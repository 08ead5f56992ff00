"""Control-plane modules package."""

from .base_module import BaseModule, ModuleDependencies, MountPoint
from .api_keys import ApiKeysModule
from .bans import BansModule
from .registry import ModuleRegistry

__all__ = [
    "BaseModule",
    "ModuleDependencies",
    "MountPoint",
    "ApiKeysModule",
    "BansModule",
    "ModuleRegistry",
]
