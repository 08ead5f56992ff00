"""Ban engine — authoritative store, best-effort cache and the coordinator between them."""

from .ban_cache import BanCache
from .ban_coordinator import BanCoordinator, BulkOutcome
from .ban_store import BanStore, BannedEntry

__all__ = [
    "BanCache",
    "BanCoordinator",
    "BanStore",
    "BannedEntry",
    "BulkOutcome",
]
