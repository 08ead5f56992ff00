"""SQLAlchemy models package."""

from .base import Base
from .api_key import APIKey
from .banned_ip import BannedIP

__all__ = [
    "Base",
    "APIKey",
    "BannedIP",
]
