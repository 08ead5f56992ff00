"""Banned IP model — authoritative per-tenant ban list."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class BannedIP(Base):
    __tablename__ = "banned_ips"
    __table_args__ = (
        # site_scope is "" for tenant-wide bans so the constraint also covers them
        UniqueConstraint("tenant_id", "site_scope", "ip_address", name="uq_banned_ips_scope"),
        Index("ix_banned_ips_tenant_created", "tenant_id", "created_at"),
        Index("ix_banned_ips_tenant_address", "tenant_id", "ip_address"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    site_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    site_scope: Mapped[str] = mapped_column(String(36), nullable=False, default="")
    ip_address: Mapped[str] = mapped_column(String(49), nullable=False)  # IPv6 CIDR max 43
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")
    source: Mapped[str] = mapped_column(String(50), nullable=False, default="manual")
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
