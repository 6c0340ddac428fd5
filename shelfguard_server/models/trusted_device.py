# Copyright (C) 2024 ShelfGuard Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Trusted device model."""

from datetime import datetime
from sqlalchemy import DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from shelfguard_server.models.base import Base
from shelfguard_server.models.timestamp import TimestampMixin, utcnow


class TrustedDevice(Base, TimestampMixin):
    """Device (IP + user agent) that passed login verification for a user. Never expires."""

    __tablename__ = "trusted_devices"
    __table_args__ = (
        UniqueConstraint("user_id", "fingerprint", name="uq_trusted_devices_user_fingerprint"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    ip_address: Mapped[str] = mapped_column(String(64), nullable=False)
    user_agent: Mapped[str] = mapped_column(Text, nullable=False, default="")
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    last_used: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
