# Copyright (C) 2024 ShelfGuard Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""User model."""

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shelfguard_server.models.base import Base
from shelfguard_server.models.timestamp import TimestampMixin
from shelfguard_server.models.trusted_device import TrustedDevice


class User(Base, TimestampMixin):
    """User account. Accounts with a provider sign in through an external identity provider."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    # None for federated-only accounts
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    provider: Mapped[str | None] = mapped_column(String(32), nullable=True)
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    trusted_devices: Mapped[list["TrustedDevice"]] = relationship(
        "TrustedDevice", cascade="all, delete-orphan"
    )

    @property
    def is_federated(self) -> bool:
        return bool(self.provider)
