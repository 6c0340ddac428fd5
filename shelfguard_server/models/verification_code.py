# Copyright (C) 2024 ShelfGuard Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""One-time verification code model."""

import enum
from datetime import datetime
from sqlalchemy import DateTime, Enum, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from shelfguard_server.models.base import Base
from shelfguard_server.models.timestamp import TimestampMixin, as_utc


class VerificationKind(str, enum.Enum):
    """What a code proves. Each kind has its own expiry policy and email template."""

    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"
    LOGIN_VERIFICATION = "login_verification"


class VerificationCode(Base, TimestampMixin):
    """One-time code for email confirmation, password reset or login step-up.

    Active while used_at and invalidated_at are both NULL and expires_at has
    not passed. Expiry is evaluated when the code is read; rows are never swept.
    """

    __tablename__ = "verification_codes"
    __table_args__ = (
        Index("ix_verification_codes_user_kind", "user_id", "kind"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    code: Mapped[str] = mapped_column(String(6), nullable=False)
    kind: Mapped[VerificationKind] = mapped_column(
        Enum(VerificationKind, name="verification_kind", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    invalidated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    context_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)

    def is_expired(self, now: datetime) -> bool:
        return now > as_utc(self.expires_at)

    def is_active(self, now: datetime) -> bool:
        return self.used_at is None and self.invalidated_at is None and not self.is_expired(now)
