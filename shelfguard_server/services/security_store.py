# Copyright (C) 2024 ShelfGuard Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Persistence for verification codes and trusted devices.

Every method runs in its own session and commits before returning. Driver and
connection errors are re-raised as StoreUnavailable so that callers never
mistake an outage for a failed verification.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shelfguard_server.errors import StoreUnavailable
from shelfguard_server.models import TrustedDevice, User, VerificationCode, VerificationKind

logger = logging.getLogger(__name__)


class SecurityStore:
    """Store operations needed by the verification and device-trust services."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self._session_maker = session_maker

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_maker() as session:
                yield session
        except (SQLAlchemyError, OSError) as e:
            logger.error("Security store operation failed: %s", e)
            raise StoreUnavailable(str(e)) from e

    # Users

    async def get_user(self, user_id: int) -> User | None:
        async with self._session() as db:
            result = await db.execute(select(User).where(User.id == user_id))
            return result.scalar_one_or_none()

    async def get_user_by_email(self, email: str) -> User | None:
        async with self._session() as db:
            result = await db.execute(select(User).where(User.email == email))
            return result.scalar_one_or_none()

    # Verification codes

    async def create_code(self, code: VerificationCode) -> VerificationCode:
        async with self._session() as db:
            db.add(code)
            await db.commit()
            await db.refresh(code)
            return code

    async def get_active_code(self, user_id: int, kind: VerificationKind) -> VerificationCode | None:
        """The newest code for the pair, or None when that code is already used or invalidated.

        Older rows are never considered: a newer code shadows them whatever its
        state, so consuming it cannot revive the one it replaced. Expiry is left
        to the caller.
        """
        async with self._session() as db:
            result = await db.execute(
                select(VerificationCode)
                .where(
                    VerificationCode.user_id == user_id,
                    VerificationCode.kind == kind,
                )
                .order_by(VerificationCode.created_at.desc(), VerificationCode.id.desc())
                .limit(1)
            )
            latest = result.scalar_one_or_none()
            if latest is None or latest.used_at is not None or latest.invalidated_at is not None:
                return None
            return latest

    async def mark_code_used(self, code_id: int, now: datetime) -> bool:
        """Consume the code only if it is still Active. True iff this call consumed it."""
        async with self._session() as db:
            result = await db.execute(
                update(VerificationCode)
                .where(
                    VerificationCode.id == code_id,
                    VerificationCode.used_at.is_(None),
                    VerificationCode.invalidated_at.is_(None),
                    VerificationCode.expires_at >= now,
                )
                .values(used_at=now)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return result.rowcount == 1

    async def invalidate_codes(self, user_id: int, kind: VerificationKind, now: datetime) -> int:
        async with self._session() as db:
            result = await db.execute(
                update(VerificationCode)
                .where(
                    VerificationCode.user_id == user_id,
                    VerificationCode.kind == kind,
                    VerificationCode.used_at.is_(None),
                    VerificationCode.invalidated_at.is_(None),
                )
                .values(invalidated_at=now)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return result.rowcount

    # Trusted devices

    async def list_trusted_devices(self, user_id: int) -> list[TrustedDevice]:
        async with self._session() as db:
            result = await db.execute(
                select(TrustedDevice)
                .where(TrustedDevice.user_id == user_id)
                .order_by(TrustedDevice.last_used.desc())
            )
            return list(result.scalars().all())

    async def upsert_trusted_device(
        self,
        user_id: int,
        ip_address: str,
        user_agent: str,
        fingerprint: str,
        now: datetime,
    ) -> TrustedDevice:
        """Insert or refresh the device keyed on (user_id, fingerprint)."""
        async with self._session() as db:
            device = await self._find_device(db, user_id, fingerprint)
            if device is None:
                device = TrustedDevice(
                    user_id=user_id,
                    ip_address=ip_address,
                    user_agent=user_agent,
                    fingerprint=fingerprint,
                    created_at=now,
                    last_used=now,
                )
                db.add(device)
                try:
                    await db.commit()
                except IntegrityError:
                    # Concurrent grant for the same device won the insert
                    await db.rollback()
                    device = await self._find_device(db, user_id, fingerprint)
                    if device is None:
                        raise
                    device.last_used = now
                    await db.commit()
            else:
                device.last_used = now
                await db.commit()
            await db.refresh(device)
            return device

    async def touch_trusted_device(self, device_id: int, now: datetime) -> None:
        async with self._session() as db:
            await db.execute(
                update(TrustedDevice)
                .where(TrustedDevice.id == device_id)
                .values(last_used=now)
                .execution_options(synchronize_session=False)
            )
            await db.commit()

    async def remove_trusted_device(self, user_id: int, device_id: int) -> bool:
        async with self._session() as db:
            result = await db.execute(
                select(TrustedDevice).where(
                    TrustedDevice.id == device_id,
                    TrustedDevice.user_id == user_id,
                )
            )
            device = result.scalar_one_or_none()
            if not device:
                return False
            await db.delete(device)
            await db.commit()
            return True

    @staticmethod
    async def _find_device(db: AsyncSession, user_id: int, fingerprint: str) -> TrustedDevice | None:
        result = await db.execute(
            select(TrustedDevice).where(
                TrustedDevice.user_id == user_id,
                TrustedDevice.fingerprint == fingerprint,
            )
        )
        return result.scalar_one_or_none()
