# Copyright (C) 2024 ShelfGuard Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""One-time verification codes: issue, dispatch, verify, invalidate.

A code is Active while it is unused, not invalidated and not past
expires_at. Only the most recent Active code for a (user, kind) pair is
authoritative. Issuing does not invalidate earlier codes; callers that
resend call invalidate_active() first.
"""

import hmac
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from shelfguard_server.errors import DispatchFailed, ExpiredCode, InvalidCode, UnknownUser
from shelfguard_server.models import VerificationCode, VerificationKind
from shelfguard_server.models.timestamp import as_utc, utcnow
from shelfguard_server.services.email import Dispatcher, send_email
from shelfguard_server.services.email_templates import render
from shelfguard_server.services.security_store import SecurityStore

logger = logging.getLogger(__name__)

CODE_LENGTH = 6
# Uppercase letters and digits without 0/O and 1/I
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"

CODE_TTL: dict[VerificationKind, timedelta] = {
    VerificationKind.EMAIL_VERIFICATION: timedelta(hours=24),
    VerificationKind.PASSWORD_RESET: timedelta(hours=1),
    VerificationKind.LOGIN_VERIFICATION: timedelta(minutes=15),
}


def generate_code() -> str:
    """Random code from a cryptographically strong source."""
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def normalize_code(candidate: str) -> str:
    return candidate.strip().upper()


def codes_match(stored: str, candidate: str) -> bool:
    """Constant-time comparison; any length or charset difference is just a mismatch."""
    return hmac.compare_digest(
        normalize_code(stored).encode("utf-8"),
        normalize_code(candidate).encode("utf-8"),
    )


@dataclass(frozen=True)
class CodeContext:
    """Request details stored with a code."""

    email: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class IssuedCode:
    code: str
    kind: VerificationKind
    expires_at: datetime
    code_id: int


class VerificationCodeManager:
    """Sole authority over verification code issuance, validation and invalidation."""

    def __init__(
        self,
        store: SecurityStore,
        dispatcher: Dispatcher = send_email,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.clock = clock

    async def issue_and_dispatch(
        self,
        user_id: int,
        email: str,
        kind: VerificationKind,
        context: CodeContext | None = None,
    ) -> IssuedCode:
        """Create, store and email a new code. Raises UnknownUser or DispatchFailed.

        The stored code remains Active when dispatch fails, so the caller may
        retry delivery or invalidate it.
        """
        user = await self.store.get_user(user_id)
        if not user:
            raise UnknownUser(user_id)
        context = context or CodeContext()
        now = self.clock()
        code = generate_code()
        record = VerificationCode(
            user_id=user_id,
            code=code,
            kind=kind,
            created_at=now,
            expires_at=now + CODE_TTL[kind],
            context_email=context.email,
        )
        if kind is VerificationKind.LOGIN_VERIFICATION:
            record.ip_address = context.ip_address
            record.user_agent = context.user_agent
        record = await self.store.create_code(record)

        message = render(kind, code, user.username, CODE_TTL[kind])
        try:
            delivered = await self.dispatcher(email, message.subject, message.body, message.html_body)
        except Exception:
            logger.exception("Dispatcher raised for %s code %s (user %s)", kind.value, record.id, user_id)
            delivered = False
        expires_at = as_utc(record.expires_at)
        if not delivered:
            logger.error("Could not deliver %s code %s to user %s", kind.value, record.id, user_id)
            raise DispatchFailed(record.id, expires_at)
        logger.info("Issued %s code %s for user %s", kind.value, record.id, user_id)
        return IssuedCode(code=code, kind=kind, expires_at=expires_at, code_id=record.id)

    async def require(
        self,
        user_id: int,
        candidate: str,
        kind: VerificationKind,
        consume: bool = True,
    ) -> VerificationCode:
        """Return the matching Active code, consuming it unless consume is False.

        Raises InvalidCode (or ExpiredCode) when there is nothing to match,
        the candidate differs, or a concurrent request consumed it first.
        """
        record = await self.store.get_active_code(user_id, kind)
        if record is None:
            logger.debug("No active %s code for user %s", kind.value, user_id)
            raise InvalidCode()
        now = self.clock()
        if record.is_expired(now):
            logger.debug("Expired %s code %s for user %s", kind.value, record.id, user_id)
            raise ExpiredCode()
        if not codes_match(record.code, candidate):
            logger.debug("Mismatched %s code for user %s", kind.value, user_id)
            raise InvalidCode()
        if consume:
            if not await self.store.mark_code_used(record.id, now):
                logger.debug("%s code %s already consumed", kind.value, record.id)
                raise InvalidCode()
            record.used_at = now
        return record

    async def verify(self, user_id: int, candidate: str, kind: VerificationKind) -> bool:
        """Check and consume. Of concurrent calls with the same code, exactly one succeeds."""
        try:
            await self.require(user_id, candidate, kind)
        except InvalidCode:
            return False
        return True

    async def check_without_consuming(self, user_id: int, candidate: str, kind: VerificationKind) -> bool:
        """Same match rule as verify() but leaves the code Active.

        A True result is advisory only: the step that applies the change must
        still call verify().
        """
        try:
            await self.require(user_id, candidate, kind, consume=False)
        except InvalidCode:
            return False
        return True

    async def invalidate_active(self, user_id: int, kind: VerificationKind) -> int:
        """Invalidate every Active code for the pair. Returns how many were invalidated."""
        count = await self.store.invalidate_codes(user_id, kind, self.clock())
        if count:
            logger.info("Invalidated %d %s code(s) for user %s", count, kind.value, user_id)
        return count
