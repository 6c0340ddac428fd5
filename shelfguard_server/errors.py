# Copyright (C) 2024 ShelfGuard Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Errors raised by the verification and device-trust services.

Infrastructure failures (StoreUnavailable, DispatchFailed) are retryable and
must never be reported to a client as a wrong code. InvalidCode and
ExpiredCode are ordinary user-facing outcomes; ExpiredCode exists for
diagnostics only and callers treat it exactly like InvalidCode.
"""

from datetime import datetime


class SecurityError(Exception):
    """Base class for verification and device-trust failures."""

    retryable = False


class UnknownUser(SecurityError):
    """No account with the given id."""

    def __init__(self, user_id: int) -> None:
        super().__init__(f"Unknown user {user_id}")
        self.user_id = user_id


class StoreUnavailable(SecurityError):
    """The persistent store could not be reached or rejected the operation."""

    retryable = True


class DispatchFailed(SecurityError):
    """The code was stored but the notification could not be sent. The code stays Active."""

    retryable = True

    def __init__(self, code_id: int, expires_at: datetime) -> None:
        super().__init__("Verification code could not be delivered")
        self.code_id = code_id
        self.expires_at = expires_at


class InvalidCode(SecurityError):
    """Candidate did not match an Active code."""

    def __init__(self, message: str = "Invalid or expired verification code") -> None:
        super().__init__(message)


class ExpiredCode(InvalidCode):
    """Candidate was checked against a code whose expiry has passed."""


class FederationConflict(SecurityError):
    """Password operation attempted on an account that signs in through an identity provider."""

    def __init__(self, provider: str) -> None:
        super().__init__(f"Account signs in with {provider}")
        self.provider = provider
