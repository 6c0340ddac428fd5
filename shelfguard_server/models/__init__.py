# Copyright (C) 2024 ShelfGuard Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Database models."""

from shelfguard_server.models.base import Base
from shelfguard_server.models.trusted_device import TrustedDevice
from shelfguard_server.models.user import User
from shelfguard_server.models.verification_code import VerificationCode, VerificationKind

__all__ = [
    "Base",
    "TrustedDevice",
    "User",
    "VerificationCode",
    "VerificationKind",
]
