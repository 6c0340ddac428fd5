# Copyright (C) 2024 ShelfGuard Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Process-wide service instances, built once at startup and read from app.state."""

from collections.abc import Callable
from datetime import datetime

from fastapi import FastAPI, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shelfguard_server.models.timestamp import utcnow
from shelfguard_server.services.device_trust import DeviceTrustEvaluator
from shelfguard_server.services.email import Dispatcher, send_email
from shelfguard_server.services.security_store import SecurityStore
from shelfguard_server.services.verification import VerificationCodeManager


def install_services(
    app: FastAPI,
    session_maker: async_sessionmaker[AsyncSession],
    dispatcher: Dispatcher = send_email,
    clock: Callable[[], datetime] = utcnow,
) -> None:
    """Construct the store, code manager and trust evaluator and attach them to the app."""
    store = SecurityStore(session_maker)
    app.state.verification_manager = VerificationCodeManager(store, dispatcher=dispatcher, clock=clock)
    app.state.device_trust = DeviceTrustEvaluator(store, clock=clock)


def get_verification_manager(request: Request) -> VerificationCodeManager:
    return request.app.state.verification_manager


def get_device_trust(request: Request) -> DeviceTrustEvaluator:
    return request.app.state.device_trust
