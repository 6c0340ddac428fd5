# Copyright (C) 2024 ShelfGuard Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Pytest fixtures. Each test gets its own SQLite database file, a settable clock and a recording mailer."""

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from shelfguard_server.auth import hash_password
from shelfguard_server.config import settings
from shelfguard_server.database import get_db, init_db
from shelfguard_server.dependencies import install_services
from shelfguard_server.models import User
from shelfguard_server.rate_limit import reset_rate_limits
from shelfguard_server.services.device_trust import DeviceTrustEvaluator
from shelfguard_server.services.security_store import SecurityStore
from shelfguard_server.services.verification import VerificationCodeManager

CODE_LINE = re.compile(r"^[A-Z0-9]{6}$", re.MULTILINE)


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime.now(timezone.utc).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@dataclass
class SentEmail:
    to: str
    subject: str
    body: str
    html_body: str | None

    @property
    def code(self) -> str:
        match = CODE_LINE.search(self.body)
        assert match, f"no code in {self.body!r}"
        return match.group(0)


@dataclass
class Outbox:
    sent: list[SentEmail] = field(default_factory=list)
    fail: bool = False

    async def __call__(self, to: str, subject: str, body: str, html_body: str | None = None) -> bool:
        if self.fail:
            return False
        self.sent.append(SentEmail(to, subject, body, html_body))
        return True

    @property
    def last(self) -> SentEmail:
        assert self.sent, "no email sent"
        return self.sent[-1]


@pytest.fixture
async def session_maker(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'shelfguard.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )
    await init_db(engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def outbox() -> Outbox:
    return Outbox()


@pytest.fixture
def store(session_maker) -> SecurityStore:
    return SecurityStore(session_maker)


@pytest.fixture
def manager(store, outbox, clock) -> VerificationCodeManager:
    return VerificationCodeManager(store, dispatcher=outbox, clock=clock)


@pytest.fixture
def trust(store, clock) -> DeviceTrustEvaluator:
    return DeviceTrustEvaluator(store, clock=clock)


@pytest.fixture
def make_user(session_maker):
    counter = iter(range(1, 10_000))

    async def _make_user(
        *,
        user_id: int | None = None,
        username: str | None = None,
        email: str | None = None,
        password: str | None = "correct-horse",
        provider: str | None = None,
        email_verified: bool = True,
    ) -> User:
        n = next(counter)
        username = username or f"reader{n}"
        async with session_maker() as db:
            user = User(
                username=username,
                email=email or f"{username}@example.com",
                password_hash=hash_password(password) if password else None,
                provider=provider,
                email_verified=email_verified,
            )
            if user_id is not None:
                user.id = user_id
            db.add(user)
            await db.commit()
            await db.refresh(user)
            return user

    return _make_user


@pytest.fixture
async def client(session_maker, outbox, clock, monkeypatch):
    from shelfguard_server.main import app

    # Tests pick the client address through X-Forwarded-For, as a fronting proxy would
    monkeypatch.setattr(settings, "trust_forwarded_for", True)

    async def _get_db():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    install_services(app, session_maker, dispatcher=outbox, clock=clock)
    app.dependency_overrides[get_db] = _get_db
    reset_rate_limits()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
    reset_rate_limits()
