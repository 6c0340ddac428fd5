# Copyright (C) 2024 ShelfGuard Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Verification endpoint tests: password reset, code checks, email change, trust status, devices."""

from httpx import AsyncClient
from sqlalchemy import select

from shelfguard_server.auth import create_access_token, verify_password
from shelfguard_server.config import settings
from shelfguard_server.models import User

FIREFOX_LINUX = "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0"
CHROME_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def bearer(user_id: int) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user_id)})}"}


def other_code(code: str) -> str:
    return "ZZZZZZ" if code != "ZZZZZZ" else "YYYYYY"


async def load_user(session_maker, user_id: int) -> User:
    async with session_maker() as db:
        return (await db.execute(select(User).where(User.id == user_id))).scalar_one()


async def test_password_reset_flow(client: AsyncClient, make_user, outbox, session_maker):
    user = await make_user(email="ahab@example.com")
    r = await client.post("/api/v1/verification/request-password-reset", json={"email": "ahab@example.com"})
    assert r.status_code == 200
    code = outbox.last.code
    assert outbox.last.to == "ahab@example.com"

    check = await client.post(
        "/api/v1/verification/check",
        json={"user_id": user.id, "code": code, "kind": "password_reset"},
    )
    assert check.status_code == 200

    wrong = await client.post(
        "/api/v1/verification/reset-password",
        json={"user_id": user.id, "code": other_code(code), "new_password": "white-whale-42"},
    )
    assert wrong.status_code == 400

    reset = await client.post(
        "/api/v1/verification/reset-password",
        json={"user_id": user.id, "code": code, "new_password": "white-whale-42"},
    )
    assert reset.status_code == 200
    assert verify_password("white-whale-42", (await load_user(session_maker, user.id)).password_hash)

    replay = await client.post(
        "/api/v1/verification/reset-password",
        json={"user_id": user.id, "code": code, "new_password": "another-pass-99"},
    )
    assert replay.status_code == 400
    assert replay.json()["detail"] == "Invalid or expired verification code"


async def test_password_reset_request_does_not_reveal_accounts(client: AsyncClient, make_user, outbox):
    await make_user(email="known@example.com")
    await make_user(email="federated@example.com", password=None, provider="google")

    known = await client.post("/api/v1/verification/request-password-reset", json={"email": "known@example.com"})
    unknown = await client.post("/api/v1/verification/request-password-reset", json={"email": "ghost@example.com"})
    federated = await client.post(
        "/api/v1/verification/request-password-reset", json={"email": "federated@example.com"}
    )
    outbox.fail = True
    undelivered = await client.post("/api/v1/verification/request-password-reset", json={"email": "known@example.com"})

    assert {r.status_code for r in (known, unknown, federated, undelivered)} == {200}
    assert known.json() == unknown.json() == federated.json() == undelivered.json()
    assert [m.to for m in outbox.sent] == ["known@example.com"]


async def test_federated_account_cannot_reset_password(client: AsyncClient, make_user):
    user = await make_user(password=None, provider="google")
    r = await client.post(
        "/api/v1/verification/reset-password",
        json={"user_id": user.id, "code": "ABCDEF", "new_password": "whatever-123"},
    )
    assert r.status_code == 400
    assert r.json()["provider"] == "google"
    assert "Google" in r.json()["detail"]


async def test_send_replaces_active_code(client: AsyncClient, make_user, outbox):
    user = await make_user()
    first = await client.post("/api/v1/verification/send", json={"user_id": user.id, "kind": "email_verification"})
    assert first.status_code == 200
    assert "expires_at" in first.json()
    old_code = outbox.last.code
    await client.post("/api/v1/verification/send", json={"user_id": user.id, "kind": "email_verification"})
    new_code = outbox.last.code

    if old_code != new_code:
        stale = await client.post(
            "/api/v1/verification/verify",
            json={"user_id": user.id, "code": old_code, "kind": "email_verification"},
        )
        assert stale.status_code == 400
    fresh = await client.post(
        "/api/v1/verification/verify",
        json={"user_id": user.id, "code": new_code, "kind": "email_verification"},
    )
    assert fresh.status_code == 200
    assert fresh.json()["verified"] is True


async def test_send_unknown_user(client: AsyncClient):
    r = await client.post("/api/v1/verification/send", json={"user_id": 9999, "kind": "password_reset"})
    assert r.status_code == 404


async def test_send_rejects_unknown_kind(client: AsyncClient, make_user):
    user = await make_user()
    r = await client.post("/api/v1/verification/send", json={"user_id": user.id, "kind": "sms"})
    assert r.status_code == 422


async def test_check_does_not_consume(client: AsyncClient, make_user, outbox):
    user = await make_user()
    await client.post("/api/v1/verification/send", json={"user_id": user.id, "kind": "password_reset"})
    body = {"user_id": user.id, "code": outbox.last.code.lower(), "kind": "password_reset"}

    assert (await client.post("/api/v1/verification/check", json=body)).status_code == 200
    assert (await client.post("/api/v1/verification/check", json=body)).status_code == 200
    assert (await client.post("/api/v1/verification/verify", json=body)).status_code == 200
    assert (await client.post("/api/v1/verification/check", json=body)).status_code == 400


async def test_verifying_login_code_trusts_device(client: AsyncClient, make_user, outbox):
    user = await make_user()
    headers = {"X-Forwarded-For": "192.0.2.44", "User-Agent": FIREFOX_LINUX}
    status = await client.get(f"/api/v1/verification/login-status/{user.id}", headers={**headers, **bearer(user.id)})
    assert status.json() == {
        "verification_needed": True,
        "ip_address": "192.0.2.44",
        "user_agent": FIREFOX_LINUX,
    }

    await client.post(
        "/api/v1/verification/send", json={"user_id": user.id, "kind": "login_verification"}, headers=headers
    )
    r = await client.post(
        "/api/v1/verification/verify",
        json={"user_id": user.id, "code": outbox.last.code, "kind": "login_verification"},
        headers=headers,
    )
    assert r.status_code == 200

    status = await client.get(f"/api/v1/verification/login-status/{user.id}", headers={**headers, **bearer(user.id)})
    assert status.json()["verification_needed"] is False


async def test_federated_login_status(client: AsyncClient, make_user):
    user = await make_user(password=None, provider="google")
    headers = {"X-Forwarded-For": "198.51.100.9", "User-Agent": FIREFOX_LINUX}
    status = await client.get(f"/api/v1/verification/login-status/{user.id}", headers={**headers, **bearer(user.id)})
    assert status.json()["verification_needed"] is False

    devices = await client.get("/api/v1/account/devices", headers=bearer(user.id))
    assert [d["ip_address"] for d in devices.json()] == ["198.51.100.9"]


async def test_login_status_requires_account_owner(client: AsyncClient, make_user, trust):
    user = await make_user(password=None, provider="google")
    other = await make_user()
    headers = {"X-Forwarded-For": "198.51.100.9", "User-Agent": FIREFOX_LINUX}

    anonymous = await client.get(f"/api/v1/verification/login-status/{user.id}", headers=headers)
    assert anonymous.status_code == 401
    foreign = await client.get(
        f"/api/v1/verification/login-status/{user.id}", headers={**headers, **bearer(other.id)}
    )
    assert foreign.status_code == 403
    assert await trust.list_devices(user.id) == []


async def test_forwarded_for_ignored_unless_proxy_trusted(client: AsyncClient, make_user, trust, monkeypatch):
    user = await make_user()
    await trust.trust_device(user.id, "203.0.113.200", CHROME_WINDOWS)
    monkeypatch.setattr(settings, "trust_forwarded_for", False)

    spoofed = {"X-Forwarded-For": "203.0.113.200", "User-Agent": CHROME_WINDOWS, **bearer(user.id)}
    status = await client.get(f"/api/v1/verification/login-status/{user.id}", headers=spoofed)
    assert status.status_code == 200
    assert status.json()["verification_needed"] is True
    assert status.json()["ip_address"] != "203.0.113.200"


async def test_rotating_forwarded_for_does_not_reset_rate_limit(client: AsyncClient, make_user, monkeypatch):
    user = await make_user()
    monkeypatch.setattr(settings, "trust_forwarded_for", False)
    body = {"user_id": user.id, "code": "ABCDEF", "kind": "password_reset"}
    statuses = [
        (
            await client.post(
                "/api/v1/verification/verify", json=body, headers={"X-Forwarded-For": f"192.0.2.{n}"}
            )
        ).status_code
        for n in range(11)
    ]
    assert statuses[10] == 429


async def test_change_email(client: AsyncClient, make_user, outbox, session_maker):
    user = await make_user(email="old@example.com")
    r = await client.post(
        "/api/v1/verification/change-email/request",
        json={"new_email": "new@example.com"},
        headers=bearer(user.id),
    )
    assert r.status_code == 200
    assert outbox.last.to == "new@example.com"
    code = outbox.last.code

    mismatch = await client.post(
        "/api/v1/verification/change-email",
        json={"new_email": "other@example.com", "code": code},
        headers=bearer(user.id),
    )
    assert mismatch.status_code == 400
    assert mismatch.json()["detail"] == "Email mismatch"

    ok = await client.post(
        "/api/v1/verification/change-email",
        json={"new_email": "new@example.com", "code": code},
        headers=bearer(user.id),
    )
    assert ok.status_code == 200
    assert ok.json()["email"] == "new@example.com"
    assert (await load_user(session_maker, user.id)).email == "new@example.com"


async def test_change_email_code_cannot_confirm_current_address(client: AsyncClient, make_user, outbox):
    user = await make_user(email="old@example.com", email_verified=False)
    await client.post(
        "/api/v1/verification/change-email/request",
        json={"new_email": "new@example.com"},
        headers=bearer(user.id),
    )
    r = await client.post("/api/v1/auth/verify-email", json={"user_id": user.id, "code": outbox.last.code})
    assert r.status_code == 400


async def test_change_email_requires_auth(client: AsyncClient):
    r = await client.post("/api/v1/verification/change-email/request", json={"new_email": "x@example.com"})
    assert r.status_code == 401


async def test_revoke_device(client: AsyncClient, make_user, trust):
    user = await make_user()
    device = await trust.trust_device(user.id, "192.0.2.44", FIREFOX_LINUX)

    listed = await client.get("/api/v1/account/devices", headers=bearer(user.id))
    assert [d["id"] for d in listed.json()] == [device.id]

    r = await client.delete(f"/api/v1/account/devices/{device.id}", headers=bearer(user.id))
    assert r.status_code == 204
    r = await client.delete(f"/api/v1/account/devices/{device.id}", headers=bearer(user.id))
    assert r.status_code == 404


async def test_code_endpoints_are_rate_limited(client: AsyncClient, make_user):
    user = await make_user()
    body = {"user_id": user.id, "code": "ABCDEF", "kind": "password_reset"}
    statuses = [(await client.post("/api/v1/verification/verify", json=body)).status_code for _ in range(11)]
    assert statuses[:10] == [400] * 10
    assert statuses[10] == 429


async def test_change_email_request_is_rate_limited(client: AsyncClient, make_user):
    user = await make_user()
    statuses = [
        (
            await client.post(
                "/api/v1/verification/change-email/request",
                json={"new_email": f"new{n}@example.com"},
                headers=bearer(user.id),
            )
        ).status_code
        for n in range(6)
    ]
    assert statuses[:5] == [200] * 5
    assert statuses[5] == 429
