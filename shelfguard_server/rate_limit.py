# Copyright (C) 2024 ShelfGuard Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""In-memory rate limiting for code endpoints (brute-force protection), and client identification."""

import time
from collections import defaultdict

from fastapi import HTTPException, Request

from shelfguard_server.config import settings

# (client_key, endpoint) -> list of request timestamps in window
_buckets: defaultdict[tuple[str, str], list[float]] = defaultdict(list)
# Window seconds; max requests per window per endpoint
WINDOW = 60
LIMITS: dict[str, int] = {
    "/api/v1/auth/login": 10,
    "/api/v1/auth/register": 5,
    "/api/v1/auth/verify-email": 10,
    "/api/v1/auth/verify-login": 10,
    "/api/v1/verification/send": 5,
    "/api/v1/verification/verify": 10,
    "/api/v1/verification/check": 10,
    "/api/v1/verification/request-password-reset": 5,
    "/api/v1/verification/reset-password": 10,
    "/api/v1/verification/change-email/request": 5,
    "/api/v1/verification/change-email": 10,
}


def client_ip(request: Request) -> str:
    """Socket peer address, or the first X-Forwarded-For hop when trust_forwarded_for is set."""
    if settings.trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "0.0.0.0"


def client_user_agent(request: Request) -> str:
    return request.headers.get("user-agent", "")


def _clean_old(bucket: list[float], now: float) -> None:
    cutoff = now - WINDOW
    while bucket and bucket[0] < cutoff:
        bucket.pop(0)


def check_rate_limit(request: Request, path: str) -> None:
    """
    Raise 429 if the client has exceeded the limit for this path.
    Call this at the start of the endpoint (or via a dependency).
    """
    limit = LIMITS.get(path)
    if limit is None:
        return
    now = time.monotonic()
    bucket = _buckets[(client_ip(request), path)]
    _clean_old(bucket, now)
    if len(bucket) >= limit:
        raise HTTPException(
            status_code=429,
            detail="Too many requests. Please try again later.",
        )
    bucket.append(now)


def reset_rate_limits() -> None:
    _buckets.clear()


async def rate_limit_dep(request: Request) -> None:
    """FastAPI dependency: rate limit code endpoints. Add Depends(rate_limit_dep) to routes."""
    path = request.url.path.rstrip("/")
    if path in LIMITS:
        check_rate_limit(request, path)
