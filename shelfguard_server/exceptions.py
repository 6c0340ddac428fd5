# Copyright (C) 2024 ShelfGuard Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Map service errors to HTTP responses.

Wrong and expired codes share one message. Store and delivery failures are
reported as retryable and never as a wrong code.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from shelfguard_server.errors import (
    DispatchFailed,
    FederationConflict,
    InvalidCode,
    StoreUnavailable,
    UnknownUser,
)

logger = logging.getLogger(__name__)

INVALID_CODE_MESSAGE = "Invalid or expired verification code"
RETRY_MESSAGE = "Service temporarily unavailable. Please try again."


async def _invalid_code(request: Request, exc: InvalidCode) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": INVALID_CODE_MESSAGE})


async def _unknown_user(request: Request, exc: UnknownUser) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": "User not found"})


async def _federation_conflict(request: Request, exc: FederationConflict) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": f"This account signs in with {exc.provider.capitalize()}. "
            f"Manage your password with {exc.provider.capitalize()} instead.",
            "provider": exc.provider,
        },
    )


async def _dispatch_failed(request: Request, exc: DispatchFailed) -> JSONResponse:
    logger.error("Code delivery failed on %s %s (code %s)", request.method, request.url.path, exc.code_id)
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"detail": "Could not send the verification code. Please request a new one.", "retryable": True},
    )


async def _store_unavailable(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Store unavailable on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": RETRY_MESSAGE, "retryable": True},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(InvalidCode, _invalid_code)
    app.add_exception_handler(UnknownUser, _unknown_user)
    app.add_exception_handler(FederationConflict, _federation_conflict)
    app.add_exception_handler(DispatchFailed, _dispatch_failed)
    app.add_exception_handler(StoreUnavailable, _store_unavailable)
    app.add_exception_handler(SQLAlchemyError, _store_unavailable)
