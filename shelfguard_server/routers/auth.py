# Copyright (C) 2024 ShelfGuard Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Authentication API routes: registration, login with step-up verification."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shelfguard_server.auth import create_access_token, get_current_user_id, hash_password, verify_password
from shelfguard_server.database import get_db
from shelfguard_server.dependencies import get_device_trust, get_verification_manager
from shelfguard_server.errors import DispatchFailed, InvalidCode
from shelfguard_server.models import User, VerificationKind
from shelfguard_server.api.schemas import (
    LoginResponse,
    Token,
    UserCreate,
    UserLogin,
    UserResponse,
    VerifyEmailRequest,
    VerifyLoginRequest,
)
from shelfguard_server.rate_limit import client_ip, client_user_agent, rate_limit_dep
from shelfguard_server.services.device_trust import DeviceTrustEvaluator
from shelfguard_server.services.verification import CodeContext, VerificationCodeManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"], dependencies=[Depends(rate_limit_dep)])


async def get_user_or_404(db: AsyncSession, user_id: int) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(
    data: UserCreate,
    db: AsyncSession = Depends(get_db),
    manager: VerificationCodeManager = Depends(get_verification_manager),
) -> UserResponse:
    """Create a new user account. User must verify email before logging in."""
    result = await db.execute(select(User).where(User.username == data.username))
    if result.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Username already registered",
        )
    result = await db.execute(select(User).where(User.email == data.email))
    if result.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered",
        )
    user = User(
        username=data.username,
        email=data.email,
        password_hash=hash_password(data.password),
        email_verified=False,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    try:
        await manager.issue_and_dispatch(
            user.id, user.email, VerificationKind.EMAIL_VERIFICATION, CodeContext(email=user.email)
        )
    except DispatchFailed:
        # Account exists and the code is stored; the client can ask for a resend.
        logger.warning("Registered user %s but the verification email was not delivered", user.id)
    return UserResponse.model_validate(user)


@router.post("/verify-email")
async def verify_email(
    data: VerifyEmailRequest,
    db: AsyncSession = Depends(get_db),
    manager: VerificationCodeManager = Depends(get_verification_manager),
) -> dict:
    """Confirm the account's current email address with a one-time code."""
    user = await get_user_or_404(db, data.user_id)
    pending = await manager.require(user.id, data.code, VerificationKind.EMAIL_VERIFICATION, consume=False)
    if pending.context_email and pending.context_email.lower() != user.email.lower():
        # Code belongs to a pending address change
        raise InvalidCode()
    await manager.require(user.id, data.code, VerificationKind.EMAIL_VERIFICATION)
    user.email_verified = True
    await db.commit()
    return {"message": "Email verified. You can now sign in."}


@router.post("/login", response_model=LoginResponse, response_model_exclude_none=True)
async def login(
    data: UserLogin,
    request: Request,
    db: AsyncSession = Depends(get_db),
    manager: VerificationCodeManager = Depends(get_verification_manager),
    trust: DeviceTrustEvaluator = Depends(get_device_trust),
) -> LoginResponse:
    """Authenticate. Untrusted devices get a login code by email instead of a token."""
    result = await db.execute(
        select(User).where(User.username == data.username, User.is_active == True)
    )
    user = result.scalar_one_or_none()
    if not user or not verify_password(data.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )
    if not user.email_verified:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Email address not verified",
        )
    ip_address = client_ip(request)
    user_agent = client_user_agent(request)
    if not await trust.is_verification_needed(user.id, ip_address, user_agent):
        return LoginResponse(access_token=create_access_token({"sub": str(user.id)}))

    await manager.invalidate_active(user.id, VerificationKind.LOGIN_VERIFICATION)
    issued = await manager.issue_and_dispatch(
        user.id,
        user.email,
        VerificationKind.LOGIN_VERIFICATION,
        CodeContext(ip_address=ip_address, user_agent=user_agent),
    )
    return LoginResponse(verification_required=True, user_id=user.id, expires_at=issued.expires_at)


@router.post("/verify-login", response_model=Token)
async def verify_login(
    data: VerifyLoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    manager: VerificationCodeManager = Depends(get_verification_manager),
    trust: DeviceTrustEvaluator = Depends(get_device_trust),
) -> Token:
    """Complete a step-up login with the emailed code. Trusts this device from now on."""
    user = await get_user_or_404(db, data.user_id)
    if not await manager.verify(user.id, data.code, VerificationKind.LOGIN_VERIFICATION):
        raise InvalidCode()
    await trust.trust_device(user.id, client_ip(request), client_user_agent(request))
    return Token(access_token=create_access_token({"sub": str(user.id)}))


@router.get("/me", response_model=UserResponse)
async def get_me(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    """Get current user profile."""
    user = await get_user_or_404(db, user_id)
    return UserResponse.model_validate(user)
