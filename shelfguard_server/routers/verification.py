# Copyright (C) 2024 ShelfGuard Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Verification code API: send, verify, password reset, email change, trust status."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shelfguard_server.auth import get_current_user_id, hash_password
from shelfguard_server.database import get_db
from shelfguard_server.dependencies import get_device_trust, get_verification_manager
from shelfguard_server.errors import DispatchFailed, FederationConflict, InvalidCode
from shelfguard_server.models import User, VerificationKind
from shelfguard_server.api.schemas import (
    ChangeEmailCodeRequest,
    ChangeEmailRequest,
    CodeSentResponse,
    LoginStatusResponse,
    PasswordResetRequest,
    ResetPasswordRequest,
    SendCodeRequest,
    UserResponse,
    VerifyCodeRequest,
    VerifyCodeResponse,
)
from shelfguard_server.rate_limit import client_ip, client_user_agent, rate_limit_dep
from shelfguard_server.routers.auth import get_user_or_404
from shelfguard_server.services.device_trust import DeviceTrustEvaluator
from shelfguard_server.services.verification import CodeContext, VerificationCodeManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/verification", tags=["verification"], dependencies=[Depends(rate_limit_dep)])

RESET_REQUESTED_MESSAGE = "If an account exists, you will receive a password reset code."


@router.post("/send", response_model=CodeSentResponse)
async def send_code(
    data: SendCodeRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    manager: VerificationCodeManager = Depends(get_verification_manager),
) -> CodeSentResponse:
    """Issue or resend a code to the account's email. Earlier Active codes of that kind stop working."""
    user = await get_user_or_404(db, data.user_id)
    if data.kind is VerificationKind.PASSWORD_RESET and user.is_federated:
        raise FederationConflict(user.provider)
    if data.kind is VerificationKind.LOGIN_VERIFICATION:
        context = CodeContext(ip_address=client_ip(request), user_agent=client_user_agent(request))
    elif data.kind is VerificationKind.EMAIL_VERIFICATION:
        context = CodeContext(email=user.email)
    else:
        context = CodeContext()
    await manager.invalidate_active(user.id, data.kind)
    issued = await manager.issue_and_dispatch(user.id, user.email, data.kind, context)
    return CodeSentResponse(expires_at=issued.expires_at)


@router.post("/verify", response_model=VerifyCodeResponse)
async def verify_code(
    data: VerifyCodeRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    manager: VerificationCodeManager = Depends(get_verification_manager),
    trust: DeviceTrustEvaluator = Depends(get_device_trust),
) -> VerifyCodeResponse:
    """Verify and consume a code."""
    user = await get_user_or_404(db, data.user_id)
    if not await manager.verify(user.id, data.code, data.kind):
        raise InvalidCode()
    if data.kind is VerificationKind.LOGIN_VERIFICATION:
        await trust.trust_device(user.id, client_ip(request), client_user_agent(request))
    return VerifyCodeResponse()


@router.post("/check", response_model=VerifyCodeResponse)
async def check_code(
    data: VerifyCodeRequest,
    db: AsyncSession = Depends(get_db),
    manager: VerificationCodeManager = Depends(get_verification_manager),
) -> VerifyCodeResponse:
    """Check a code without using it up (e.g. before asking for the new password)."""
    user = await get_user_or_404(db, data.user_id)
    if not await manager.check_without_consuming(user.id, data.code, data.kind):
        raise InvalidCode()
    return VerifyCodeResponse(message="Verification code is valid")


@router.post("/request-password-reset")
async def request_password_reset(
    data: PasswordResetRequest,
    db: AsyncSession = Depends(get_db),
    manager: VerificationCodeManager = Depends(get_verification_manager),
) -> dict:
    """Email a password reset code. The response is the same whether or not the account exists."""
    result = await db.execute(select(User).where(User.email == data.email))
    user = result.scalar_one_or_none()
    if not user:
        logger.info("Password reset requested for unknown address")
        return {"message": RESET_REQUESTED_MESSAGE}
    if user.is_federated:
        logger.info("Password reset requested for federated user %s (%s)", user.id, user.provider)
        return {"message": RESET_REQUESTED_MESSAGE}
    await manager.invalidate_active(user.id, VerificationKind.PASSWORD_RESET)
    try:
        await manager.issue_and_dispatch(user.id, user.email, VerificationKind.PASSWORD_RESET)
    except DispatchFailed:
        logger.error("Password reset code for user %s was not delivered", user.id)
    return {"message": RESET_REQUESTED_MESSAGE}


@router.post("/reset-password")
async def reset_password(
    data: ResetPasswordRequest,
    db: AsyncSession = Depends(get_db),
    manager: VerificationCodeManager = Depends(get_verification_manager),
) -> dict:
    """Set a new password using a reset code. The code is consumed here."""
    user = await get_user_or_404(db, data.user_id)
    if user.is_federated:
        raise FederationConflict(user.provider)
    if not await manager.verify(user.id, data.code, VerificationKind.PASSWORD_RESET):
        raise InvalidCode()
    user.password_hash = hash_password(data.new_password)
    await db.commit()
    await manager.invalidate_active(user.id, VerificationKind.PASSWORD_RESET)
    logger.info("Password reset for user %s", user.id)
    return {"message": "Password reset successfully."}


@router.post("/change-email/request", response_model=CodeSentResponse)
async def request_email_change(
    data: ChangeEmailCodeRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    manager: VerificationCodeManager = Depends(get_verification_manager),
) -> CodeSentResponse:
    """Send a code to the new address. Signed-in users only."""
    user = await get_user_or_404(db, user_id)
    result = await db.execute(select(User).where(User.email == data.new_email, User.id != user.id))
    if result.scalar_one_or_none():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")
    await manager.invalidate_active(user.id, VerificationKind.EMAIL_VERIFICATION)
    issued = await manager.issue_and_dispatch(
        user.id, data.new_email, VerificationKind.EMAIL_VERIFICATION, CodeContext(email=data.new_email)
    )
    return CodeSentResponse(expires_at=issued.expires_at)


@router.post("/change-email", response_model=UserResponse)
async def change_email(
    data: ChangeEmailRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    manager: VerificationCodeManager = Depends(get_verification_manager),
) -> UserResponse:
    """Switch to the new address once its code is confirmed."""
    user = await get_user_or_404(db, user_id)
    pending = await manager.require(user.id, data.code, VerificationKind.EMAIL_VERIFICATION, consume=False)
    if (pending.context_email or "").lower() != data.new_email.lower():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email mismatch")
    await manager.require(user.id, data.code, VerificationKind.EMAIL_VERIFICATION)
    user.email = data.new_email
    user.email_verified = True
    await db.commit()
    await db.refresh(user)
    logger.info("Email changed for user %s", user.id)
    return UserResponse.model_validate(user)


@router.get("/login-status/{user_id}", response_model=LoginStatusResponse)
async def login_status(
    user_id: int,
    request: Request,
    current_user_id: int = Depends(get_current_user_id),
    trust: DeviceTrustEvaluator = Depends(get_device_trust),
) -> LoginStatusResponse:
    """Whether a login from this request's device would need a verification code."""
    if current_user_id != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")
    ip_address = client_ip(request)
    user_agent = client_user_agent(request)
    return LoginStatusResponse(
        verification_needed=await trust.is_verification_needed(user_id, ip_address, user_agent),
        ip_address=ip_address,
        user_agent=user_agent,
    )
