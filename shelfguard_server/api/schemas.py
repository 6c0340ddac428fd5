# Copyright (C) 2024 ShelfGuard Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Pydantic schemas for API request/response."""

from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from shelfguard_server.models import VerificationKind

# Codes are six characters; the manager tolerates anything, this keeps junk out early.
Code = Annotated[str, Field(min_length=6, max_length=6, pattern=r"^[A-Za-z0-9]{6}$")]


# Auth
class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserCreate(BaseModel):
    username: str = Field(min_length=1, max_length=64)
    email: EmailStr
    password: str = Field(min_length=8)


class UserLogin(BaseModel):
    username: str
    password: str


class LoginResponse(BaseModel):
    """Either a token, or a pending step-up challenge for user_id."""

    access_token: str | None = None
    token_type: str = "bearer"
    verification_required: bool = False
    user_id: int | None = None
    expires_at: datetime | None = None


class VerifyEmailRequest(BaseModel):
    user_id: int = Field(gt=0)
    code: Code


class VerifyLoginRequest(BaseModel):
    user_id: int = Field(gt=0)
    code: Code


class UserResponse(BaseModel):
    id: int
    username: str
    email: str
    provider: str | None = None
    email_verified: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Verification codes
class SendCodeRequest(BaseModel):
    """Issue a fresh code to the account's address, replacing any Active one."""

    user_id: int = Field(gt=0)
    kind: VerificationKind


class CodeSentResponse(BaseModel):
    message: str = "Verification code sent"
    expires_at: datetime


class VerifyCodeRequest(BaseModel):
    user_id: int = Field(gt=0)
    code: Code
    kind: VerificationKind


class VerifyCodeResponse(BaseModel):
    verified: bool = True
    message: str = "Verification successful"


class PasswordResetRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    user_id: int = Field(gt=0)
    code: Code
    new_password: str = Field(min_length=8)


class ChangeEmailCodeRequest(BaseModel):
    new_email: EmailStr


class ChangeEmailRequest(BaseModel):
    new_email: EmailStr
    code: Code


class LoginStatusResponse(BaseModel):
    verification_needed: bool
    ip_address: str
    user_agent: str


# Trusted devices
class TrustedDeviceResponse(BaseModel):
    id: int
    ip_address: str
    user_agent: str
    created_at: datetime
    last_used: datetime

    model_config = ConfigDict(from_attributes=True)
