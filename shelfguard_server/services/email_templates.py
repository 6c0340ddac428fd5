# Copyright (C) 2024 ShelfGuard Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Email templates for verification codes, one per kind."""

from dataclasses import dataclass
from datetime import timedelta
from html import escape

from shelfguard_server.config import settings
from shelfguard_server.models import VerificationKind


@dataclass(frozen=True)
class RenderedMessage:
    subject: str
    body: str
    html_body: str


@dataclass(frozen=True)
class _Template:
    subject: str
    heading: str
    intro: str
    footer: str


_TEMPLATES: dict[VerificationKind, _Template] = {
    VerificationKind.EMAIL_VERIFICATION: _Template(
        subject="Verify your email address",
        heading="Verify your email address",
        intro="Please use the following verification code to confirm your email address:",
        footer="If you didn't request this verification, you can safely ignore this email.",
    ),
    VerificationKind.PASSWORD_RESET: _Template(
        subject="Password reset request",
        heading="Password reset request",
        intro="We received a request to reset your password. Use the following code to complete the process:",
        footer=(
            "If you didn't request a password reset, please contact us immediately "
            "as someone may be trying to access your account."
        ),
    ),
    VerificationKind.LOGIN_VERIFICATION: _Template(
        subject="Login verification code",
        heading="Login verification required",
        intro=(
            "We noticed a sign-in attempt from a new device or location. "
            "For your security, please use the following code to verify it's you:"
        ),
        footer=(
            "If you didn't try to sign in, please change your password "
            "as someone may be trying to access your account."
        ),
    ),
}


def describe_ttl(ttl: timedelta) -> str:
    """Human text for a code lifetime, e.g. '24 hours', '1 hour', '15 minutes'."""
    minutes = int(ttl.total_seconds() // 60)
    if minutes % 60 == 0:
        hours = minutes // 60
        return f"{hours} hour" if hours == 1 else f"{hours} hours"
    return f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"


def render(kind: VerificationKind, code: str, username: str, ttl: timedelta) -> RenderedMessage:
    """Render the plain and HTML message for a code of the given kind."""
    t = _TEMPLATES[kind]
    expires = describe_ttl(ttl)
    body = (
        f"Hello {username},\n\n"
        f"{t.intro}\n\n"
        f"{code}\n\n"
        f"This code will expire in {expires}.\n\n"
        f"{t.footer}\n\n"
        f"Best regards,\nThe {settings.app_name} Team"
    )
    html_body = f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body style="font-family: system-ui, sans-serif; color: #333; max-width: 560px;">
<h2>{escape(t.heading)}</h2>
<p>Hello {escape(username)},</p>
<p>{escape(t.intro)}</p>
<div style="background-color: #f0f0f0; padding: 15px; text-align: center; font-size: 24px; letter-spacing: 5px; font-weight: bold; margin: 20px 0;">{escape(code)}</div>
<p>This code will expire in {expires}.</p>
<p>{escape(t.footer)}</p>
<p>Best regards,<br>The {escape(settings.app_name)} Team</p>
</body>
</html>"""
    return RenderedMessage(
        subject=f"{t.subject} - {settings.app_name}",
        body=body,
        html_body=html_body,
    )
