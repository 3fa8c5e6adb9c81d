"""
Outbound email over a Resend-compatible HTTP API.

Sends are scheduled as background tasks after the response has been
written. A failed send is logged and reported as False; it never undoes
the change that triggered it.
"""

from __future__ import annotations

import httpx
import structlog

from debtbook.core.config import get_settings

log = structlog.get_logger()


async def send_email(to: str, subject: str, text: str) -> bool:
    """Send a plain-text email. Returns True if the provider accepted it."""
    settings = get_settings()
    if not settings.email_api_key:
        log.info("email.skipped", to=to, subject=subject, reason="no_api_key")
        return False

    try:
        async with httpx.AsyncClient(timeout=settings.email_timeout_seconds) as client:
            resp = await client.post(
                settings.email_api_url,
                headers={"Authorization": f"Bearer {settings.email_api_key}"},
                json={
                    "from": settings.email_from,
                    "to": [to],
                    "subject": subject,
                    "text": text,
                },
            )
            resp.raise_for_status()
    except httpx.HTTPError as e:
        log.error("email.failed", to=to, subject=subject, error=str(e))
        return False

    log.info("email.sent", to=to, subject=subject)
    return True


async def send_confirmation_code(email: str, code: str) -> bool:
    ttl = get_settings().one_time_code_ttl_minutes
    return await send_email(
        email,
        "Confirm your Debtbook account",
        f"Your confirmation code is {code}.\n\nThis code will expire in {ttl} minutes.",
    )


async def send_password_reset_code(email: str, code: str) -> bool:
    ttl = get_settings().one_time_code_ttl_minutes
    return await send_email(
        email,
        "Password Reset Code",
        (
            "We received a request to reset your password. "
            f"Here's your verification code: {code}\n\n"
            f"This code will expire in {ttl} minutes. "
            "If you didn't request a password reset, please ignore this email."
        ),
    )


async def send_join_decision(email: str, org_name: str, approved: bool) -> bool:
    """Tell a requester how their join request was decided."""
    if approved:
        subject = f"You have joined {org_name}"
        text = f"Your request to join {org_name} was approved. Sign in to get started."
    else:
        subject = f"Your request to join {org_name}"
        text = f"Your request to join {org_name} was not approved."
    return await send_email(email, subject, text)
