"""Transactional email through the Brevo HTTP API."""

import httpx

from enrichdesk.core.config import get_settings
from enrichdesk.core.logging import get_logger

log = get_logger(__name__)


class MailDeliveryError(Exception):
    pass


async def send_email(to_email: str, subject: str, html: str, to_name: str | None = None) -> str | None:
    """Send one email; return the provider message id. Raises MailDeliveryError on failure."""
    settings = get_settings()
    if not settings.brevo_api_key:
        raise MailDeliveryError("Email service not configured")
    body = {
        "sender": {"name": settings.mail_sender_name, "email": settings.mail_sender_email},
        "to": [{"email": to_email, "name": to_name or to_email.split("@")[0]}],
        "subject": subject,
        "htmlContent": html,
    }
    headers = {"accept": "application/json", "api-key": settings.brevo_api_key}
    try:
        async with httpx.AsyncClient(timeout=15.0) as client:
            resp = await client.post(settings.brevo_api_url, json=body, headers=headers)
    except httpx.HTTPError as e:
        raise MailDeliveryError(f"Email request failed: {e}") from e
    if resp.status_code >= 400:
        raise MailDeliveryError(f"Brevo API returned {resp.status_code}: {resp.text[:500]}")
    message_id = resp.json().get("messageId") if resp.content else None
    log.info("email_sent", to=to_email, subject=subject, message_id=message_id)
    return message_id
