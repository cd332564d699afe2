from __future__ import annotations

import dataclasses
import logging

from app.config import settings

logger = logging.getLogger(__name__)

_SNIPPET_LIMIT = 120


@dataclasses.dataclass(frozen=True)
class EmailNotification:
    to: str
    subject: str
    body: str


def send_email(notification: EmailNotification) -> None:
    """Mail transport stub: logs only. TODO: hand off to an SMTP provider once credentials are configured."""
    logger.info("EMAIL [%s]: %s | %s", notification.to, notification.subject, notification.body)


def compose_message_email(
    to: str,
    sender_name: str,
    text: str,
    conversation_id: str,
    to_admin: bool,
    recipient_name: str | None = None,
) -> EmailNotification:
    """Build the "you have a new message" email for either side of a conversation."""
    brand = settings.BRAND_NAME
    base_url = settings.SITE_URL.rstrip("/")
    if to_admin:
        subject = f"New message from {sender_name} — {brand}"
        link = f"{base_url}/admin/messages?conversation={conversation_id}"
        greeting = "Hello Admin,"
    else:
        subject = f"New reply from {brand}"
        link = f"{base_url}/?openChat=true"
        greeting = f"Hello {recipient_name}," if recipient_name else "Hello,"

    snippet = text if len(text) <= _SNIPPET_LIMIT else text[:_SNIPPET_LIMIT] + "..."
    body = f"{greeting}\n\n{sender_name} wrote:\n{snippet}\n\nView conversation: {link}"
    return EmailNotification(to=to, subject=subject, body=body)


def notify_new_message(
    to: str,
    sender_name: str,
    text: str,
    conversation_id: str,
    to_admin: bool,
    recipient_name: str | None = None,
) -> None:
    send_email(
        compose_message_email(to, sender_name, text, conversation_id, to_admin, recipient_name)
    )
