from __future__ import annotations

import logging

from app.celery_app import celery_app
from app.services.notification_service import notify_new_message

logger = logging.getLogger(__name__)


@celery_app.task(name="app.tasks.notification_tasks.send_message_email")
def send_message_email(
    to: str,
    sender_name: str,
    text: str,
    conversation_id: str,
    to_admin: bool,
    recipient_name: str | None = None,
) -> None:
    """Email the other party about a new chat message. Failures are logged, never retried."""
    try:
        notify_new_message(to, sender_name, text, conversation_id, to_admin, recipient_name)
    except Exception as exc:
        logger.error(
            "send_message_email: failed for conversation %s to %s: %s",
            conversation_id,
            to,
            exc,
        )
