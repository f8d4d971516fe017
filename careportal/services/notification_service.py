"""
Notification Port
Narrow outbound interface used by booking ingestion, the invoice issuer and the
reminder scheduler. Sends are fire-and-forget: a failed send is logged and
reported in the result, never raised into the state transition that caused it.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

logger = logging.getLogger(__name__)


class Template:
    BOOKING_CONFIRMATION = "booking_confirmation"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_REMINDER = "booking_reminder"
    THANK_YOU = "thank_you"
    FOLLOW_UP = "follow_up"
    INVOICE_SENT = "invoice_sent"
    PAYMENT_RECEIPT = "payment_receipt"


@dataclass
class NotificationResult:
    sent: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class NotificationPort(Protocol):
    async def send(self, to: str, template: str, data: dict[str, Any]) -> NotificationResult: ...


async def dispatch_notification(
    notifier: Optional[NotificationPort],
    to: Optional[str],
    template: str,
    data: dict[str, Any],
) -> NotificationResult:
    """
    Send a notification without letting a failure escape

    Args:
        notifier: NotificationPort implementation (None disables sending)
        to: Recipient email address
        template: One of the Template names
        data: Template variables

    Returns:
        NotificationResult describing the outcome
    """
    if notifier is None:
        logger.debug(f"⚠️ No notifier configured, skipping {template}")
        return NotificationResult(sent=False, error="notifier not configured")

    if not to:
        logger.debug(f"⚠️ No recipient for {template} notification")
        return NotificationResult(sent=False, error="missing recipient")

    try:
        logger.info(f"📧 Sending {template} to {to}")
        result = await notifier.send(to, template, data)
    except Exception as e:
        logger.error(f"❌ Failed to send {template} to {to}: {e}")
        return NotificationResult(sent=False, error=str(e))

    if result.sent:
        logger.info(f"✅ {template} sent successfully to {to}")
    else:
        logger.warning(f"⚠️ {template} to {to} not sent: {result.error}")
    return result
