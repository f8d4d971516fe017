"""
Email Service using Resend
Implements the NotificationPort for email using MJML templates for responsive design
"""

import logging
from typing import Any, Optional, Union

import resend
from mjml import mjml2html as mjml_to_html

from .config import EMAIL_FROM_ADDRESS, EMAIL_REPLY_TO, RESEND_API_KEY
from .email_templates import (
    booking_cancelled_template,
    booking_confirmation_template,
    booking_reminder_template,
    follow_up_template,
    invoice_sent_template,
    payment_receipt_template,
    thank_you_template,
)
from .services.notification_service import NotificationResult, Template

logger = logging.getLogger(__name__)

resend.api_key = RESEND_API_KEY


def compile_mjml_to_html(mjml_content: str) -> str:
    """Compile MJML template to production-ready HTML"""
    try:
        result = mjml_to_html(mjml_content)
        if isinstance(result, dict):
            if result.get("errors"):
                logger.warning(f"MJML compilation warnings: {result['errors']}")
            return result.get("html", "")
        # mjml-python returns an object with .html/.errors
        errors = getattr(result, "errors", None)
        if errors:
            logger.warning(f"MJML compilation warnings: {errors}")
        return getattr(result, "html", str(result))
    except Exception as e:
        logger.error(f"MJML compilation error: {e}")
        raise RuntimeError(f"Failed to compile MJML template: {str(e)}") from e


async def send_email(
    to: Union[str, list[str]],
    subject: str,
    mjml_content: str,
    from_address: Optional[str] = None,
) -> dict:
    """
    Send an email using Resend

    Args:
        to: Recipient email(s)
        subject: Email subject line
        mjml_content: MJML template content (will be compiled to HTML)
        from_address: Optional custom from address

    Returns:
        Send response dict
    """
    if not RESEND_API_KEY:
        logger.error("❌ No email service configured - RESEND_API_KEY missing")
        raise RuntimeError("Email service not configured")

    html_content = compile_mjml_to_html(mjml_content)
    recipients = [to] if isinstance(to, str) else to

    logger.info(f"📧 Sending email via Resend to: {recipients}")
    email_data = {
        "from": from_address or EMAIL_FROM_ADDRESS,
        "to": recipients,
        "subject": subject,
        "html": html_content,
    }
    if EMAIL_REPLY_TO:
        email_data["reply_to"] = EMAIL_REPLY_TO

    response = resend.Emails.send(email_data)
    logger.info(f"✅ Email sent successfully via Resend: {response}")
    return response


def render_template(template: str, data: dict[str, Any]) -> tuple[str, str]:
    """
    Build subject and MJML body for a notification template

    Raises:
        ValueError: Unknown template name
    """
    name = data.get("client_name") or "there"

    if template == Template.BOOKING_CONFIRMATION:
        return "Consultation Confirmation and Payment.", booking_confirmation_template(
            client_name=name,
            scheduled_for=data["scheduled_for"],
            timezone_name=data.get("timezone") or "UTC",
            payment_url=data["payment_url"],
        )

    if template == Template.BOOKING_CANCELLED:
        return "Your consultation has been cancelled", booking_cancelled_template(
            client_name=name, scheduled_for=data["scheduled_for"]
        )

    if template == Template.BOOKING_REMINDER:
        hours_ahead = data.get("hours_ahead", 6)
        return f"Reminder: Your consultation is in {hours_ahead} hours", booking_reminder_template(
            client_name=name,
            scheduled_for=data["scheduled_for"],
            hours_ahead=hours_ahead,
            meeting_url=data.get("meeting_url"),
        )

    if template == Template.THANK_YOU:
        return "Thank you for your consultation", thank_you_template(client_name=name)

    if template == Template.FOLLOW_UP:
        return "We're here if you need us", follow_up_template(client_name=name)

    if template == Template.INVOICE_SENT:
        return f"Invoice {data['invoice_number']}", invoice_sent_template(
            client_name=name,
            invoice_number=data["invoice_number"],
            total_amount=data["total_amount"],
            currency=data["currency"],
            due_date=data.get("due_date", ""),
            invoice_url=data.get("invoice_url", ""),
        )

    if template == Template.PAYMENT_RECEIPT:
        return "Payment received", payment_receipt_template(
            client_name=name,
            amount=data["amount"],
            currency=data["currency"],
            reference=data["reference"],
            invoice_number=data.get("invoice_number", ""),
        )

    raise ValueError(f"Unknown email template: {template}")


class EmailNotifier:
    """NotificationPort backed by Resend"""

    async def send(self, to: str, template: str, data: dict[str, Any]) -> NotificationResult:
        subject, mjml_content = render_template(template, data)
        response = await send_email(to=to, subject=subject, mjml_content=mjml_content)
        message_id = response.get("id") if isinstance(response, dict) else None
        return NotificationResult(sent=True, message_id=message_id)


_notifier: Optional[EmailNotifier] = None


def get_notifier() -> EmailNotifier:
    """Dependency providing the process-wide email notifier"""
    global _notifier
    if _notifier is None:
        _notifier = EmailNotifier()
    return _notifier
