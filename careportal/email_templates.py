"""
MJML Email Templates
All client-facing booking and billing emails, written in MJML for responsive,
cross-client rendering
"""

from typing import Optional

from .config import FRONTEND_URL

# Brand colors - Teal/Slate color scheme
THEME = {
    "primary": "#14b8a6",
    "primary_dark": "#0d9488",
    "primary_light": "#ccfbf1",
    "background": "#f8fafc",
    "card_bg": "#ffffff",
    "text_primary": "#0f172a",
    "text_secondary": "#334155",
    "text_muted": "#64748b",
    "border": "#e2e8f0",
    "success": "#14b8a6",
    "warning": "#f59e0b",
    "danger": "#ef4444",
}

BRAND_NAME = "LivingRite Care"


def format_money(amount: Optional[float], currency: str) -> str:
    return f"{currency} {amount or 0:,.2f}"


def get_base_template(
    title: str,
    preview_text: str,
    content_sections: str,
    cta_url: Optional[str] = None,
    cta_label: Optional[str] = None,
) -> str:
    """Base MJML template wrapper for all emails"""

    cta_section = ""
    if cta_url and cta_label:
        cta_section = f"""
        <mj-section padding="20px 0">
          <mj-column>
            <mj-button
              href="{cta_url}"
              background-color="{THEME['primary']}"
              color="#ffffff"
              font-weight="600"
              border-radius="8px"
              padding="18px 40px"
              font-size="16px">
              {cta_label}
            </mj-button>
          </mj-column>
        </mj-section>
        """

    return f"""
    <mjml>
      <mj-head>
        <mj-title>{title}</mj-title>
        <mj-preview>{preview_text}</mj-preview>
        <mj-attributes>
          <mj-all font-family="-apple-system, BlinkMacSystemFont, 'Segoe UI', 'Helvetica Neue', Arial, sans-serif" />
          <mj-text font-size="16px" line-height="1.6" color="{THEME['text_secondary']}" />
        </mj-attributes>
      </mj-head>
      <mj-body background-color="{THEME['background']}">
        <mj-section background-color="#ffffff" padding="32px 20px 0 20px">
          <mj-column>
            <mj-text font-size="20px" font-weight="700" color="{THEME['primary_dark']}" padding="0">
              {BRAND_NAME}
            </mj-text>
            <mj-divider border-color="{THEME['border']}" border-width="1px" padding="24px 0 32px 0" />
          </mj-column>
        </mj-section>

        <!-- Main Content -->
        <mj-section background-color="#ffffff" padding="0 40px 48px 40px">
          <mj-column>
            <mj-text font-size="24px" font-weight="600" color="{THEME['text_primary']}" line-height="1.3" padding="0 0 16px 0">
              {title}
            </mj-text>

            {content_sections}
          </mj-column>
        </mj-section>

        {cta_section}

        <!-- Footer -->
        <mj-section padding="32px 20px">
          <mj-column>
            <mj-text align="center" font-size="13px" color="#94a3b8" padding="0">
              You're receiving this because you booked a consultation with {BRAND_NAME}.
            </mj-text>
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """


def booking_confirmation_template(
    client_name: str, scheduled_for: str, timezone_name: str, payment_url: str
) -> str:
    """Consultation booked - asks the client to complete payment"""
    content = f"""
    <mj-text>
      Hi {client_name},
    </mj-text>

    <mj-text>
      Your consultation is confirmed for:
    </mj-text>

    <mj-text font-size="18px" font-weight="600" color="{THEME['text_primary']}">
      {scheduled_for}
    </mj-text>

    <mj-text font-size="14px" color="{THEME['text_muted']}">
      Timezone: {timezone_name}
    </mj-text>

    <mj-text>
      <strong>Important:</strong> Please make your payment to validate your booking.
      Your schedule will only be valid after payment is received.
    </mj-text>

    <mj-text>
      A joining link will be sent to you before your consultation.
    </mj-text>
    """

    return get_base_template(
        title="Consultation Confirmed",
        preview_text=f"Your consultation on {scheduled_for}",
        content_sections=content,
        cta_url=payment_url,
        cta_label="Complete Payment",
    )


def booking_cancelled_template(client_name: str, scheduled_for: str) -> str:
    content = f"""
    <mj-text>
      Hi {client_name},
    </mj-text>

    <mj-text>
      Your consultation scheduled for <strong>{scheduled_for}</strong> has been cancelled.
    </mj-text>

    <mj-text>
      If this was a mistake or you would like a new time, you can book again at any time.
    </mj-text>
    """

    return get_base_template(
        title="Consultation Cancelled",
        preview_text="Your consultation has been cancelled",
        content_sections=content,
        cta_url=f"{FRONTEND_URL}/booking",
        cta_label="Book Again",
    )


def booking_reminder_template(
    client_name: str, scheduled_for: str, hours_ahead: int, meeting_url: Optional[str] = None
) -> str:
    """Reminder sent ahead of the consultation"""
    meeting_section = ""
    if meeting_url:
        meeting_section = f"""
    <mj-text>
      Join here: <a href="{meeting_url}" style="color: {THEME['primary_dark']};">{meeting_url}</a>
    </mj-text>
        """

    content = f"""
    <mj-text>
      Hi {client_name},
    </mj-text>

    <mj-text>
      This is a friendly reminder that your consultation is in {hours_ahead} hours:
    </mj-text>

    <mj-text font-size="18px" font-weight="600" color="{THEME['text_primary']}">
      {scheduled_for}
    </mj-text>

    {meeting_section}

    <mj-text>
      Need to reschedule? Contact us or check your booking details.
    </mj-text>
    """

    return get_base_template(
        title="Consultation Reminder",
        preview_text=f"Your consultation is in {hours_ahead} hours",
        content_sections=content,
    )


def thank_you_template(client_name: str) -> str:
    content = f"""
    <mj-text>
      Thank you, {client_name}!
    </mj-text>

    <mj-text>
      We hope you found our consultation valuable. We'd love to hear your feedback.
    </mj-text>
    """

    return get_base_template(
        title="Thank You",
        preview_text="Thank you for your consultation",
        content_sections=content,
        cta_url=f"{FRONTEND_URL}/feedback",
        cta_label="Share Feedback",
    )


def follow_up_template(client_name: str) -> str:
    content = f"""
    <mj-text>
      Hi {client_name},
    </mj-text>

    <mj-text>
      We noticed we haven't heard from you since your consultation.
    </mj-text>

    <mj-text>
      If you have any questions or need further assistance, please don't hesitate to reach out.
    </mj-text>
    """

    return get_base_template(
        title="We're Here For You",
        preview_text="We're here if you need us",
        content_sections=content,
        cta_url=f"{FRONTEND_URL}/booking",
        cta_label="Schedule Another Consultation",
    )


def invoice_sent_template(
    client_name: str,
    invoice_number: str,
    total_amount: float,
    currency: str,
    due_date: str = "",
    invoice_url: str = "",
) -> str:
    """Invoice ready notification for client"""
    due_date_section = ""
    if due_date:
        due_date_section = f"<br/>Due Date: {due_date}"

    content = f"""
    <mj-text>
      Hi {client_name},
    </mj-text>

    <mj-text>
      Your invoice from <strong>{BRAND_NAME}</strong> is ready.
    </mj-text>

    <mj-text align="center" font-size="32px" font-weight="700" color="{THEME['text_primary']}" padding="20px 0">
      {format_money(total_amount, currency)}
    </mj-text>

    <mj-text font-size="14px" color="{THEME['text_muted']}">
      Invoice: {invoice_number}{due_date_section}
    </mj-text>
    """

    return get_base_template(
        title="Invoice Ready",
        preview_text=f"Invoice Ready - {invoice_number}",
        content_sections=content,
        cta_url=invoice_url or None,
        cta_label="View Invoice" if invoice_url else None,
    )


def payment_receipt_template(
    client_name: str, amount: float, currency: str, reference: str, invoice_number: str = ""
) -> str:
    invoice_section = ""
    if invoice_number:
        invoice_section = f"<br/>Invoice: {invoice_number}"

    content = f"""
    <mj-text>
      Hi {client_name},
    </mj-text>

    <mj-text>
      We've received your payment. Your consultation booking is now confirmed.
    </mj-text>

    <mj-text align="center" font-size="32px" font-weight="700" color="{THEME['success']}" padding="20px 0">
      {format_money(amount, currency)}
    </mj-text>

    <mj-text font-size="14px" color="{THEME['text_muted']}">
      Reference: {reference}{invoice_section}
    </mj-text>
    """

    return get_base_template(
        title="Payment Received",
        preview_text=f"Payment received - {format_money(amount, currency)}",
        content_sections=content,
    )


__all__ = [
    "get_base_template",
    "booking_confirmation_template",
    "booking_cancelled_template",
    "booking_reminder_template",
    "thank_you_template",
    "follow_up_template",
    "invoice_sent_template",
    "payment_receipt_template",
    "THEME",
]
