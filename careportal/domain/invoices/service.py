"""
Invoice issuer - derives invoices from bookings and payments

Invoice status only moves forward through InvoiceStatus.ORDER. Amounts are the
priced subtotal plus INVOICE_TAX_RATE; the payment charges the invoice total.
"""

import logging
import secrets
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ... import config
from ...auth import Principal
from ...models import Booking, PricingType
from ...models_invoice import AttemptStatus, Invoice, InvoiceStatus, Payment, PaymentAttempt
from ...services.notification_service import NotificationPort, Template, dispatch_notification
from ...shared.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from ...shared.validators import utc_now
from ..bookings.repository import BookingStore
from ..payments.repository import PaymentLedger
from ..payments.transitions import MarkPaid
from ..pricing.engine import calculate_price, context_for_booking
from .repository import InvoiceRepository

logger = logging.getLogger(__name__)

MAX_PAGE_LIMIT = 50


def generate_invoice_number() -> str:
    """INV-YYYYMMDD-XXXXXX"""
    return f"INV-{utc_now():%Y%m%d}-{secrets.token_hex(3).upper()}"


def invoice_amounts(subtotal: float, tax_rate: Optional[float] = None) -> dict:
    rate = config.INVOICE_TAX_RATE if tax_rate is None else tax_rate
    amount = round(subtotal or 0.0, 2)
    tax = round(amount * rate, 2)
    return {"amount": amount, "tax": tax, "total_amount": round(amount + tax, 2)}


def subtotal_from_total(total: float, tax_rate: Optional[float] = None) -> float:
    """Back the tax out of a charged total"""
    rate = config.INVOICE_TAX_RATE if tax_rate is None else tax_rate
    return round(total / (1 + rate), 2)


def statuses_before(status: str) -> tuple[str, ...]:
    return InvoiceStatus.ORDER[: InvoiceStatus.ORDER.index(status)]


class InvoiceIssuer:
    """Service layer for invoice lifecycle"""

    def __init__(self, db: Session, notifier: Optional[NotificationPort] = None):
        self.db = db
        self.notifier = notifier
        self.repo = InvoiceRepository()

    # ========================================================================
    # ISSUING
    # ========================================================================

    def ensure_invoice(self, booking: Booking, subtotal: float, currency: str) -> Invoice:
        """Get the booking's invoice, creating it at PENDING on first request"""
        invoice = self.repo.get_by_booking(self.db, booking.id)
        if invoice:
            return invoice

        invoice, created = self.repo.create(
            self.db,
            booking_id=booking.id,
            invoice_number=generate_invoice_number(),
            currency=currency,
            status=InvoiceStatus.PENDING,
            due_at=utc_now() + timedelta(days=config.INVOICE_DUE_DAYS),
            **invoice_amounts(subtotal),
        )
        if created:
            logger.info(f"🧾 Invoice {invoice.invoice_number} created for booking {booking.id}")
        return invoice

    def _subtotal_for(self, booking: Booking) -> float:
        payment = booking.payment
        if payment is not None:
            return subtotal_from_total(payment.amount)

        service = booking.service
        if service is None or service.pricing_type == PricingType.QUOTE_BASED:
            # Set by an admin at finalize time
            return 0.0

        is_first = not BookingStore.has_earlier_booking(self.db, booking)
        quote = calculate_price(service, context_for_booking(booking, is_first))
        return quote.price or 0.0

    def request_invoice(self, principal: Principal, booking_id: int) -> Invoice:
        """Create (or return) the invoice for a booking the caller owns"""
        booking = BookingStore.get(self.db, booking_id)
        if not booking:
            raise NotFoundError(f"Booking {booking_id} not found", code="BookingNotFound")
        if not principal.is_admin and not principal.owns(booking.client_email):
            raise ForbiddenError("You do not have access to this booking")

        currency = booking.service.currency if booking.service else config.DEFAULT_CURRENCY
        return self.ensure_invoice(booking, self._subtotal_for(booking), currency)

    async def on_payment_paid(self, payment: Payment) -> Invoice:
        """Automatic path: the booking's invoice follows its payment to PAID"""
        booking = payment.booking
        invoice = self.ensure_invoice(booking, subtotal_from_total(payment.amount), payment.currency)

        if invoice.status != InvoiceStatus.PAID:
            paid_at = payment.paid_at or utc_now()
            if self.repo.advance(
                self.db,
                invoice.id,
                statuses_before(InvoiceStatus.PAID),
                {"status": InvoiceStatus.PAID, "paid_at": paid_at},
            ):
                logger.info(f"✅ Invoice {invoice.invoice_number} marked PAID from payment {payment.id}")
            self.db.refresh(invoice)
        return invoice

    # ========================================================================
    # READS
    # ========================================================================

    def get_invoice(self, invoice_id: int) -> Invoice:
        invoice = self.repo.get(self.db, invoice_id)
        if not invoice:
            raise NotFoundError(f"Invoice {invoice_id} not found", code="InvoiceNotFound")
        return invoice

    def read_invoice(self, principal: Principal, invoice_id: int) -> Invoice:
        """Authorized read; the owning client's first read of a SENT invoice marks it VIEWED"""
        invoice = self.get_invoice(invoice_id)
        owns = principal.owns(invoice.booking.client_email)
        if not principal.is_admin and not owns:
            raise ForbiddenError("You do not have access to this invoice")

        if owns and invoice.status == InvoiceStatus.SENT:
            if self.repo.advance(
                self.db,
                invoice.id,
                (InvoiceStatus.SENT,),
                {"status": InvoiceStatus.VIEWED, "viewed_at": utc_now()},
            ):
                logger.info(f"👀 Invoice {invoice.invoice_number} viewed by client")
            self.db.refresh(invoice)
        return invoice

    def get_for_booking(self, principal: Principal, booking_id: int) -> Invoice:
        invoice = self.repo.get_by_booking(self.db, booking_id)
        if not invoice:
            raise NotFoundError(f"No invoice for booking {booking_id}", code="InvoiceNotFound")
        return self.read_invoice(principal, invoice.id)

    def list_for(self, principal: Principal) -> list[Invoice]:
        return self.repo.list_for_client(self.db, principal.email)

    def list_invoices(
        self, principal: Principal, status: Optional[str] = None, page: int = 1, limit: int = 20
    ) -> tuple[list[Invoice], int, int, int]:
        """
        Paginated invoices; admins see every client, clients only their own

        Returns:
            (invoices, total, page, limit) with page and limit clamped
        """
        page = max(1, page)
        limit = min(max(1, limit), MAX_PAGE_LIMIT)
        client_email = None if principal.is_admin else principal.email
        invoices, total = self.repo.list_invoices(
            self.db, client_email, status.upper() if status else None, page, limit
        )
        return invoices, total, page, limit

    # ========================================================================
    # ADMIN ACTIONS
    # ========================================================================

    def finalize(self, invoice_id: int, amount: Optional[float] = None) -> Invoice:
        """PENDING -> GENERATED, optionally fixing the subtotal of a quoted booking"""
        invoice = self.get_invoice(invoice_id)
        values = {"status": InvoiceStatus.GENERATED}
        if amount is not None:
            if amount < 0:
                raise ValidationError("Invoice amount cannot be negative", code="InvalidAmount")
            values.update(invoice_amounts(amount))

        if not self.repo.advance(self.db, invoice.id, (InvoiceStatus.PENDING,), values):
            self.db.refresh(invoice)
            raise ConflictError(f"Invoice is already {invoice.status}", code="IllegalTransition")

        self.db.refresh(invoice)
        logger.info(f"🧾 Invoice {invoice.invoice_number} generated")
        return invoice

    async def send(self, invoice_id: int) -> Invoice:
        """PENDING/GENERATED -> SENT and email the client"""
        invoice = self.get_invoice(invoice_id)
        if not self.repo.advance(
            self.db,
            invoice.id,
            (InvoiceStatus.PENDING, InvoiceStatus.GENERATED),
            {"status": InvoiceStatus.SENT, "sent_at": utc_now()},
        ):
            self.db.refresh(invoice)
            raise ConflictError(f"Invoice is already {invoice.status}", code="IllegalTransition")

        self.db.refresh(invoice)
        booking = invoice.booking
        await dispatch_notification(
            self.notifier,
            booking.client_email,
            Template.INVOICE_SENT,
            {
                "client_name": booking.client_name,
                "invoice_number": invoice.invoice_number,
                "total_amount": invoice.total_amount,
                "currency": invoice.currency,
                "due_date": f"{invoice.due_at:%B %d, %Y}" if invoice.due_at else "",
                "invoice_url": f"{config.FRONTEND_URL}/invoices/{invoice.id}",
            },
        )
        logger.info(f"📤 Invoice {invoice.invoice_number} sent to {booking.client_email}")
        return invoice

    def mark_paid(self, invoice_id: int, principal: Principal) -> Invoice:
        """Any status -> PAID; the linked payment follows when that is a legal move"""
        invoice = self.get_invoice(invoice_id)
        now = utc_now()

        if not self.repo.advance(
            self.db,
            invoice.id,
            statuses_before(InvoiceStatus.PAID),
            {"status": InvoiceStatus.PAID, "paid_at": now},
        ):
            raise ConflictError("Invoice is already paid", code="IllegalTransition")
        self.db.refresh(invoice)
        logger.info(f"✅ Invoice {invoice.invoice_number} marked PAID by {principal.email}")

        payment = PaymentLedger.get_by_booking(self.db, invoice.booking_id)
        if payment is None:
            logger.info(f"ℹ️ No payment recorded for booking {invoice.booking_id}")
            return invoice

        reference = payment.provider_ref or f"invoice-{invoice.invoice_number}"
        moved = PaymentLedger.apply(
            self.db,
            payment.id,
            MarkPaid(paid_at=now),
            PaymentAttempt(
                reference=reference,
                amount=payment.amount,
                status=AttemptStatus.SUCCESS,
                attempt_metadata={"source": "invoice_mark_paid", "by": principal.email},
            ),
        )
        if moved:
            logger.info(f"💳 Payment {payment.id} marked PAID with invoice {invoice.invoice_number}")
        else:
            logger.info(f"ℹ️ Payment {payment.id} left at {payment.status}")
        return invoice
