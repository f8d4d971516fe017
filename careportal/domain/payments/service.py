"""
Payment service - initiation, verification, refunds and reconciliation

PaymentReconciler is the single place provider outcomes are applied to the
ledger. The webhook gateway and the verify endpoint both go through it, so a
replayed or out-of-order report converges to the same state either way.
"""

import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.orm import Session

from ... import config
from ...auth import Principal
from ...models import Booking, BookingStatus, PricingType
from ...models_invoice import (
    AttemptStatus,
    Payment,
    PaymentAttempt,
    PaymentStatus,
    RefundRequest,
    RefundStatus,
)
from ...services.notification_service import NotificationPort, Template, dispatch_notification
from ...services.paystack_service import PaymentGateway
from ...shared.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from ...shared.validators import from_minor_units, parse_iso_datetime, to_minor_units, utc_now
from ..bookings.repository import BookingStore
from ..invoices.service import InvoiceIssuer
from ..pricing.engine import calculate_price, context_for_booking
from .repository import PaymentLedger
from .transitions import (
    ACTIVE_STATUSES,
    REFUNDABLE_STATUSES,
    MarkFailed,
    MarkPaid,
    Reinitiate,
    can_transition,
)

logger = logging.getLogger(__name__)

# Reconciliation outcomes
APPLIED = "applied"
DUPLICATE = "duplicate"
STALE = "stale"
UNMATCHED = "unmatched"
REJECTED = "rejected"


def generate_reference(booking_id: int) -> str:
    """<bookingId>-<epoch ms>-<4 hex>"""
    return f"{booking_id}-{int(time.time() * 1000)}-{secrets.token_hex(2)}"


def refundable_balance(db: Session, ledger: PaymentLedger, payment: Payment) -> float:
    """Amount still refundable once processed and pending requests are counted"""
    processed, pending = ledger.refund_totals(db, payment.id)
    return round(payment.amount - processed - pending, 2)


@dataclass
class InitiationResult:
    payment: Payment
    gateway_config: Optional[dict[str, Any]]


class PaymentReconciler:
    """Applies provider-reported outcomes idempotently"""

    def __init__(self, db: Session, notifier: Optional[NotificationPort] = None):
        self.db = db
        self.notifier = notifier
        self.ledger = PaymentLedger()
        self.invoices = InvoiceIssuer(db, notifier)

    def _find(self, reference: Optional[str]) -> Optional[Payment]:
        if not reference:
            return None
        return self.ledger.get_by_reference(self.db, reference)

    async def charge_success(
        self,
        reference: str,
        amount_minor: Optional[int] = None,
        paid_at: Optional[str] = None,
        raw: Optional[dict] = None,
    ) -> str:
        """Payment -> PAID, or -> FAILED when the charged amount falls short"""
        payment = self._find(reference)
        if not payment:
            logger.warning(f"⚠️ charge.success for unknown reference {reference}")
            return UNMATCHED

        if payment.status in (PaymentStatus.PAID, PaymentStatus.REFUNDED):
            logger.info(f"🔁 Payment {payment.id} already {payment.status}, charge.success ignored")
            await self.invoices.on_payment_paid(payment)
            return DUPLICATE

        charged = from_minor_units(amount_minor)
        if charged is not None and charged + 0.005 < payment.amount:
            return self._amount_mismatch(payment, reference, charged, raw)

        moved = self.ledger.apply(
            self.db,
            payment.id,
            MarkPaid(paid_at=parse_iso_datetime(paid_at) or utc_now()),
            PaymentAttempt(
                reference=reference,
                amount=charged if charged is not None else payment.amount,
                status=AttemptStatus.SUCCESS,
                attempt_metadata=raw or {},
            ),
        )
        self.db.refresh(payment)

        if not moved:
            if payment.status in (PaymentStatus.PAID, PaymentStatus.REFUNDED):
                logger.info(f"🔁 Payment {payment.id} settled concurrently")
                await self.invoices.on_payment_paid(payment)
                return DUPLICATE
            logger.warning(f"⚠️ Payment {payment.id} is {payment.status}, charge.success not applied")
            return STALE

        invoice = await self.invoices.on_payment_paid(payment)
        await dispatch_notification(
            self.notifier,
            payment.booking.client_email,
            Template.PAYMENT_RECEIPT,
            {
                "client_name": payment.booking.client_name,
                "amount": payment.amount,
                "currency": payment.currency,
                "reference": reference,
                "invoice_number": invoice.invoice_number,
            },
        )
        return APPLIED

    def _amount_mismatch(
        self, payment: Payment, reference: str, charged: float, raw: Optional[dict]
    ) -> str:
        logger.error(
            f"❌ Payment {payment.id} charged {charged} but {payment.amount} expected ({reference})"
        )
        moved = self.ledger.apply(
            self.db,
            payment.id,
            MarkFailed(reference=reference),
            PaymentAttempt(
                reference=reference,
                amount=charged,
                status=AttemptStatus.FAILED,
                error_code="amount_mismatch",
                error_message=f"Charged {charged} {payment.currency}, expected {payment.amount}",
                attempt_metadata=raw or {},
            ),
        )
        self.db.refresh(payment)
        return REJECTED if moved else DUPLICATE

    def charge_failed(
        self,
        reference: str,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
        amount_minor: Optional[int] = None,
        raw: Optional[dict] = None,
    ) -> str:
        """Payment PENDING -> FAILED for the attempt in flight"""
        payment = self._find(reference)
        if not payment:
            logger.warning(f"⚠️ charge.failed for unknown reference {reference}")
            return UNMATCHED

        charged = from_minor_units(amount_minor)
        moved = self.ledger.apply(
            self.db,
            payment.id,
            MarkFailed(reference=reference),
            PaymentAttempt(
                reference=reference,
                amount=charged if charged is not None else payment.amount,
                status=AttemptStatus.FAILED,
                error_code=error_code,
                error_message=error_message,
                attempt_metadata=raw or {},
            ),
        )
        self.db.refresh(payment)
        if moved:
            logger.info(f"❌ Payment {payment.id} failed: {error_message}")
            return APPLIED

        if payment.status == PaymentStatus.FAILED and payment.provider_ref == reference:
            return DUPLICATE
        # Settled, or superseded by a newer attempt
        logger.info(f"ℹ️ charge.failed for {reference} ignored, payment {payment.id} is {payment.status}")
        return STALE

    def refund_created(
        self,
        transaction_reference: str,
        refund_reference: str,
        amount_minor: Optional[int],
        raw: Optional[dict] = None,
    ) -> str:
        """Record the provider's refund reference on a PENDING RefundRequest"""
        if refund_reference and self.ledger.get_refund_by_provider_ref(self.db, refund_reference):
            return DUPLICATE

        payment = self._find(transaction_reference)
        if not payment:
            logger.warning(f"⚠️ refund.created for unknown transaction {transaction_reference}")
            return UNMATCHED

        amount = from_minor_units(amount_minor)
        if amount is None or amount <= 0:
            logger.error(f"❌ refund.created {refund_reference} without a positive amount, rejected")
            return REJECTED
        if payment.status not in REFUNDABLE_STATUSES:
            logger.error(
                f"❌ refund.created {refund_reference} rejected, payment {payment.id} is {payment.status}"
            )
            return REJECTED

        existing = self.ledger.find_unreferenced_refund(self.db, payment.id, amount)
        if existing and self.ledger.attach_refund_reference(self.db, existing.id, refund_reference):
            logger.info(f"🔗 Refund request {existing.id} matched provider refund {refund_reference}")
            return APPLIED

        refundable = refundable_balance(self.db, self.ledger, payment)
        if amount > refundable + 0.005:
            logger.error(
                f"❌ refund.created {refund_reference} for {amount} exceeds refundable balance "
                f"{refundable} on payment {payment.id}"
            )
            return REJECTED

        refund = self.ledger.create_refund_request(
            self.db,
            payment,
            amount,
            reason=(raw or {}).get("merchant_note") or "Refund initiated with provider",
            provider_ref=refund_reference,
        )
        if refund is None:
            return DUPLICATE
        logger.info(f"💸 Refund request {refund.id} created from provider refund {refund_reference}")
        return APPLIED

    def refund_processed(
        self,
        transaction_reference: str,
        refund_reference: str,
        amount_minor: Optional[int],
        raw: Optional[dict] = None,
    ) -> str:
        """Matching RefundRequest -> PROCESSED and Payment -> REFUNDED"""
        refund: Optional[RefundRequest] = None
        if refund_reference:
            refund = self.ledger.get_refund_by_provider_ref(self.db, refund_reference)

        if refund is None:
            payment = self._find(transaction_reference)
            if not payment:
                logger.warning(f"⚠️ refund.processed for unknown transaction {transaction_reference}")
                return UNMATCHED
            amount = from_minor_units(amount_minor) or 0.0
            refund = self.ledger.find_unreferenced_refund(self.db, payment.id, amount)
            if refund is None or not self.ledger.attach_refund_reference(
                self.db, refund.id, refund_reference
            ):
                logger.warning(
                    f"⚠️ refund.processed {refund_reference} has no matching refund request on payment {payment.id}"
                )
                return UNMATCHED
            self.db.refresh(refund)

        if refund.status != RefundStatus.PENDING:
            return DUPLICATE

        payment = refund.payment
        processed = self.ledger.process_refund(
            self.db,
            refund,
            utc_now(),
            PaymentAttempt(
                reference=refund_reference or f"refund-{refund.id}",
                amount=refund.amount,
                status=AttemptStatus.SUCCESS,
                attempt_metadata={"type": "refund", **(raw or {})},
            ),
        )
        self.db.refresh(refund)
        if processed:
            return APPLIED
        if refund.status != RefundStatus.PENDING:
            return DUPLICATE
        logger.error(f"❌ Refund {refund.id} rejected for payment {payment.id} in status {payment.status}")
        return REJECTED


class PaymentService:
    """Service layer for payment operations"""

    def __init__(
        self,
        db: Session,
        notifier: Optional[NotificationPort] = None,
        gateway: Optional[PaymentGateway] = None,
    ):
        self.db = db
        self.notifier = notifier
        self.gateway = gateway
        self.ledger = PaymentLedger()
        self.invoices = InvoiceIssuer(db, notifier)
        self.reconciler = PaymentReconciler(db, notifier)

    def get_payment(self, payment_id: int) -> Payment:
        payment = self.ledger.get(self.db, payment_id)
        if not payment:
            raise NotFoundError(f"Payment {payment_id} not found", code="PaymentNotFound")
        return payment

    def _check_access(self, principal: Principal, booking: Booking) -> None:
        if not principal.is_admin and not principal.owns(booking.client_email):
            raise ForbiddenError("You do not have access to this booking")

    # ========================================================================
    # INITIATION
    # ========================================================================

    def initiate(self, principal: Principal, booking_id: int) -> InitiationResult:
        """
        Create (or re-enter) the PENDING payment for a booking

        Raises:
            NotFoundError: Unknown booking
            ConflictError: Booking not scheduled, or payment already active
            ValidationError: QuoteRequired / PricingNotConfigured
        """
        booking = BookingStore.get(self.db, booking_id)
        if not booking:
            raise NotFoundError(f"Booking {booking_id} not found", code="BookingNotFound")
        self._check_access(principal, booking)

        if booking.status != BookingStatus.SCHEDULED:
            raise ConflictError(f"Booking is {booking.status.lower()}", code="BookingNotScheduled")

        existing = self.ledger.get_by_booking(self.db, booking.id)
        if existing and existing.status in ACTIVE_STATUSES:
            raise ConflictError(
                f"Payment already {existing.status.lower()} for this booking",
                code="PaymentAlreadyActive",
            )

        service = booking.service
        if service is not None and service.pricing_type == PricingType.QUOTE_BASED:
            raise ValidationError("This service is priced by quote", code="QuoteRequired")
        if service is None or not service.base_price or service.base_price <= 0:
            raise ValidationError("Service pricing is not configured", code="PricingNotConfigured")

        if existing:
            return self._reinitiate(booking, existing)

        is_first = not BookingStore.has_earlier_booking(self.db, booking)
        quote = calculate_price(service, context_for_booking(booking, is_first))

        if quote.is_first_consultation:
            payment = self.ledger.create_free(self.db, booking, service.currency)
            logger.info(f"🎁 Free first consultation for booking {booking.id}")
            return InitiationResult(payment=payment, gateway_config=None)

        invoice = self.invoices.ensure_invoice(booking, quote.price, service.currency)
        reference = generate_reference(booking.id)
        metadata = {
            "bookingId": booking.id,
            "invoiceNumber": invoice.invoice_number,
            "breakdown": [
                {"kind": line.kind, "label": line.label, "amount": line.amount}
                for line in quote.breakdown
            ],
        }
        payment = self.ledger.create_pending(
            self.db, booking, invoice.total_amount, service.currency, reference, metadata
        )
        logger.info(f"💳 Payment {payment.id} initiated for booking {booking.id}: {reference}")
        return InitiationResult(payment=payment, gateway_config=self._gateway_config(booking, payment))

    def _reinitiate(self, booking: Booking, payment: Payment) -> InitiationResult:
        """FAILED -> PENDING with a fresh reference; the amount is kept"""
        reference = generate_reference(booking.id)
        moved = self.ledger.apply(
            self.db,
            payment.id,
            Reinitiate(provider_ref=reference),
            PaymentAttempt(
                reference=reference,
                amount=payment.amount,
                status=AttemptStatus.PENDING,
                attempt_metadata={"bookingId": booking.id, "retryOf": payment.provider_ref},
            ),
        )
        self.db.refresh(payment)
        if not moved:
            raise ConflictError(
                f"Payment already {payment.status.lower()} for this booking",
                code="PaymentAlreadyActive",
            )
        logger.info(f"🔄 Payment {payment.id} re-initiated for booking {booking.id}: {reference}")
        return InitiationResult(payment=payment, gateway_config=self._gateway_config(booking, payment))

    def _gateway_config(self, booking: Booking, payment: Payment) -> dict[str, Any]:
        return {
            "publicKey": config.PAYSTACK_PUBLIC_KEY,
            "email": booking.client_email,
            "amountMinorUnits": to_minor_units(payment.amount),
            "reference": payment.provider_ref,
            "metadata": {
                "bookingId": booking.id,
                "paymentId": payment.id,
                "clientName": booking.client_name,
            },
        }

    # ========================================================================
    # VERIFICATION
    # ========================================================================

    async def verify(self, principal: Principal, reference: str) -> tuple[Payment, bool, str]:
        """
        Ask the provider for the transaction outcome and reconcile

        Returns:
            (payment, verified, outcome)
        """
        payment = self.ledger.get_by_reference(self.db, reference)
        if not payment:
            raise NotFoundError(f"No payment with reference {reference}", code="PaymentNotFound")
        self._check_access(principal, payment.booking)

        transaction = await self.gateway.verify_transaction(reference)

        if transaction.status == "success":
            outcome = await self.reconciler.charge_success(
                reference, transaction.amount_minor, transaction.paid_at, transaction.raw
            )
        elif transaction.status == "failed":
            outcome = self.reconciler.charge_failed(
                reference,
                error_code=transaction.status,
                error_message=transaction.gateway_response,
                amount_minor=transaction.amount_minor,
                raw=transaction.raw,
            )
        else:
            logger.info(f"⏳ Transaction {reference} is {transaction.status}, no change")
            outcome = STALE

        self.db.refresh(payment)
        return payment, payment.status in (PaymentStatus.PAID, PaymentStatus.REFUNDED), outcome

    # ========================================================================
    # REFUNDS
    # ========================================================================

    def request_refund(self, payment_id: int, amount: float, reason: str) -> RefundRequest:
        """
        Create a PENDING refund request; the provider's refund.processed confirms it

        Raises:
            ConflictError: Payment is not PAID (InvalidPaymentState)
            ValidationError: Amount exceeds what is left to refund (RefundExceedsPayment)
        """
        payment = self.get_payment(payment_id)
        if payment.status not in REFUNDABLE_STATUSES:
            raise ConflictError(
                f"Cannot refund a payment that is {payment.status}", code="InvalidPaymentState"
            )

        if amount is None or amount <= 0:
            raise ValidationError("Refund amount must be positive", code="InvalidAmount")

        refundable = refundable_balance(self.db, self.ledger, payment)
        if amount > refundable + 0.005:
            raise ValidationError(
                f"Refund of {amount} exceeds refundable balance {refundable}",
                code="RefundExceedsPayment",
            )

        refund = self.ledger.create_refund_request(self.db, payment, amount, reason)
        logger.info(f"💸 Refund request {refund.id} for {amount} on payment {payment.id}")
        return refund

    # ========================================================================
    # ADMIN OVERRIDE
    # ========================================================================

    async def override_status(self, payment_id: int, status: str, principal: Principal) -> Payment:
        """Admin move to PAID or FAILED, restricted to legal transitions"""
        payment = self.get_payment(payment_id)

        if status not in (PaymentStatus.PAID, PaymentStatus.FAILED) or not can_transition(
            payment.status, status
        ):
            raise ConflictError(
                f"Cannot move payment from {payment.status} to {status}", code="IllegalTransition"
            )

        reference = payment.provider_ref or f"admin-{payment.id}"
        metadata = {"source": "admin_override", "by": principal.email}

        if status == PaymentStatus.PAID:
            update = MarkPaid(paid_at=utc_now())
            attempt_status = AttemptStatus.SUCCESS
        else:
            update = MarkFailed(reference=reference)
            attempt_status = AttemptStatus.FAILED

        moved = self.ledger.apply(
            self.db,
            payment.id,
            update,
            PaymentAttempt(
                reference=reference,
                amount=payment.amount,
                status=attempt_status,
                error_code="admin_override" if status == PaymentStatus.FAILED else None,
                attempt_metadata=metadata,
            ),
        )
        self.db.refresh(payment)
        if not moved:
            raise ConflictError(
                f"Payment changed concurrently and is now {payment.status}", code="IllegalTransition"
            )

        logger.info(f"🛠️ Payment {payment.id} set to {status} by {principal.email}")
        if status == PaymentStatus.PAID:
            await self.invoices.on_payment_paid(payment)
        return payment


def latest_error(payment: Payment) -> Optional[dict]:
    """Error fields of the newest failed attempt, for display"""
    for attempt in reversed(payment.attempts):
        if attempt.status == AttemptStatus.FAILED:
            return {"code": attempt.error_code, "message": attempt.error_message}
    return None
