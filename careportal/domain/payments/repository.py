"""
Payment ledger - Database operations for payments, attempts and refund requests

Every status change goes through apply(): one conditional UPDATE on the
payment row, guarded by the legal source statuses, with the audit attempt
inserted in the same transaction. A lost race returns False and writes nothing.
"""

import logging
from datetime import datetime
from typing import Optional, Union

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models import Booking
from ...models_invoice import (
    AttemptStatus,
    Payment,
    PaymentAttempt,
    PaymentStatus,
    RefundRequest,
    RefundStatus,
)
from ...shared.errors import ConflictError
from .transitions import MarkFailed, MarkPaid, MarkRefunded, Reinitiate, sources_for

logger = logging.getLogger(__name__)

PaymentUpdate = Union[MarkPaid, MarkFailed, MarkRefunded, Reinitiate]


class PaymentLedger:
    """Repository for payment database operations"""

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    @staticmethod
    def get(db: Session, payment_id: int) -> Optional[Payment]:
        return db.query(Payment).filter(Payment.id == payment_id).first()

    @staticmethod
    def get_by_booking(db: Session, booking_id: int) -> Optional[Payment]:
        return db.query(Payment).filter(Payment.booking_id == booking_id).first()

    @staticmethod
    def get_by_reference(db: Session, reference: str) -> Optional[Payment]:
        """Find a payment by its current provider_ref, or by any earlier attempt reference"""
        payment = db.query(Payment).filter(Payment.provider_ref == reference).first()
        if payment:
            return payment
        return (
            db.query(Payment)
            .join(PaymentAttempt, PaymentAttempt.payment_id == Payment.id)
            .filter(PaymentAttempt.reference == reference)
            .first()
        )

    @staticmethod
    def create_pending(
        db: Session, booking: Booking, amount: float, currency: str, reference: str, metadata: dict
    ) -> Payment:
        """
        (none) -> PENDING, with the opening pending attempt

        Raises:
            ConflictError: The booking already has a payment
        """
        payment = Payment(
            booking_id=booking.id,
            amount=amount,
            currency=currency,
            status=PaymentStatus.PENDING,
            provider_ref=reference,
        )
        db.add(payment)
        try:
            db.flush()
            db.add(
                PaymentAttempt(
                    payment_id=payment.id,
                    reference=reference,
                    amount=amount,
                    status=AttemptStatus.PENDING,
                    attempt_metadata=metadata,
                )
            )
            db.commit()
        except IntegrityError as e:
            db.rollback()
            logger.warning(f"⚠️ Concurrent payment initiation for booking {booking.id}")
            raise ConflictError("A payment already exists for this booking", code="PaymentAlreadyActive") from e
        db.refresh(payment)
        return payment

    @staticmethod
    def create_free(db: Session, booking: Booking, currency: str) -> Payment:
        """(none) -> FREE for a complimentary first consultation"""
        payment = Payment(
            booking_id=booking.id,
            amount=0.0,
            currency=currency,
            status=PaymentStatus.FREE,
        )
        db.add(payment)
        try:
            db.commit()
        except IntegrityError as e:
            db.rollback()
            raise ConflictError("A payment already exists for this booking", code="PaymentAlreadyActive") from e
        db.refresh(payment)
        return payment

    @staticmethod
    def apply(
        db: Session,
        payment_id: int,
        update: PaymentUpdate,
        attempt: Optional[PaymentAttempt] = None,
    ) -> bool:
        """
        Apply a transition if the payment is still in a legal source status.

        Returns:
            True when this call performed the transition
        """
        try:
            updated = (
                db.query(Payment)
                .filter(
                    Payment.id == payment_id,
                    Payment.status.in_(sources_for(update.target)),
                    *update.conditions(),
                )
                .update(update.values(), synchronize_session=False)
            )
            if updated != 1:
                db.rollback()
                return False
            if attempt is not None:
                attempt.payment_id = payment_id
                db.add(attempt)
            db.commit()
        except IntegrityError:
            # (reference, status) already recorded by a concurrent delivery
            db.rollback()
            logger.info(f"🔁 Duplicate audit attempt for payment {payment_id}, transition discarded")
            return False

        logger.info(f"💳 Payment {payment_id} -> {update.target}")
        return True

    # ------------------------------------------------------------------
    # Attempts
    # ------------------------------------------------------------------

    @staticmethod
    def record_attempt(db: Session, attempt: PaymentAttempt) -> bool:
        """Append an audit attempt outside a transition; False if already recorded"""
        db.add(attempt)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            return False
        return True

    @staticmethod
    def has_attempt(db: Session, reference: str, status: str) -> bool:
        return (
            db.query(PaymentAttempt.id)
            .filter(PaymentAttempt.reference == reference, PaymentAttempt.status == status)
            .first()
            is not None
        )

    @staticmethod
    def latest_attempt(db: Session, payment_id: int) -> Optional[PaymentAttempt]:
        return (
            db.query(PaymentAttempt)
            .filter(PaymentAttempt.payment_id == payment_id)
            .order_by(PaymentAttempt.id.desc())
            .first()
        )

    # ------------------------------------------------------------------
    # Refund requests
    # ------------------------------------------------------------------

    @staticmethod
    def create_refund_request(
        db: Session,
        payment: Payment,
        amount: float,
        reason: Optional[str] = None,
        provider_ref: Optional[str] = None,
    ) -> Optional[RefundRequest]:
        """Create a PENDING refund request; None if provider_ref is already taken"""
        refund = RefundRequest(
            payment_id=payment.id,
            amount=amount,
            reason=reason,
            status=RefundStatus.PENDING,
            provider_ref=provider_ref,
        )
        db.add(refund)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            return None
        db.refresh(refund)
        return refund

    @staticmethod
    def get_refund_by_provider_ref(db: Session, provider_ref: str) -> Optional[RefundRequest]:
        return db.query(RefundRequest).filter(RefundRequest.provider_ref == provider_ref).first()

    @staticmethod
    def find_unreferenced_refund(db: Session, payment_id: int, amount: float) -> Optional[RefundRequest]:
        """Oldest PENDING request of this amount the provider has not referenced yet"""
        return (
            db.query(RefundRequest)
            .filter(
                RefundRequest.payment_id == payment_id,
                RefundRequest.status == RefundStatus.PENDING,
                RefundRequest.provider_ref.is_(None),
                func.abs(RefundRequest.amount - amount) < 0.005,
            )
            .order_by(RefundRequest.id.asc())
            .first()
        )

    @staticmethod
    def attach_refund_reference(db: Session, refund_id: int, provider_ref: str) -> bool:
        try:
            updated = (
                db.query(RefundRequest)
                .filter(RefundRequest.id == refund_id, RefundRequest.provider_ref.is_(None))
                .update({"provider_ref": provider_ref}, synchronize_session=False)
            )
            db.commit()
        except IntegrityError:
            db.rollback()
            return False
        return updated == 1

    @staticmethod
    def process_refund(
        db: Session, refund: RefundRequest, processed_at: datetime, attempt: Optional[PaymentAttempt] = None
    ) -> bool:
        """
        RefundRequest PENDING -> PROCESSED and Payment -> REFUNDED, in one transaction.

        Returns:
            True when this call processed the refund
        """
        marked = (
            db.query(RefundRequest)
            .filter(RefundRequest.id == refund.id, RefundRequest.status == RefundStatus.PENDING)
            .update(
                {"status": RefundStatus.PROCESSED, "processed_at": processed_at},
                synchronize_session=False,
            )
        )
        if marked != 1:
            db.rollback()
            return False

        update = MarkRefunded(amount=refund.amount, refunded_at=processed_at)
        updated = (
            db.query(Payment)
            .filter(
                Payment.id == refund.payment_id,
                Payment.status.in_(sources_for(update.target)),
                *update.conditions(),
            )
            .update(update.values(), synchronize_session=False)
        )
        if updated != 1:
            db.rollback()
            logger.error(
                f"❌ Refund {refund.id} would exceed payment {refund.payment_id} or payment not refundable"
            )
            return False

        if attempt is not None:
            attempt.payment_id = refund.payment_id
            db.add(attempt)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            return False
        logger.info(f"💸 Refund {refund.id} processed for payment {refund.payment_id}")
        return True

    @staticmethod
    def refund_totals(db: Session, payment_id: int) -> tuple[float, float]:
        """(processed, pending) refund amounts for a payment"""
        rows = (
            db.query(RefundRequest.status, func.coalesce(func.sum(RefundRequest.amount), 0.0))
            .filter(RefundRequest.payment_id == payment_id)
            .group_by(RefundRequest.status)
            .all()
        )
        totals = {status: float(total) for status, total in rows}
        return totals.get(RefundStatus.PROCESSED, 0.0), totals.get(RefundStatus.PENDING, 0.0)
