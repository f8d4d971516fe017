"""
Booking store - Database operations for bookings

Status and milestone-flag changes are conditional updates: each one names the
state it expects, and reports whether it won. Callers never read-modify-write
a booking row.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models import Booking, BookingStatus
from ...models_invoice import Payment, PaymentAttempt

logger = logging.getLogger(__name__)


class BookingStore:
    """Repository for booking database operations"""

    @staticmethod
    def get(db: Session, booking_id: int) -> Optional[Booking]:
        return db.query(Booking).filter(Booking.id == booking_id).first()

    @staticmethod
    def get_by_external_ref(db: Session, external_ref: str) -> Optional[Booking]:
        """Get a booking by the scheduling provider's uid"""
        return db.query(Booking).filter(Booking.external_ref == external_ref).first()

    @staticmethod
    def create(db: Session, **booking_data) -> tuple[Booking, bool]:
        """
        Create a booking, or return the stored one for a replayed external_ref.

        Returns:
            (booking, created)
        """
        booking = Booking(status=BookingStatus.SCHEDULED, **booking_data)
        db.add(booking)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            existing = BookingStore.get_by_external_ref(db, booking_data["external_ref"])
            if existing is None:
                raise
            logger.info(f"🔁 Booking {booking_data['external_ref']} already stored (concurrent insert)")
            return existing, False
        db.refresh(booking)
        return booking, True

    @staticmethod
    def get_by_payment_reference(db: Session, reference: str) -> Optional[Booking]:
        """Booking whose payment carries this reference, current or from an earlier attempt"""
        booking = (
            db.query(Booking)
            .join(Payment, Payment.booking_id == Booking.id)
            .filter(Payment.provider_ref == reference)
            .first()
        )
        if booking:
            return booking
        return (
            db.query(Booking)
            .join(Payment, Payment.booking_id == Booking.id)
            .join(PaymentAttempt, PaymentAttempt.payment_id == Payment.id)
            .filter(PaymentAttempt.reference == reference)
            .first()
        )

    @staticmethod
    def latest_for_email(db: Session, client_email: str) -> Optional[Booking]:
        return (
            db.query(Booking)
            .filter(func.lower(Booking.client_email) == client_email.lower())
            .order_by(Booking.created_at.desc(), Booking.id.desc())
            .first()
        )

    @staticmethod
    def search_bookings(
        db: Session,
        search: Optional[str] = None,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        page: int = 1,
        page_size: int = 10,
    ) -> tuple[list[Booking], int]:
        """
        Filtered page of bookings, newest appointment first.

        Returns:
            (bookings, total matching)
        """
        query = db.query(Booking)

        if search:
            search_term = f"%{search.lower()}%"
            query = query.filter(
                (Booking.client_name.ilike(search_term))
                | (Booking.client_email.ilike(search_term))
                | (Booking.event_title.ilike(search_term))
                | (Booking.note.ilike(search_term))
            )

        if status:
            query = query.filter(Booking.status == status)

        if payment_status:
            query = query.join(Payment, Payment.booking_id == Booking.id).filter(
                Payment.status == payment_status
            )

        total = query.count()
        bookings = (
            query.order_by(Booking.scheduled_at.desc(), Booking.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return bookings, total

    @staticmethod
    def has_earlier_booking(db: Session, booking: Booking) -> bool:
        """True when the client has a non-cancelled booking created before this one"""
        return (
            db.query(Booking.id)
            .filter(
                func.lower(Booking.client_email) == booking.client_email.lower(),
                Booking.id < booking.id,
                Booking.status != BookingStatus.CANCELLED,
            )
            .first()
            is not None
        )

    @staticmethod
    def _conditional_update(db: Session, booking_id: int, conditions: list, values: dict) -> bool:
        updated = (
            db.query(Booking)
            .filter(Booking.id == booking_id, *conditions)
            .update(values, synchronize_session=False)
        )
        db.commit()
        return updated == 1

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    @staticmethod
    def cancel(db: Session, booking_id: int, cancelled_at: datetime) -> bool:
        """SCHEDULED -> CANCELLED"""
        return BookingStore._conditional_update(
            db,
            booking_id,
            [Booking.status == BookingStatus.SCHEDULED],
            {"status": BookingStatus.CANCELLED, "cancelled_at": cancelled_at},
        )

    @staticmethod
    def reschedule(
        db: Session, booking_id: int, scheduled_at: datetime, duration_minutes: Optional[int]
    ) -> bool:
        """Move a SCHEDULED booking and re-arm its reminder"""
        values = {"scheduled_at": scheduled_at, "reminder_sent": False}
        if duration_minutes is not None:
            values["duration_minutes"] = duration_minutes
        return BookingStore._conditional_update(
            db, booking_id, [Booking.status == BookingStatus.SCHEDULED], values
        )

    @staticmethod
    def complete_with_thank_you(db: Session, booking_id: int, completed_at: datetime) -> bool:
        """SCHEDULED -> COMPLETED together with thank_you_sent"""
        return BookingStore._conditional_update(
            db,
            booking_id,
            [Booking.status == BookingStatus.SCHEDULED, Booking.thank_you_sent.is_(False)],
            {
                "status": BookingStatus.COMPLETED,
                "thank_you_sent": True,
                "completed_at": completed_at,
            },
        )

    # ------------------------------------------------------------------
    # Milestone flags
    # ------------------------------------------------------------------

    @staticmethod
    def mark_confirmation_sent(db: Session, booking_id: int) -> bool:
        return BookingStore._conditional_update(
            db, booking_id, [Booking.confirmation_sent.is_(False)], {"confirmation_sent": True}
        )

    @staticmethod
    def mark_reminder_sent(db: Session, booking_id: int) -> bool:
        return BookingStore._conditional_update(
            db,
            booking_id,
            [Booking.status == BookingStatus.SCHEDULED, Booking.reminder_sent.is_(False)],
            {"reminder_sent": True},
        )

    @staticmethod
    def mark_follow_up_sent(db: Session, booking_id: int) -> bool:
        return BookingStore._conditional_update(
            db,
            booking_id,
            [Booking.status == BookingStatus.COMPLETED, Booking.follow_up_sent.is_(False)],
            {"follow_up_sent": True},
        )

    # ------------------------------------------------------------------
    # Reminder windows
    # ------------------------------------------------------------------

    @staticmethod
    def due_for_reminder(db: Session, window_start: datetime, window_end: datetime) -> list[Booking]:
        """SCHEDULED bookings starting in [window_start, window_end) without a reminder"""
        return (
            db.query(Booking)
            .filter(
                Booking.scheduled_at >= window_start,
                Booking.scheduled_at < window_end,
                Booking.reminder_sent.is_(False),
                Booking.status == BookingStatus.SCHEDULED,
            )
            .order_by(Booking.scheduled_at.asc())
            .all()
        )

    @staticmethod
    def due_for_thank_you(db: Session, cutoff: datetime) -> list[Booking]:
        return (
            db.query(Booking)
            .filter(
                Booking.scheduled_at <= cutoff,
                Booking.thank_you_sent.is_(False),
                Booking.status == BookingStatus.SCHEDULED,
            )
            .order_by(Booking.scheduled_at.asc())
            .all()
        )

    @staticmethod
    def due_for_follow_up(db: Session, cutoff: datetime) -> list[Booking]:
        return (
            db.query(Booking)
            .filter(
                Booking.scheduled_at <= cutoff,
                Booking.follow_up_sent.is_(False),
                Booking.thank_you_sent.is_(True),
                Booking.status == BookingStatus.COMPLETED,
            )
            .order_by(Booking.scheduled_at.asc())
            .all()
        )
