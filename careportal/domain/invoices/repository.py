"""Invoice repository - Database operations for invoices"""

import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models import Booking
from ...models_invoice import Invoice

logger = logging.getLogger(__name__)


class InvoiceRepository:
    """Repository for invoice database operations"""

    @staticmethod
    def get(db: Session, invoice_id: int) -> Optional[Invoice]:
        return db.query(Invoice).filter(Invoice.id == invoice_id).first()

    @staticmethod
    def get_by_booking(db: Session, booking_id: int) -> Optional[Invoice]:
        return db.query(Invoice).filter(Invoice.booking_id == booking_id).first()

    @staticmethod
    def list_for_client(db: Session, client_email: str) -> list[Invoice]:
        """All invoices for bookings made with this email address"""
        return (
            db.query(Invoice)
            .join(Booking, Booking.id == Invoice.booking_id)
            .filter(func.lower(Booking.client_email) == client_email.lower())
            .order_by(Invoice.created_at.desc(), Invoice.id.desc())
            .all()
        )

    @staticmethod
    def list_invoices(
        db: Session,
        client_email: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[Invoice], int]:
        """Page of invoices, newest first; client_email narrows to one client"""
        query = db.query(Invoice)
        if client_email:
            query = query.join(Booking, Booking.id == Invoice.booking_id).filter(
                func.lower(Booking.client_email) == client_email.lower()
            )
        if status:
            query = query.filter(Invoice.status == status)

        total = query.count()
        invoices = (
            query.order_by(Invoice.created_at.desc(), Invoice.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return invoices, total

    @staticmethod
    def create(db: Session, **invoice_data) -> tuple[Invoice, bool]:
        """
        Create an invoice, or return the booking's existing one.

        Returns:
            (invoice, created)
        """
        invoice = Invoice(**invoice_data)
        db.add(invoice)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            existing = InvoiceRepository.get_by_booking(db, invoice_data["booking_id"])
            if existing is None:
                raise
            return existing, False
        db.refresh(invoice)
        return invoice, True

    @staticmethod
    def advance(db: Session, invoice_id: int, from_statuses: tuple, values: dict) -> bool:
        """Conditional status update; True when this call moved the invoice"""
        updated = (
            db.query(Invoice)
            .filter(Invoice.id == invoice_id, Invoice.status.in_(from_statuses))
            .update(values, synchronize_session=False)
        )
        db.commit()
        return updated == 1
