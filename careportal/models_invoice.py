"""
Payment, Refund and Invoice Models for the Booking Billing Lifecycle
"""

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class PaymentStatus:
    FREE = "FREE"
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"

    ALL = (FREE, PENDING, PAID, FAILED, REFUNDED)


class AttemptStatus:
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class RefundStatus:
    PENDING = "PENDING"
    PROCESSED = "PROCESSED"


class InvoiceStatus:
    PENDING = "PENDING"
    GENERATED = "GENERATED"
    SENT = "SENT"
    VIEWED = "VIEWED"
    PAID = "PAID"

    # Forward-only order
    ORDER = (PENDING, GENERATED, SENT, VIEWED, PAID)


class Payment(Base):
    """Monetary transaction for a booking (one per booking)"""

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), unique=True, nullable=False)

    amount = Column(Float, nullable=False)  # Major units, immutable after creation
    currency = Column(String(10), default="NGN", nullable=False)
    status = Column(String(20), default=PaymentStatus.PENDING, nullable=False, index=True)

    # Gateway transaction reference for the current attempt
    provider_ref = Column(String(255), unique=True, nullable=True, index=True)

    paid_at = Column(DateTime, nullable=True)
    refunded_at = Column(DateTime, nullable=True)
    refunded_amount = Column(Float, default=0, nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    booking = relationship("Booking", back_populates="payment")
    attempts = relationship(
        "PaymentAttempt", back_populates="payment", order_by="PaymentAttempt.id"
    )
    refund_requests = relationship(
        "RefundRequest", back_populates="payment", order_by="RefundRequest.id"
    )


class PaymentAttempt(Base):
    """Append-only audit row, one per gateway interaction"""

    __tablename__ = "payment_attempts"
    __table_args__ = (UniqueConstraint("reference", "status", name="uq_attempt_reference_status"),)

    id = Column(Integer, primary_key=True, index=True)
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=False, index=True)
    reference = Column(String(255), nullable=False, index=True)
    amount = Column(Float, nullable=False)
    status = Column(String(20), nullable=False)  # pending, success, failed

    error_code = Column(String(100), nullable=True)
    error_message = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    attempt_metadata = Column("metadata", JSON, default=dict)

    created_at = Column(DateTime, server_default=func.now())

    payment = relationship("Payment", back_populates="attempts")


class RefundRequest(Base):
    """Tracked request to return funds for a payment"""

    __tablename__ = "refund_requests"

    id = Column(Integer, primary_key=True, index=True)
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=False, index=True)
    amount = Column(Float, nullable=False)
    reason = Column(Text, nullable=True)
    status = Column(String(20), default=RefundStatus.PENDING, nullable=False)

    # Provider refund reference, known once the gateway reports the refund
    provider_ref = Column(String(255), unique=True, nullable=True, index=True)
    processed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    payment = relationship("Payment", back_populates="refund_requests")


class Invoice(Base):
    """Billing document derived from a booking and its payment"""

    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), unique=True, nullable=False)
    invoice_number = Column(String(50), unique=True, nullable=False, index=True)

    amount = Column(Float, nullable=False, default=0)  # Subtotal after pricing rules
    tax = Column(Float, nullable=False, default=0)
    total_amount = Column(Float, nullable=False, default=0)
    currency = Column(String(10), default="NGN", nullable=False)

    status = Column(String(20), default=InvoiceStatus.PENDING, nullable=False, index=True)

    due_at = Column(DateTime, nullable=True)
    sent_at = Column(DateTime, nullable=True)
    viewed_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    booking = relationship("Booking", back_populates="invoice")
