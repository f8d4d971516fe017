from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class PricingType:
    FLAT = "FLAT"
    HOURLY = "HOURLY"
    PER_SESSION = "PER_SESSION"
    QUOTE_BASED = "QUOTE_BASED"

    ALL = (FLAT, HOURLY, PER_SESSION, QUOTE_BASED)


class ModifierType:
    ADD = "ADD"
    SUBTRACT = "SUBTRACT"
    MULTIPLY = "MULTIPLY"

    ALL = (ADD, SUBTRACT, MULTIPLY)


class BookingStatus:
    SCHEDULED = "SCHEDULED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class Service(Base):
    """A bookable care service and its pricing configuration"""

    __tablename__ = "services"

    id = Column(Integer, primary_key=True, index=True)
    # Matches the scheduling provider's event type slug
    slug = Column(String(255), unique=True, index=True, nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    pricing_type = Column(String(20), default=PricingType.FLAT, nullable=False)
    base_price = Column(Float, nullable=True)  # null until an admin configures pricing
    currency = Column(String(10), default="NGN", nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    pricing_rules = relationship(
        "PricingRule",
        back_populates="service",
        order_by="PricingRule.position, PricingRule.id",
        cascade="all, delete-orphan",
    )
    bookings = relationship("Booking", back_populates="service")


class PricingRule(Base):
    """Conditional price modifier evaluated by the pricing engine"""

    __tablename__ = "pricing_rules"

    id = Column(Integer, primary_key=True, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    position = Column(Integer, default=0, nullable=False)  # Evaluation order

    # Condition: every non-null field must hold for the rule to apply
    location_equals = Column(String(255), nullable=True)
    diaspora_equals = Column(Boolean, nullable=True)
    hours_at_least = Column(Float, nullable=True)

    modifier_type = Column(String(20), nullable=False)  # ADD, SUBTRACT, MULTIPLY
    price_modifier = Column(Float, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, server_default=func.now())

    service = relationship("Service", back_populates="pricing_rules")


class Booking(Base):
    """Appointment created from the scheduling provider's booking event"""

    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    # Opaque booking uid from the scheduling provider
    external_ref = Column(String(255), unique=True, index=True, nullable=False)

    # Client identity
    client_name = Column(String(255), nullable=True)
    client_email = Column(String(255), index=True, nullable=False)
    client_phone = Column(String(50), nullable=True)
    client_timezone = Column(String(100), nullable=True)

    service_id = Column(Integer, ForeignKey("services.id"), nullable=True)
    event_title = Column(String(255), nullable=True)
    meeting_url = Column(String(500), nullable=True)
    note = Column(Text, nullable=True)
    intake_data = Column(JSON, default=dict)

    # Pricing inputs captured from the intake form
    location = Column(String(255), nullable=True)
    hours = Column(Float, nullable=True)
    sessions = Column(Integer, nullable=True)

    scheduled_at = Column(DateTime, nullable=False, index=True)
    duration_minutes = Column(Integer, nullable=True)
    status = Column(String(20), default=BookingStatus.SCHEDULED, nullable=False, index=True)

    # Notification milestones (idempotency flags)
    confirmation_sent = Column(Boolean, default=False, nullable=False)
    reminder_sent = Column(Boolean, default=False, nullable=False)
    thank_you_sent = Column(Boolean, default=False, nullable=False)
    follow_up_sent = Column(Boolean, default=False, nullable=False)

    cancelled_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    service = relationship("Service", back_populates="bookings")
    payment = relationship("Payment", back_populates="booking", uselist=False)
    invoice = relationship("Invoice", back_populates="booking", uselist=False)
