"""Booking domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel


class CalcomWebhookEvent(BaseModel):
    """Scheduling provider webhook envelope"""

    triggerEvent: str
    payload: dict[str, Any] = {}


class CalcomWebhookResponse(BaseModel):
    received: bool = True
    event: str
    outcome: str
    bookingId: Optional[int] = None


class BookingResponse(BaseModel):
    id: int
    externalRef: str
    clientName: Optional[str] = None
    clientEmail: str
    clientTimezone: Optional[str] = None
    serviceId: Optional[int] = None
    eventTitle: Optional[str] = None
    meetingUrl: Optional[str] = None
    scheduledAt: datetime
    durationMinutes: Optional[int] = None
    status: str
    confirmationSent: bool
    reminderSent: bool
    thankYouSent: bool
    followUpSent: bool
    cancelledAt: Optional[datetime] = None
    completedAt: Optional[datetime] = None
    paymentStatus: Optional[str] = None
    invoiceStatus: Optional[str] = None


class BookingPagination(BaseModel):
    total: int
    pageSize: int
    currentPage: int
    totalPages: int
    hasNextPage: bool
    hasPreviousPage: bool


class BookingPage(BaseModel):
    data: list[BookingResponse]
    pagination: BookingPagination
