"""Invoice domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_validator


class InvoiceCreate(BaseModel):
    bookingId: int


class InvoiceFinalize(BaseModel):
    """Optional subtotal, used for quote-based bookings"""

    amount: Optional[float] = None

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v < 0:
            raise ValueError("amount cannot be negative")
        return v


class InvoiceResponse(BaseModel):
    id: int
    bookingId: int
    invoiceNumber: str
    amount: float
    tax: float
    totalAmount: float
    currency: str
    status: str
    dueAt: Optional[datetime] = None
    sentAt: Optional[datetime] = None
    viewedAt: Optional[datetime] = None
    paidAt: Optional[datetime] = None
    createdAt: Optional[datetime] = None


class InvoicePagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class InvoicePage(BaseModel):
    invoices: list[InvoiceResponse]
    pagination: InvoicePagination
