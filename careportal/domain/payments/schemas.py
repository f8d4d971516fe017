"""Payment domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, field_validator

from ...models_invoice import PaymentStatus


class PaymentInitiateRequest(BaseModel):
    bookingId: int


class PaymentSummary(BaseModel):
    id: int
    amount: float
    currency: str
    reference: Optional[str] = None
    status: str


class GatewayConfig(BaseModel):
    """Values the browser checkout needs"""

    publicKey: Optional[str] = None
    email: str
    amountMinorUnits: int
    reference: str
    metadata: dict[str, Any] = {}


class PaymentInitiateResponse(BaseModel):
    payment: PaymentSummary
    gatewayConfig: Optional[GatewayConfig] = None


class PaymentResponse(BaseModel):
    id: int
    bookingId: int
    amount: float
    currency: str
    status: str
    reference: Optional[str] = None
    paidAt: Optional[datetime] = None
    refundedAt: Optional[datetime] = None
    refundedAmount: float = 0.0
    lastError: Optional[dict] = None


class PaymentVerifyResponse(BaseModel):
    verified: bool
    outcome: str
    payment: PaymentResponse


class RefundCreate(BaseModel):
    amount: float
    reason: str

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("amount must be positive")
        return v

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("reason is required")
        return v


class RefundResponse(BaseModel):
    id: int
    paymentId: int
    amount: float
    reason: Optional[str] = None
    status: str
    providerRef: Optional[str] = None
    processedAt: Optional[datetime] = None


class PaymentStatusUpdate(BaseModel):
    """Admin override"""

    status: str

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        v = v.upper()
        if v not in PaymentStatus.ALL:
            raise ValueError(f"status must be one of {', '.join(PaymentStatus.ALL)}")
        return v
