"""Payment router - FastAPI endpoints for payments and refunds"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import Principal, get_current_principal, require_admin
from ...database import get_db
from ...email_service import get_notifier
from ...models_invoice import Payment, RefundRequest
from ...services.notification_service import NotificationPort
from ...services.paystack_service import PaymentGateway, get_payment_gateway
from .schemas import (
    GatewayConfig,
    PaymentInitiateRequest,
    PaymentInitiateResponse,
    PaymentResponse,
    PaymentStatusUpdate,
    PaymentSummary,
    PaymentVerifyResponse,
    RefundCreate,
    RefundResponse,
)
from .service import PaymentService, latest_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


def get_payment_service(
    db: Session = Depends(get_db),
    notifier: NotificationPort = Depends(get_notifier),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> PaymentService:
    """Dependency injection for PaymentService"""
    return PaymentService(db, notifier, gateway)


def payment_to_response(payment: Payment) -> PaymentResponse:
    return PaymentResponse(
        id=payment.id,
        bookingId=payment.booking_id,
        amount=payment.amount,
        currency=payment.currency,
        status=payment.status,
        reference=payment.provider_ref,
        paidAt=payment.paid_at,
        refundedAt=payment.refunded_at,
        refundedAmount=payment.refunded_amount or 0.0,
        lastError=latest_error(payment),
    )


def refund_to_response(refund: RefundRequest) -> RefundResponse:
    return RefundResponse(
        id=refund.id,
        paymentId=refund.payment_id,
        amount=refund.amount,
        reason=refund.reason,
        status=refund.status,
        providerRef=refund.provider_ref,
        processedAt=refund.processed_at,
    )


@router.post("/initiate", response_model=PaymentInitiateResponse)
async def initiate_payment(
    body: PaymentInitiateRequest,
    principal: Principal = Depends(get_current_principal),
    service: PaymentService = Depends(get_payment_service),
):
    """Start (or retry) payment for a booking and return the checkout config"""
    result = service.initiate(principal, body.bookingId)
    payment = result.payment
    return PaymentInitiateResponse(
        payment=PaymentSummary(
            id=payment.id,
            amount=payment.amount,
            currency=payment.currency,
            reference=payment.provider_ref,
            status=payment.status,
        ),
        gatewayConfig=GatewayConfig(**result.gateway_config) if result.gateway_config else None,
    )


@router.get("/verify/{reference}", response_model=PaymentVerifyResponse)
async def verify_payment(
    reference: str,
    principal: Principal = Depends(get_current_principal),
    service: PaymentService = Depends(get_payment_service),
):
    """Confirm a transaction with the provider after checkout returns"""
    payment, verified, outcome = await service.verify(principal, reference)
    return PaymentVerifyResponse(
        verified=verified, outcome=outcome, payment=payment_to_response(payment)
    )


# ============================================================================
# ADMIN ENDPOINTS
# ============================================================================


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: int,
    _: Principal = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
):
    return payment_to_response(service.get_payment(payment_id))


@router.post("/{payment_id}/refund", response_model=RefundResponse, status_code=201)
async def request_refund(
    payment_id: int,
    body: RefundCreate,
    admin: Principal = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
):
    """Record a refund request; the provider's refund.processed webhook confirms it"""
    refund = service.request_refund(payment_id, body.amount, body.reason)
    logger.info(f"💸 Refund {refund.id} requested by {admin.email}")
    return refund_to_response(refund)


@router.patch("/{payment_id}", response_model=PaymentResponse)
async def override_payment_status(
    payment_id: int,
    body: PaymentStatusUpdate,
    admin: Principal = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
):
    payment = await service.override_status(payment_id, body.status, admin)
    return payment_to_response(payment)
