"""Invoice router - FastAPI endpoints for invoices"""

import logging
import math
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import Principal, get_current_principal, require_admin
from ...database import get_db
from ...email_service import get_notifier
from ...models_invoice import Invoice
from ...services.notification_service import NotificationPort
from .schemas import (
    InvoiceCreate,
    InvoiceFinalize,
    InvoicePage,
    InvoicePagination,
    InvoiceResponse,
)
from .service import InvoiceIssuer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/invoices", tags=["Invoices"])


def get_invoice_issuer(
    db: Session = Depends(get_db),
    notifier: NotificationPort = Depends(get_notifier),
) -> InvoiceIssuer:
    """Dependency injection for InvoiceIssuer"""
    return InvoiceIssuer(db, notifier)


def invoice_to_response(invoice: Invoice) -> InvoiceResponse:
    return InvoiceResponse(
        id=invoice.id,
        bookingId=invoice.booking_id,
        invoiceNumber=invoice.invoice_number,
        amount=invoice.amount,
        tax=invoice.tax,
        totalAmount=invoice.total_amount,
        currency=invoice.currency,
        status=invoice.status,
        dueAt=invoice.due_at,
        sentAt=invoice.sent_at,
        viewedAt=invoice.viewed_at,
        paidAt=invoice.paid_at,
        createdAt=invoice.created_at,
    )


# ============================================================================
# CLIENT ENDPOINTS
# ============================================================================


@router.post("", response_model=InvoiceResponse, status_code=201)
async def create_invoice(
    body: InvoiceCreate,
    principal: Principal = Depends(get_current_principal),
    issuer: InvoiceIssuer = Depends(get_invoice_issuer),
):
    """Request the invoice for a booking (returns the existing one if already issued)"""
    return invoice_to_response(issuer.request_invoice(principal, body.bookingId))


@router.get("", response_model=InvoicePage)
async def list_invoices(
    status: Optional[str] = Query(None, description="Filter by invoice status"),
    page: int = Query(1),
    limit: int = Query(20),
    principal: Principal = Depends(get_current_principal),
    issuer: InvoiceIssuer = Depends(get_invoice_issuer),
):
    """Paginated invoices; admins see all, clients see their own"""
    invoices, total, page, limit = issuer.list_invoices(principal, status, page, limit)
    return InvoicePage(
        invoices=[invoice_to_response(i) for i in invoices],
        pagination=InvoicePagination(
            page=page, limit=limit, total=total, pages=math.ceil(total / limit)
        ),
    )


@router.get("/mine", response_model=list[InvoiceResponse])
async def list_my_invoices(
    principal: Principal = Depends(get_current_principal),
    issuer: InvoiceIssuer = Depends(get_invoice_issuer),
):
    return [invoice_to_response(i) for i in issuer.list_for(principal)]


@router.get("/by-booking/{booking_id}", response_model=InvoiceResponse)
async def get_invoice_for_booking(
    booking_id: int,
    principal: Principal = Depends(get_current_principal),
    issuer: InvoiceIssuer = Depends(get_invoice_issuer),
):
    return invoice_to_response(issuer.get_for_booking(principal, booking_id))


@router.get("/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(
    invoice_id: int,
    principal: Principal = Depends(get_current_principal),
    issuer: InvoiceIssuer = Depends(get_invoice_issuer),
):
    """Get an invoice; the owning client's first read marks a sent invoice as viewed"""
    return invoice_to_response(issuer.read_invoice(principal, invoice_id))


# ============================================================================
# ADMIN ENDPOINTS
# ============================================================================


@router.post("/{invoice_id}/finalize", response_model=InvoiceResponse)
async def finalize_invoice(
    invoice_id: int,
    body: InvoiceFinalize,
    _: Principal = Depends(require_admin),
    issuer: InvoiceIssuer = Depends(get_invoice_issuer),
):
    return invoice_to_response(issuer.finalize(invoice_id, body.amount))


@router.post("/{invoice_id}/send", response_model=InvoiceResponse)
async def send_invoice(
    invoice_id: int,
    _: Principal = Depends(require_admin),
    issuer: InvoiceIssuer = Depends(get_invoice_issuer),
):
    invoice = await issuer.send(invoice_id)
    return invoice_to_response(invoice)


@router.post("/{invoice_id}/mark-paid", response_model=InvoiceResponse)
async def mark_invoice_paid(
    invoice_id: int,
    admin: Principal = Depends(require_admin),
    issuer: InvoiceIssuer = Depends(get_invoice_issuer),
):
    return invoice_to_response(issuer.mark_paid(invoice_id, admin))
