"""Booking router - scheduling provider webhook and booking endpoints"""

import json
import logging
import math
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from ... import config
from ...auth import Principal, get_current_principal, require_admin
from ...database import get_db
from ...email_service import get_notifier
from ...models import Booking
from ...services.notification_service import NotificationPort
from ...shared.errors import ValidationError
from ...webhook_security import CALCOM_SIGNATURE_HEADER, verify_calcom_signature
from .schemas import (
    BookingPage,
    BookingPagination,
    BookingResponse,
    CalcomWebhookEvent,
    CalcomWebhookResponse,
)
from .service import BookingService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Bookings"])


def get_booking_service(
    db: Session = Depends(get_db),
    notifier: NotificationPort = Depends(get_notifier),
) -> BookingService:
    """Dependency injection for BookingService"""
    return BookingService(db, notifier)


def booking_to_response(booking: Booking) -> BookingResponse:
    return BookingResponse(
        id=booking.id,
        externalRef=booking.external_ref,
        clientName=booking.client_name,
        clientEmail=booking.client_email,
        clientTimezone=booking.client_timezone,
        serviceId=booking.service_id,
        eventTitle=booking.event_title,
        meetingUrl=booking.meeting_url,
        scheduledAt=booking.scheduled_at,
        durationMinutes=booking.duration_minutes,
        status=booking.status,
        confirmationSent=booking.confirmation_sent,
        reminderSent=booking.reminder_sent,
        thankYouSent=booking.thank_you_sent,
        followUpSent=booking.follow_up_sent,
        cancelledAt=booking.cancelled_at,
        completedAt=booking.completed_at,
        paymentStatus=booking.payment.status if booking.payment else None,
        invoiceStatus=booking.invoice.status if booking.invoice else None,
    )


# ============================================================================
# SCHEDULING PROVIDER WEBHOOK
# ============================================================================


@router.post("/webhooks/calcom", response_model=CalcomWebhookResponse)
async def calcom_webhook(
    request: Request,
    service: BookingService = Depends(get_booking_service),
):
    """Ingest booking created / cancelled / rescheduled events"""
    raw_body = await request.body()
    verify_calcom_signature(
        raw_body, request.headers.get(CALCOM_SIGNATURE_HEADER), config.CALCOM_WEBHOOK_SECRET
    )

    try:
        event = CalcomWebhookEvent(**json.loads(raw_body))
    except (ValueError, TypeError, PydanticValidationError) as e:
        logger.warning(f"⚠️ Malformed scheduling webhook body: {e}")
        raise ValidationError("Malformed webhook body", code="MalformedWebhook") from e

    outcome, booking_id = await service.handle_provider_event(event.triggerEvent, event.payload)
    return CalcomWebhookResponse(event=event.triggerEvent, outcome=outcome, bookingId=booking_id)


# ============================================================================
# BOOKINGS
# ============================================================================


@router.get("/bookings/lookup", response_model=BookingResponse)
async def lookup_booking(
    paymentReference: Optional[str] = Query(None),
    externalRef: Optional[str] = Query(None),
    clientEmail: Optional[str] = Query(None),
    principal: Principal = Depends(get_current_principal),
    service: BookingService = Depends(get_booking_service),
):
    """Find a booking by payment reference, provider uid, or the latest for an email"""
    booking = service.lookup_booking(principal, paymentReference, externalRef, clientEmail)
    return booking_to_response(booking)


@router.get("/admin/bookings", response_model=BookingPage)
async def list_bookings(
    page: int = Query(1),
    pageSize: int = Query(10),
    search: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    paymentStatus: Optional[str] = Query(None),
    _: Principal = Depends(require_admin),
    service: BookingService = Depends(get_booking_service),
):
    """Paginated booking list with search and status filters"""
    bookings, total, page, page_size = service.list_bookings(
        search, status, paymentStatus, page, pageSize
    )
    total_pages = math.ceil(total / page_size)
    return BookingPage(
        data=[booking_to_response(b) for b in bookings],
        pagination=BookingPagination(
            total=total,
            pageSize=page_size,
            currentPage=page,
            totalPages=total_pages,
            hasNextPage=page < total_pages,
            hasPreviousPage=page > 1,
        ),
    )


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: int,
    principal: Principal = Depends(get_current_principal),
    service: BookingService = Depends(get_booking_service),
):
    """Get a booking owned by the caller (admins see all)"""
    return booking_to_response(service.get_booking_for(principal, booking_id))


@router.post("/bookings/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: int,
    principal: Principal = Depends(get_current_principal),
    service: BookingService = Depends(get_booking_service),
):
    """Cancel a scheduled booking"""
    booking = await service.cancel_booking(principal, booking_id)
    return booking_to_response(booking)
