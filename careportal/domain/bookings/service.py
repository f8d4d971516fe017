"""Booking service - ingestion of scheduling provider events and booking actions"""

import logging
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from ...auth import Principal
from ...config import FRONTEND_URL
from ...models import Booking, BookingStatus
from ...services.notification_service import NotificationPort, Template, dispatch_notification
from ...shared.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from ...shared.validators import parse_iso_datetime, utc_now, validate_phone
from ..pricing.repository import PricingRepository
from .repository import BookingStore

logger = logging.getLogger(__name__)

BOOKING_CREATED = "BOOKING_CREATED"
BOOKING_CANCELLED = "BOOKING_CANCELLED"
BOOKING_RESCHEDULED = "BOOKING_RESCHEDULED"
BOOKING_COMPLETED = "BOOKING_COMPLETED"

MAX_PAGE_SIZE = 100


def format_schedule(booking: Booking) -> str:
    """Render the appointment time in the client's own timezone"""
    scheduled = booking.scheduled_at.replace(tzinfo=ZoneInfo("UTC"))
    if booking.client_timezone:
        try:
            scheduled = scheduled.astimezone(ZoneInfo(booking.client_timezone))
        except (ZoneInfoNotFoundError, ValueError):
            logger.debug(f"Unknown timezone {booking.client_timezone!r}, rendering in UTC")
    return scheduled.strftime("%A, %B %d, %Y at %I:%M %p %Z")


def booking_template_data(booking: Booking) -> dict[str, Any]:
    """Template variables shared by every booking notification"""
    return {
        "client_name": booking.client_name,
        "scheduled_for": format_schedule(booking),
        "timezone": booking.client_timezone,
        "meeting_url": booking.meeting_url,
        "payment_url": f"{FRONTEND_URL}/payment/{booking.id}",
    }


def _response_value(responses: dict, *keys: str):
    """Cal.com form responses are either raw values or {"value": ...}"""
    for key in keys:
        value = responses.get(key)
        if isinstance(value, dict):
            value = value.get("value")
        if value not in (None, ""):
            return value
    return None


def _to_float(value) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _to_int(value) -> Optional[int]:
    number = _to_float(value)
    return int(number) if number is not None else None


class BookingService:
    """Service layer for booking lifecycle"""

    def __init__(self, db: Session, notifier: Optional[NotificationPort] = None):
        self.db = db
        self.notifier = notifier
        self.store = BookingStore()

    # ========================================================================
    # SCHEDULING PROVIDER EVENTS
    # ========================================================================

    async def handle_provider_event(
        self, trigger_event: str, payload: dict[str, Any]
    ) -> tuple[str, Optional[int]]:
        """
        Apply one scheduling provider event

        Returns:
            (outcome, booking_id)
        """
        logger.info(f"📅 Scheduling event received: {trigger_event}")

        if trigger_event == BOOKING_CREATED:
            return await self.handle_created(payload)
        if trigger_event == BOOKING_CANCELLED:
            return await self.handle_cancelled(payload)
        if trigger_event == BOOKING_RESCHEDULED:
            return self.handle_rescheduled(payload)

        # Completion is driven by the thank-you milestone, not by the provider
        logger.info(f"ℹ️ Ignoring scheduling event {trigger_event}")
        return "ignored", None

    async def handle_created(self, payload: dict[str, Any]) -> tuple[str, Optional[int]]:
        uid = payload.get("uid")
        attendees = payload.get("attendees") or []
        attendee = attendees[0] if attendees else {}
        email = (attendee.get("email") or "").strip().lower()

        if not uid or not email:
            raise ValidationError("Booking event missing uid or attendee email", code="InvalidBookingEvent")

        existing = self.store.get_by_external_ref(self.db, uid)
        if existing:
            logger.info(f"🔁 Booking {uid} already ingested as {existing.id}")
            await self._send_confirmation(existing)
            return "duplicate", existing.id

        start = parse_iso_datetime(payload.get("startTime"))
        if start is None:
            raise ValidationError("Booking event has no valid startTime", code="InvalidBookingEvent")
        end = parse_iso_datetime(payload.get("endTime"))
        duration = int((end - start).total_seconds() // 60) if end and end > start else None

        responses = payload.get("responses") or {}
        metadata = payload.get("metadata") or {}

        phone = attendee.get("phoneNumber") or _response_value(responses, "attendeePhoneNumber", "phone")
        try:
            phone = validate_phone(phone) if phone else None
        except ValueError:
            logger.warning(f"⚠️ Ignoring invalid phone number on booking {uid}")
            phone = None

        service = None
        slug = payload.get("type") or (payload.get("eventType") or {}).get("slug")
        if slug:
            service = PricingRepository.get_service_by_slug(self.db, slug)
            if not service:
                logger.warning(f"⚠️ No service configured for event type '{slug}'")

        booking, created = self.store.create(
            self.db,
            external_ref=uid,
            client_name=attendee.get("name"),
            client_email=email,
            client_phone=phone,
            client_timezone=attendee.get("timeZone"),
            service_id=service.id if service else None,
            event_title=payload.get("title"),
            meeting_url=metadata.get("videoCallUrl"),
            note=payload.get("additionalNotes") or payload.get("description"),
            intake_data=responses,
            location=_response_value(responses, "location", "state", "country"),
            hours=_to_float(_response_value(responses, "hours")),
            sessions=_to_int(_response_value(responses, "sessions")),
            scheduled_at=start,
            duration_minutes=duration,
        )

        if created:
            logger.info(f"✅ Booking {booking.id} created from provider uid {uid}")
        await self._send_confirmation(booking)
        return ("created" if created else "duplicate"), booking.id

    async def handle_cancelled(self, payload: dict[str, Any]) -> tuple[str, Optional[int]]:
        uid = payload.get("uid")
        booking = self.store.get_by_external_ref(self.db, uid) if uid else None
        if not booking:
            logger.warning(f"⚠️ Cancellation for unknown booking uid {uid}")
            return "unmatched", None

        if not self.store.cancel(self.db, booking.id, utc_now()):
            logger.info(f"🔁 Booking {booking.id} already {booking.status}, cancellation ignored")
            return "duplicate", booking.id

        logger.info(f"🚫 Booking {booking.id} cancelled by scheduling provider")
        self.db.refresh(booking)
        await self._send_cancellation(booking)
        return "cancelled", booking.id

    def handle_rescheduled(self, payload: dict[str, Any]) -> tuple[str, Optional[int]]:
        booking = None
        for ref in (payload.get("rescheduleUid"), payload.get("uid")):
            if ref:
                booking = self.store.get_by_external_ref(self.db, ref)
                if booking:
                    break
        if not booking:
            logger.warning(f"⚠️ Reschedule for unknown booking uid {payload.get('uid')}")
            return "unmatched", None

        start = parse_iso_datetime(payload.get("startTime"))
        if start is None:
            raise ValidationError("Reschedule event has no valid startTime", code="InvalidBookingEvent")
        end = parse_iso_datetime(payload.get("endTime"))
        duration = int((end - start).total_seconds() // 60) if end and end > start else None

        if not self.store.reschedule(self.db, booking.id, start, duration):
            logger.info(f"ℹ️ Booking {booking.id} is {booking.status}, reschedule ignored")
            return "ignored", booking.id

        logger.info(f"📅 Booking {booking.id} moved to {start.isoformat()}")
        return "rescheduled", booking.id

    # ========================================================================
    # CLIENT / ADMIN ACTIONS
    # ========================================================================

    def get_booking(self, booking_id: int) -> Booking:
        booking = self.store.get(self.db, booking_id)
        if not booking:
            raise NotFoundError(f"Booking {booking_id} not found", code="BookingNotFound")
        return booking

    def get_booking_for(self, principal: Principal, booking_id: int) -> Booking:
        """Get a booking the principal is allowed to see"""
        booking = self.get_booking(booking_id)
        if not principal.is_admin and not principal.owns(booking.client_email):
            raise ForbiddenError("You do not have access to this booking")
        return booking

    def lookup_booking(
        self,
        principal: Principal,
        payment_reference: Optional[str] = None,
        external_ref: Optional[str] = None,
        client_email: Optional[str] = None,
    ) -> Booking:
        """Find one booking by payment reference, provider uid, or latest for an email"""
        if payment_reference:
            booking = self.store.get_by_payment_reference(self.db, payment_reference)
        elif external_ref:
            booking = self.store.get_by_external_ref(self.db, external_ref)
        elif client_email:
            booking = self.store.latest_for_email(self.db, client_email)
        else:
            raise ValidationError(
                "Provide paymentReference, externalRef or clientEmail", code="MissingLookupKey"
            )

        if not booking:
            raise NotFoundError("Booking not found", code="BookingNotFound")
        if not principal.is_admin and not principal.owns(booking.client_email):
            raise ForbiddenError("You do not have access to this booking")
        return booking

    def list_bookings(
        self,
        search: Optional[str] = None,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        page: int = 1,
        page_size: int = 10,
    ) -> tuple[list[Booking], int, int, int]:
        """
        Admin booking list.

        Returns:
            (bookings, total, page, page_size) with page and page_size clamped
        """
        page = max(1, page)
        page_size = min(max(1, page_size), MAX_PAGE_SIZE)
        status = status.upper() if status and status.lower() != "all" else None
        payment_status = (
            payment_status.upper() if payment_status and payment_status.lower() != "all" else None
        )

        bookings, total = self.store.search_bookings(
            self.db, search, status, payment_status, page, page_size
        )
        return bookings, total, page, page_size

    async def cancel_booking(self, principal: Principal, booking_id: int) -> Booking:
        """Explicit cancel by the owning client or an admin"""
        booking = self.get_booking_for(principal, booking_id)

        if booking.status != BookingStatus.SCHEDULED:
            raise ConflictError(
                f"Booking is already {booking.status.lower()}", code="BookingNotScheduled"
            )

        if not self.store.cancel(self.db, booking.id, utc_now()):
            self.db.refresh(booking)
            raise ConflictError(
                f"Booking is already {booking.status.lower()}", code="BookingNotScheduled"
            )

        self.db.refresh(booking)
        logger.info(f"🚫 Booking {booking.id} cancelled by {principal.email}")
        await self._send_cancellation(booking)
        return booking

    # ========================================================================
    # NOTIFICATIONS
    # ========================================================================

    async def _send_confirmation(self, booking: Booking) -> None:
        if booking.confirmation_sent:
            return
        await dispatch_notification(
            self.notifier,
            booking.client_email,
            Template.BOOKING_CONFIRMATION,
            booking_template_data(booking),
        )
        if not self.store.mark_confirmation_sent(self.db, booking.id):
            logger.info(f"ℹ️ Confirmation flag for booking {booking.id} already set")

    async def _send_cancellation(self, booking: Booking) -> None:
        await dispatch_notification(
            self.notifier,
            booking.client_email,
            Template.BOOKING_CANCELLED,
            booking_template_data(booking),
        )
