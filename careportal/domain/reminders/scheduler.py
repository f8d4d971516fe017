"""
Reminder scheduler - time-window scan for booking notification milestones

Each scan runs the milestones in a fixed order (reminder, thank-you,
follow-up) so an overdue booking always gets its thank-you before its
follow-up. Per booking the notification is sent first, then the milestone flag
is set with a conditional update. A send failure does not block the flag; a
flag update that loses its condition or raises is logged and not retried, so a
duplicate send is possible but never a retry storm.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models import Booking
from ...services.notification_service import NotificationPort, Template, dispatch_notification
from ...shared.validators import utc_now
from ..bookings.repository import BookingStore
from ..bookings.service import booking_template_data

logger = logging.getLogger(__name__)

REMINDER_LEAD = timedelta(hours=6)
REMINDER_WINDOW = timedelta(minutes=15)
THANK_YOU_DELAY = timedelta(hours=1)
FOLLOW_UP_DELAY = timedelta(hours=48)


@dataclass
class ScanSummary:
    reminders: int = 0
    thank_yous: int = 0
    follow_ups: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "reminders": self.reminders,
            "thankYous": self.thank_yous,
            "followUps": self.follow_ups,
        }


class ReminderScheduler:
    """Runs one scan over the booking store"""

    def __init__(self, db: Session, notifier: Optional[NotificationPort] = None):
        self.db = db
        self.notifier = notifier
        self.store = BookingStore()

    async def run_scan(self, now: Optional[datetime] = None) -> ScanSummary:
        now = now or utc_now()
        summary = ScanSummary()
        logger.info(f"⏰ Reminder scan started at {now.isoformat()}")

        # 1. Reminder ahead of the appointment
        window_start = now + REMINDER_LEAD
        for booking in self.store.due_for_reminder(self.db, window_start, window_start + REMINDER_WINDOW):
            data = booking_template_data(booking)
            data["hours_ahead"] = int(REMINDER_LEAD.total_seconds() // 3600)
            if await self._process(
                booking,
                Template.BOOKING_REMINDER,
                data,
                lambda b: self.store.mark_reminder_sent(self.db, b.id),
            ):
                summary.reminders += 1

        # 2. Thank-you, which also completes the booking
        for booking in self.store.due_for_thank_you(self.db, now - THANK_YOU_DELAY):
            if await self._process(
                booking,
                Template.THANK_YOU,
                booking_template_data(booking),
                lambda b: self.store.complete_with_thank_you(self.db, b.id, now),
            ):
                summary.thank_yous += 1

        # 3. Follow-up after completed consultations
        for booking in self.store.due_for_follow_up(self.db, now - FOLLOW_UP_DELAY):
            if await self._process(
                booking,
                Template.FOLLOW_UP,
                booking_template_data(booking),
                lambda b: self.store.mark_follow_up_sent(self.db, b.id),
            ):
                summary.follow_ups += 1

        logger.info(
            f"✅ Reminder scan done: {summary.reminders} reminders, "
            f"{summary.thank_yous} thank-yous, {summary.follow_ups} follow-ups"
        )
        return summary

    async def _process(
        self,
        booking: Booking,
        template: str,
        data: dict,
        mark: Callable[[Booking], bool],
    ) -> bool:
        """Send, then set the milestone flag; True only when this run set it"""
        booking_id = booking.id
        await dispatch_notification(self.notifier, booking.client_email, template, data)

        try:
            if mark(booking):
                return True
            logger.warning(f"⚠️ {template} flag for booking {booking_id} already set by another run")
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to record {template} for booking {booking_id}, not retrying: {e}")
        return False
