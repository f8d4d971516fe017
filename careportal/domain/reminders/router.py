"""Cron router - externally triggered reminder scan"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import require_cron_secret
from ...database import get_db
from ...email_service import get_notifier
from ...services.notification_service import NotificationPort
from .scheduler import ReminderScheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["Cron"])


def get_reminder_scheduler(
    db: Session = Depends(get_db),
    notifier: NotificationPort = Depends(get_notifier),
) -> ReminderScheduler:
    """Dependency injection for ReminderScheduler"""
    return ReminderScheduler(db, notifier)


@router.api_route("/reminders", methods=["GET", "POST"], dependencies=[Depends(require_cron_secret)])
async def run_reminder_scan(scheduler: ReminderScheduler = Depends(get_reminder_scheduler)):
    """Run one reminder / thank-you / follow-up scan"""
    summary = await scheduler.run_scan()
    return {"success": True, "processed": summary.as_dict()}
