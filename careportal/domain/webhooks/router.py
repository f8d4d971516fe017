"""Payment webhook router"""

import asyncio
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ... import config
from ...database import get_db
from ...email_service import get_notifier
from ...services.notification_service import NotificationPort
from ...webhook_security import payment_signature_from
from .gateway import WebhookGateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def get_webhook_gateway(
    db: Session = Depends(get_db),
    notifier: NotificationPort = Depends(get_notifier),
) -> WebhookGateway:
    """Dependency injection for WebhookGateway"""
    return WebhookGateway(db, notifier)


@router.post("/paystack")
async def paystack_webhook(
    request: Request,
    gateway: WebhookGateway = Depends(get_webhook_gateway),
):
    """
    Payment provider webhook

    Responds 200 for every verified delivery, including ignored and unmatched
    events, so the provider does not retry them. A handler that runs past the
    time budget answers 503 and the provider redelivers.
    """
    raw_body = await request.body()
    signature = payment_signature_from(request.headers)

    try:
        result = await asyncio.wait_for(
            gateway.handle(raw_body, signature),
            timeout=config.WEBHOOK_HANDLER_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        logger.error(
            f"⏱️ Payment webhook exceeded {config.WEBHOOK_HANDLER_TIMEOUT_SECONDS}s, asking provider to retry"
        )
        return JSONResponse(
            status_code=503,
            content={"received": False, "error": "Timeout", "detail": "Webhook processing timed out"},
        )

    return {"received": result.received, "event": result.event, "outcome": result.outcome}
