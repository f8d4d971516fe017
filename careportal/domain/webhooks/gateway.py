"""
Payment webhook gateway

handle() verifies the HMAC-SHA512 signature over the raw bytes, parses the
body only after that, and routes the event to PaymentReconciler. Deliveries
are at-least-once: every handler is safe to replay or to re-run after being
interrupted, and unknown events or references are acknowledged rather than
retried.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.orm import Session

from ... import config
from ...services.notification_service import NotificationPort
from ...shared.errors import ValidationError
from ...webhook_security import verify_payment_signature
from ..payments.service import PaymentReconciler

logger = logging.getLogger(__name__)

CHARGE_SUCCESS = "charge.success"
CHARGE_FAILED = "charge.failed"
REFUND_CREATED = "refund.created"
REFUND_PROCESSED = "refund.processed"

IGNORED = "ignored"


@dataclass
class WebhookResult:
    received: bool
    event: Optional[str] = None
    outcome: Optional[str] = None


def _transaction_reference(data: dict[str, Any]) -> Optional[str]:
    """Refund events name the original charge in a few different shapes"""
    transaction = data.get("transaction")
    nested = transaction.get("reference") if isinstance(transaction, dict) else None
    return data.get("transaction_reference") or nested or data.get("reference")


def _refund_reference(data: dict[str, Any]) -> Optional[str]:
    value = data.get("refund_reference") or data.get("id")
    return str(value) if value is not None else None


class WebhookGateway:
    """Verifies and applies payment provider webhooks"""

    def __init__(
        self,
        db: Session,
        notifier: Optional[NotificationPort] = None,
        secret: Optional[str] = None,
    ):
        self.db = db
        self.secret = secret if secret is not None else config.PAYSTACK_WEBHOOK_SECRET
        self.reconciler = PaymentReconciler(db, notifier)

    async def handle(self, raw_body: bytes, signature: Optional[str]) -> WebhookResult:
        """
        Verify and apply one webhook delivery

        Raises:
            AuthError: Missing or invalid signature
            ValidationError: Signed body is not a JSON event
        """
        verify_payment_signature(raw_body, signature, self.secret)

        try:
            body = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError) as e:
            logger.warning(f"⚠️ Signed webhook body is not valid JSON: {e}")
            raise ValidationError("Malformed webhook body", code="MalformedWebhook") from e

        if not isinstance(body, dict):
            raise ValidationError("Malformed webhook body", code="MalformedWebhook")

        event = body.get("event")
        data = body.get("data")
        if data is None:
            data = {}
        elif not isinstance(data, dict):
            raise ValidationError("Malformed webhook body", code="MalformedWebhook")
        logger.info(f"📥 Payment webhook {event} ref={data.get('reference')}")

        outcome = await self._dispatch(event, data)
        logger.info(f"✅ Payment webhook {event} -> {outcome}")
        return WebhookResult(received=True, event=event, outcome=outcome)

    async def _dispatch(self, event: Optional[str], data: dict[str, Any]) -> str:
        if event == CHARGE_SUCCESS:
            return await self.reconciler.charge_success(
                data.get("reference"),
                amount_minor=data.get("amount"),
                paid_at=data.get("paid_at") or data.get("paidAt"),
                raw=data,
            )

        if event == CHARGE_FAILED:
            return self.reconciler.charge_failed(
                data.get("reference"),
                error_code=data.get("status") or "failed",
                error_message=data.get("gateway_response") or data.get("message"),
                amount_minor=data.get("amount"),
                raw=data,
            )

        if event == REFUND_CREATED:
            return self.reconciler.refund_created(
                _transaction_reference(data), _refund_reference(data), data.get("amount"), raw=data
            )

        if event == REFUND_PROCESSED:
            return self.reconciler.refund_processed(
                _transaction_reference(data), _refund_reference(data), data.get("amount"), raw=data
            )

        logger.info(f"ℹ️ Ignoring unhandled payment webhook event: {event}")
        return IGNORED
