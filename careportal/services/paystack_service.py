"""
Paystack client
Only the verify call is made server-side; checkout runs in the browser with
the public key handed out by payment initiation.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import httpx

from .. import config
from ..shared.errors import UpstreamError

logger = logging.getLogger(__name__)


@dataclass
class GatewayTransaction:
    """Normalized view of a provider transaction"""

    reference: str
    status: str  # success, failed, abandoned, ...
    amount_minor: Optional[int] = None
    paid_at: Optional[str] = None
    gateway_response: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict)


class PaymentGateway(Protocol):
    async def verify_transaction(self, reference: str) -> GatewayTransaction: ...


class PaystackService:
    """Service for interacting with the Paystack API"""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret_key = secret_key or config.PAYSTACK_SECRET_KEY
        self.base_url = (base_url or config.PAYSTACK_BASE_URL).rstrip("/")
        self.timeout = timeout or config.PAYSTACK_TIMEOUT_SECONDS
        self.transport = transport

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    async def verify_transaction(self, reference: str) -> GatewayTransaction:
        """
        Verify a transaction with the provider

        Raises:
            UpstreamError: Provider unreachable, non-200, or reported an error
        """
        if not self.secret_key:
            logger.error("❌ PAYSTACK_SECRET_KEY not configured")
            raise UpstreamError("Payment gateway not configured", code="GatewayNotConfigured")

        url = f"{self.base_url}/transaction/verify/{reference}"
        logger.info(f"🔄 Verifying transaction {reference} with Paystack")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(url, headers=self._headers())
        except httpx.HTTPError as e:
            logger.error(f"❌ Paystack verify request failed for {reference}: {e}")
            raise UpstreamError("Payment gateway unreachable") from e

        if response.status_code != 200:
            logger.error(
                f"❌ Paystack verify returned {response.status_code} for {reference}: {response.text}"
            )
            raise UpstreamError(f"Payment gateway returned {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise UpstreamError("Payment gateway returned malformed JSON") from e

        if not body.get("status"):
            logger.error(f"❌ Paystack verify unsuccessful for {reference}: {body.get('message')}")
            raise UpstreamError(body.get("message") or "Payment verification failed")

        data = body.get("data") or {}
        return GatewayTransaction(
            reference=data.get("reference") or reference,
            status=data.get("status") or "unknown",
            amount_minor=data.get("amount"),
            paid_at=data.get("paid_at") or data.get("paidAt"),
            gateway_response=data.get("gateway_response"),
            raw=data,
        )


def get_payment_gateway() -> PaymentGateway:
    """Dependency providing the payment gateway client"""
    return PaystackService()
