"""
Webhook Security Module

Signature verification for the inbound webhook endpoints:
- Payment provider: HMAC-SHA512 over the raw request body (hex)
- Scheduling provider: HMAC-SHA256 over the raw request body (hex), optional

Verification always runs against the exact bytes received, before any JSON
parsing. Comparisons are constant-time.
"""

import hashlib
import hmac
import logging
from typing import Optional

from .shared.errors import AuthError

logger = logging.getLogger(__name__)

PAYMENT_SIGNATURE_HEADERS = ("X-Provider-Signature", "X-Paystack-Signature")
CALCOM_SIGNATURE_HEADER = "X-Cal-Signature-256"


def constant_time_compare(a: Optional[str], b: Optional[str]) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.
    Uses hmac.compare_digest which is designed for this purpose.
    """
    if not a or not b:
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def compute_hmac_sha512(secret: str, payload: bytes) -> str:
    """Compute HMAC-SHA512 signature of payload"""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha512).hexdigest()


def compute_hmac_sha256(secret: str, payload: bytes) -> str:
    """Compute HMAC-SHA256 signature of payload"""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def payment_signature_from(headers) -> Optional[str]:
    """First non-empty payment signature header, in precedence order"""
    for name in PAYMENT_SIGNATURE_HEADERS:
        value = headers.get(name)
        if value:
            return value
    return None


def verify_payment_signature(raw_body: bytes, signature: Optional[str], secret: str) -> None:
    """
    Verify a payment provider webhook signature.

    Args:
        raw_body: Request body exactly as received
        signature: Hex HMAC-SHA512 from the signature header
        secret: Shared webhook secret

    Raises:
        AuthError: Missing or mismatching signature, or no secret configured
    """
    if not secret:
        logger.error("❌ Payment webhook secret not configured - rejecting webhook")
        raise AuthError("Webhook secret not configured", code="InvalidSignature")

    if not signature:
        logger.warning("🚫 Payment webhook missing signature header")
        raise AuthError("Missing webhook signature", code="InvalidSignature")

    expected = compute_hmac_sha512(secret, raw_body)
    if not constant_time_compare(expected, signature.strip().lower()):
        logger.warning("🚫 Payment webhook signature mismatch")
        raise AuthError("Invalid webhook signature", code="InvalidSignature")

    logger.debug("✅ Payment webhook signature verified")


def verify_calcom_signature(raw_body: bytes, signature: Optional[str], secret: Optional[str]) -> None:
    """
    Verify a scheduling provider webhook signature.

    Verification is skipped when no secret is configured, matching how the
    scheduling provider treats unsigned subscriptions.
    """
    if not secret:
        logger.debug("⚠️ CALCOM_WEBHOOK_SECRET not set - skipping signature check")
        return

    if not signature:
        logger.warning("🚫 Scheduling webhook missing signature header")
        raise AuthError("Missing webhook signature", code="InvalidSignature")

    expected = compute_hmac_sha256(secret, raw_body)
    if not constant_time_compare(expected, signature.strip().lower()):
        logger.warning("🚫 Scheduling webhook signature mismatch")
        raise AuthError("Invalid webhook signature", code="InvalidSignature")

    logger.debug("✅ Scheduling webhook signature verified")


def create_webhook_signature(secret: str, payload: bytes, provider: str = "payment") -> str:
    """
    Create a webhook signature for testing.

    Args:
        secret: Signing secret
        payload: Request body bytes
        provider: 'payment' (sha512) or 'calcom' (sha256)
    """
    if provider == "calcom":
        return compute_hmac_sha256(secret, payload)
    return compute_hmac_sha512(secret, payload)
