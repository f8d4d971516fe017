import hashlib
import hmac

import pytest

from careportal.shared.errors import AuthError
from careportal.webhook_security import (
    constant_time_compare,
    create_webhook_signature,
    payment_signature_from,
    verify_calcom_signature,
    verify_payment_signature,
)

SECRET = "sk_test_webhook"
BODY = b'{"event":"charge.success","data":{"reference":"42-1700000000000-ab12"}}'


def test_payment_signature_is_hmac_sha512_hex():
    expected = hmac.new(SECRET.encode(), BODY, hashlib.sha512).hexdigest()

    assert create_webhook_signature(SECRET, BODY) == expected
    verify_payment_signature(BODY, expected, SECRET)


def test_payment_signature_tolerates_case_and_whitespace():
    signature = create_webhook_signature(SECRET, BODY)

    verify_payment_signature(BODY, f"  {signature.upper()} ", SECRET)


@pytest.mark.parametrize(
    "body, signature, secret",
    [
        (BODY, None, SECRET),
        (BODY, "", SECRET),
        (BODY, "deadbeef", SECRET),
        (BODY + b" ", create_webhook_signature(SECRET, BODY), SECRET),
        (BODY, create_webhook_signature(SECRET, BODY), ""),
        (BODY, create_webhook_signature(SECRET, BODY), None),
    ],
)
def test_payment_signature_rejections(body, signature, secret):
    with pytest.raises(AuthError) as exc:
        verify_payment_signature(body, signature, secret)

    assert exc.value.code == "InvalidSignature"
    assert exc.value.status_code == 401


def test_signature_header_precedence():
    headers = {"X-Provider-Signature": "first", "X-Paystack-Signature": "second"}

    assert payment_signature_from(headers) == "first"
    assert payment_signature_from({"X-Paystack-Signature": "second"}) == "second"
    assert payment_signature_from({}) is None


def test_calcom_signature_is_sha256():
    signature = create_webhook_signature("cal-secret", BODY, provider="calcom")

    assert len(signature) == 64
    verify_calcom_signature(BODY, signature, "cal-secret")

    with pytest.raises(AuthError):
        verify_calcom_signature(BODY, create_webhook_signature("other", BODY, provider="calcom"), "cal-secret")
    with pytest.raises(AuthError):
        verify_calcom_signature(BODY, None, "cal-secret")


def test_calcom_check_skipped_without_secret():
    verify_calcom_signature(BODY, None, None)


def test_constant_time_compare():
    assert constant_time_compare("abc", "abc") is True
    assert constant_time_compare("abc", "abd") is False
    assert constant_time_compare(None, "abc") is False
