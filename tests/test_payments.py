import pytest

from careportal.auth import Principal
from careportal.domain.invoices.repository import InvoiceRepository
from careportal.domain.payments.repository import PaymentLedger
from careportal.domain.payments.service import (
    APPLIED,
    DUPLICATE,
    REJECTED,
    STALE,
    PaymentReconciler,
    PaymentService,
    generate_reference,
    latest_error,
)
from careportal.domain.payments.transitions import (
    TRANSITIONS,
    MarkPaid,
    can_transition,
    sources_for,
)
from careportal.models import BookingStatus, PricingType
from careportal.models_invoice import (
    AttemptStatus,
    InvoiceStatus,
    Payment,
    PaymentAttempt,
    PaymentStatus,
    RefundStatus,
)
from careportal.services.notification_service import Template
from careportal.shared.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from careportal.shared.validators import utc_now


@pytest.fixture
def payments(db, notifier, gateway):
    return PaymentService(db, notifier, gateway)


# ============================================================================
# TRANSITIONS
# ============================================================================


@pytest.mark.parametrize(
    "current, target, allowed",
    [
        (None, PaymentStatus.PENDING, True),
        (None, PaymentStatus.FREE, True),
        (None, PaymentStatus.PAID, False),
        (PaymentStatus.PENDING, PaymentStatus.PAID, True),
        (PaymentStatus.PENDING, PaymentStatus.FAILED, True),
        (PaymentStatus.FAILED, PaymentStatus.PENDING, True),
        (PaymentStatus.FAILED, PaymentStatus.PAID, True),
        (PaymentStatus.PAID, PaymentStatus.REFUNDED, True),
        (PaymentStatus.PAID, PaymentStatus.FAILED, False),
        (PaymentStatus.PAID, PaymentStatus.PENDING, False),
        (PaymentStatus.REFUNDED, PaymentStatus.PAID, False),
        (PaymentStatus.FREE, PaymentStatus.PAID, False),
        (PaymentStatus.FREE, PaymentStatus.PENDING, False),
    ],
)
def test_transition_table(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_sources_for_targets():
    assert set(sources_for(PaymentStatus.PAID)) == {PaymentStatus.PENDING, PaymentStatus.FAILED}
    assert set(sources_for(PaymentStatus.FAILED)) == {PaymentStatus.PENDING}
    assert set(sources_for(PaymentStatus.REFUNDED)) == {PaymentStatus.PAID, PaymentStatus.REFUNDED}
    assert TRANSITIONS[PaymentStatus.FREE] == frozenset()


def test_generate_reference_format():
    reference = generate_reference(42)

    booking_id, millis, suffix = reference.split("-")
    assert booking_id == "42"
    assert millis.isdigit()
    assert len(suffix) == 4


def test_apply_refuses_illegal_source(db, make_booking, make_payment):
    payment = make_payment(make_booking(), status=PaymentStatus.FREE, amount=0.0)

    assert PaymentLedger.apply(db, payment.id, MarkPaid(paid_at=utc_now())) is False

    db.refresh(payment)
    assert payment.status == PaymentStatus.FREE


# ============================================================================
# INITIATION
# ============================================================================


def test_first_consultation_is_free(db, payments, make_service, make_booking, client_principal):
    booking = make_booking(service=make_service())

    result = payments.initiate(client_principal, booking.id)

    assert result.payment.status == PaymentStatus.FREE
    assert result.payment.amount == 0.0
    assert result.gateway_config is None


def test_cancelled_earlier_booking_keeps_consultation_free(
    db, payments, make_service, make_booking, client_principal
):
    service = make_service()
    make_booking(service=service, status=BookingStatus.CANCELLED)
    booking = make_booking(service=service)

    assert payments.initiate(client_principal, booking.id).payment.status == PaymentStatus.FREE


def test_returning_client_is_charged_invoice_total(db, payments, returning_booking, client_principal):
    result = payments.initiate(client_principal, returning_booking.id)
    payment = result.payment

    assert payment.status == PaymentStatus.PENDING
    assert payment.amount == 110.0
    assert payment.provider_ref.startswith(f"{returning_booking.id}-")

    config = result.gateway_config
    assert config["amountMinorUnits"] == 11000
    assert config["reference"] == payment.provider_ref
    assert config["email"] == returning_booking.client_email
    assert config["publicKey"] == "pk_test_123"

    invoice = InvoiceRepository.get_by_booking(db, returning_booking.id)
    assert invoice.status == InvoiceStatus.PENDING
    assert (invoice.amount, invoice.tax, invoice.total_amount) == (100.0, 10.0, 110.0)

    attempts = payment.attempts
    assert [(a.reference, a.status) for a in attempts] == [(payment.provider_ref, AttemptStatus.PENDING)]
    assert attempts[0].attempt_metadata["invoiceNumber"] == invoice.invoice_number


@pytest.mark.parametrize("base_price", [None, 0.0])
def test_unconfigured_pricing_creates_no_payment(
    db, payments, make_service, make_booking, client_principal, base_price
):
    booking = make_booking(service=make_service(base_price=base_price))

    with pytest.raises(ValidationError) as exc:
        payments.initiate(client_principal, booking.id)

    assert exc.value.code == "PricingNotConfigured"
    assert db.query(Payment).count() == 0


def test_booking_without_service_is_not_priced(db, payments, make_booking, client_principal):
    booking = make_booking()

    with pytest.raises(ValidationError) as exc:
        payments.initiate(client_principal, booking.id)

    assert exc.value.code == "PricingNotConfigured"


def test_quote_based_service_requires_quote(db, payments, make_service, make_booking, client_principal):
    booking = make_booking(service=make_service(pricing_type=PricingType.QUOTE_BASED, base_price=None))

    with pytest.raises(ValidationError) as exc:
        payments.initiate(client_principal, booking.id)

    assert exc.value.code == "QuoteRequired"
    assert db.query(Payment).count() == 0


def test_second_initiation_is_rejected(payments, returning_booking, client_principal):
    payments.initiate(client_principal, returning_booking.id)

    with pytest.raises(ConflictError) as exc:
        payments.initiate(client_principal, returning_booking.id)

    assert exc.value.code == "PaymentAlreadyActive"


def test_initiation_requires_scheduled_booking(payments, make_service, make_booking, client_principal):
    booking = make_booking(service=make_service(), status=BookingStatus.CANCELLED)

    with pytest.raises(ConflictError) as exc:
        payments.initiate(client_principal, booking.id)

    assert exc.value.code == "BookingNotScheduled"


def test_initiation_checks_ownership(payments, returning_booking):
    stranger = Principal(user_id="user-eve", email="eve@example.com")

    with pytest.raises(ForbiddenError):
        payments.initiate(stranger, returning_booking.id)


def test_initiation_unknown_booking(payments, client_principal):
    with pytest.raises(NotFoundError):
        payments.initiate(client_principal, 404)


def test_failed_payment_can_be_reinitiated(db, payments, returning_booking, client_principal):
    first = payments.initiate(client_principal, returning_booking.id).payment
    old_reference = first.provider_ref

    outcome = payments.reconciler.charge_failed(
        old_reference, error_code="declined", error_message="Insufficient funds"
    )
    assert outcome == APPLIED
    db.refresh(first)
    assert first.status == PaymentStatus.FAILED
    assert latest_error(first) == {"code": "declined", "message": "Insufficient funds"}

    retry = payments.initiate(client_principal, returning_booking.id)

    assert retry.payment.id == first.id
    assert retry.payment.status == PaymentStatus.PENDING
    assert retry.payment.provider_ref != old_reference
    assert retry.payment.amount == 110.0
    assert retry.gateway_config["reference"] == retry.payment.provider_ref
    # The superseded reference still resolves for late provider reports
    assert PaymentLedger.get_by_reference(db, old_reference).id == first.id


def test_failure_for_superseded_attempt_is_stale(db, payments, returning_booking, client_principal):
    payment = payments.initiate(client_principal, returning_booking.id).payment
    old_reference = payment.provider_ref
    payments.reconciler.charge_failed(old_reference, error_code="declined")
    payments.initiate(client_principal, returning_booking.id)

    assert payments.reconciler.charge_failed(old_reference, error_code="declined") == STALE

    db.refresh(payment)
    assert payment.status == PaymentStatus.PENDING


# ============================================================================
# RECONCILIATION
# ============================================================================


@pytest.mark.asyncio
async def test_charge_success_settles_payment_and_invoice(
    db, notifier, payments, returning_booking, client_principal
):
    payment = payments.initiate(client_principal, returning_booking.id).payment
    reconciler = PaymentReconciler(db, notifier)

    outcome = await reconciler.charge_success(
        payment.provider_ref, amount_minor=11000, paid_at="2026-10-19T09:30:00Z"
    )

    db.refresh(payment)
    invoice = InvoiceRepository.get_by_booking(db, returning_booking.id)
    assert outcome == APPLIED
    assert payment.status == PaymentStatus.PAID
    assert payment.paid_at.isoformat() == "2026-10-19T09:30:00"
    assert invoice.status == InvoiceStatus.PAID
    assert notifier.templates() == [Template.PAYMENT_RECEIPT]
    assert notifier.sent[0][2]["invoice_number"] == invoice.invoice_number


@pytest.mark.asyncio
async def test_charge_success_replay_is_duplicate(db, notifier, payments, returning_booking, client_principal):
    payment = payments.initiate(client_principal, returning_booking.id).payment
    reconciler = PaymentReconciler(db, notifier)

    await reconciler.charge_success(payment.provider_ref, amount_minor=11000, paid_at="2026-10-19T09:30:00Z")
    replay = await reconciler.charge_success(
        payment.provider_ref, amount_minor=11000, paid_at="2026-10-19T11:00:00Z"
    )

    db.refresh(payment)
    successes = (
        db.query(PaymentAttempt)
        .filter(PaymentAttempt.payment_id == payment.id, PaymentAttempt.status == AttemptStatus.SUCCESS)
        .count()
    )
    assert replay == DUPLICATE
    assert payment.paid_at.isoformat() == "2026-10-19T09:30:00"
    assert successes == 1
    assert notifier.templates() == [Template.PAYMENT_RECEIPT]


@pytest.mark.asyncio
async def test_underpaid_charge_is_rejected(db, notifier, payments, returning_booking, client_principal):
    payment = payments.initiate(client_principal, returning_booking.id).payment

    outcome = await PaymentReconciler(db, notifier).charge_success(payment.provider_ref, amount_minor=5000)

    db.refresh(payment)
    assert outcome == REJECTED
    assert payment.status == PaymentStatus.FAILED
    assert latest_error(payment)["code"] == "amount_mismatch"


@pytest.mark.asyncio
async def test_late_success_after_failure_is_accepted(db, notifier, payments, returning_booking, client_principal):
    payment = payments.initiate(client_principal, returning_booking.id).payment
    reconciler = PaymentReconciler(db, notifier)
    reconciler.charge_failed(payment.provider_ref, error_code="timeout")

    outcome = await reconciler.charge_success(payment.provider_ref, amount_minor=11000)

    db.refresh(payment)
    assert outcome == APPLIED
    assert payment.status == PaymentStatus.PAID


@pytest.mark.asyncio
async def test_failure_after_success_is_stale(db, notifier, payments, returning_booking, client_principal):
    payment = payments.initiate(client_principal, returning_booking.id).payment
    reconciler = PaymentReconciler(db, notifier)
    await reconciler.charge_success(payment.provider_ref, amount_minor=11000)

    assert reconciler.charge_failed(payment.provider_ref, error_code="declined") == STALE

    db.refresh(payment)
    assert payment.status == PaymentStatus.PAID


# ============================================================================
# VERIFICATION
# ============================================================================


@pytest.mark.asyncio
async def test_verify_reconciles_successful_transaction(
    db, gateway, payments, returning_booking, client_principal
):
    payment = payments.initiate(client_principal, returning_booking.id).payment
    gateway.settle(payment.provider_ref, amount_minor=11000, paid_at="2026-10-19T09:30:00Z")

    verified_payment, verified, outcome = await payments.verify(client_principal, payment.provider_ref)

    assert verified is True
    assert outcome == APPLIED
    assert verified_payment.status == PaymentStatus.PAID


@pytest.mark.asyncio
async def test_verify_pending_transaction_changes_nothing(
    db, gateway, payments, returning_booking, client_principal
):
    payment = payments.initiate(client_principal, returning_booking.id).payment

    verified_payment, verified, outcome = await payments.verify(client_principal, payment.provider_ref)

    assert verified is False
    assert outcome == STALE
    assert verified_payment.status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_verify_failed_transaction(db, gateway, payments, returning_booking, client_principal):
    payment = payments.initiate(client_principal, returning_booking.id).payment
    gateway.settle(payment.provider_ref, status="failed", message="Declined")

    verified_payment, verified, outcome = await payments.verify(client_principal, payment.provider_ref)

    assert verified is False
    assert outcome == APPLIED
    assert verified_payment.status == PaymentStatus.FAILED


@pytest.mark.asyncio
async def test_verify_unknown_reference_skips_gateway(gateway, payments, client_principal):
    with pytest.raises(NotFoundError):
        await payments.verify(client_principal, "no-such-ref")

    assert gateway.calls == []


# ============================================================================
# REFUNDS
# ============================================================================


def test_refund_requires_paid_payment(payments, make_booking, make_payment):
    payment = make_payment(make_booking())

    with pytest.raises(ConflictError) as exc:
        payments.request_refund(payment.id, 10.0, "Changed mind")

    assert exc.value.code == "InvalidPaymentState"


def test_refund_cannot_exceed_remaining_balance(db, payments, make_booking, make_payment):
    payment = make_payment(make_booking(), status=PaymentStatus.PAID, amount=110.0)

    refund = payments.request_refund(payment.id, 50.0, "Partial refund")
    assert refund.status == RefundStatus.PENDING
    assert refund.amount == 50.0

    # Pending requests count against the balance
    with pytest.raises(ValidationError) as exc:
        payments.request_refund(payment.id, 70.0, "Too much")
    assert exc.value.code == "RefundExceedsPayment"

    assert payments.request_refund(payment.id, 60.0, "Remainder").amount == 60.0


def test_refund_amount_must_be_positive(payments, make_booking, make_payment):
    payment = make_payment(make_booking(), status=PaymentStatus.PAID)

    with pytest.raises(ValidationError):
        payments.request_refund(payment.id, 0, "Nothing owed")


def test_refund_unknown_payment(payments):
    with pytest.raises(NotFoundError):
        payments.request_refund(999, 10.0, "Unknown payment")


# ============================================================================
# ADMIN OVERRIDE
# ============================================================================


@pytest.mark.asyncio
async def test_admin_marks_pending_payment_paid(db, payments, returning_booking, client_principal, admin_principal):
    payment = payments.initiate(client_principal, returning_booking.id).payment

    updated = await payments.override_status(payment.id, PaymentStatus.PAID, admin_principal)

    assert updated.status == PaymentStatus.PAID
    assert updated.paid_at is not None
    assert InvoiceRepository.get_by_booking(db, returning_booking.id).status == InvoiceStatus.PAID


@pytest.mark.asyncio
async def test_admin_marks_pending_payment_failed(payments, returning_booking, client_principal, admin_principal):
    payment = payments.initiate(client_principal, returning_booking.id).payment

    updated = await payments.override_status(payment.id, PaymentStatus.FAILED, admin_principal)

    assert updated.status == PaymentStatus.FAILED
    assert latest_error(updated)["code"] == "admin_override"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "current, target",
    [
        (PaymentStatus.FREE, PaymentStatus.PAID),
        (PaymentStatus.PAID, PaymentStatus.FAILED),
        (PaymentStatus.PENDING, PaymentStatus.REFUNDED),
        (PaymentStatus.PENDING, PaymentStatus.FREE),
    ],
)
async def test_admin_override_rejects_illegal_moves(
    db, payments, make_booking, make_payment, admin_principal, current, target
):
    payment = make_payment(make_booking(), status=current)

    with pytest.raises(ConflictError) as exc:
        await payments.override_status(payment.id, target, admin_principal)

    assert exc.value.code == "IllegalTransition"
    db.refresh(payment)
    assert payment.status == current
