import re

import pytest

from careportal.auth import Principal
from careportal.domain.invoices.service import (
    InvoiceIssuer,
    generate_invoice_number,
    invoice_amounts,
    statuses_before,
    subtotal_from_total,
)
from careportal.domain.payments.service import PaymentService
from careportal.models import PricingType
from careportal.models_invoice import AttemptStatus, InvoiceStatus, PaymentStatus
from careportal.services.notification_service import Template
from careportal.shared.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError


@pytest.fixture
def issuer(db, notifier):
    return InvoiceIssuer(db, notifier)


def test_invoice_number_format():
    assert re.fullmatch(r"INV-\d{8}-[0-9A-F]{6}", generate_invoice_number())


def test_invoice_amounts_apply_tax():
    assert invoice_amounts(100.0) == {"amount": 100.0, "tax": 10.0, "total_amount": 110.0}
    assert invoice_amounts(80.0, tax_rate=0.075) == {"amount": 80.0, "tax": 6.0, "total_amount": 86.0}
    assert subtotal_from_total(110.0) == 100.0


def test_statuses_only_move_forward():
    assert statuses_before(InvoiceStatus.PAID) == (
        InvoiceStatus.PENDING,
        InvoiceStatus.GENERATED,
        InvoiceStatus.SENT,
        InvoiceStatus.VIEWED,
    )
    assert statuses_before(InvoiceStatus.PENDING) == ()


def test_request_invoice_prices_booking(issuer, returning_booking, client_principal):
    invoice = issuer.request_invoice(client_principal, returning_booking.id)
    again = issuer.request_invoice(client_principal, returning_booking.id)

    assert invoice.status == InvoiceStatus.PENDING
    assert (invoice.amount, invoice.tax, invoice.total_amount) == (100.0, 10.0, 110.0)
    assert invoice.due_at is not None
    assert again.id == invoice.id


def test_request_invoice_for_quoted_booking_starts_at_zero(
    issuer, make_service, make_booking, client_principal
):
    booking = make_booking(service=make_service(pricing_type=PricingType.QUOTE_BASED, base_price=None))

    invoice = issuer.request_invoice(client_principal, booking.id)

    assert invoice.total_amount == 0.0


def test_request_invoice_checks_ownership(issuer, returning_booking):
    with pytest.raises(ForbiddenError):
        issuer.request_invoice(Principal(user_id="u", email="eve@example.com"), returning_booking.id)


def test_finalize_sets_quoted_amount(issuer, make_service, make_booking, client_principal):
    booking = make_booking(service=make_service(pricing_type=PricingType.QUOTE_BASED, base_price=None))
    invoice = issuer.request_invoice(client_principal, booking.id)

    finalized = issuer.finalize(invoice.id, amount=200.0)

    assert finalized.status == InvoiceStatus.GENERATED
    assert (finalized.amount, finalized.tax, finalized.total_amount) == (200.0, 20.0, 220.0)

    with pytest.raises(ConflictError):
        issuer.finalize(invoice.id)


def test_finalize_rejects_negative_amount(issuer, returning_booking, client_principal):
    invoice = issuer.request_invoice(client_principal, returning_booking.id)

    with pytest.raises(ValidationError):
        issuer.finalize(invoice.id, amount=-5.0)


@pytest.mark.asyncio
async def test_send_then_client_view(issuer, notifier, returning_booking, client_principal, admin_principal):
    invoice = issuer.request_invoice(client_principal, returning_booking.id)

    sent = await issuer.send(invoice.id)
    assert sent.status == InvoiceStatus.SENT
    assert sent.sent_at is not None
    assert notifier.templates() == [Template.INVOICE_SENT]
    assert notifier.sent[0][2]["invoice_url"].endswith(f"/invoices/{invoice.id}")

    # Admin reads do not count as the client viewing it
    assert issuer.read_invoice(admin_principal, invoice.id).status == InvoiceStatus.SENT

    viewed = issuer.read_invoice(client_principal, invoice.id)
    assert viewed.status == InvoiceStatus.VIEWED
    assert viewed.viewed_at is not None

    with pytest.raises(ConflictError):
        await issuer.send(invoice.id)


def test_unsent_invoice_is_not_marked_viewed(issuer, returning_booking, client_principal):
    invoice = issuer.request_invoice(client_principal, returning_booking.id)

    assert issuer.read_invoice(client_principal, invoice.id).status == InvoiceStatus.PENDING


def test_mark_paid_moves_pending_payment(db, notifier, gateway, issuer, returning_booking, client_principal, admin_principal):
    payment = PaymentService(db, notifier, gateway).initiate(client_principal, returning_booking.id).payment
    invoice = issuer.get_for_booking(client_principal, returning_booking.id)

    paid = issuer.mark_paid(invoice.id, admin_principal)

    db.refresh(payment)
    assert paid.status == InvoiceStatus.PAID
    assert paid.paid_at is not None
    assert payment.status == PaymentStatus.PAID
    assert payment.attempts[-1].status == AttemptStatus.SUCCESS
    assert payment.attempts[-1].attempt_metadata["source"] == "invoice_mark_paid"

    with pytest.raises(ConflictError):
        issuer.mark_paid(invoice.id, admin_principal)


def test_mark_paid_leaves_free_payment_alone(
    db, notifier, gateway, issuer, make_service, make_booking, client_principal, admin_principal
):
    booking = make_booking(service=make_service())
    invoice = issuer.request_invoice(client_principal, booking.id)
    payment = PaymentService(db, notifier, gateway).initiate(client_principal, booking.id).payment
    assert payment.status == PaymentStatus.FREE

    issuer.mark_paid(invoice.id, admin_principal)

    db.refresh(payment)
    assert payment.status == PaymentStatus.FREE


def test_list_for_client(issuer, make_service, make_booking, client_principal):
    service = make_service()
    mine = issuer.request_invoice(client_principal, make_booking(service=service).id)
    other = make_booking(service=service, email="eve@example.com")
    issuer.request_invoice(Principal(user_id="u", email="eve@example.com"), other.id)

    assert [invoice.id for invoice in issuer.list_for(client_principal)] == [mine.id]


def test_missing_invoice(issuer, client_principal):
    with pytest.raises(NotFoundError):
        issuer.get_for_booking(client_principal, 12345)
