"""Shared fixtures: in-memory database, stub notifier and gateway, API client."""

import os

# Configure before the application package reads its environment
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DB_LOG_SLOW_QUERIES", "false")

import itertools
import json
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from careportal import config
from careportal import models  # noqa: F401
from careportal import models_invoice  # noqa: F401
from careportal.auth import ROLE_ADMIN, ROLE_CLIENT, Principal, create_session_token
from careportal.database import Base, get_db
from careportal.email_service import get_notifier
from careportal.main import app
from careportal.models import Booking, BookingStatus, PricingRule, PricingType, Service
from careportal.models_invoice import AttemptStatus, Payment, PaymentAttempt, PaymentStatus
from careportal.services.notification_service import NotificationResult
from careportal.services.paystack_service import GatewayTransaction, get_payment_gateway
from careportal.shared.validators import utc_now
from careportal.webhook_security import create_webhook_signature

WEBHOOK_SECRET = "whsec_test_secret"
CRON_SECRET = "cron-test-secret"
CLIENT_EMAIL = "ada@example.com"


class RecordingNotifier:
    """NotificationPort stub that records every send"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def send(self, to, template, data):
        self.sent.append((to, template, data))
        if self.fail:
            raise RuntimeError("mail provider down")
        return NotificationResult(sent=True, message_id=f"msg-{len(self.sent)}")

    def templates(self) -> list:
        return [template for _, template, _ in self.sent]


class StubGateway:
    """PaymentGateway stub answering from a reference -> transaction table"""

    def __init__(self):
        self.transactions = {}
        self.calls = []

    def settle(self, reference, status="success", amount_minor=None, paid_at=None, message=None):
        self.transactions[reference] = GatewayTransaction(
            reference=reference,
            status=status,
            amount_minor=amount_minor,
            paid_at=paid_at,
            gateway_response=message,
            raw={"reference": reference, "status": status},
        )

    async def verify_transaction(self, reference):
        self.calls.append(reference)
        return self.transactions.get(reference) or GatewayTransaction(
            reference=reference, status="abandoned"
        )


@pytest.fixture(autouse=True)
def _test_settings(monkeypatch):
    monkeypatch.setattr(config, "SECRET_KEY", "test-secret-key")
    monkeypatch.setattr(config, "CRON_SECRET", CRON_SECRET)
    monkeypatch.setattr(config, "PAYSTACK_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setattr(config, "PAYSTACK_PUBLIC_KEY", "pk_test_123")
    monkeypatch.setattr(config, "CALCOM_WEBHOOK_SECRET", None)
    monkeypatch.setattr(config, "INVOICE_TAX_RATE", 0.10)
    monkeypatch.setattr(config, "INVOICE_DUE_DAYS", 30)


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def failing_notifier():
    return RecordingNotifier(fail=True)


@pytest.fixture
def gateway():
    return StubGateway()


@pytest.fixture
def client(session_factory, notifier, gateway):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(email: str = CLIENT_EMAIL, role: str = ROLE_CLIENT) -> dict:
        token = create_session_token(user_id=f"user-{email}", email=email, role=role)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def client_principal():
    return Principal(user_id="user-ada", email=CLIENT_EMAIL)


@pytest.fixture
def admin_principal():
    return Principal(user_id="user-admin", email="admin@livingritecare.com", role=ROLE_ADMIN)


# ============================================================================
# FACTORIES
# ============================================================================


@pytest.fixture
def make_service(db):
    counter = itertools.count(1)

    def _make(
        slug=None,
        pricing_type=PricingType.FLAT,
        base_price=100.0,
        currency="NGN",
        rules=(),
    ) -> Service:
        service = Service(
            slug=slug or f"consultation-{next(counter)}",
            title="Consultation",
            pricing_type=pricing_type,
            base_price=base_price,
            currency=currency,
            is_active=True,
        )
        for position, rule in enumerate(rules):
            service.pricing_rules.append(PricingRule(position=position, is_active=True, **rule))
        db.add(service)
        db.commit()
        db.refresh(service)
        return service

    return _make


@pytest.fixture
def make_booking(db):
    counter = itertools.count(1)

    def _make(
        service=None,
        email=CLIENT_EMAIL,
        scheduled_at=None,
        status=BookingStatus.SCHEDULED,
        client_timezone="Africa/Lagos",
        **fields,
    ) -> Booking:
        booking = Booking(
            external_ref=f"cal-uid-{next(counter)}",
            client_name="Ada Obi",
            client_email=email,
            client_timezone=client_timezone,
            service_id=service.id if service else None,
            scheduled_at=scheduled_at or utc_now() + timedelta(days=2),
            status=status,
            **fields,
        )
        db.add(booking)
        db.commit()
        db.refresh(booking)
        return booking

    return _make


@pytest.fixture
def make_payment(db):
    def _make(booking, status=PaymentStatus.PENDING, amount=110.0, reference=None) -> Payment:
        reference = reference or f"{booking.id}-1700000000000-ab12"
        payment = Payment(
            booking_id=booking.id,
            amount=amount,
            currency="NGN",
            status=status,
            provider_ref=reference,
            paid_at=utc_now() if status == PaymentStatus.PAID else None,
        )
        db.add(payment)
        db.flush()
        db.add(
            PaymentAttempt(
                payment_id=payment.id,
                reference=reference,
                amount=amount,
                status=AttemptStatus.PENDING,
                attempt_metadata={},
            )
        )
        db.commit()
        db.refresh(payment)
        return payment

    return _make


@pytest.fixture
def returning_booking(make_service, make_booking):
    """A scheduled, billable booking for a client who has booked before"""
    service = make_service()
    make_booking(service=service, status=BookingStatus.COMPLETED)
    return make_booking(service=service)


@pytest.fixture
def sign_webhook():
    """Serialize a payment provider event and sign it with the test secret"""

    def _sign(event, data, secret=WEBHOOK_SECRET):
        raw = json.dumps({"event": event, "data": data}).encode("utf-8")
        return raw, create_webhook_signature(secret, raw)

    return _sign
