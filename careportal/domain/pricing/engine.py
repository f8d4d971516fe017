"""
Pricing engine - computes a bookable price from a service and its rules

calculate_price() is pure: it never touches the database and never mutates
the service, its rules, or the booking. PricingEngine wraps it with the
service lookup.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.orm import Session

from ...models import Booking, ModifierType, PricingType
from ...shared.errors import NotFoundError
from .repository import PricingRepository

logger = logging.getLogger(__name__)

BASE = "base"
RULE = "rule"
ADJUSTMENT = "adjustment"


@dataclass(frozen=True)
class PricingContext:
    location: Optional[str] = None
    hours: Optional[float] = None
    sessions: Optional[int] = None
    is_diaspora: Optional[bool] = None
    is_first_consultation: bool = False


@dataclass(frozen=True)
class RuleCondition:
    """Closed condition variant; a None field places no constraint"""

    location_equals: Optional[str] = None
    diaspora_equals: Optional[bool] = None
    hours_at_least: Optional[float] = None


@dataclass(frozen=True)
class BreakdownLine:
    kind: str
    label: str
    amount: float


@dataclass
class PriceQuote:
    price: Optional[float]
    currency: str
    is_quote_required: bool = False
    is_first_consultation: bool = False
    breakdown: list[BreakdownLine] = field(default_factory=list)

    @property
    def base_amount(self) -> float:
        return self.breakdown[0].amount if self.breakdown else 0.0


def condition_of(rule) -> RuleCondition:
    return RuleCondition(
        location_equals=rule.location_equals,
        diaspora_equals=rule.diaspora_equals,
        hours_at_least=rule.hours_at_least,
    )


def condition_matches(condition: RuleCondition, context: PricingContext) -> bool:
    """True when every condition field present is satisfied by the context"""
    if condition.location_equals is not None and condition.location_equals != context.location:
        return False
    if condition.diaspora_equals is not None and condition.diaspora_equals != bool(
        context.is_diaspora
    ):
        return False
    if condition.hours_at_least is not None:
        if context.hours is None or context.hours < condition.hours_at_least:
            return False
    return True


def _base_line(service, context: PricingContext) -> BreakdownLine:
    rate = service.base_price or 0.0

    if service.pricing_type == PricingType.HOURLY:
        hours = context.hours or 1
        return BreakdownLine(BASE, f"Hourly rate x {hours:g} hours", round(rate * hours, 2))

    if service.pricing_type == PricingType.PER_SESSION:
        sessions = context.sessions or 1
        return BreakdownLine(BASE, f"Per-session rate x {sessions} sessions", round(rate * sessions, 2))

    return BreakdownLine(BASE, "Base price", round(rate, 2))


def calculate_price(service, context: PricingContext) -> PriceQuote:
    """
    Compute the price of a service for the given context.

    Args:
        service: Service with pricing_type, base_price, currency and pricing_rules
        context: Booking-specific inputs

    Returns:
        PriceQuote whose breakdown starts with the base line; the remaining
        lines are deltas that sum to price - base
    """
    if service.pricing_type == PricingType.QUOTE_BASED:
        return PriceQuote(price=None, currency=service.currency, is_quote_required=True)

    if context.is_first_consultation:
        return PriceQuote(
            price=0.0,
            currency=service.currency,
            is_first_consultation=True,
            breakdown=[BreakdownLine(BASE, "Free first consultation", 0.0)],
        )

    base_line = _base_line(service, context)
    breakdown = [base_line]
    total = base_line.amount

    for rule in service.pricing_rules:
        if not rule.is_active:
            continue
        if not condition_matches(condition_of(rule), context):
            continue

        if rule.modifier_type == ModifierType.ADD:
            delta = rule.price_modifier
        elif rule.modifier_type == ModifierType.SUBTRACT:
            delta = -rule.price_modifier
        elif rule.modifier_type == ModifierType.MULTIPLY:
            delta = total * (rule.price_modifier - 1)
        else:
            logger.warning(f"⚠️ Skipping rule {rule.id} with unknown modifier {rule.modifier_type}")
            continue

        delta = round(delta, 2)
        total += delta
        breakdown.append(BreakdownLine(RULE, rule.name, delta))

    total = round(total, 2)
    if total < 0:
        breakdown.append(BreakdownLine(ADJUSTMENT, "Minimum price", -total))
        total = 0.0

    return PriceQuote(price=total, currency=service.currency, breakdown=breakdown)


def is_diaspora_timezone(timezone_name: Optional[str]) -> Optional[bool]:
    """Clients outside an Africa/* timezone are treated as diaspora"""
    if not timezone_name:
        return None
    return not timezone_name.startswith("Africa/")


def context_for_booking(booking: Booking, is_first_consultation: bool = False) -> PricingContext:
    return PricingContext(
        location=booking.location,
        hours=booking.hours,
        sessions=booking.sessions,
        is_diaspora=is_diaspora_timezone(booking.client_timezone),
        is_first_consultation=is_first_consultation,
    )


class PricingEngine:
    """Loads services and prices them"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = PricingRepository()

    def price(self, service_id: int, context: PricingContext) -> PriceQuote:
        service = self.repo.get_service(self.db, service_id)
        if not service:
            raise NotFoundError(f"Service {service_id} not found", code="ServiceNotFound")

        quote = calculate_price(service, context)
        logger.debug(f"💰 Priced service {service_id}: {quote.price} {quote.currency}")
        return quote
