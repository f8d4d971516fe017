"""Pricing router - FastAPI endpoints for quotes and the service catalog"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import Principal, require_admin
from ...database import get_db
from ...models import Service
from ...shared.errors import NotFoundError, ValidationError
from .engine import PriceQuote, PricingContext, PricingEngine
from .repository import PricingRepository
from .schemas import (
    BreakdownItem,
    PricingRuleCreate,
    PricingRuleResponse,
    QuoteRequest,
    QuoteResponse,
    RuleCondition,
    ServiceCreate,
    ServiceResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pricing", tags=["Pricing"])


def get_pricing_engine(db: Session = Depends(get_db)) -> PricingEngine:
    """Dependency injection for PricingEngine"""
    return PricingEngine(db)


def quote_to_response(quote: PriceQuote) -> QuoteResponse:
    return QuoteResponse(
        price=quote.price,
        currency=quote.currency,
        isQuoteRequired=quote.is_quote_required,
        isFirstConsultation=quote.is_first_consultation,
        breakdown=[
            BreakdownItem(kind=line.kind, label=line.label, amount=line.amount)
            for line in quote.breakdown
        ],
    )


def service_to_response(service: Service) -> ServiceResponse:
    return ServiceResponse(
        id=service.id,
        slug=service.slug,
        title=service.title,
        pricingType=service.pricing_type,
        basePrice=service.base_price,
        currency=service.currency,
        isActive=service.is_active,
        rules=[
            PricingRuleResponse(
                id=rule.id,
                name=rule.name,
                modifierType=rule.modifier_type,
                priceModifier=rule.price_modifier,
                condition=RuleCondition(
                    locationEquals=rule.location_equals,
                    diasporaEquals=rule.diaspora_equals,
                    hoursAtLeast=rule.hours_at_least,
                ),
                position=rule.position,
                isActive=rule.is_active,
            )
            for rule in service.pricing_rules
        ],
    )


@router.post("/quote", response_model=QuoteResponse)
async def quote_price(
    body: QuoteRequest,
    engine: PricingEngine = Depends(get_pricing_engine),
):
    """Price a service for the given booking context"""
    quote = engine.price(
        body.serviceId,
        PricingContext(
            location=body.location,
            hours=body.hours,
            sessions=body.sessions,
            is_diaspora=body.isDiaspora,
            is_first_consultation=body.isFirstConsultation,
        ),
    )
    return quote_to_response(quote)


# ============================================================================
# SERVICE CATALOG (ADMIN)
# ============================================================================


@router.get("/services", response_model=list[ServiceResponse])
async def list_services(db: Session = Depends(get_db)):
    """List active services with their pricing rules"""
    return [service_to_response(s) for s in PricingRepository.list_services(db)]


@router.post("/services", response_model=ServiceResponse, status_code=201)
async def create_service(
    body: ServiceCreate,
    db: Session = Depends(get_db),
    _: Principal = Depends(require_admin),
):
    """Create a bookable service"""
    if PricingRepository.get_service_by_slug(db, body.slug):
        raise ValidationError(f"Service slug '{body.slug}' already exists", code="DuplicateSlug")

    service = PricingRepository.create_service(
        db,
        slug=body.slug,
        title=body.title,
        description=body.description,
        pricing_type=body.pricingType,
        base_price=body.basePrice,
        currency=body.currency,
    )
    logger.info(f"✅ Service created: {service.slug} ({service.pricing_type})")
    return service_to_response(service)


@router.post("/services/{service_id}/rules", response_model=ServiceResponse, status_code=201)
async def add_pricing_rule(
    service_id: int,
    body: PricingRuleCreate,
    db: Session = Depends(get_db),
    _: Principal = Depends(require_admin),
):
    """Attach a conditional pricing rule to a service"""
    service = PricingRepository.get_service(db, service_id)
    if not service:
        raise NotFoundError(f"Service {service_id} not found", code="ServiceNotFound")

    PricingRepository.add_rule(
        db,
        service,
        name=body.name,
        position=body.position,
        location_equals=body.condition.locationEquals,
        diaspora_equals=body.condition.diasporaEquals,
        hours_at_least=body.condition.hoursAtLeast,
        modifier_type=body.modifierType,
        price_modifier=body.priceModifier,
        is_active=body.isActive,
    )
    db.refresh(service)
    logger.info(f"✅ Pricing rule '{body.name}' added to service {service.slug}")
    return service_to_response(service)
