"""Pricing domain schemas - Pydantic models for validation"""

from typing import Optional

from pydantic import BaseModel, field_validator

from ...models import ModifierType, PricingType


class QuoteRequest(BaseModel):
    """Schema for pricing a service"""

    serviceId: int
    location: Optional[str] = None
    hours: Optional[float] = None
    sessions: Optional[int] = None
    isDiaspora: Optional[bool] = None
    isFirstConsultation: bool = False

    @field_validator("hours")
    @classmethod
    def validate_hours(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("hours must be positive")
        return v

    @field_validator("sessions")
    @classmethod
    def validate_sessions(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError("sessions must be at least 1")
        return v


class BreakdownItem(BaseModel):
    kind: str
    label: str
    amount: float


class QuoteResponse(BaseModel):
    price: Optional[float] = None
    currency: str
    isQuoteRequired: bool
    isFirstConsultation: bool = False
    breakdown: list[BreakdownItem]


class ServiceCreate(BaseModel):
    """Schema for creating a service (admin)"""

    slug: str
    title: str
    description: Optional[str] = None
    pricingType: str = PricingType.FLAT
    basePrice: Optional[float] = None
    currency: str = "NGN"

    @field_validator("pricingType")
    @classmethod
    def validate_pricing_type(cls, v: str) -> str:
        if v not in PricingType.ALL:
            raise ValueError(f"pricingType must be one of {', '.join(PricingType.ALL)}")
        return v

    @field_validator("basePrice")
    @classmethod
    def validate_base_price(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v < 0:
            raise ValueError("basePrice cannot be negative")
        return v


class RuleCondition(BaseModel):
    locationEquals: Optional[str] = None
    diasporaEquals: Optional[bool] = None
    hoursAtLeast: Optional[float] = None


class PricingRuleCreate(BaseModel):
    """Schema for adding a pricing rule to a service (admin)"""

    name: str
    modifierType: str
    priceModifier: float
    condition: RuleCondition = RuleCondition()
    position: int = 0
    isActive: bool = True

    @field_validator("modifierType")
    @classmethod
    def validate_modifier_type(cls, v: str) -> str:
        if v not in ModifierType.ALL:
            raise ValueError(f"modifierType must be one of {', '.join(ModifierType.ALL)}")
        return v


class PricingRuleResponse(BaseModel):
    id: int
    name: str
    modifierType: str
    priceModifier: float
    condition: RuleCondition
    position: int
    isActive: bool


class ServiceResponse(BaseModel):
    id: int
    slug: str
    title: str
    pricingType: str
    basePrice: Optional[float] = None
    currency: str
    isActive: bool
    rules: list[PricingRuleResponse] = []
