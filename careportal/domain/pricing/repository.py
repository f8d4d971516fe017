"""Pricing repository - Database operations for services and pricing rules"""

from typing import Optional

from sqlalchemy.orm import Session, selectinload

from ...models import PricingRule, Service


class PricingRepository:
    """Repository for service catalog database operations"""

    @staticmethod
    def get_service(db: Session, service_id: int) -> Optional[Service]:
        """Get a service with its pricing rules"""
        return (
            db.query(Service)
            .options(selectinload(Service.pricing_rules))
            .filter(Service.id == service_id)
            .first()
        )

    @staticmethod
    def get_service_by_slug(db: Session, slug: str) -> Optional[Service]:
        """Get a service by its scheduling-provider slug"""
        return db.query(Service).filter(Service.slug == slug).first()

    @staticmethod
    def list_services(db: Session, active_only: bool = True) -> list[Service]:
        query = db.query(Service)
        if active_only:
            query = query.filter(Service.is_active.is_(True))
        return query.order_by(Service.title.asc()).all()

    @staticmethod
    def create_service(db: Session, **service_data) -> Service:
        service = Service(**service_data)
        db.add(service)
        db.commit()
        db.refresh(service)
        return service

    @staticmethod
    def add_rule(db: Session, service: Service, **rule_data) -> PricingRule:
        rule = PricingRule(service_id=service.id, **rule_data)
        db.add(rule)
        db.commit()
        db.refresh(rule)
        return rule
