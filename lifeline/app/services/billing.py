"""Application wiring for pricing and billing reconciliation."""
from __future__ import annotations

from functools import lru_cache

from ..audit import LoggingAuditLogger
from ..billing import BillingService, PostgresBillingRepository
from ..pricing import PostgresPricingRepository, PricingService
from ..subscriptions import PostgresCoverageRepository
from .coverage import get_engine_config


@lru_cache(maxsize=1)
def get_billing_service() -> BillingService:
    config = get_engine_config()
    return BillingService(
        repository=PostgresBillingRepository(),
        audit_logger=LoggingAuditLogger(),
        platform_fee_rate=config.platform_fee_rate,
        pricing=get_pricing_service(),
    )


@lru_cache(maxsize=1)
def get_pricing_service() -> PricingService:
    return PricingService(
        repository=PostgresPricingRepository(),
        audit_logger=LoggingAuditLogger(),
        subscriptions=PostgresCoverageRepository(),
    )


__all__ = ["get_billing_service", "get_pricing_service"]
