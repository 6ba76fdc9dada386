"""Pricing table: service x package price splits."""

from .models import (
    CONSISTENCY_EPSILON,
    BulkPricingResult,
    ConsistencyReport,
    PackagePriceRow,
    PackagePricing,
    PaymentBreakdown,
    PricingEntry,
    PricingEntryData,
    PricingStatistics,
    PricingUpdate,
)
from .repository import PostgresPricingRepository
from .service import PricingRepository, PricingService

__all__ = [
    "CONSISTENCY_EPSILON",
    "BulkPricingResult",
    "ConsistencyReport",
    "PackagePriceRow",
    "PackagePricing",
    "PaymentBreakdown",
    "PricingEntry",
    "PricingEntryData",
    "PricingStatistics",
    "PricingUpdate",
    "PostgresPricingRepository",
    "PricingRepository",
    "PricingService",
]
