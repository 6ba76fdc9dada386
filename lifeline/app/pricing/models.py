"""Pricing table models: configured price splits and derived reports."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..entitlements.models import PackageType

CONSISTENCY_EPSILON = Decimal("0.01")
_CENT = Decimal("0.01")


def quantize_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)


class PricingEntryData(BaseModel):
    """Fields supplied when curating a pricing entry."""

    service_type: str = Field(alias="serviceType", min_length=1)
    package_type: PackageType = Field(alias="packageType")
    patient_price: Decimal = Field(alias="patientPrice", ge=0)
    provider_share: Decimal = Field(alias="providerShare", ge=0)
    platform_fee: Decimal = Field(alias="platformFee", ge=0)
    description: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True, str_strip_whitespace=True)


class PricingUpdate(BaseModel):
    """Partial pricing change; ``None`` keeps the stored value."""

    patient_price: Optional[Decimal] = Field(default=None, alias="patientPrice", ge=0)
    provider_share: Optional[Decimal] = Field(default=None, alias="providerShare", ge=0)
    platform_fee: Optional[Decimal] = Field(default=None, alias="platformFee", ge=0)
    description: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class PricingEntry(BaseModel):
    """Configured split of a patient price between provider and platform."""

    id: str
    service_type: str
    package_type: PackageType
    patient_price: Decimal = Field(ge=0)
    provider_share: Decimal = Field(ge=0)
    platform_fee: Decimal = Field(ge=0)
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)


class PaymentBreakdown(BaseModel):
    """Display breakdown for a service under a package.

    When ``overridden`` is set, ``patient_price`` and ``total`` carry the
    caller's base amount while the shares still come from configuration, so
    the parts need not add up to the total.
    """

    service_type: str
    package_type: PackageType
    patient_price: Decimal
    provider_share: Decimal
    platform_fee: Decimal
    total: Decimal
    overridden: bool = False

    model_config = ConfigDict(frozen=True)


class ConsistencyReport(BaseModel):
    entry_id: str
    service_type: str
    package_type: PackageType
    is_consistent: bool
    patient_price: Decimal
    provider_share: Decimal
    platform_fee: Decimal
    calculated_total: Decimal
    difference: Decimal

    model_config = ConfigDict(frozen=True)


class PackagePriceRow(BaseModel):
    package_type: PackageType
    patient_price: Decimal
    provider_share: Decimal
    platform_fee: Decimal
    description: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class PricingStatistics(BaseModel):
    total_entries: int = 0
    service_types_count: int = 0
    package_types_count: int = 0
    avg_patient_price: Decimal = Decimal("0.00")
    avg_provider_share: Decimal = Decimal("0.00")
    avg_platform_fee: Decimal = Decimal("0.00")
    min_patient_price: Decimal = Decimal("0.00")
    max_patient_price: Decimal = Decimal("0.00")

    model_config = ConfigDict(frozen=True)


class PackagePricing(BaseModel):
    """Every configured price under the package a patient currently holds."""

    patient_id: str
    package_type: PackageType
    entries: List[PricingEntry] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class BulkPricingResult(BaseModel):
    updated: int
    entry_ids: List[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


__all__ = [
    "BulkPricingResult",
    "CONSISTENCY_EPSILON",
    "ConsistencyReport",
    "PackagePriceRow",
    "PackagePricing",
    "PaymentBreakdown",
    "PricingEntry",
    "PricingEntryData",
    "PricingStatistics",
    "PricingUpdate",
    "quantize_money",
]
