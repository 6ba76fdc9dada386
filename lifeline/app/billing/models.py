"""Domain models for payment records and monthly provider statements."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..entitlements.models import PackageType
from ..pricing.models import PaymentBreakdown


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentStatus(str, Enum):
    """Lifecycle status of a payment record."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentType(str, Enum):
    SUBSCRIPTION = "subscription"
    CONSULTATION = "consultation"
    PRESCRIPTION = "prescription"
    SURGERY = "surgery"
    LAB_TEST = "lab_test"
    OTHER = "other"


class ProviderType(str, Enum):
    DOCTOR = "doctor"
    PHARMACY = "pharmacy"
    HOSPITAL = "hospital"


class StatementStatus(str, Enum):
    """Statements leave ``pending`` exactly once."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PaymentData(BaseModel):
    """Fields supplied when a payment is initiated."""

    patient_id: str = Field(alias="patientId", min_length=1)
    amount: Decimal = Field(ge=0)
    payment_type: PaymentType = Field(alias="paymentType")
    payment_reference: str = Field(alias="paymentReference", min_length=1)
    provider_id: Optional[str] = Field(default=None, alias="providerId")
    provider_type: Optional[ProviderType] = Field(default=None, alias="providerType")
    payment_method: Optional[str] = Field(default=None, alias="paymentMethod")
    description: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class ServicePaymentData(BaseModel):
    """A covered service rendered by a provider, charged at the configured price."""

    patient_id: str = Field(alias="patientId", min_length=1)
    provider_id: str = Field(alias="providerId", min_length=1)
    provider_type: ProviderType = Field(alias="providerType")
    service_type: str = Field(alias="serviceType", min_length=1)
    package_type: PackageType = Field(alias="packageType")

    model_config = ConfigDict(populate_by_name=True, frozen=True, str_strip_whitespace=True)


class PaymentRecord(BaseModel):
    """One financial event, mutated only by gateway callbacks."""

    id: str
    patient_id: str
    amount: Decimal = Field(ge=0)
    payment_type: PaymentType
    payment_reference: str
    status: PaymentStatus = PaymentStatus.PENDING
    provider_id: Optional[str] = None
    provider_type: Optional[ProviderType] = None
    payment_method: Optional[str] = None
    description: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    gateway_response: Optional[Dict[str, Any]] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(frozen=True)


class MonthlyStatement(BaseModel):
    """Aggregated completed payments for one provider and calendar month."""

    id: str
    provider_id: str
    provider_type: ProviderType
    month: int = Field(ge=1, le=12)
    year: int = Field(ge=1)
    total_amount: Decimal
    transaction_count: int = Field(ge=0)
    platform_fee: Decimal
    net_amount: Decimal
    payment_references: List[str] = Field(default_factory=list)
    status: StatementStatus = StatementStatus.PENDING
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(frozen=True)

    @property
    def period(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


class RevenueSummary(BaseModel):
    total_revenue: Decimal
    transaction_count: int
    status: Optional[PaymentStatus] = None
    provider_id: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)


class PaymentAnalyticsRow(BaseModel):
    payment_type: PaymentType
    provider_type: Optional[ProviderType] = None
    status: PaymentStatus
    transaction_count: int
    total_amount: Decimal
    average_amount: Decimal

    model_config = ConfigDict(frozen=True)


class StatementRunSummary(BaseModel):
    """Outcome of generating statements for every provider in a period."""

    month: int
    year: int
    generated: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class ServicePaymentResult(BaseModel):
    payment: PaymentRecord
    breakdown: PaymentBreakdown

    model_config = ConfigDict(frozen=True)


__all__ = [
    "MonthlyStatement",
    "PaymentAnalyticsRow",
    "PaymentData",
    "PaymentRecord",
    "PaymentStatus",
    "PaymentType",
    "ProviderType",
    "RevenueSummary",
    "ServicePaymentData",
    "ServicePaymentResult",
    "StatementRunSummary",
    "StatementStatus",
]
