"""Domain models for patient subscriptions and dependents."""
from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..entitlements.models import PackageType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionStatus(str, Enum):
    """Lifecycle status of a patient subscription."""

    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class Subscription(BaseModel):
    """A patient's purchase of one coverage package for a fixed term."""

    id: str
    patient_id: str
    package_type: PackageType
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    start_date: datetime
    end_date: datetime = Field(description="Mandatory so the expiry sweep can act on every active row")
    auto_renew: bool = True
    price: Decimal = Field(ge=0)
    currency: str = "NGN"
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @model_validator(mode="after")
    def _active_term_is_positive(self) -> "Subscription":
        if self.status is SubscriptionStatus.ACTIVE and self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self

    @property
    def is_active(self) -> bool:
        return self.status is SubscriptionStatus.ACTIVE

    def is_current(self, now: datetime) -> bool:
        """Stored status and end date must both agree."""

        return self.status is SubscriptionStatus.ACTIVE and self.end_date > now


class ExpirationSweepResult(BaseModel):
    """Outcome of one expiry sweep run."""

    run_at: datetime
    expired_count: int = 0
    subscription_ids: List[str] = Field(default_factory=list)
    patient_ids: List[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


class Relationship(str, Enum):
    SPOUSE = "spouse"
    CHILD = "child"
    PARENT = "parent"
    SIBLING = "sibling"
    OTHER = "other"


_BLOOD_GROUPS = {"A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-"}


def _check_blood_group(value: Optional[str]) -> Optional[str]:
    if value in (None, ""):
        return None
    if value not in _BLOOD_GROUPS:
        raise ValueError(f"Unknown blood group {value!r}")
    return value


class DependentData(BaseModel):
    """Demographic fields supplied when registering a dependent."""

    first_name: str = Field(alias="firstName", min_length=2, max_length=100)
    last_name: str = Field(alias="lastName", min_length=2, max_length=100)
    date_of_birth: date = Field(alias="dateOfBirth")
    gender: Gender
    relationship: Relationship
    blood_group: Optional[str] = Field(default=None, alias="bloodGroup")
    allergies: List[str] = Field(default_factory=list)
    chronic_conditions: List[str] = Field(default_factory=list, alias="chronicConditions")
    emergency_contact: Optional[Dict[str, str]] = Field(default=None, alias="emergencyContact")

    model_config = ConfigDict(populate_by_name=True, frozen=True, str_strip_whitespace=True)

    @field_validator("blood_group")
    @classmethod
    def _known_blood_group(cls, value: Optional[str]) -> Optional[str]:
        return _check_blood_group(value)

    @field_validator("date_of_birth")
    @classmethod
    def _not_in_future(cls, value: date) -> date:
        if value > _utcnow().date():
            raise ValueError("Date of birth cannot be in the future")
        return value


class DependentUpdate(BaseModel):
    """Partial profile update; ``None`` leaves a field unchanged."""

    first_name: Optional[str] = Field(default=None, alias="firstName", min_length=2, max_length=100)
    last_name: Optional[str] = Field(default=None, alias="lastName", min_length=2, max_length=100)
    date_of_birth: Optional[date] = Field(default=None, alias="dateOfBirth")
    gender: Optional[Gender] = None
    relationship: Optional[Relationship] = None
    blood_group: Optional[str] = Field(default=None, alias="bloodGroup")
    allergies: Optional[List[str]] = None
    chronic_conditions: Optional[List[str]] = Field(default=None, alias="chronicConditions")
    emergency_contact: Optional[Dict[str, str]] = Field(default=None, alias="emergencyContact")

    model_config = ConfigDict(populate_by_name=True, frozen=True, str_strip_whitespace=True)

    @field_validator("blood_group")
    @classmethod
    def _known_blood_group(cls, value: Optional[str]) -> Optional[str]:
        return _check_blood_group(value)

    def changes(self) -> Dict[str, object]:
        return self.model_dump(exclude_none=True)


class Dependent(BaseModel):
    """A family member covered under a patient's subscription."""

    id: str
    patient_id: str
    first_name: str
    last_name: str
    date_of_birth: date
    gender: Gender
    relationship: Relationship
    blood_group: Optional[str] = None
    allergies: List[str] = Field(default_factory=list)
    chronic_conditions: List[str] = Field(default_factory=list)
    emergency_contact: Optional[Dict[str, str]] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(frozen=True)


class DependentQuota(BaseModel):
    """Whether a patient may register another active dependent."""

    can_add: bool
    current: int = 0
    max: int = 0
    remaining: int = 0
    reason: Optional[str] = None
    package_type: Optional[PackageType] = None

    model_config = ConfigDict(frozen=True)


class DependentStatistics(BaseModel):
    total_dependents: int
    active_dependents: int
    inactive_dependents: int
    relationship_types: int
    relationship_breakdown: Dict[str, int] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


class BulkStatusResult(BaseModel):
    updated: int
    dependent_ids: List[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


__all__ = [
    "BulkStatusResult",
    "Dependent",
    "DependentData",
    "DependentQuota",
    "DependentStatistics",
    "DependentUpdate",
    "ExpirationSweepResult",
    "Gender",
    "Relationship",
    "Subscription",
    "SubscriptionStatus",
]
