"""Domain models for coverage packages and entitlement verdicts."""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import FrozenSet, Iterable, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PackageType(str, Enum):
    """Canonical identifiers for the three coverage tiers."""

    BASIC = "BASIC"
    MEDIUM = "MEDIUM"
    ADVANCED = "ADVANCED"

    @classmethod
    def _missing_(cls, value: object) -> Optional["PackageType"]:
        if isinstance(value, str):
            normalized = value.strip().upper()
            for member in cls:
                if member.value == normalized:
                    return member
        return None

    @property
    def rank(self) -> int:
        return _PACKAGE_RANK[self]


_PACKAGE_RANK = {PackageType.BASIC: 1, PackageType.MEDIUM: 2, PackageType.ADVANCED: 3}


class ServiceType(str, Enum):
    """Typed service events the evaluator classifies."""

    CONSULTATION = "consultation"
    PRESCRIPTION = "prescription"
    DRUG_DISPENSING = "drug_dispensing"
    MINOR_SURGERY = "minor_surgery"
    MAJOR_SURGERY = "major_surgery"
    LABORATORY_TEST = "laboratory_test"
    IMAGING = "imaging"
    ADMISSION = "admission"
    EMERGENCY = "emergency"


class ServiceCategory(str, Enum):
    """Entitlement categories as keyed in the persisted catalog."""

    CONSULTATIONS = "consultations"
    PRESCRIPTIONS = "prescriptions"
    DRUG_DISPENSING = "drugDispensing"
    SURGERIES = "surgeries"
    SPECIALISTS = "specialists"
    LABORATORY_TESTS = "laboratoryTests"
    IMAGING = "imaging"
    ADMISSIONS = "admissions"
    EMERGENCY = "emergency"


class LimitPeriod(str, Enum):
    """Name of the numeric limit field a category carries."""

    PER_MONTH = "limitPerMonth"
    PER_YEAR = "limitPerYear"
    MAX_DAYS = "maxDays"


ALL_SENTINEL = "all"


@dataclass(frozen=True)
class Unrestricted:
    """Every code in the category is covered."""

    def covers(self, code: str) -> bool:
        return True

    def intersects(self, codes: Iterable[str]) -> bool:
        return True

    def to_config(self) -> str:
        return ALL_SENTINEL


@dataclass(frozen=True)
class Limited:
    """Only the listed codes are covered."""

    codes: Tuple[str, ...] = ()

    def covers(self, code: str) -> bool:
        return code in self.codes

    def intersects(self, codes: Iterable[str]) -> bool:
        return any(code in self.codes for code in codes)

    def to_config(self) -> List[str]:
        return list(self.codes)


Coverage = Union[Unrestricted, Limited]
UNRESTRICTED = Unrestricted()


@dataclass(frozen=True)
class Unlimited:
    """No numeric cap applies (persisted as ``null``)."""

    def is_reached(self, count: int) -> bool:
        return False

    def is_exceeded_by(self, value: int) -> bool:
        return False

    def to_config(self) -> None:
        return None


@dataclass(frozen=True)
class Bounded:
    """A numeric cap on usage."""

    value: int

    def is_reached(self, count: int) -> bool:
        return count >= self.value

    def is_exceeded_by(self, value: int) -> bool:
        return value > self.value

    def to_config(self) -> int:
        return self.value


Limit = Union[Unlimited, Bounded]
UNLIMITED = Unlimited()


@dataclass(frozen=True)
class CategoryEntitlement:
    """Allow flag, coverage set and optional limit for one service category.

    ``limit`` is ``None`` when the category carries no limit field at all,
    and :data:`UNLIMITED` when the field is present but ``null``.
    """

    allowed: bool
    coverage: Coverage = field(default_factory=Limited)
    limit: Optional[Limit] = None
    limit_period: Optional[LimitPeriod] = None
    tier: Optional[str] = None

    @property
    def bounded_limit(self) -> Optional[int]:
        if isinstance(self.limit, Bounded):
            return self.limit.value
        return None


DISALLOWED = CategoryEntitlement(allowed=False)


@dataclass(frozen=True)
class PackageDefinition:
    """Describes one coverage package and its entitlement mapping."""

    package_type: PackageType
    name: str
    price: Decimal
    currency: str
    max_dependents: int
    entitlements: Mapping[ServiceCategory, CategoryEntitlement]
    limitations: Tuple[str, ...] = ()
    perks: FrozenSet[str] = frozenset()

    def category(self, category: ServiceCategory) -> CategoryEntitlement:
        return self.entitlements.get(category, DISALLOWED)


class ServiceDetails(BaseModel):
    """Optional request attributes and usage counters consulted by the evaluator."""

    specialty: Optional[str] = None
    ailment: Optional[str] = None
    drug_category: Optional[str] = Field(default=None, alias="drugCategory")
    surgery_type: Optional[str] = Field(default=None, alias="surgeryType")
    test_type: Optional[str] = Field(default=None, alias="testType")
    imaging_type: Optional[str] = Field(default=None, alias="imagingType")
    monthly_count: Optional[int] = Field(default=None, alias="monthlyCount", ge=0)
    yearly_count: Optional[int] = Field(default=None, alias="yearlyCount", ge=0)
    requested_days: Optional[int] = Field(default=None, alias="requestedDays", ge=0)

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")


class EntitlementVerdict(BaseModel):
    """Allow/deny outcome with the user-facing reason text."""

    entitled: bool
    reason: str
    service_type: str
    package_type: Optional[PackageType] = None
    coverage_tier: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class UpgradeOption(BaseModel):
    """A package that would cover a service the current package denies."""

    package_type: PackageType
    name: str
    price: Decimal
    currency: str

    model_config = ConfigDict(frozen=True)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()
