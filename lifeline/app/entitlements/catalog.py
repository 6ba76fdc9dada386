"""Catalog definitions for coverage packages and their entitlements."""
from __future__ import annotations

import json
from decimal import Decimal
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from .models import (
    ALL_SENTINEL,
    UNLIMITED,
    UNRESTRICTED,
    Bounded,
    CategoryEntitlement,
    Limited,
    LimitPeriod,
    PackageDefinition,
    PackageType,
    ServiceCategory,
)

AILMENTS_BASIC = (
    "malaria",
    "typhoid",
    "flu",
    "common_cold",
    "infections",
    "stomach_issues",
    "headache",
    "fever",
    "cough",
    "diarrhea",
    "minor_wounds",
)
AILMENTS_SPECIALTY = (
    "orthopedic",
    "cardiology",
    "neurology",
    "ophthalmology",
    "ent",
    "dermatology",
    "gynecology",
    "pediatrics",
)

DRUGS_ESSENTIAL = (
    "paracetamol",
    "ibuprofen",
    "antimalarial",
    "antibiotics_basic",
    "antihistamines",
    "antacids",
    "oral_rehydration_salts",
    "vitamins_basic",
)
DRUGS_STANDARD = (
    "antibiotics_advanced",
    "pain_relief_advanced",
    "chronic_disease_meds",
    "inhalers",
    "eye_drops",
    "topical_creams",
)
DRUGS_SPECIALIZED = (
    "oncology_drugs",
    "cardiac_medications",
    "neurological_medications",
    "immunosuppressants",
    "specialty_injections",
)

MINOR_SURGERIES = (
    "appendectomy",
    "wound_suturing",
    "minor_orthopedic",
    "cyst_removal",
    "hernia_repair_simple",
    "circumcision",
    "dental_extraction",
)
MAJOR_SURGERIES = (
    "cardiac_surgery",
    "major_orthopedic",
    "abdominal_surgery",
    "neurosurgery",
    "cancer_surgery",
    "organ_transplant",
    "major_reconstructive",
)

LAB_TESTS_BASIC = (
    "blood_count",
    "malaria_test",
    "typhoid_test",
    "urinalysis",
    "blood_sugar",
    "pregnancy_test",
)
LAB_TESTS_ADVANCED = (
    "lipid_profile",
    "liver_function",
    "kidney_function",
    "thyroid_function",
    "hiv_test",
    "hepatitis_panel",
    "culture_sensitivity",
)

IMAGING_BASIC = ("x_ray", "ultrasound")
IMAGING_ADVANCED = ("ct_scan", "mri", "mammography", "ecg", "echo")


class CategoryConfig(BaseModel):
    """Persisted shape of one category entry."""

    allowed: bool
    covered: Union[Literal["all"], List[str]] = Field(default_factory=list)
    limit_per_month: Optional[int] = Field(default=None, alias="limitPerMonth", ge=0)
    limit_per_year: Optional[int] = Field(default=None, alias="limitPerYear", ge=0)
    max_days: Optional[int] = Field(default=None, alias="maxDays", ge=0)
    tier: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    @model_validator(mode="after")
    def _single_limit_field(self) -> "CategoryConfig":
        present = [name for name in _LIMIT_FIELDS if name in self.model_fields_set]
        if len(present) > 1:
            raise ValueError(f"only one limit field may be set, got {present}")
        return self

    def to_entitlement(self) -> CategoryEntitlement:
        coverage = UNRESTRICTED if self.covered == ALL_SENTINEL else Limited(tuple(self.covered))
        limit = None
        limit_period = None
        for name, period in _LIMIT_FIELDS.items():
            if name in self.model_fields_set:
                raw = getattr(self, name)
                limit = UNLIMITED if raw is None else Bounded(raw)
                limit_period = period
        return CategoryEntitlement(
            allowed=self.allowed,
            coverage=coverage,
            limit=limit,
            limit_period=limit_period,
            tier=self.tier,
        )


_LIMIT_FIELDS = {
    "limit_per_month": LimitPeriod.PER_MONTH,
    "limit_per_year": LimitPeriod.PER_YEAR,
    "max_days": LimitPeriod.MAX_DAYS,
}


class PackageConfig(BaseModel):
    """Persisted shape of one package."""

    name: str
    price: Decimal = Field(ge=0)
    currency: str = Field(min_length=3, max_length=3)
    max_dependents: int = Field(alias="maxDependents", ge=1)
    entitlements: Dict[ServiceCategory, CategoryConfig]
    limitations: List[str] = Field(default_factory=list)
    perks: List[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    def to_definition(self, package_type: PackageType) -> PackageDefinition:
        return PackageDefinition(
            package_type=package_type,
            name=self.name,
            price=self.price,
            currency=self.currency.upper(),
            max_dependents=self.max_dependents,
            entitlements=MappingProxyType(
                {category: entry.to_entitlement() for category, entry in self.entitlements.items()}
            ),
            limitations=tuple(self.limitations),
            perks=frozenset(self.perks),
        )


_CATALOG_ADAPTER = TypeAdapter(Dict[PackageType, PackageConfig])


def _category_to_config(entry: CategoryEntitlement) -> Dict[str, Any]:
    data: Dict[str, Any] = {"allowed": entry.allowed}
    if isinstance(entry.coverage, Limited) and not entry.coverage.codes:
        pass
    else:
        data["covered"] = entry.coverage.to_config()
    if entry.limit_period is not None and entry.limit is not None:
        data[entry.limit_period.value] = entry.limit.to_config()
    if entry.tier is not None:
        data["tier"] = entry.tier
    return data


def _price_to_config(price: Decimal) -> Union[int, str]:
    if price == price.to_integral_value():
        return int(price)
    return str(price)


class EntitlementCatalog:
    """Immutable, injectable set of package definitions."""

    def __init__(self, packages: Mapping[PackageType, PackageDefinition]) -> None:
        if not packages:
            raise ValueError("catalog must define at least one package")
        ordered = sorted(packages.items(), key=lambda item: item[0].rank)
        self._packages: Mapping[PackageType, PackageDefinition] = MappingProxyType(dict(ordered))

    def __iter__(self) -> Iterator[PackageDefinition]:
        return iter(self._packages.values())

    def __len__(self) -> int:
        return len(self._packages)

    def __contains__(self, package_type: object) -> bool:
        return self.get(package_type) is not None  # type: ignore[arg-type]

    @property
    def package_types(self) -> tuple[PackageType, ...]:
        return tuple(self._packages)

    def get(self, package_type: Union[PackageType, str, None]) -> Optional[PackageDefinition]:
        """Return a package definition, or ``None`` for unknown identifiers."""

        if package_type is None:
            return None
        try:
            key = PackageType(package_type)
        except ValueError:
            return None
        return self._packages.get(key)

    def require(self, package_type: Union[PackageType, str]) -> PackageDefinition:
        """Return a package definition, raising if unsupported."""

        definition = self.get(package_type)
        if definition is None:
            raise KeyError(f"Unknown package type: {package_type}")
        return definition

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "EntitlementCatalog":
        parsed = _CATALOG_ADAPTER.validate_python(dict(config))
        return cls({package_type: entry.to_definition(package_type) for package_type, entry in parsed.items()})

    @classmethod
    def load(cls, path: Union[str, Path]) -> "EntitlementCatalog":
        with open(path, encoding="utf-8") as handle:
            return cls.from_config(json.load(handle))

    def to_config(self) -> Dict[str, Any]:
        """Serialize back to the persisted shape, keeping ``"all"`` and ``null`` sentinels."""

        config: Dict[str, Any] = {}
        for definition in self:
            package: Dict[str, Any] = {
                "name": definition.name,
                "price": _price_to_config(definition.price),
                "currency": definition.currency,
                "maxDependents": definition.max_dependents,
                "entitlements": {
                    category.value: _category_to_config(entry)
                    for category, entry in definition.entitlements.items()
                },
                "limitations": list(definition.limitations),
            }
            if definition.perks:
                package["perks"] = sorted(definition.perks)
            config[definition.package_type.value] = package
        return config


DEFAULT_CATALOG_CONFIG: Dict[str, Any] = {
    PackageType.BASIC.value: {
        "name": "Basic Plan",
        "price": 3500,
        "currency": "NGN",
        "maxDependents": 4,
        "entitlements": {
            "consultations": {"allowed": True, "covered": list(AILMENTS_BASIC)},
            "prescriptions": {"allowed": True, "covered": list(DRUGS_ESSENTIAL)},
            "drugDispensing": {"allowed": True, "covered": list(DRUGS_ESSENTIAL), "limitPerMonth": 10},
            "surgeries": {"allowed": False, "covered": []},
            "specialists": {"allowed": False, "covered": []},
            "laboratoryTests": {"allowed": True, "covered": list(LAB_TESTS_BASIC), "limitPerMonth": 3},
            "imaging": {"allowed": False, "covered": []},
            "admissions": {"allowed": False},
            "emergency": {"allowed": True, "tier": "basic_emergency_care"},
        },
        "limitations": [
            "No surgeries",
            "No specialist consultations",
            "Limited to essential medications",
            "No major diagnostic tests",
            "No admissions",
        ],
    },
    PackageType.MEDIUM.value: {
        "name": "Medium Plan",
        "price": 5000,
        "currency": "NGN",
        "maxDependents": 4,
        "entitlements": {
            "consultations": {"allowed": True, "covered": [*AILMENTS_BASIC, *AILMENTS_SPECIALTY]},
            "prescriptions": {"allowed": True, "covered": [*DRUGS_ESSENTIAL, *DRUGS_STANDARD]},
            "drugDispensing": {
                "allowed": True,
                "covered": [*DRUGS_ESSENTIAL, *DRUGS_STANDARD],
                "limitPerMonth": 20,
            },
            "surgeries": {"allowed": True, "covered": list(MINOR_SURGERIES), "limitPerYear": 2},
            "specialists": {
                "allowed": True,
                "covered": ["orthopedic", "ent", "dermatology", "pediatrics"],
                "limitPerMonth": 2,
            },
            "laboratoryTests": {
                "allowed": True,
                "covered": [*LAB_TESTS_BASIC, *LAB_TESTS_ADVANCED],
                "limitPerMonth": 5,
            },
            "imaging": {"allowed": True, "covered": list(IMAGING_BASIC), "limitPerMonth": 2},
            "admissions": {"allowed": True, "maxDays": 7, "tier": "general_ward"},
            "emergency": {"allowed": True, "tier": "full_emergency_care"},
        },
        "limitations": [
            "No major surgeries",
            "Limited specialist access",
            "No advanced imaging (CT, MRI)",
            "Admission limited to 7 days",
        ],
    },
    PackageType.ADVANCED.value: {
        "name": "Advanced Plan",
        "price": 10000,
        "currency": "NGN",
        "maxDependents": 4,
        "entitlements": {
            "consultations": {"allowed": True, "covered": ALL_SENTINEL},
            "prescriptions": {"allowed": True, "covered": ALL_SENTINEL},
            "drugDispensing": {"allowed": True, "covered": ALL_SENTINEL, "limitPerMonth": None},
            "surgeries": {
                "allowed": True,
                "covered": [*MINOR_SURGERIES, *MAJOR_SURGERIES],
                "limitPerYear": None,
            },
            "specialists": {"allowed": True, "covered": ALL_SENTINEL, "limitPerMonth": None},
            "laboratoryTests": {"allowed": True, "covered": ALL_SENTINEL, "limitPerMonth": None},
            "imaging": {
                "allowed": True,
                "covered": [*IMAGING_BASIC, *IMAGING_ADVANCED],
                "limitPerMonth": None,
            },
            "admissions": {"allowed": True, "maxDays": None, "tier": "private_ward"},
            "emergency": {"allowed": True, "tier": "premium_emergency_care"},
        },
        "limitations": [],
        "perks": ["ambulance", "homeVisits", "priorityCare", "secondOpinion"],
    },
}

DEFAULT_CATALOG = EntitlementCatalog.from_config(DEFAULT_CATALOG_CONFIG)


def get_package_definition(package_type: Union[PackageType, str]) -> PackageDefinition:
    """Return a default package definition, raising if unsupported."""

    return DEFAULT_CATALOG.require(package_type)


__all__ = [
    "DEFAULT_CATALOG",
    "DEFAULT_CATALOG_CONFIG",
    "EntitlementCatalog",
    "IMAGING_ADVANCED",
    "IMAGING_BASIC",
    "LAB_TESTS_ADVANCED",
    "LAB_TESTS_BASIC",
    "MAJOR_SURGERIES",
    "MINOR_SURGERIES",
    "get_package_definition",
]
