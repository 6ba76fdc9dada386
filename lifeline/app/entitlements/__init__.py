"""Entitlement catalog, rule evaluation and patient package resolution."""

from .cache import InMemoryPackageCache, PackageCache, ResolvedPackage
from .catalog import DEFAULT_CATALOG, DEFAULT_CATALOG_CONFIG, EntitlementCatalog, get_package_definition
from .evaluator import EntitlementEvaluator
from .models import (
    ALL_SENTINEL,
    UNLIMITED,
    UNRESTRICTED,
    Bounded,
    CategoryEntitlement,
    EntitlementVerdict,
    Limited,
    LimitPeriod,
    PackageDefinition,
    PackageType,
    ServiceCategory,
    ServiceDetails,
    ServiceType,
    Unlimited,
    Unrestricted,
    UpgradeOption,
)
from .service import EntitlementService, SubscriptionLookup

__all__ = [
    "ALL_SENTINEL",
    "DEFAULT_CATALOG",
    "DEFAULT_CATALOG_CONFIG",
    "EntitlementCatalog",
    "get_package_definition",
    "InMemoryPackageCache",
    "PackageCache",
    "ResolvedPackage",
    "EntitlementEvaluator",
    "UNLIMITED",
    "UNRESTRICTED",
    "Bounded",
    "CategoryEntitlement",
    "EntitlementVerdict",
    "Limited",
    "LimitPeriod",
    "PackageDefinition",
    "PackageType",
    "ServiceCategory",
    "ServiceDetails",
    "ServiceType",
    "Unlimited",
    "Unrestricted",
    "UpgradeOption",
    "EntitlementService",
    "SubscriptionLookup",
]
