"""Subscription ledger and dependent quota enforcement."""

from .dependents import DependentRepository, DependentService
from .models import (
    BulkStatusResult,
    Dependent,
    DependentData,
    DependentQuota,
    DependentStatistics,
    DependentUpdate,
    ExpirationSweepResult,
    Gender,
    Relationship,
    Subscription,
    SubscriptionStatus,
)
from .repository import PostgresCoverageRepository
from .service import EntitlementInvalidator, SubscriptionRepository, SubscriptionService

__all__ = [
    "DependentRepository",
    "DependentService",
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
    "PostgresCoverageRepository",
    "EntitlementInvalidator",
    "SubscriptionRepository",
    "SubscriptionService",
]
