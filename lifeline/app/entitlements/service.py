"""Service resolving a patient's package and checking service entitlements."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Protocol, Union

from .cache import PackageCache, ResolvedPackage
from .evaluator import DetailsInput, EntitlementEvaluator
from .models import EntitlementVerdict, PackageType, ServiceType, UpgradeOption

logger = logging.getLogger(__name__)

NO_SUBSCRIPTION_REASON = "No active subscription. Please subscribe to a package to access services."


class SubscriptionLike(Protocol):
    id: str
    package_type: PackageType
    status: str
    end_date: datetime


class SubscriptionLookup(Protocol):
    """Read access to the subscription ledger."""

    def find_active_subscription(self, patient_id: str) -> Optional[SubscriptionLike]:
        ...


class EntitlementService:
    """Coordinates package resolution, caching and rule evaluation."""

    def __init__(
        self,
        evaluator: EntitlementEvaluator,
        subscriptions: SubscriptionLookup,
        cache: Optional[PackageCache] = None,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        ttl_seconds: int = 300,
    ) -> None:
        self._evaluator = evaluator
        self._subscriptions = subscriptions
        self._cache = cache
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._ttl_seconds = max(ttl_seconds, 60)

    def check(
        self,
        patient_id: str,
        service_type: Union[ServiceType, str],
        details: DetailsInput = None,
    ) -> EntitlementVerdict:
        """Return the verdict for ``service_type`` under the patient's current package."""

        resolved = self.resolve_package(patient_id)
        if resolved is None:
            raw_service = service_type.value if isinstance(service_type, ServiceType) else str(service_type)
            return EntitlementVerdict(entitled=False, reason=NO_SUBSCRIPTION_REASON, service_type=raw_service)

        verdict = self._evaluator.evaluate(resolved.package_type, service_type, details)
        logger.debug(
            "Entitlement check patient=%s package=%s service=%s entitled=%s",
            patient_id,
            resolved.package_type.value,
            verdict.service_type,
            verdict.entitled,
        )
        return verdict

    def upgrade_options(
        self,
        patient_id: str,
        service_type: Union[ServiceType, str],
        details: DetailsInput = None,
    ) -> List[UpgradeOption]:
        resolved = self.resolve_package(patient_id)
        current = resolved.package_type if resolved else None
        return self._evaluator.upgrade_options(current, service_type, details)

    def resolve_package(self, patient_id: str) -> Optional[ResolvedPackage]:
        """Read the patient's current package from the ledger.

        Every call reads the ledger unless a process-local cache was given.
        """

        if self._cache is not None:
            cached = self._cache.get(patient_id)
            if cached is not None:
                return cached

        now = self._clock()
        subscription = self._subscriptions.find_active_subscription(patient_id)
        # Stored status alone is not trusted; the expiry sweep may lag.
        if subscription is None or subscription.status != "active" or subscription.end_date <= now:
            return None

        resolved = ResolvedPackage(
            patient_id=patient_id,
            subscription_id=subscription.id,
            package_type=PackageType(subscription.package_type),
            end_date=subscription.end_date,
        )
        if self._cache is not None:
            self._cache.put(resolved, min(now + timedelta(seconds=self._ttl_seconds), subscription.end_date))
        return resolved

    def invalidate_patient(self, patient_id: str) -> None:
        if self._cache is not None:
            self._cache.discard(patient_id)


__all__ = ["EntitlementService", "NO_SUBSCRIPTION_REASON", "SubscriptionLookup"]
