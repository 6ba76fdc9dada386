"""Subscription ledger: creation, cancellation, renewal and expiry."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, ContextManager, List, Optional, Protocol, Sequence, Union
from uuid import uuid4

from ..audit import AuditEvent, AuditEventType, AuditLogger
from ..entitlements.catalog import DEFAULT_CATALOG, EntitlementCatalog
from ..entitlements.models import PackageDefinition, PackageType
from ..errors import BusinessRuleViolation, ConflictError, ValidationFailure, not_found
from .models import ExpirationSweepResult, Subscription, SubscriptionStatus

logger = logging.getLogger(__name__)

RENEWAL_REASON = "renewed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def patient_lock_key(patient_id: str) -> str:
    return f"patient:{patient_id}"


class SubscriptionRepository(Protocol):
    """Persistence operations required by the subscription ledger."""

    def exclusive(self, key: str) -> ContextManager["SubscriptionRepository"]:
        ...

    def patient_exists(self, patient_id: str) -> bool:
        ...

    def find_active_subscription(self, patient_id: str) -> Optional[Subscription]:
        ...

    def find_latest_subscription(self, patient_id: str) -> Optional[Subscription]:
        ...

    def insert_subscription(self, subscription: Subscription) -> Subscription:
        ...

    def update_subscription(self, subscription: Subscription) -> Subscription:
        ...

    def expire_subscriptions(self, now: datetime) -> Sequence[Subscription]:
        ...

    def list_subscriptions(self, patient_id: str) -> Sequence[Subscription]:
        ...

    def list_expiring(self, now: datetime, until: datetime) -> Sequence[Subscription]:
        ...


class EntitlementInvalidator(Protocol):
    """Invalidates cached package resolution affected by subscription changes."""

    def invalidate_patient(self, patient_id: str) -> None:
        ...


@dataclass
class SubscriptionService:
    """Maintains at most one active subscription per patient."""

    repository: SubscriptionRepository
    audit_logger: AuditLogger
    entitlement_invalidator: EntitlementInvalidator
    catalog: EntitlementCatalog = DEFAULT_CATALOG
    term_days: int = 30
    expiry_notice_days: int = 7
    clock: Callable[[], datetime] = field(default=_utcnow)

    def _now(self) -> datetime:
        return self.clock()

    def _package(self, package_type: Union[PackageType, str]) -> PackageDefinition:
        definition = self.catalog.get(package_type)
        if definition is None:
            raise BusinessRuleViolation(
                f"Invalid package type: {package_type}",
                detail={"package_type": str(package_type)},
            )
        return definition

    def create(
        self,
        patient_id: str,
        package_type: Union[PackageType, str],
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        *,
        auto_renew: bool = True,
        price: Optional[Decimal] = None,
    ) -> Subscription:
        """Open a new active subscription for ``patient_id``."""

        definition = self._package(package_type)
        if not self.repository.patient_exists(patient_id):
            raise not_found("Patient", patient_id=patient_id)

        with self.repository.exclusive(patient_lock_key(patient_id)) as repository:
            subscription = self._create_locked(
                repository,
                patient_id,
                definition,
                start_date=start_date,
                end_date=end_date,
                auto_renew=auto_renew,
                price=price,
            )

        self.entitlement_invalidator.invalidate_patient(patient_id)
        return subscription

    def cancel(
        self,
        patient_id: str,
        reason: Optional[str] = None,
        *,
        cancelled_at: Optional[datetime] = None,
    ) -> Subscription:
        """Cancel the patient's subscription; repeated calls return the cancelled record."""

        now = self._now()
        with self.repository.exclusive(patient_lock_key(patient_id)) as repository:
            subscription = repository.find_latest_subscription(patient_id)
            if subscription is None:
                raise not_found("Subscription", patient_id=patient_id)
            if subscription.status is SubscriptionStatus.CANCELLED:
                logger.info("Subscription %s already cancelled", subscription.id)
                return subscription
            if subscription.status is SubscriptionStatus.EXPIRED:
                raise BusinessRuleViolation(
                    "Subscription has already expired and cannot be cancelled",
                    detail={"subscription_id": subscription.id},
                )
            cancelled = self._close(repository, subscription, reason, cancelled_at or now, now)

        self.audit_logger.log(
            AuditEvent(
                event_type=AuditEventType.SUBSCRIPTION_CANCELLED,
                subject_id=cancelled.id,
                metadata={"patient_id": patient_id, "reason": reason or ""},
            )
        )
        self.entitlement_invalidator.invalidate_patient(patient_id)
        logger.info("Subscription %s cancelled for patient %s", cancelled.id, patient_id)
        return cancelled

    def renew(
        self,
        patient_id: str,
        package_type: Union[PackageType, str, None] = None,
        *,
        term_days: Optional[int] = None,
    ) -> Subscription:
        """Close the current subscription and open a new term, optionally on another package.

        Unused days of a still-current subscription carry over into the new term.
        """

        days = term_days if term_days is not None else self.term_days
        if days < 1:
            raise ValidationFailure("term_days must be >= 1", detail={"term_days": days})

        now = self._now()
        with self.repository.exclusive(patient_lock_key(patient_id)) as repository:
            previous = repository.find_latest_subscription(patient_id)
            if previous is None:
                raise not_found("Subscription", patient_id=patient_id)
            definition = self._package(package_type or previous.package_type)

            term_start = now
            if previous.is_current(now):
                term_start = previous.end_date
            if previous.is_active:
                self._close(repository, previous, RENEWAL_REASON, now, now)

            renewed = self._create_locked(
                repository,
                patient_id,
                definition,
                start_date=now,
                end_date=term_start + timedelta(days=days),
                auto_renew=previous.auto_renew,
                price=None,
            )

        self.audit_logger.log(
            AuditEvent(
                event_type=AuditEventType.SUBSCRIPTION_RENEWED,
                subject_id=renewed.id,
                metadata={
                    "patient_id": patient_id,
                    "previous_subscription_id": previous.id,
                    "package_type": renewed.package_type.value,
                },
            )
        )
        self.entitlement_invalidator.invalidate_patient(patient_id)
        return renewed

    def sweep_expirations(self, now: Optional[datetime] = None) -> ExpirationSweepResult:
        """Flip every active subscription whose end date has passed to expired."""

        run_at = now or self._now()
        expired = list(self.repository.expire_subscriptions(run_at))
        for subscription in expired:
            self.audit_logger.log(
                AuditEvent(
                    event_type=AuditEventType.SUBSCRIPTION_EXPIRED,
                    subject_id=subscription.id,
                    metadata={"patient_id": subscription.patient_id},
                )
            )
            self.entitlement_invalidator.invalidate_patient(subscription.patient_id)

        logger.info("Subscriptions expired", extra={"count": len(expired)})
        return ExpirationSweepResult(
            run_at=run_at,
            expired_count=len(expired),
            subscription_ids=[subscription.id for subscription in expired],
            patient_ids=[subscription.patient_id for subscription in expired],
        )

    def has_active(self, patient_id: str, now: Optional[datetime] = None) -> bool:
        return self.current_subscription(patient_id, now) is not None

    def current_subscription(self, patient_id: str, now: Optional[datetime] = None) -> Optional[Subscription]:
        subscription = self.repository.find_active_subscription(patient_id)
        if subscription is None or not subscription.is_current(now or self._now()):
            return None
        return subscription

    def current_package(self, patient_id: str, now: Optional[datetime] = None) -> Optional[PackageDefinition]:
        subscription = self.current_subscription(patient_id, now)
        if subscription is None:
            return None
        return self.catalog.get(subscription.package_type)

    def history(self, patient_id: str) -> List[Subscription]:
        return list(self.repository.list_subscriptions(patient_id))

    def expiring(self, within_days: Optional[int] = None, *, now: Optional[datetime] = None) -> List[Subscription]:
        """Active subscriptions ending within the notice window, soonest first."""

        current = now or self._now()
        days = self.expiry_notice_days if within_days is None else within_days
        return list(self.repository.list_expiring(current, current + timedelta(days=days)))

    def _create_locked(
        self,
        repository: SubscriptionRepository,
        patient_id: str,
        definition: PackageDefinition,
        *,
        start_date: Optional[datetime],
        end_date: Optional[datetime],
        auto_renew: bool,
        price: Optional[Decimal],
    ) -> Subscription:
        now = self._now()
        start = start_date or now
        end = end_date or start + timedelta(days=self.term_days)
        if end <= start:
            raise ValidationFailure(
                "end_date must be after start_date",
                detail={"start_date": start.isoformat(), "end_date": end.isoformat()},
            )

        existing = repository.find_active_subscription(patient_id)
        if existing is not None:
            if existing.end_date > now:
                raise ConflictError(
                    "Patient already has an active subscription",
                    detail={"subscription_id": existing.id},
                )
            stale = repository.update_subscription(
                existing.model_copy(update={"status": SubscriptionStatus.EXPIRED, "updated_at": now})
            )
            self.audit_logger.log(
                AuditEvent(
                    event_type=AuditEventType.SUBSCRIPTION_EXPIRED,
                    subject_id=stale.id,
                    metadata={"patient_id": patient_id},
                )
            )

        subscription = repository.insert_subscription(
            Subscription(
                id=uuid4().hex,
                patient_id=patient_id,
                package_type=definition.package_type,
                status=SubscriptionStatus.ACTIVE,
                start_date=start,
                end_date=end,
                auto_renew=auto_renew,
                price=definition.price if price is None else price,
                currency=definition.currency,
                created_at=now,
                updated_at=now,
            )
        )
        self.audit_logger.log(
            AuditEvent(
                event_type=AuditEventType.SUBSCRIPTION_CREATED,
                subject_id=subscription.id,
                metadata={"patient_id": patient_id, "package_type": definition.package_type.value},
            )
        )
        logger.info(
            "Subscription %s created patient=%s package=%s end=%s",
            subscription.id,
            patient_id,
            definition.package_type.value,
            subscription.end_date.isoformat(),
        )
        return subscription

    def _close(
        self,
        repository: SubscriptionRepository,
        subscription: Subscription,
        reason: Optional[str],
        end_date: datetime,
        now: datetime,
    ) -> Subscription:
        return repository.update_subscription(
            subscription.model_copy(
                update={
                    "status": SubscriptionStatus.CANCELLED,
                    "end_date": end_date,
                    "auto_renew": False,
                    "cancellation_reason": reason,
                    "cancelled_at": now,
                    "updated_at": now,
                }
            )
        )


__all__ = [
    "EntitlementInvalidator",
    "RENEWAL_REASON",
    "SubscriptionRepository",
    "SubscriptionService",
    "patient_lock_key",
]
