from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import pytest

from lifeline.app.audit import AuditEvent, AuditEventType
from lifeline.app.billing import (
    DUPLICATE_STATEMENT_MESSAGE,
    BillingService,
    MonthlyStatement,
    PaymentRecord,
    PaymentStatus,
    PaymentType,
    ProviderType,
    StatementStatus,
)
from lifeline.app.entitlements import EntitlementEvaluator, EntitlementService, InMemoryPackageCache, PackageType
from lifeline.app.errors import ConflictError
from lifeline.app.pricing import PricingEntry, PricingService
from lifeline.app.subscriptions import (
    Dependent,
    DependentService,
    Subscription,
    SubscriptionService,
    SubscriptionStatus,
)

NOW = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class _KeyedLocks:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self.acquired: List[str] = []

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
        with lock:
            self.acquired.append(key)
            yield


class RecordingAuditLogger:
    def __init__(self) -> None:
        self.events: List[AuditEvent] = []

    def log(self, event: AuditEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: AuditEventType) -> List[AuditEvent]:
        return [event for event in self.events if event.event_type is event_type]


class RecordingInvalidator:
    def __init__(self) -> None:
        self.patients: List[str] = []

    def invalidate_patient(self, patient_id: str) -> None:
        self.patients.append(patient_id)


class InMemoryCoverageRepository:
    """Subscriptions, dependents and patients held in dictionaries."""

    def __init__(self) -> None:
        self.patients: set[str] = set()
        self.subscriptions: Dict[str, Subscription] = {}
        self.dependents: Dict[str, Dependent] = {}
        self.locks = _KeyedLocks()

    @contextmanager
    def exclusive(self, key: str) -> Iterator["InMemoryCoverageRepository"]:
        with self.locks.hold(key):
            yield self

    def add_patient(self, patient_id: str) -> None:
        self.patients.add(patient_id)

    def add_subscription(self, subscription: Subscription) -> Subscription:
        self.patients.add(subscription.patient_id)
        self.subscriptions[subscription.id] = subscription
        return subscription

    # Subscriptions ------------------------------------------------------

    def patient_exists(self, patient_id: str) -> bool:
        return patient_id in self.patients

    def _for_patient(self, patient_id: str) -> List[Subscription]:
        return [item for item in self.subscriptions.values() if item.patient_id == patient_id]

    def find_active_subscription(self, patient_id: str) -> Optional[Subscription]:
        active = [item for item in self._for_patient(patient_id) if item.status is SubscriptionStatus.ACTIVE]
        return active[-1] if active else None

    def find_latest_subscription(self, patient_id: str) -> Optional[Subscription]:
        records = self._for_patient(patient_id)
        return records[-1] if records else None

    def insert_subscription(self, subscription: Subscription) -> Subscription:
        if subscription.is_active and self.find_active_subscription(subscription.patient_id) is not None:
            raise ConflictError("Record already exists")
        self.subscriptions[subscription.id] = subscription
        return subscription

    def update_subscription(self, subscription: Subscription) -> Subscription:
        assert subscription.id in self.subscriptions
        self.subscriptions[subscription.id] = subscription
        return subscription

    def expire_subscriptions(self, now: datetime) -> Sequence[Subscription]:
        expired = []
        for subscription in list(self.subscriptions.values()):
            if subscription.status is SubscriptionStatus.ACTIVE and subscription.end_date < now:
                updated = subscription.model_copy(update={"status": SubscriptionStatus.EXPIRED, "updated_at": now})
                self.subscriptions[subscription.id] = updated
                expired.append(updated)
        return expired

    def list_subscriptions(self, patient_id: str) -> Sequence[Subscription]:
        return list(reversed(self._for_patient(patient_id)))

    def list_expiring(self, now: datetime, until: datetime) -> Sequence[Subscription]:
        matching = [
            item
            for item in self.subscriptions.values()
            if item.status is SubscriptionStatus.ACTIVE and now < item.end_date <= until
        ]
        return sorted(matching, key=lambda item: item.end_date)

    # Dependents ---------------------------------------------------------

    def count_active_dependents(self, patient_id: str) -> int:
        return sum(1 for item in self.dependents.values() if item.patient_id == patient_id and item.is_active)

    def insert_dependent(self, dependent: Dependent) -> Dependent:
        self.dependents[dependent.id] = dependent
        return dependent

    def get_dependent(self, dependent_id: str) -> Optional[Dependent]:
        return self.dependents.get(dependent_id)

    def update_dependent(self, dependent: Dependent) -> Dependent:
        assert dependent.id in self.dependents
        self.dependents[dependent.id] = dependent
        return dependent

    def list_dependents(self, patient_id: str, *, include_inactive: bool = False) -> Sequence[Dependent]:
        return [
            item
            for item in self.dependents.values()
            if item.patient_id == patient_id and (include_inactive or item.is_active)
        ]

    def set_dependents_active(self, patient_id: str, is_active: bool) -> Sequence[str]:
        changed = []
        for dependent in list(self.dependents.values()):
            if dependent.patient_id == patient_id and dependent.is_active != is_active:
                self.dependents[dependent.id] = dependent.model_copy(update={"is_active": is_active})
                changed.append(dependent.id)
        return changed

    def delete_dependent(self, dependent_id: str) -> bool:
        return self.dependents.pop(dependent_id, None) is not None


class InMemoryPricingRepository:
    def __init__(self) -> None:
        self.entries: Dict[str, PricingEntry] = {}
        self.locks = _KeyedLocks()

    @contextmanager
    def exclusive(self, key: str) -> Iterator["InMemoryPricingRepository"]:
        with self.locks.hold(key):
            yield self

    def get_entry(self, entry_id: str) -> Optional[PricingEntry]:
        return self.entries.get(entry_id)

    def find_entry(self, service_type: str, package_type: PackageType) -> Optional[PricingEntry]:
        for entry in self.entries.values():
            if entry.service_type == service_type and entry.package_type is package_type:
                return entry
        return None

    def list_entries(
        self,
        *,
        service_type: Optional[str] = None,
        package_type: Optional[PackageType] = None,
    ) -> Sequence[PricingEntry]:
        return [
            entry
            for entry in self.entries.values()
            if (service_type is None or entry.service_type == service_type)
            and (package_type is None or entry.package_type is package_type)
        ]

    def insert_entry(self, entry: PricingEntry) -> PricingEntry:
        self.entries[entry.id] = entry
        return entry

    def update_entry(self, entry: PricingEntry) -> PricingEntry:
        assert entry.id in self.entries
        self.entries[entry.id] = entry
        return entry

    def delete_entry(self, entry_id: str) -> bool:
        return self.entries.pop(entry_id, None) is not None


class InMemoryBillingRepository:
    def __init__(self) -> None:
        self.payments: Dict[str, PaymentRecord] = {}
        self.statements: Dict[str, MonthlyStatement] = {}
        self.locks = _KeyedLocks()

    @contextmanager
    def exclusive(self, key: str) -> Iterator["InMemoryBillingRepository"]:
        with self.locks.hold(key):
            yield self

    def insert_payment(self, payment: PaymentRecord) -> PaymentRecord:
        if payment.payment_reference in self.payments:
            raise ConflictError("Payment reference already exists")
        self.payments[payment.payment_reference] = payment
        return payment

    def get_payment_by_reference(self, reference: str) -> Optional[PaymentRecord]:
        return self.payments.get(reference)

    def update_payment(self, payment: PaymentRecord) -> PaymentRecord:
        self.payments[payment.payment_reference] = payment
        return payment

    def list_payments(
        self,
        *,
        provider_id: Optional[str] = None,
        provider_type: Optional[ProviderType] = None,
        payment_type: Optional[PaymentType] = None,
        status: Optional[PaymentStatus] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Sequence[PaymentRecord]:
        return [
            payment
            for payment in self.payments.values()
            if (provider_id is None or payment.provider_id == provider_id)
            and (provider_type is None or payment.provider_type is provider_type)
            and (payment_type is None or payment.payment_type is payment_type)
            and (status is None or payment.status is status)
            and (start is None or payment.created_at >= start)
            and (end is None or payment.created_at < end)
        ]

    def list_statement_candidates(self, start: datetime, end: datetime) -> Sequence[Tuple[str, ProviderType]]:
        latest: Dict[str, PaymentRecord] = {}
        for payment in self.list_payments(status=PaymentStatus.COMPLETED, start=start, end=end):
            if payment.provider_id is None or payment.provider_type is None:
                continue
            held = latest.get(payment.provider_id)
            if held is None or payment.created_at >= held.created_at:
                latest[payment.provider_id] = payment
        return [(provider_id, latest[provider_id].provider_type) for provider_id in sorted(latest)]

    def find_statement(self, provider_id: str, month: int, year: int) -> Optional[MonthlyStatement]:
        for statement in self.statements.values():
            if (statement.provider_id, statement.month, statement.year) == (provider_id, month, year):
                return statement
        return None

    def get_statement(self, statement_id: str) -> Optional[MonthlyStatement]:
        return self.statements.get(statement_id)

    def insert_statement(self, statement: MonthlyStatement) -> MonthlyStatement:
        if self.find_statement(statement.provider_id, statement.month, statement.year) is not None:
            raise ConflictError(DUPLICATE_STATEMENT_MESSAGE)
        self.statements[statement.id] = statement
        return statement

    def update_statement(self, statement: MonthlyStatement) -> MonthlyStatement:
        self.statements[statement.id] = statement
        return statement

    def list_statements(
        self,
        *,
        provider_id: Optional[str] = None,
        provider_type: Optional[ProviderType] = None,
        status: Optional[StatementStatus] = None,
    ) -> Sequence[MonthlyStatement]:
        matching = [
            statement
            for statement in self.statements.values()
            if (provider_id is None or statement.provider_id == provider_id)
            and (provider_type is None or statement.provider_type is provider_type)
            and (status is None or statement.status is status)
        ]
        return sorted(matching, key=lambda item: (item.year, item.month), reverse=True)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(NOW)


@pytest.fixture
def audit_logger() -> RecordingAuditLogger:
    return RecordingAuditLogger()


@pytest.fixture
def invalidator() -> RecordingInvalidator:
    return RecordingInvalidator()


@pytest.fixture
def coverage_repository() -> InMemoryCoverageRepository:
    return InMemoryCoverageRepository()


@pytest.fixture
def pricing_repository() -> InMemoryPricingRepository:
    return InMemoryPricingRepository()


@pytest.fixture
def billing_repository() -> InMemoryBillingRepository:
    return InMemoryBillingRepository()


@pytest.fixture
def subscription_service(coverage_repository, audit_logger, invalidator, clock) -> SubscriptionService:
    return SubscriptionService(
        repository=coverage_repository,
        audit_logger=audit_logger,
        entitlement_invalidator=invalidator,
        clock=clock,
    )


@pytest.fixture
def dependent_service(coverage_repository, audit_logger, clock) -> DependentService:
    return DependentService(repository=coverage_repository, audit_logger=audit_logger, clock=clock)


@pytest.fixture
def entitlement_service(coverage_repository, clock) -> EntitlementService:
    return EntitlementService(
        EntitlementEvaluator(),
        coverage_repository,
        InMemoryPackageCache(clock=clock),
        clock=clock,
        ttl_seconds=300,
    )


@pytest.fixture
def pricing_service(pricing_repository, coverage_repository, audit_logger, clock) -> PricingService:
    return PricingService(
        repository=pricing_repository,
        audit_logger=audit_logger,
        subscriptions=coverage_repository,
        clock=clock,
    )


@pytest.fixture
def billing_service(billing_repository, audit_logger, pricing_service, clock) -> BillingService:
    return BillingService(
        repository=billing_repository,
        audit_logger=audit_logger,
        clock=clock,
        pricing=pricing_service,
    )
