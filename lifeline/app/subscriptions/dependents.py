"""Dependent registration gated by the patient's package headcount."""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, ContextManager, List, Mapping, Optional, Protocol, Sequence, Union
from uuid import uuid4

from ..audit import AuditEvent, AuditEventType, AuditLogger
from ..entitlements.catalog import DEFAULT_CATALOG, EntitlementCatalog
from ..errors import BusinessRuleViolation, coerce_model, not_found
from .models import (
    BulkStatusResult,
    Dependent,
    DependentData,
    DependentQuota,
    DependentStatistics,
    DependentUpdate,
    Subscription,
)
from .service import patient_lock_key

logger = logging.getLogger(__name__)

NO_SUBSCRIPTION_REASON = "No active subscription"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DependentRepository(Protocol):
    """Persistence operations required by the dependent quota enforcer."""

    def exclusive(self, key: str) -> ContextManager["DependentRepository"]:
        ...

    def find_active_subscription(self, patient_id: str) -> Optional[Subscription]:
        ...

    def count_active_dependents(self, patient_id: str) -> int:
        ...

    def insert_dependent(self, dependent: Dependent) -> Dependent:
        ...

    def get_dependent(self, dependent_id: str) -> Optional[Dependent]:
        ...

    def update_dependent(self, dependent: Dependent) -> Dependent:
        ...

    def list_dependents(self, patient_id: str, *, include_inactive: bool = False) -> Sequence[Dependent]:
        ...

    def set_dependents_active(self, patient_id: str, is_active: bool) -> Sequence[str]:
        ...

    def delete_dependent(self, dependent_id: str) -> bool:
        ...


@dataclass
class DependentService:
    """Keeps active dependents within the current package's ``max_dependents``.

    Every quota-sensitive read-then-write runs inside the per-patient
    exclusive section so concurrent adds cannot both claim the last slot.
    """

    repository: DependentRepository
    audit_logger: AuditLogger
    catalog: EntitlementCatalog = DEFAULT_CATALOG
    clock: Callable[[], datetime] = field(default=_utcnow)

    def can_add(self, patient_id: str) -> DependentQuota:
        return self._quota(self.repository, patient_id)

    def validate_and_add(self, patient_id: str, data: Union[DependentData, Mapping[str, Any]]) -> Dependent:
        payload = coerce_model(DependentData, data)
        with self.repository.exclusive(patient_lock_key(patient_id)) as repository:
            quota = self._quota(repository, patient_id)
            self._ensure_capacity(patient_id, quota)
            now = self.clock()
            dependent = repository.insert_dependent(
                Dependent(
                    id=uuid4().hex,
                    patient_id=patient_id,
                    is_active=True,
                    created_at=now,
                    updated_at=now,
                    **payload.model_dump(),
                )
            )

        self.audit_logger.log(
            AuditEvent(
                event_type=AuditEventType.DEPENDENT_ADDED,
                subject_id=dependent.id,
                metadata={"patient_id": patient_id, "relationship": dependent.relationship.value},
            )
        )
        logger.info("Dependent %s added for patient %s", dependent.id, patient_id)
        return dependent

    def reactivate(self, dependent_id: str) -> Dependent:
        """Re-run the full quota check before restoring a dependent."""

        dependent = self.get(dependent_id)
        if dependent.is_active:
            return dependent

        with self.repository.exclusive(patient_lock_key(dependent.patient_id)) as repository:
            current = repository.get_dependent(dependent_id)
            if current is None:
                raise not_found("Dependent", dependent_id=dependent_id)
            if current.is_active:
                return current
            self._ensure_capacity(current.patient_id, self._quota(repository, current.patient_id))
            reactivated = repository.update_dependent(
                current.model_copy(update={"is_active": True, "updated_at": self.clock()})
            )

        self.audit_logger.log(
            AuditEvent(
                event_type=AuditEventType.DEPENDENT_REACTIVATED,
                subject_id=dependent_id,
                metadata={"patient_id": reactivated.patient_id},
            )
        )
        logger.info("Dependent %s reactivated", dependent_id)
        return reactivated

    def deactivate(self, dependent_id: str, reason: Optional[str] = None) -> Dependent:
        dependent = self.get(dependent_id)
        if not dependent.is_active:
            return dependent
        updated = self.repository.update_dependent(
            dependent.model_copy(update={"is_active": False, "updated_at": self.clock()})
        )
        self.audit_logger.log(
            AuditEvent(
                event_type=AuditEventType.DEPENDENT_DEACTIVATED,
                subject_id=dependent_id,
                metadata={"patient_id": dependent.patient_id, "reason": reason or ""},
            )
        )
        logger.info("Dependent %s deactivated reason=%s", dependent_id, reason)
        return updated

    def update_profile(self, dependent_id: str, changes: Union[DependentUpdate, Mapping[str, Any]]) -> Dependent:
        update = coerce_model(DependentUpdate, changes)
        dependent = self.get(dependent_id)
        values = update.changes()
        if not values:
            return dependent
        values["updated_at"] = self.clock()
        updated = self.repository.update_dependent(dependent.model_copy(update=values))
        logger.info("Dependent %s profile updated fields=%s", dependent_id, sorted(values))
        return updated

    def get(self, dependent_id: str) -> Dependent:
        dependent = self.repository.get_dependent(dependent_id)
        if dependent is None:
            raise not_found("Dependent", dependent_id=dependent_id)
        return dependent

    def list_for_patient(self, patient_id: str, *, include_inactive: bool = False) -> List[Dependent]:
        return list(self.repository.list_dependents(patient_id, include_inactive=include_inactive))

    def statistics(self, patient_id: str) -> DependentStatistics:
        dependents = self.list_for_patient(patient_id, include_inactive=True)
        active = [dependent for dependent in dependents if dependent.is_active]
        breakdown = Counter(dependent.relationship.value for dependent in active)
        return DependentStatistics(
            total_dependents=len(dependents),
            active_dependents=len(active),
            inactive_dependents=len(dependents) - len(active),
            relationship_types=len({dependent.relationship for dependent in dependents}),
            relationship_breakdown=dict(breakdown.most_common()),
        )

    def deactivate_all(self, patient_id: str) -> BulkStatusResult:
        """Deactivate every dependent of a patient, e.g. after a downgrade or cancellation."""

        dependent_ids = list(self.repository.set_dependents_active(patient_id, False))
        logger.info("Bulk dependent deactivation patient=%s count=%s", patient_id, len(dependent_ids))
        return BulkStatusResult(updated=len(dependent_ids), dependent_ids=dependent_ids)

    def purge(self, dependent_id: str, *, actor_id: Optional[str] = None) -> None:
        """Administrative hard delete."""

        dependent = self.get(dependent_id)
        if not self.repository.delete_dependent(dependent_id):
            raise not_found("Dependent", dependent_id=dependent_id)
        self.audit_logger.log(
            AuditEvent(
                event_type=AuditEventType.DEPENDENT_PURGED,
                subject_id=dependent_id,
                actor_id=actor_id,
                metadata={"patient_id": dependent.patient_id},
            )
        )
        logger.warning("Dependent %s purged by %s", dependent_id, actor_id)

    def _quota(self, repository: DependentRepository, patient_id: str) -> DependentQuota:
        subscription = repository.find_active_subscription(patient_id)
        if subscription is None or not subscription.is_current(self.clock()):
            return DependentQuota(can_add=False, reason=NO_SUBSCRIPTION_REASON)

        definition = self.catalog.get(subscription.package_type)
        if definition is None:
            return DependentQuota(
                can_add=False,
                reason=f"Invalid package type: {subscription.package_type.value}",
                package_type=subscription.package_type,
            )

        current = repository.count_active_dependents(patient_id)
        maximum = definition.max_dependents
        if current >= maximum:
            return DependentQuota(
                can_add=False,
                current=current,
                max=maximum,
                remaining=0,
                reason=f"Maximum dependents ({maximum}) reached for {definition.package_type.value} package",
                package_type=definition.package_type,
            )
        return DependentQuota(
            can_add=True,
            current=current,
            max=maximum,
            remaining=maximum - current,
            package_type=definition.package_type,
        )

    def _ensure_capacity(self, patient_id: str, quota: DependentQuota) -> None:
        if quota.can_add:
            return
        logger.warning("Dependent quota check failed patient=%s reason=%s", patient_id, quota.reason)
        raise BusinessRuleViolation(
            quota.reason or "Cannot add dependent",
            detail={"current": quota.current, "max": quota.max},
        )


__all__ = ["DependentRepository", "DependentService", "NO_SUBSCRIPTION_REASON"]
