"""Pricing table curation, payment breakdowns and consistency auditing."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, ContextManager, List, Mapping, Optional, Protocol, Sequence, Union
from uuid import uuid4

from ..audit import AuditEvent, AuditEventType, AuditLogger
from ..entitlements.models import PackageType
from ..entitlements.service import SubscriptionLookup
from ..errors import ConflictError, ValidationFailure, coerce_model, not_found
from .models import (
    CONSISTENCY_EPSILON,
    BulkPricingResult,
    ConsistencyReport,
    PackagePriceRow,
    PackagePricing,
    PaymentBreakdown,
    PricingEntry,
    PricingEntryData,
    PricingStatistics,
    PricingUpdate,
    quantize_money,
)

logger = logging.getLogger(__name__)


class PricingRepository(Protocol):
    """Persistence operations required by the pricing service."""

    def exclusive(self, key: str) -> ContextManager["PricingRepository"]:
        ...

    def get_entry(self, entry_id: str) -> Optional[PricingEntry]:
        ...

    def find_entry(self, service_type: str, package_type: PackageType) -> Optional[PricingEntry]:
        ...

    def list_entries(
        self,
        *,
        service_type: Optional[str] = None,
        package_type: Optional[PackageType] = None,
    ) -> Sequence[PricingEntry]:
        ...

    def insert_entry(self, entry: PricingEntry) -> PricingEntry:
        ...

    def update_entry(self, entry: PricingEntry) -> PricingEntry:
        ...

    def delete_entry(self, entry_id: str) -> bool:
        ...


def _package(package_type: Union[PackageType, str]) -> PackageType:
    try:
        return PackageType(package_type)
    except ValueError as exc:
        raise ValidationFailure(
            f"Invalid package type: {package_type}",
            detail={"package_type": str(package_type)},
        ) from exc


def _average(values: Sequence[Decimal]) -> Decimal:
    if not values:
        return Decimal("0.00")
    return quantize_money(sum(values, Decimal("0")) / len(values))


@dataclass
class PricingService:
    """Administrative pricing operations.

    Writes never enforce the ``provider_share + platform_fee == patient_price``
    split; :meth:`validate_consistency` and :meth:`audit_consistency` report it.
    """

    repository: PricingRepository
    audit_logger: AuditLogger
    subscriptions: Optional[SubscriptionLookup] = None
    clock: Callable[[], datetime] = field(default=lambda: datetime.now(timezone.utc))

    def get_breakdown(
        self,
        service_type: str,
        package_type: Union[PackageType, str],
        base_amount: Optional[Decimal] = None,
    ) -> PaymentBreakdown:
        entry = self._require_pair(service_type, _package(package_type))
        if base_amount is not None and base_amount < 0:
            raise ValidationFailure("base_amount must be non-negative", detail={"base_amount": str(base_amount)})

        patient_price = entry.patient_price if base_amount is None else Decimal(base_amount)
        return PaymentBreakdown(
            service_type=entry.service_type,
            package_type=entry.package_type,
            patient_price=patient_price,
            provider_share=entry.provider_share,
            platform_fee=entry.platform_fee,
            total=patient_price,
            overridden=base_amount is not None,
        )

    def validate_consistency(self, entry_id: str) -> ConsistencyReport:
        return self._report(self.get_entry(entry_id))

    def audit_consistency(self, *, only_inconsistent: bool = False) -> List[ConsistencyReport]:
        reports = [self._report(entry) for entry in self.repository.list_entries()]
        inconsistent = [report for report in reports if not report.is_consistent]
        if inconsistent:
            logger.warning(
                "Pricing consistency audit found %s inconsistent entries: %s",
                len(inconsistent),
                [report.entry_id for report in inconsistent],
            )
        return inconsistent if only_inconsistent else reports

    def create_entry(self, data: Union[PricingEntryData, Mapping[str, Any]], *, actor_id: Optional[str] = None) -> PricingEntry:
        payload = coerce_model(PricingEntryData, data)
        if self.repository.find_entry(payload.service_type, payload.package_type) is not None:
            raise ConflictError(
                "Pricing already exists for this service and package combination",
                detail={"service_type": payload.service_type, "package_type": payload.package_type.value},
            )
        entry = self.repository.insert_entry(PricingEntry(id=uuid4().hex, **payload.model_dump()))
        self._log_change(entry, "created", actor_id)
        return entry

    def update_entry(
        self,
        entry_id: str,
        changes: Union[PricingUpdate, Mapping[str, Any]],
        *,
        actor_id: Optional[str] = None,
    ) -> PricingEntry:
        update = coerce_model(PricingUpdate, changes)
        entry = self.get_entry(entry_id)
        values = update.model_dump(exclude_none=True)
        if not values:
            return entry
        updated = self.repository.update_entry(entry.model_copy(update=values))
        self._log_change(updated, "updated", actor_id)
        return updated

    def delete_entry(self, entry_id: str, *, actor_id: Optional[str] = None) -> None:
        entry = self.get_entry(entry_id)
        if not self.repository.delete_entry(entry_id):
            raise not_found("Pricing", entry_id=entry_id)
        self._log_change(entry, "deleted", actor_id)

    def get_entry(self, entry_id: str) -> PricingEntry:
        entry = self.repository.get_entry(entry_id)
        if entry is None:
            raise not_found("Pricing", entry_id=entry_id)
        return entry

    def list_entries(
        self,
        service_type: Optional[str] = None,
        package_type: Union[PackageType, str, None] = None,
    ) -> List[PricingEntry]:
        resolved = _package(package_type) if package_type is not None else None
        return list(self.repository.list_entries(service_type=service_type, package_type=resolved))

    def patient_package_pricing(self, patient_id: str) -> PackagePricing:
        """Price list for the package behind the patient's current subscription."""

        if self.subscriptions is None:
            raise RuntimeError("PricingService has no subscription lookup configured")
        subscription = self.subscriptions.find_active_subscription(patient_id)
        if subscription is None or subscription.status != "active" or subscription.end_date <= self.clock():
            raise not_found("Active subscription", patient_id=patient_id)

        package_type = PackageType(subscription.package_type)
        entries = sorted(
            self.repository.list_entries(package_type=package_type),
            key=lambda entry: entry.service_type,
        )
        return PackagePricing(patient_id=patient_id, package_type=package_type, entries=entries)

    def service_types(self) -> List[str]:
        return sorted({entry.service_type for entry in self.repository.list_entries()})

    def package_comparison(self, service_type: str) -> List[PackagePriceRow]:
        """Prices for one service across packages, in tier order."""

        entries = sorted(
            self.repository.list_entries(service_type=service_type),
            key=lambda entry: entry.package_type.rank,
        )
        return [
            PackagePriceRow(
                package_type=entry.package_type,
                patient_price=entry.patient_price,
                provider_share=entry.provider_share,
                platform_fee=entry.platform_fee,
                description=entry.description,
            )
            for entry in entries
        ]

    def statistics(self) -> PricingStatistics:
        entries = list(self.repository.list_entries())
        if not entries:
            return PricingStatistics()
        prices = [entry.patient_price for entry in entries]
        return PricingStatistics(
            total_entries=len(entries),
            service_types_count=len({entry.service_type for entry in entries}),
            package_types_count=len({entry.package_type for entry in entries}),
            avg_patient_price=_average(prices),
            avg_provider_share=_average([entry.provider_share for entry in entries]),
            avg_platform_fee=_average([entry.platform_fee for entry in entries]),
            min_patient_price=min(prices),
            max_patient_price=max(prices),
        )

    def bulk_update(
        self,
        service_type: str,
        *,
        patient_price_multiplier: Decimal = Decimal("1"),
        provider_share_multiplier: Decimal = Decimal("1"),
        platform_fee_multiplier: Decimal = Decimal("1"),
        actor_id: Optional[str] = None,
    ) -> BulkPricingResult:
        """Scale every entry of ``service_type`` in one transaction."""

        multipliers = {
            "patient_price": Decimal(patient_price_multiplier),
            "provider_share": Decimal(provider_share_multiplier),
            "platform_fee": Decimal(platform_fee_multiplier),
        }
        negative = {name: str(value) for name, value in multipliers.items() if value < 0}
        if negative:
            raise ValidationFailure("Multipliers must be non-negative", detail=negative)

        updated: List[PricingEntry] = []
        with self.repository.exclusive(f"pricing:{service_type}") as repository:
            for entry in repository.list_entries(service_type=service_type):
                values = {
                    name: quantize_money(getattr(entry, name) * factor)
                    for name, factor in multipliers.items()
                }
                updated.append(repository.update_entry(entry.model_copy(update=values)))

        for entry in updated:
            self._log_change(entry, "bulk_updated", actor_id)
        logger.info("Bulk pricing update service=%s updated=%s", service_type, len(updated))
        return BulkPricingResult(updated=len(updated), entry_ids=[entry.id for entry in updated])

    def _require_pair(self, service_type: str, package_type: PackageType) -> PricingEntry:
        entry = self.repository.find_entry(service_type, package_type)
        if entry is None:
            raise not_found(
                f"Pricing for {service_type} - {package_type.value}",
                service_type=service_type,
                package_type=package_type.value,
            )
        return entry

    def _report(self, entry: PricingEntry) -> ConsistencyReport:
        calculated = entry.provider_share + entry.platform_fee
        difference = calculated - entry.patient_price
        return ConsistencyReport(
            entry_id=entry.id,
            service_type=entry.service_type,
            package_type=entry.package_type,
            is_consistent=abs(difference) < CONSISTENCY_EPSILON,
            patient_price=entry.patient_price,
            provider_share=entry.provider_share,
            platform_fee=entry.platform_fee,
            calculated_total=calculated,
            difference=difference,
        )

    def _log_change(self, entry: PricingEntry, action: str, actor_id: Optional[str]) -> None:
        self.audit_logger.log(
            AuditEvent(
                event_type=AuditEventType.PRICING_CHANGED,
                subject_id=entry.id,
                actor_id=actor_id,
                metadata={
                    "action": action,
                    "service_type": entry.service_type,
                    "package_type": entry.package_type.value,
                },
            )
        )


__all__ = ["PricingRepository", "PricingService"]
