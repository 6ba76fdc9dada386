"""Payment records and the monthly provider statement workflow."""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import (
    Any,
    Callable,
    ContextManager,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    Union,
)
from uuid import uuid4

from ..audit import AuditEvent, AuditEventType, AuditLogger
from ..errors import BusinessRuleViolation, ConflictError, ValidationFailure, coerce_model, not_found
from ..pricing.models import quantize_money
from ..pricing.service import PricingService
from .models import (
    MonthlyStatement,
    PaymentAnalyticsRow,
    PaymentData,
    PaymentRecord,
    PaymentStatus,
    PaymentType,
    ProviderType,
    RevenueSummary,
    ServicePaymentData,
    ServicePaymentResult,
    StatementRunSummary,
    StatementStatus,
)

logger = logging.getLogger(__name__)

DUPLICATE_STATEMENT_MESSAGE = "Statement already exists for this provider and period"

_PAYMENT_TRANSITIONS: Dict[PaymentStatus, Tuple[PaymentStatus, ...]] = {
    PaymentStatus.PENDING: (PaymentStatus.COMPLETED, PaymentStatus.FAILED),
    PaymentStatus.COMPLETED: (PaymentStatus.REFUNDED,),
    PaymentStatus.FAILED: (),
    PaymentStatus.REFUNDED: (),
}

_PAYMENT_AUDIT_TYPES = {
    PaymentStatus.COMPLETED: AuditEventType.PAYMENT_COMPLETED,
    PaymentStatus.FAILED: AuditEventType.PAYMENT_FAILED,
    PaymentStatus.REFUNDED: AuditEventType.PAYMENT_REFUNDED,
}


class BillingRepository(Protocol):
    """Persistence operations required by the billing service."""

    def exclusive(self, key: str) -> ContextManager["BillingRepository"]:
        ...

    def insert_payment(self, payment: PaymentRecord) -> PaymentRecord:
        ...

    def get_payment_by_reference(self, reference: str) -> Optional[PaymentRecord]:
        ...

    def update_payment(self, payment: PaymentRecord) -> PaymentRecord:
        ...

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
        ...

    def list_statement_candidates(
        self, start: datetime, end: datetime
    ) -> Sequence[Tuple[str, ProviderType]]:
        ...

    def find_statement(self, provider_id: str, month: int, year: int) -> Optional[MonthlyStatement]:
        ...

    def get_statement(self, statement_id: str) -> Optional[MonthlyStatement]:
        ...

    def insert_statement(self, statement: MonthlyStatement) -> MonthlyStatement:
        ...

    def update_statement(self, statement: MonthlyStatement) -> MonthlyStatement:
        ...

    def list_statements(
        self,
        *,
        provider_id: Optional[str] = None,
        provider_type: Optional[ProviderType] = None,
        status: Optional[StatementStatus] = None,
    ) -> Sequence[MonthlyStatement]:
        ...


def statement_period(month: int, year: int) -> Tuple[datetime, datetime]:
    """Half-open UTC range ``[month start, next month start)``."""

    if not 1 <= month <= 12:
        raise ValidationFailure("month must be between 1 and 12", detail={"month": month})
    if year < 1:
        raise ValidationFailure("year must be positive", detail={"year": year})
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    if month == 12:
        end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(year, month + 1, 1, tzinfo=timezone.utc)
    return start, end


def statement_lock_key(provider_id: str, month: int, year: int) -> str:
    return f"statement:{provider_id}:{year:04d}-{month:02d}"


def _payment_type_for(service_type: str) -> PaymentType:
    try:
        return PaymentType(service_type)
    except ValueError:
        return PaymentType.OTHER


def _safe_mapping(value: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    if value is None:
        return None
    return {str(key): item for key, item in value.items()}


@dataclass
class BillingService:
    """Turns completed payments into provider statements and drives their approval."""

    repository: BillingRepository
    audit_logger: AuditLogger
    platform_fee_rate: Decimal = Decimal("0.10")
    clock: Callable[[], datetime] = field(default=lambda: datetime.now(timezone.utc))
    pricing: Optional[PricingService] = None

    def _now(self) -> datetime:
        return self.clock()

    # Payment records ----------------------------------------------------

    def record_payment(self, data: Union[PaymentData, Mapping[str, Any]]) -> PaymentRecord:
        payload = coerce_model(PaymentData, data)
        if self.repository.get_payment_by_reference(payload.payment_reference) is not None:
            raise ConflictError(
                "Payment reference already exists",
                detail={"payment_reference": payload.payment_reference},
            )
        return self._insert_payment(payload, PaymentStatus.PENDING)

    def record_service_payment(
        self, data: Union[ServicePaymentData, Mapping[str, Any]]
    ) -> ServicePaymentResult:
        """Record a completed payment for a covered service at its configured patient price.

        Covered services are settled against the subscription, so the record
        is created already ``completed`` and counts toward the provider's
        next statement.
        """

        if self.pricing is None:
            raise RuntimeError("BillingService has no pricing service configured")
        payload = coerce_model(ServicePaymentData, data)
        breakdown = self.pricing.get_breakdown(payload.service_type, payload.package_type)
        payment = self._insert_payment(
            PaymentData(
                patient_id=payload.patient_id,
                amount=breakdown.patient_price,
                payment_type=_payment_type_for(payload.service_type),
                payment_reference=f"SVC_{uuid4().hex[:16].upper()}",
                provider_id=payload.provider_id,
                provider_type=payload.provider_type,
                payment_method="subscription",
                description=f"{payload.service_type} service - {payload.package_type.value} package",
                metadata={
                    "service_type": payload.service_type,
                    "package_type": payload.package_type.value,
                    "provider_share": str(breakdown.provider_share),
                    "platform_fee": str(breakdown.platform_fee),
                },
            ),
            PaymentStatus.COMPLETED,
        )
        return ServicePaymentResult(payment=payment, breakdown=breakdown)

    def mark_payment_completed(
        self, reference: str, gateway_response: Optional[Mapping[str, Any]] = None
    ) -> PaymentRecord:
        return self._transition_payment(reference, PaymentStatus.COMPLETED, gateway_response)

    def mark_payment_failed(
        self, reference: str, gateway_response: Optional[Mapping[str, Any]] = None
    ) -> PaymentRecord:
        return self._transition_payment(reference, PaymentStatus.FAILED, gateway_response)

    def refund_payment(
        self, reference: str, gateway_response: Optional[Mapping[str, Any]] = None
    ) -> PaymentRecord:
        return self._transition_payment(reference, PaymentStatus.REFUNDED, gateway_response)

    def get_payment(self, reference: str) -> PaymentRecord:
        payment = self.repository.get_payment_by_reference(reference)
        if payment is None:
            raise not_found("Payment", payment_reference=reference)
        return payment

    # Statements ---------------------------------------------------------

    def generate_statement(
        self,
        provider_id: str,
        provider_type: Union[ProviderType, str],
        month: int,
        year: int,
    ) -> MonthlyStatement:
        """Aggregate the provider's completed payments for one month into a pending statement."""

        start, end = statement_period(month, year)
        resolved_type = self._provider_type(provider_type)

        with self.repository.exclusive(statement_lock_key(provider_id, month, year)) as repository:
            if repository.find_statement(provider_id, month, year) is not None:
                logger.warning(
                    "Duplicate statement request provider=%s period=%04d-%02d", provider_id, year, month
                )
                raise ConflictError(
                    DUPLICATE_STATEMENT_MESSAGE,
                    detail={"provider_id": provider_id, "month": month, "year": year},
                )

            payments = repository.list_payments(
                provider_id=provider_id,
                status=PaymentStatus.COMPLETED,
                start=start,
                end=end,
            )
            total = quantize_money(sum((payment.amount for payment in payments), Decimal("0")))
            platform_fee = quantize_money(total * self.platform_fee_rate)
            now = self._now()
            statement = repository.insert_statement(
                MonthlyStatement(
                    id=uuid4().hex,
                    provider_id=provider_id,
                    provider_type=resolved_type,
                    month=month,
                    year=year,
                    total_amount=total,
                    transaction_count=len(payments),
                    platform_fee=platform_fee,
                    net_amount=total - platform_fee,
                    payment_references=[payment.payment_reference for payment in payments],
                    status=StatementStatus.PENDING,
                    created_at=now,
                    updated_at=now,
                )
            )

        self.audit_logger.log(
            AuditEvent(
                event_type=AuditEventType.STATEMENT_GENERATED,
                subject_id=statement.id,
                metadata={
                    "provider_id": provider_id,
                    "period": statement.period,
                    "total_amount": str(statement.total_amount),
                },
            )
        )
        logger.info(
            "Monthly statement created id=%s provider=%s period=%s total=%s",
            statement.id,
            provider_id,
            statement.period,
            statement.total_amount,
        )
        return statement

    def generate_monthly_statements(self, month: int, year: int) -> StatementRunSummary:
        """Generate one statement per provider with completed payments in the period."""

        start, end = statement_period(month, year)
        generated: List[str] = []
        skipped: List[str] = []
        for provider_id, provider_type in self.repository.list_statement_candidates(start, end):
            try:
                statement = self.generate_statement(provider_id, provider_type, month, year)
            except ConflictError:
                skipped.append(provider_id)
                continue
            generated.append(statement.id)
        return StatementRunSummary(month=month, year=year, generated=generated, skipped=skipped)

    def approve(self, statement_id: str, approved_by: str, notes: Optional[str] = None) -> MonthlyStatement:
        """Mark a pending statement approved; it then becomes available for payout."""

        now = self._now()
        statement = self._finalize(
            statement_id,
            StatementStatus.APPROVED,
            {"approved_by": approved_by, "approved_at": now},
            notes,
            now,
        )
        self.audit_logger.log(
            AuditEvent(
                event_type=AuditEventType.STATEMENT_APPROVED,
                subject_id=statement_id,
                actor_id=approved_by,
                metadata={"provider_id": statement.provider_id, "period": statement.period},
            )
        )
        return statement

    def reject(self, statement_id: str, rejected_by: str, notes: Optional[str] = None) -> MonthlyStatement:
        now = self._now()
        statement = self._finalize(
            statement_id,
            StatementStatus.REJECTED,
            {"rejected_by": rejected_by, "rejected_at": now},
            notes,
            now,
        )
        self.audit_logger.log(
            AuditEvent(
                event_type=AuditEventType.STATEMENT_REJECTED,
                subject_id=statement_id,
                actor_id=rejected_by,
                metadata={"provider_id": statement.provider_id, "period": statement.period},
            )
        )
        return statement

    def get_statement(self, statement_id: str) -> MonthlyStatement:
        statement = self.repository.get_statement(statement_id)
        if statement is None:
            raise not_found("Statement", statement_id=statement_id)
        return statement

    def provider_statements(
        self, provider_id: str, *, status: Optional[StatementStatus] = None
    ) -> List[MonthlyStatement]:
        return list(self.repository.list_statements(provider_id=provider_id, status=status))

    def pending_statements(self, *, provider_type: Optional[ProviderType] = None) -> List[MonthlyStatement]:
        return list(self.repository.list_statements(provider_type=provider_type, status=StatementStatus.PENDING))

    def approved_statements(self, *, provider_id: Optional[str] = None) -> List[MonthlyStatement]:
        return list(self.repository.list_statements(provider_id=provider_id, status=StatementStatus.APPROVED))

    # Aggregations -------------------------------------------------------

    def calculate_revenue(
        self,
        *,
        provider_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        status: Optional[PaymentStatus] = PaymentStatus.COMPLETED,
    ) -> RevenueSummary:
        payments = self.repository.list_payments(provider_id=provider_id, status=status, start=start, end=end)
        return RevenueSummary(
            total_revenue=quantize_money(sum((payment.amount for payment in payments), Decimal("0"))),
            transaction_count=len(payments),
            status=status,
            provider_id=provider_id,
            start=start,
            end=end,
        )

    def get_payment_analytics(
        self,
        start: datetime,
        end: datetime,
        *,
        provider_type: Optional[ProviderType] = None,
        payment_type: Optional[PaymentType] = None,
        status: Optional[PaymentStatus] = PaymentStatus.COMPLETED,
    ) -> List[PaymentAnalyticsRow]:
        """Totals grouped by payment type, provider type and status, largest first."""

        payments = self.repository.list_payments(
            provider_type=provider_type,
            payment_type=payment_type,
            status=status,
            start=start,
            end=end,
        )
        groups: Dict[Tuple[PaymentType, Optional[ProviderType], PaymentStatus], List[Decimal]] = defaultdict(list)
        for payment in payments:
            groups[(payment.payment_type, payment.provider_type, payment.status)].append(payment.amount)

        rows = [
            PaymentAnalyticsRow(
                payment_type=key[0],
                provider_type=key[1],
                status=key[2],
                transaction_count=len(amounts),
                total_amount=quantize_money(sum(amounts, Decimal("0"))),
                average_amount=quantize_money(sum(amounts, Decimal("0")) / len(amounts)),
            )
            for key, amounts in groups.items()
        ]
        rows.sort(key=lambda row: row.total_amount, reverse=True)
        return rows

    # Internals ----------------------------------------------------------

    def _insert_payment(self, payload: PaymentData, status: PaymentStatus) -> PaymentRecord:
        now = self._now()
        payment = self.repository.insert_payment(
            PaymentRecord(
                id=uuid4().hex,
                status=status,
                completed_at=now if status is PaymentStatus.COMPLETED else None,
                created_at=now,
                updated_at=now,
                **payload.model_dump(),
            )
        )
        self.audit_logger.log(
            AuditEvent(
                event_type=AuditEventType.PAYMENT_RECORDED,
                subject_id=payment.id,
                actor_id=payment.patient_id,
                metadata={
                    "reference": payment.payment_reference,
                    "amount": str(payment.amount),
                    "status": status.value,
                },
            )
        )
        logger.info(
            "Payment record created id=%s patient=%s amount=%s type=%s status=%s",
            payment.id,
            payment.patient_id,
            payment.amount,
            payment.payment_type.value,
            status.value,
        )
        return payment

    def _provider_type(self, provider_type: Union[ProviderType, str]) -> ProviderType:
        try:
            return ProviderType(provider_type)
        except ValueError as exc:
            raise ValidationFailure(
                f"Invalid provider type: {provider_type}",
                detail={"provider_type": str(provider_type)},
            ) from exc

    def _transition_payment(
        self,
        reference: str,
        target: PaymentStatus,
        gateway_response: Optional[Mapping[str, Any]],
    ) -> PaymentRecord:
        with self.repository.exclusive(f"payment:{reference}") as repository:
            payment = repository.get_payment_by_reference(reference)
            if payment is None:
                raise not_found("Payment", payment_reference=reference)
            if payment.status is target:
                logger.info("Payment %s already %s", reference, target.value)
                return payment
            if target not in _PAYMENT_TRANSITIONS[payment.status]:
                raise BusinessRuleViolation(
                    f"Cannot change payment status from {payment.status.value} to {target.value}",
                    detail={"payment_reference": reference},
                )

            now = self._now()
            update: Dict[str, Any] = {"status": target, "updated_at": now}
            if target is PaymentStatus.COMPLETED:
                update["completed_at"] = now
            if gateway_response is not None:
                update["gateway_response"] = _safe_mapping(gateway_response)
            updated = repository.update_payment(payment.model_copy(update=update))

        self.audit_logger.log(
            AuditEvent(
                event_type=_PAYMENT_AUDIT_TYPES[target],
                subject_id=updated.id,
                actor_id=updated.patient_id,
                metadata={"reference": reference},
            )
        )
        logger.info("Payment status updated reference=%s status=%s", reference, target.value)
        return updated

    def _finalize(
        self,
        statement_id: str,
        target: StatementStatus,
        stamps: Dict[str, Any],
        notes: Optional[str],
        now: datetime,
    ) -> MonthlyStatement:
        with self.repository.exclusive(f"statement-id:{statement_id}") as repository:
            statement = repository.get_statement(statement_id)
            if statement is None:
                raise not_found("Statement", statement_id=statement_id)
            if statement.status is not StatementStatus.PENDING:
                raise BusinessRuleViolation(
                    f"Statement is already {statement.status.value}",
                    detail={"statement_id": statement_id, "status": statement.status.value},
                )
            update: Dict[str, Any] = {"status": target, "updated_at": now, **stamps}
            if notes is not None:
                update["notes"] = notes
            finalized = repository.update_statement(statement.model_copy(update=update))

        logger.info("Statement status updated id=%s status=%s", statement_id, target.value)
        return finalized


__all__ = [
    "BillingRepository",
    "BillingService",
    "DUPLICATE_STATEMENT_MESSAGE",
    "statement_lock_key",
    "statement_period",
]
