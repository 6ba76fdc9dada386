"""Unit tests for payment records and the monthly statement workflow."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from lifeline.app.audit import AuditEventType
from lifeline.app.billing import (
    DUPLICATE_STATEMENT_MESSAGE,
    BillingService,
    PaymentStatus,
    PaymentType,
    ProviderType,
    StatementStatus,
    statement_lock_key,
    statement_period,
)
from lifeline.app.errors import BusinessRuleViolation, ConflictError, NotFoundError, ValidationFailure


def _pay(service, reference, amount, *, provider_id="doctor-1", provider_type="doctor", payment_type="consultation"):
    return service.record_payment(
        {
            "patientId": "patient-1",
            "amount": amount,
            "paymentType": payment_type,
            "paymentReference": reference,
            "providerId": provider_id,
            "providerType": provider_type,
        }
    )


def _completed(service, reference, amount, **kwargs):
    _pay(service, reference, amount, **kwargs)
    return service.mark_payment_completed(reference, {"gateway": "ok"})


@pytest.fixture
def march(clock):
    clock.now = datetime(2025, 3, 10, 9, tzinfo=timezone.utc)
    return clock


def test_statement_period_is_half_open():
    start, end = statement_period(12, 2024)

    assert start == datetime(2024, 12, 1, tzinfo=timezone.utc)
    assert end == datetime(2025, 1, 1, tzinfo=timezone.utc)
    with pytest.raises(ValidationFailure):
        statement_period(13, 2025)


def test_record_payment_starts_pending(billing_service, audit_logger):
    payment = _pay(billing_service, "ref-1", "2500")

    assert payment.status is PaymentStatus.PENDING
    assert payment.provider_type is ProviderType.DOCTOR
    assert payment.completed_at is None
    assert audit_logger.of_type(AuditEventType.PAYMENT_RECORDED)[0].metadata["reference"] == "ref-1"


def test_duplicate_payment_reference(billing_service):
    _pay(billing_service, "ref-1", "2500")

    with pytest.raises(ConflictError):
        _pay(billing_service, "ref-1", "100")


def test_payment_transitions(billing_service, clock):
    _pay(billing_service, "ref-1", "2500")
    completed = billing_service.mark_payment_completed("ref-1", {"status": "success"})

    assert completed.status is PaymentStatus.COMPLETED
    assert completed.completed_at == clock.now
    assert completed.gateway_response == {"status": "success"}
    assert billing_service.mark_payment_completed("ref-1") == completed

    with pytest.raises(BusinessRuleViolation):
        billing_service.mark_payment_failed("ref-1")

    refunded = billing_service.refund_payment("ref-1")
    assert refunded.status is PaymentStatus.REFUNDED


def test_failed_payment_is_terminal(billing_service):
    _pay(billing_service, "ref-2", "100")
    billing_service.mark_payment_failed("ref-2", {"reason": "declined"})

    with pytest.raises(BusinessRuleViolation):
        billing_service.mark_payment_completed("ref-2")
    with pytest.raises(NotFoundError):
        billing_service.refund_payment("missing")


def test_generate_statement_aggregates_completed_payments(billing_service, billing_repository, march):
    _completed(billing_service, "ref-1", "5000")
    _completed(billing_service, "ref-2", "2500.55")
    _pay(billing_service, "ref-3", "9999")
    _completed(billing_service, "ref-4", "1000", provider_id="doctor-2")
    march.now = datetime(2025, 4, 1, tzinfo=timezone.utc)
    _completed(billing_service, "ref-5", "700")

    statement = billing_service.generate_statement("doctor-1", ProviderType.DOCTOR, 3, 2025)

    assert statement.status is StatementStatus.PENDING
    assert statement.transaction_count == 2
    assert statement.total_amount == Decimal("7500.55")
    assert statement.platform_fee == Decimal("750.06")
    assert statement.net_amount == Decimal("6750.49")
    assert statement.payment_references == ["ref-1", "ref-2"]
    assert statement.period == "2025-03"
    assert statement_lock_key("doctor-1", 3, 2025) in billing_repository.locks.acquired


def test_second_statement_for_period_conflicts(billing_service, march):
    _completed(billing_service, "ref-1", "5000")
    first = billing_service.generate_statement("doctor-1", "doctor", 3, 2025)

    with pytest.raises(ConflictError) as excinfo:
        billing_service.generate_statement("doctor-1", "doctor", 3, 2025)

    assert excinfo.value.message == DUPLICATE_STATEMENT_MESSAGE
    assert excinfo.value.status_code == 409
    assert billing_service.get_statement(first.id).status is StatementStatus.PENDING


def test_statement_state_machine(billing_service, march, audit_logger):
    _completed(billing_service, "ref-1", "5000")
    statement = billing_service.generate_statement("doctor-1", "doctor", 3, 2025)

    approved = billing_service.approve(statement.id, "admin-1", notes="looks good")

    assert approved.status is StatementStatus.APPROVED
    assert approved.approved_by == "admin-1"
    assert approved.approved_at == march.now
    assert approved.notes == "looks good"
    with pytest.raises(BusinessRuleViolation):
        billing_service.reject(statement.id, "admin-2")
    with pytest.raises(BusinessRuleViolation):
        billing_service.approve(statement.id, "admin-2")
    assert [event.actor_id for event in audit_logger.of_type(AuditEventType.STATEMENT_APPROVED)] == ["admin-1"]


def test_rejected_statement_is_final(billing_service, march):
    _completed(billing_service, "ref-1", "5000")
    statement = billing_service.generate_statement("doctor-1", "doctor", 3, 2025)

    rejected = billing_service.reject(statement.id, "admin-1", notes="duplicate payout")

    assert rejected.status is StatementStatus.REJECTED
    assert rejected.rejected_by == "admin-1"
    with pytest.raises(BusinessRuleViolation):
        billing_service.approve(statement.id, "admin-1")
    with pytest.raises(NotFoundError):
        billing_service.approve("missing", "admin-1")


def test_generate_monthly_statements_skips_existing(billing_service, march):
    _completed(billing_service, "ref-1", "5000")
    _completed(billing_service, "ref-2", "800", provider_id="pharmacy-1", provider_type="pharmacy")
    existing = billing_service.generate_statement("doctor-1", "doctor", 3, 2025)

    summary = billing_service.generate_monthly_statements(3, 2025)

    assert summary.skipped == ["doctor-1"]
    assert len(summary.generated) == 1
    assert [item.provider_type for item in billing_service.pending_statements()] == [
        ProviderType.DOCTOR,
        ProviderType.PHARMACY,
    ]
    assert billing_service.provider_statements("doctor-1")[0].id == existing.id


def test_approved_statements_feed_payouts(billing_service, march):
    _completed(billing_service, "ref-1", "5000")
    statement = billing_service.generate_statement("doctor-1", "doctor", 3, 2025)
    assert billing_service.approved_statements() == []

    billing_service.approve(statement.id, "admin-1")

    assert [item.id for item in billing_service.approved_statements(provider_id="doctor-1")] == [statement.id]
    assert billing_service.pending_statements() == []


def test_platform_fee_rate_is_configurable(billing_repository, audit_logger, march):
    service = BillingService(
        repository=billing_repository,
        audit_logger=audit_logger,
        platform_fee_rate=Decimal("0.125"),
        clock=march,
    )
    _completed(service, "ref-1", "99.99")

    statement = service.generate_statement("doctor-1", "doctor", 3, 2025)

    assert statement.platform_fee == Decimal("12.50")
    assert statement.net_amount == Decimal("87.49")


def test_revenue_defaults_to_completed_payments(billing_service):
    _completed(billing_service, "ref-1", "1000")
    _pay(billing_service, "ref-2", "500")
    _completed(billing_service, "ref-3", "250", provider_id="doctor-2")
    billing_service.refund_payment("ref-3")

    completed = billing_service.calculate_revenue()
    everything = billing_service.calculate_revenue(status=None)
    pending = billing_service.calculate_revenue(status=PaymentStatus.PENDING)

    assert (completed.total_revenue, completed.transaction_count) == (Decimal("1000.00"), 1)
    assert (everything.total_revenue, everything.transaction_count) == (Decimal("1750.00"), 3)
    assert pending.total_revenue == Decimal("500.00")


def test_payment_analytics_groups_and_orders(billing_service, march):
    _completed(billing_service, "ref-1", "1000")
    _completed(billing_service, "ref-2", "3000")
    _completed(
        billing_service,
        "ref-3",
        "200",
        provider_id="pharmacy-1",
        provider_type="pharmacy",
        payment_type="prescription",
    )
    _pay(billing_service, "ref-4", "50")
    start, end = statement_period(3, 2025)

    rows = billing_service.get_payment_analytics(start, end)

    assert [(row.payment_type, row.provider_type) for row in rows] == [
        (PaymentType.CONSULTATION, ProviderType.DOCTOR),
        (PaymentType.PRESCRIPTION, ProviderType.PHARMACY),
    ]
    assert rows[0].transaction_count == 2
    assert rows[0].total_amount == Decimal("4000.00")
    assert rows[0].average_amount == Decimal("2000.00")
    assert len(billing_service.get_payment_analytics(start, end, status=None)) == 3


def test_provider_with_two_provider_types_gets_one_statement(billing_service, billing_repository, march):
    _completed(billing_service, "ref-1", "1000", provider_id="hospital-1", provider_type="doctor")
    march.advance(days=2)
    _completed(billing_service, "ref-2", "4000", provider_id="hospital-1", provider_type="hospital")

    summary = billing_service.generate_monthly_statements(3, 2025)

    assert summary.skipped == []
    assert len(summary.generated) == 1
    statement = billing_service.get_statement(summary.generated[0])
    assert statement.provider_type is ProviderType.HOSPITAL
    assert statement.total_amount == Decimal("5000.00")
    assert billing_repository.list_statement_candidates(*statement_period(3, 2025)) == [
        ("hospital-1", ProviderType.HOSPITAL)
    ]


def test_service_payment_uses_configured_price(billing_service, pricing_service, audit_logger, march):
    pricing_service.create_entry(
        {
            "serviceType": "consultation",
            "packageType": "MEDIUM",
            "patientPrice": "1500",
            "providerShare": "1200",
            "platformFee": "300",
        }
    )

    result = billing_service.record_service_payment(
        {
            "patientId": "patient-1",
            "providerId": "doctor-1",
            "providerType": "doctor",
            "serviceType": "consultation",
            "packageType": "MEDIUM",
        }
    )

    payment = result.payment
    assert payment.status is PaymentStatus.COMPLETED
    assert payment.completed_at == march.now
    assert payment.amount == Decimal("1500")
    assert payment.payment_type is PaymentType.CONSULTATION
    assert payment.payment_method == "subscription"
    assert payment.payment_reference.startswith("SVC_")
    assert payment.description == "consultation service - MEDIUM package"
    assert (result.breakdown.provider_share, result.breakdown.platform_fee) == (Decimal("1200"), Decimal("300"))
    assert audit_logger.of_type(AuditEventType.PAYMENT_RECORDED)[0].metadata["status"] == "completed"

    statement = billing_service.generate_statement("doctor-1", "doctor", 3, 2025)
    assert statement.payment_references == [payment.payment_reference]


def test_service_payment_without_pricing_entry(billing_service, billing_repository):
    with pytest.raises(NotFoundError):
        billing_service.record_service_payment(
            {
                "patientId": "patient-1",
                "providerId": "lab-1",
                "providerType": "hospital",
                "serviceType": "laboratory_test",
                "packageType": "BASIC",
            }
        )

    assert billing_repository.payments == {}


def test_unlisted_service_type_is_recorded_as_other(billing_service, pricing_service):
    pricing_service.create_entry(
        {
            "serviceType": "imaging",
            "packageType": "ADVANCED",
            "patientPrice": "8000",
            "providerShare": "7000",
            "platformFee": "1000",
        }
    )

    result = billing_service.record_service_payment(
        {
            "patientId": "patient-1",
            "providerId": "hospital-2",
            "providerType": "hospital",
            "serviceType": "imaging",
            "packageType": "ADVANCED",
        }
    )

    assert result.payment.payment_type is PaymentType.OTHER
    assert result.payment.metadata["service_type"] == "imaging"
