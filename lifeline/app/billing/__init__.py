"""Billing reconciliation: payment records and monthly provider statements."""

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
from .repository import PostgresBillingRepository
from .service import (
    DUPLICATE_STATEMENT_MESSAGE,
    BillingRepository,
    BillingService,
    statement_lock_key,
    statement_period,
)

__all__ = [
    "MonthlyStatement",
    "PaymentAnalyticsRow",
    "PaymentData",
    "PaymentRecord",
    "PaymentStatus",
    "PaymentType",
    "ProviderType",
    "RevenueSummary",
    "ServicePaymentData",
    "ServicePaymentResult",
    "StatementRunSummary",
    "StatementStatus",
    "PostgresBillingRepository",
    "DUPLICATE_STATEMENT_MESSAGE",
    "BillingRepository",
    "BillingService",
    "statement_lock_key",
    "statement_period",
]
