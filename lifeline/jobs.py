"""Timer-invoked maintenance jobs for the coverage engine."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, Optional, Tuple

from lifeline.app.billing import BillingService, StatementRunSummary
from lifeline.app.subscriptions import ExpirationSweepResult, SubscriptionService

logger = logging.getLogger(__name__)

EXPIRATION_SWEEP = "expiration_sweep"
MONTHLY_STATEMENTS = "monthly_statements"


def _empty_metrics(**counters: int) -> Dict[str, object]:
    return {
        **counters,
        "runs": 0,
        "failures": 0,
        "last_run_at": None,
        "last_success_at": None,
        "last_error": None,
    }


_JOB_METRICS: Dict[str, Dict[str, object]] = {
    EXPIRATION_SWEEP: _empty_metrics(subscriptions_expired=0),
    MONTHLY_STATEMENTS: _empty_metrics(statements_generated=0, statements_skipped=0),
}
_metrics_lock = Lock()


def _as_utc(value: Optional[datetime]) -> datetime:
    current_time = value or datetime.now(timezone.utc)
    if current_time.tzinfo is None:
        current_time = current_time.replace(tzinfo=timezone.utc)
    return current_time


def previous_period(now: datetime) -> Tuple[int, int]:
    """Return ``(month, year)`` of the calendar month before ``now``."""

    if now.month == 1:
        return 12, now.year - 1
    return now.month - 1, now.year


def _record_run_start(job: str, started_at: datetime) -> None:
    with _metrics_lock:
        metrics = _JOB_METRICS[job]
        metrics["runs"] = int(metrics.get("runs", 0)) + 1
        metrics["last_run_at"] = started_at


def _record_run_success(job: str, completed_at: datetime, **counters: int) -> None:
    with _metrics_lock:
        metrics = _JOB_METRICS[job]
        for key, value in counters.items():
            metrics[key] = int(metrics.get(key, 0)) + value
        metrics["last_success_at"] = completed_at
        metrics["last_error"] = None


def _record_run_failure(job: str, error: Exception) -> None:
    with _metrics_lock:
        metrics = _JOB_METRICS[job]
        metrics["failures"] = int(metrics.get("failures", 0)) + 1
        metrics["last_error"] = f"{type(error).__name__}: {error}"


def run_expiration_sweep(service: SubscriptionService, *, now: Optional[datetime] = None) -> ExpirationSweepResult:
    """Expire every active subscription whose end date has passed."""

    current_time = _as_utc(now)
    _record_run_start(EXPIRATION_SWEEP, current_time)
    try:
        result = service.sweep_expirations(current_time)
    except Exception as exc:
        _record_run_failure(EXPIRATION_SWEEP, exc)
        logger.exception("Expiration sweep failed", extra={"run_at": current_time.isoformat()})
        raise
    _record_run_success(EXPIRATION_SWEEP, current_time, subscriptions_expired=result.expired_count)
    logger.info(
        "Expiration sweep completed",
        extra={"run_at": current_time.isoformat(), "expired": result.expired_count},
    )
    return result


def run_monthly_statement_job(
    service: BillingService,
    *,
    month: Optional[int] = None,
    year: Optional[int] = None,
    now: Optional[datetime] = None,
) -> StatementRunSummary:
    """Generate provider statements, for the previous calendar month unless a period is given."""

    current_time = _as_utc(now)
    default_month, default_year = previous_period(current_time)
    target_month = month if month is not None else default_month
    target_year = year if year is not None else default_year

    _record_run_start(MONTHLY_STATEMENTS, current_time)
    try:
        summary = service.generate_monthly_statements(target_month, target_year)
    except Exception as exc:
        _record_run_failure(MONTHLY_STATEMENTS, exc)
        logger.exception(
            "Monthly statement job failed",
            extra={"month": target_month, "year": target_year},
        )
        raise
    _record_run_success(
        MONTHLY_STATEMENTS,
        current_time,
        statements_generated=len(summary.generated),
        statements_skipped=len(summary.skipped),
    )
    logger.info(
        "Monthly statement job completed",
        extra={
            "month": target_month,
            "year": target_year,
            "generated": len(summary.generated),
            "skipped": len(summary.skipped),
        },
    )
    return summary


def get_job_metrics() -> Dict[str, Dict[str, object]]:
    with _metrics_lock:
        snapshot: Dict[str, Dict[str, object]] = {}
        for key, value in _JOB_METRICS.items():
            snapshot[key] = {
                **value,
                "last_run_at": value["last_run_at"].isoformat() if value.get("last_run_at") else None,
                "last_success_at": value["last_success_at"].isoformat() if value.get("last_success_at") else None,
            }
        return snapshot


def _reset_metrics_for_testing() -> None:  # pragma: no cover - used in tests only
    with _metrics_lock:
        _JOB_METRICS[EXPIRATION_SWEEP] = _empty_metrics(subscriptions_expired=0)
        _JOB_METRICS[MONTHLY_STATEMENTS] = _empty_metrics(statements_generated=0, statements_skipped=0)


__all__ = [
    "EXPIRATION_SWEEP",
    "MONTHLY_STATEMENTS",
    "get_job_metrics",
    "previous_period",
    "run_expiration_sweep",
    "run_monthly_statement_job",
]
