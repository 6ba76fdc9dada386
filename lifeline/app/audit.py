"""Structured audit events emitted by the coverage engine."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger("lifeline.audit")


class AuditEventType(str, Enum):
    """Audit event categories emitted by the engine."""

    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    SUBSCRIPTION_RENEWED = "subscription_renewed"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    DEPENDENT_ADDED = "dependent_added"
    DEPENDENT_DEACTIVATED = "dependent_deactivated"
    DEPENDENT_REACTIVATED = "dependent_reactivated"
    DEPENDENT_PURGED = "dependent_purged"
    PRICING_CHANGED = "pricing_changed"
    PAYMENT_RECORDED = "payment_recorded"
    PAYMENT_COMPLETED = "payment_completed"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_REFUNDED = "payment_refunded"
    STATEMENT_GENERATED = "statement_generated"
    STATEMENT_APPROVED = "statement_approved"
    STATEMENT_REJECTED = "statement_rejected"


class AuditEvent(BaseModel):
    """Structured audit event handed to the audit collaborator."""

    event_type: AuditEventType
    subject_id: str
    actor_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class AuditLogger(Protocol):
    """Captures structured audit events."""

    def log(self, event: AuditEvent) -> None:
        ...


class LoggingAuditLogger(AuditLogger):
    """Forwards audit events to the application logger."""

    def log(self, event: AuditEvent) -> None:
        logger.info(
            "Audit event %s subject=%s actor=%s metadata=%s",
            event.event_type.value,
            event.subject_id,
            event.actor_id,
            event.metadata,
        )


__all__ = ["AuditEvent", "AuditEventType", "AuditLogger", "LoggingAuditLogger"]
