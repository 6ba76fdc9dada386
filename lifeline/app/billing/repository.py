"""Persistence layer for payment records and monthly statements.

``monthly_statements`` carries a unique constraint on
``(provider_id, month, year)``; ``payment_records`` on ``payment_reference``.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

import psycopg2.extras

from ..persistence import PostgresRepository
from .models import (
    MonthlyStatement,
    PaymentRecord,
    PaymentStatus,
    PaymentType,
    ProviderType,
    StatementStatus,
)
from .service import DUPLICATE_STATEMENT_MESSAGE


def _row_to_payment(row: dict) -> PaymentRecord:
    provider_type = row.get("provider_type")
    return PaymentRecord(
        id=str(row["id"]),
        patient_id=str(row["patient_id"]),
        amount=Decimal(row["amount"]),
        payment_type=PaymentType(row["payment_type"]),
        payment_reference=row["payment_reference"],
        status=PaymentStatus(row["status"]),
        provider_id=str(row["provider_id"]) if row.get("provider_id") is not None else None,
        provider_type=ProviderType(provider_type) if provider_type else None,
        payment_method=row.get("payment_method"),
        description=row.get("description"),
        metadata=row.get("metadata") or {},
        gateway_response=row.get("gateway_response"),
        completed_at=row.get("completed_at"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_statement(row: dict) -> MonthlyStatement:
    return MonthlyStatement(
        id=str(row["id"]),
        provider_id=str(row["provider_id"]),
        provider_type=ProviderType(row["provider_type"]),
        month=int(row["month"]),
        year=int(row["year"]),
        total_amount=Decimal(row["total_amount"]),
        transaction_count=int(row["transaction_count"]),
        platform_fee=Decimal(row["platform_fee"]),
        net_amount=Decimal(row["net_amount"]),
        payment_references=list(row.get("payment_references") or []),
        status=StatementStatus(row["status"]),
        approved_by=row.get("approved_by"),
        approved_at=row.get("approved_at"),
        rejected_by=row.get("rejected_by"),
        rejected_at=row.get("rejected_at"),
        notes=row.get("notes"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _payment_params(payment: PaymentRecord) -> dict:
    return {
        "id": payment.id,
        "patient_id": payment.patient_id,
        "amount": payment.amount,
        "payment_type": payment.payment_type.value,
        "payment_reference": payment.payment_reference,
        "status": payment.status.value,
        "provider_id": payment.provider_id,
        "provider_type": payment.provider_type.value if payment.provider_type else None,
        "payment_method": payment.payment_method,
        "description": payment.description,
        "metadata": psycopg2.extras.Json(payment.metadata),
        "gateway_response": psycopg2.extras.Json(payment.gateway_response)
        if payment.gateway_response is not None
        else None,
        "completed_at": payment.completed_at,
        "created_at": payment.created_at,
        "updated_at": payment.updated_at,
    }


def _statement_params(statement: MonthlyStatement) -> dict:
    return {
        "id": statement.id,
        "provider_id": statement.provider_id,
        "provider_type": statement.provider_type.value,
        "month": statement.month,
        "year": statement.year,
        "total_amount": statement.total_amount,
        "transaction_count": statement.transaction_count,
        "platform_fee": statement.platform_fee,
        "net_amount": statement.net_amount,
        "payment_references": psycopg2.extras.Json(statement.payment_references),
        "status": statement.status.value,
        "approved_by": statement.approved_by,
        "approved_at": statement.approved_at,
        "rejected_by": statement.rejected_by,
        "rejected_at": statement.rejected_at,
        "notes": statement.notes,
        "created_at": statement.created_at,
        "updated_at": statement.updated_at,
    }


class PostgresBillingRepository(PostgresRepository):
    """Concrete repository persisting billing models in PostgreSQL."""

    conflict_message = DUPLICATE_STATEMENT_MESSAGE
    conflict_messages = {"payment_records_payment_reference_key": "Payment reference already exists"}

    def insert_payment(self, payment: PaymentRecord) -> PaymentRecord:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO payment_records (
                    id, patient_id, amount, payment_type, payment_reference, status,
                    provider_id, provider_type, payment_method, description, metadata,
                    gateway_response, completed_at, created_at, updated_at
                )
                VALUES (%(id)s, %(patient_id)s, %(amount)s, %(payment_type)s,
                        %(payment_reference)s, %(status)s, %(provider_id)s,
                        %(provider_type)s, %(payment_method)s, %(description)s,
                        %(metadata)s, %(gateway_response)s, %(completed_at)s,
                        %(created_at)s, %(updated_at)s)
                RETURNING *
                """,
                _payment_params(payment),
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist payment record")
        return _row_to_payment(row)

    def get_payment_by_reference(self, reference: str) -> Optional[PaymentRecord]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM payment_records WHERE payment_reference = %s LIMIT 1",
                (reference,),
            )
            row = cursor.fetchone()
        return _row_to_payment(row) if row else None

    def update_payment(self, payment: PaymentRecord) -> PaymentRecord:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE payment_records
                SET status = %(status)s,
                    gateway_response = %(gateway_response)s,
                    completed_at = %(completed_at)s,
                    updated_at = %(updated_at)s
                WHERE id = %(id)s
                RETURNING *
                """,
                _payment_params(payment),
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError(f"Payment {payment.id} disappeared during update")
        return _row_to_payment(row)

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
        clauses: List[str] = []
        params: List[object] = []
        if provider_id is not None:
            clauses.append("provider_id = %s")
            params.append(provider_id)
        if provider_type is not None:
            clauses.append("provider_type = %s")
            params.append(provider_type.value)
        if payment_type is not None:
            clauses.append("payment_type = %s")
            params.append(payment_type.value)
        if status is not None:
            clauses.append("status = %s")
            params.append(status.value)
        if start is not None:
            clauses.append("created_at >= %s")
            params.append(start)
        if end is not None:
            clauses.append("created_at < %s")
            params.append(end)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._cursor() as cursor:
            cursor.execute(f"SELECT * FROM payment_records {where} ORDER BY created_at ASC", params)
            rows = cursor.fetchall()
        return [_row_to_payment(row) for row in rows]

    def list_statement_candidates(self, start: datetime, end: datetime) -> Sequence[Tuple[str, ProviderType]]:
        """One row per provider, typed by its most recent completed payment."""

        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT DISTINCT ON (provider_id) provider_id, provider_type
                FROM payment_records
                WHERE status = 'completed'
                  AND provider_id IS NOT NULL
                  AND provider_type IS NOT NULL
                  AND created_at >= %s AND created_at < %s
                ORDER BY provider_id, created_at DESC
                """,
                (start, end),
            )
            rows = cursor.fetchall()
        return [(str(row["provider_id"]), ProviderType(row["provider_type"])) for row in rows]

    def find_statement(self, provider_id: str, month: int, year: int) -> Optional[MonthlyStatement]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT * FROM monthly_statements
                WHERE provider_id = %s AND month = %s AND year = %s
                LIMIT 1
                """,
                (provider_id, month, year),
            )
            row = cursor.fetchone()
        return _row_to_statement(row) if row else None

    def get_statement(self, statement_id: str) -> Optional[MonthlyStatement]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM monthly_statements WHERE id = %s LIMIT 1", (statement_id,))
            row = cursor.fetchone()
        return _row_to_statement(row) if row else None

    def insert_statement(self, statement: MonthlyStatement) -> MonthlyStatement:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO monthly_statements (
                    id, provider_id, provider_type, month, year, total_amount,
                    transaction_count, platform_fee, net_amount, payment_references,
                    status, approved_by, approved_at, rejected_by, rejected_at, notes,
                    created_at, updated_at
                )
                VALUES (%(id)s, %(provider_id)s, %(provider_type)s, %(month)s, %(year)s,
                        %(total_amount)s, %(transaction_count)s, %(platform_fee)s,
                        %(net_amount)s, %(payment_references)s, %(status)s,
                        %(approved_by)s, %(approved_at)s, %(rejected_by)s,
                        %(rejected_at)s, %(notes)s, %(created_at)s, %(updated_at)s)
                RETURNING *
                """,
                _statement_params(statement),
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist monthly statement")
        return _row_to_statement(row)

    def update_statement(self, statement: MonthlyStatement) -> MonthlyStatement:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE monthly_statements
                SET status = %(status)s,
                    approved_by = %(approved_by)s,
                    approved_at = %(approved_at)s,
                    rejected_by = %(rejected_by)s,
                    rejected_at = %(rejected_at)s,
                    notes = %(notes)s,
                    updated_at = %(updated_at)s
                WHERE id = %(id)s
                RETURNING *
                """,
                _statement_params(statement),
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError(f"Statement {statement.id} disappeared during update")
        return _row_to_statement(row)

    def list_statements(
        self,
        *,
        provider_id: Optional[str] = None,
        provider_type: Optional[ProviderType] = None,
        status: Optional[StatementStatus] = None,
    ) -> Sequence[MonthlyStatement]:
        clauses: List[str] = []
        params: List[object] = []
        if provider_id is not None:
            clauses.append("provider_id = %s")
            params.append(provider_id)
        if provider_type is not None:
            clauses.append("provider_type = %s")
            params.append(provider_type.value)
        if status is not None:
            clauses.append("status = %s")
            params.append(status.value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._cursor() as cursor:
            cursor.execute(f"SELECT * FROM monthly_statements {where} ORDER BY year DESC, month DESC", params)
            rows = cursor.fetchall()
        return [_row_to_statement(row) for row in rows]


__all__ = ["PostgresBillingRepository"]
