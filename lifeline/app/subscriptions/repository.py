"""Persistence layer for subscriptions and dependents.

Expects ``patients``, ``subscriptions`` (with a partial unique index on
``patient_id WHERE status = 'active'``) and ``dependents`` tables.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence

import psycopg2.extras

from ..entitlements.models import PackageType
from ..persistence import PostgresRepository
from .models import Dependent, Gender, Relationship, Subscription, SubscriptionStatus

_SUBSCRIPTION_COLUMNS = """
    id, patient_id, package_type, status, start_date, end_date, auto_renew,
    price, currency, cancellation_reason, cancelled_at, created_at, updated_at
"""


def _row_to_subscription(row: dict) -> Subscription:
    return Subscription(
        id=str(row["id"]),
        patient_id=str(row["patient_id"]),
        package_type=PackageType(row["package_type"]),
        status=SubscriptionStatus(row["status"]),
        start_date=row["start_date"],
        end_date=row["end_date"],
        auto_renew=bool(row["auto_renew"]),
        price=Decimal(row["price"]),
        currency=row["currency"],
        cancellation_reason=row.get("cancellation_reason"),
        cancelled_at=row.get("cancelled_at"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_dependent(row: dict) -> Dependent:
    return Dependent(
        id=str(row["id"]),
        patient_id=str(row["patient_id"]),
        first_name=row["first_name"],
        last_name=row["last_name"],
        date_of_birth=row["date_of_birth"],
        gender=Gender(row["gender"]),
        relationship=Relationship(row["relationship"]),
        blood_group=row.get("blood_group"),
        allergies=row.get("allergies") or [],
        chronic_conditions=row.get("chronic_conditions") or [],
        emergency_contact=row.get("emergency_contact") or None,
        is_active=bool(row["is_active"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _subscription_params(subscription: Subscription) -> dict:
    return {
        "id": subscription.id,
        "patient_id": subscription.patient_id,
        "package_type": subscription.package_type.value,
        "status": subscription.status.value,
        "start_date": subscription.start_date,
        "end_date": subscription.end_date,
        "auto_renew": subscription.auto_renew,
        "price": subscription.price,
        "currency": subscription.currency,
        "cancellation_reason": subscription.cancellation_reason,
        "cancelled_at": subscription.cancelled_at,
        "created_at": subscription.created_at,
        "updated_at": subscription.updated_at,
    }


def _dependent_params(dependent: Dependent) -> dict:
    return {
        "id": dependent.id,
        "patient_id": dependent.patient_id,
        "first_name": dependent.first_name,
        "last_name": dependent.last_name,
        "date_of_birth": dependent.date_of_birth,
        "gender": dependent.gender.value,
        "relationship": dependent.relationship.value,
        "blood_group": dependent.blood_group,
        "allergies": psycopg2.extras.Json(dependent.allergies),
        "chronic_conditions": psycopg2.extras.Json(dependent.chronic_conditions),
        "emergency_contact": psycopg2.extras.Json(dependent.emergency_contact)
        if dependent.emergency_contact is not None
        else None,
        "is_active": dependent.is_active,
        "created_at": dependent.created_at,
        "updated_at": dependent.updated_at,
    }


class PostgresCoverageRepository(PostgresRepository):
    """Concrete repository persisting subscriptions and dependents in PostgreSQL."""

    conflict_message = "Patient already has an active subscription"

    def patient_exists(self, patient_id: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute("SELECT 1 FROM patients WHERE id = %s LIMIT 1", (patient_id,))
            return cursor.fetchone() is not None

    # Subscriptions ------------------------------------------------------

    def find_active_subscription(self, patient_id: str) -> Optional[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT {_SUBSCRIPTION_COLUMNS}
                FROM subscriptions
                WHERE patient_id = %s AND status = 'active'
                ORDER BY start_date DESC
                LIMIT 1
                """,
                (patient_id,),
            )
            row = cursor.fetchone()
        return _row_to_subscription(row) if row else None

    def find_latest_subscription(self, patient_id: str) -> Optional[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT {_SUBSCRIPTION_COLUMNS}
                FROM subscriptions
                WHERE patient_id = %s
                ORDER BY (status = 'active') DESC, created_at DESC
                LIMIT 1
                """,
                (patient_id,),
            )
            row = cursor.fetchone()
        return _row_to_subscription(row) if row else None

    def insert_subscription(self, subscription: Subscription) -> Subscription:
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                INSERT INTO subscriptions ({_SUBSCRIPTION_COLUMNS})
                VALUES (%(id)s, %(patient_id)s, %(package_type)s, %(status)s,
                        %(start_date)s, %(end_date)s, %(auto_renew)s, %(price)s,
                        %(currency)s, %(cancellation_reason)s, %(cancelled_at)s,
                        %(created_at)s, %(updated_at)s)
                RETURNING {_SUBSCRIPTION_COLUMNS}
                """,
                _subscription_params(subscription),
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist subscription")
        return _row_to_subscription(row)

    def update_subscription(self, subscription: Subscription) -> Subscription:
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                UPDATE subscriptions
                SET package_type = %(package_type)s,
                    status = %(status)s,
                    start_date = %(start_date)s,
                    end_date = %(end_date)s,
                    auto_renew = %(auto_renew)s,
                    price = %(price)s,
                    currency = %(currency)s,
                    cancellation_reason = %(cancellation_reason)s,
                    cancelled_at = %(cancelled_at)s,
                    updated_at = %(updated_at)s
                WHERE id = %(id)s
                RETURNING {_SUBSCRIPTION_COLUMNS}
                """,
                _subscription_params(subscription),
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError(f"Subscription {subscription.id} disappeared during update")
        return _row_to_subscription(row)

    def expire_subscriptions(self, now: datetime) -> Sequence[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                UPDATE subscriptions
                SET status = 'expired', updated_at = %s
                WHERE status = 'active' AND end_date < %s
                RETURNING {_SUBSCRIPTION_COLUMNS}
                """,
                (now, now),
            )
            rows = cursor.fetchall()
        return [_row_to_subscription(row) for row in rows]

    def list_subscriptions(self, patient_id: str) -> Sequence[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT {_SUBSCRIPTION_COLUMNS}
                FROM subscriptions
                WHERE patient_id = %s
                ORDER BY created_at DESC
                """,
                (patient_id,),
            )
            rows = cursor.fetchall()
        return [_row_to_subscription(row) for row in rows]

    def list_expiring(self, now: datetime, until: datetime) -> Sequence[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT {_SUBSCRIPTION_COLUMNS}
                FROM subscriptions
                WHERE status = 'active' AND end_date > %s AND end_date <= %s
                ORDER BY end_date ASC
                """,
                (now, until),
            )
            rows = cursor.fetchall()
        return [_row_to_subscription(row) for row in rows]

    # Dependents ---------------------------------------------------------

    def count_active_dependents(self, patient_id: str) -> int:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT COUNT(*) AS count FROM dependents WHERE patient_id = %s AND is_active = TRUE",
                (patient_id,),
            )
            row = cursor.fetchone()
        return int(row["count"]) if row else 0

    def insert_dependent(self, dependent: Dependent) -> Dependent:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO dependents (
                    id, patient_id, first_name, last_name, date_of_birth, gender,
                    relationship, blood_group, allergies, chronic_conditions,
                    emergency_contact, is_active, created_at, updated_at
                )
                VALUES (%(id)s, %(patient_id)s, %(first_name)s, %(last_name)s,
                        %(date_of_birth)s, %(gender)s, %(relationship)s, %(blood_group)s,
                        %(allergies)s, %(chronic_conditions)s, %(emergency_contact)s,
                        %(is_active)s, %(created_at)s, %(updated_at)s)
                RETURNING *
                """,
                _dependent_params(dependent),
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist dependent")
        return _row_to_dependent(row)

    def get_dependent(self, dependent_id: str) -> Optional[Dependent]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM dependents WHERE id = %s LIMIT 1", (dependent_id,))
            row = cursor.fetchone()
        return _row_to_dependent(row) if row else None

    def update_dependent(self, dependent: Dependent) -> Dependent:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE dependents
                SET first_name = %(first_name)s,
                    last_name = %(last_name)s,
                    date_of_birth = %(date_of_birth)s,
                    gender = %(gender)s,
                    relationship = %(relationship)s,
                    blood_group = %(blood_group)s,
                    allergies = %(allergies)s,
                    chronic_conditions = %(chronic_conditions)s,
                    emergency_contact = %(emergency_contact)s,
                    is_active = %(is_active)s,
                    updated_at = %(updated_at)s
                WHERE id = %(id)s
                RETURNING *
                """,
                _dependent_params(dependent),
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError(f"Dependent {dependent.id} disappeared during update")
        return _row_to_dependent(row)

    def list_dependents(self, patient_id: str, *, include_inactive: bool = False) -> Sequence[Dependent]:
        query = "SELECT * FROM dependents WHERE patient_id = %s"
        if not include_inactive:
            query += " AND is_active = TRUE"
        query += " ORDER BY created_at DESC"
        with self._cursor() as cursor:
            cursor.execute(query, (patient_id,))
            rows = cursor.fetchall()
        return [_row_to_dependent(row) for row in rows]

    def set_dependents_active(self, patient_id: str, is_active: bool) -> Sequence[str]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE dependents
                SET is_active = %s, updated_at = NOW()
                WHERE patient_id = %s AND is_active <> %s
                RETURNING id
                """,
                (is_active, patient_id, is_active),
            )
            rows = cursor.fetchall()
        ids: List[str] = [str(row["id"]) for row in rows]
        return ids

    def delete_dependent(self, dependent_id: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM dependents WHERE id = %s", (dependent_id,))
            return cursor.rowcount > 0


__all__ = ["PostgresCoverageRepository"]
