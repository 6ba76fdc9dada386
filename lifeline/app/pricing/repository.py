"""Persistence layer for the pricing table (unique on ``service_type, package_type``)."""
from __future__ import annotations

from decimal import Decimal
from typing import List, Optional, Sequence

from ..entitlements.models import PackageType
from ..persistence import PostgresRepository
from .models import PricingEntry


def _row_to_entry(row: dict) -> PricingEntry:
    return PricingEntry(
        id=str(row["id"]),
        service_type=row["service_type"],
        package_type=PackageType(row["package_type"]),
        patient_price=Decimal(row["patient_price"]),
        provider_share=Decimal(row["provider_share"]),
        platform_fee=Decimal(row["platform_fee"]),
        description=row.get("description"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresPricingRepository(PostgresRepository):
    """Concrete repository persisting pricing entries in PostgreSQL."""

    conflict_message = "Pricing already exists for this service and package combination"

    def get_entry(self, entry_id: str) -> Optional[PricingEntry]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM pricing WHERE id = %s LIMIT 1", (entry_id,))
            row = cursor.fetchone()
        return _row_to_entry(row) if row else None

    def find_entry(self, service_type: str, package_type: PackageType) -> Optional[PricingEntry]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM pricing WHERE service_type = %s AND package_type = %s LIMIT 1",
                (service_type, package_type.value),
            )
            row = cursor.fetchone()
        return _row_to_entry(row) if row else None

    def list_entries(
        self,
        *,
        service_type: Optional[str] = None,
        package_type: Optional[PackageType] = None,
    ) -> Sequence[PricingEntry]:
        clauses: List[str] = []
        params: List[object] = []
        if service_type is not None:
            clauses.append("service_type = %s")
            params.append(service_type)
        if package_type is not None:
            clauses.append("package_type = %s")
            params.append(package_type.value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._cursor() as cursor:
            cursor.execute(f"SELECT * FROM pricing {where} ORDER BY service_type, package_type", params)
            rows = cursor.fetchall()
        return [_row_to_entry(row) for row in rows]

    def insert_entry(self, entry: PricingEntry) -> PricingEntry:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO pricing (
                    id, service_type, package_type, patient_price,
                    provider_share, platform_fee, description, created_at, updated_at
                )
                VALUES (%(id)s, %(service_type)s, %(package_type)s, %(patient_price)s,
                        %(provider_share)s, %(platform_fee)s, %(description)s,
                        %(created_at)s, %(updated_at)s)
                RETURNING *
                """,
                {
                    "id": entry.id,
                    "service_type": entry.service_type,
                    "package_type": entry.package_type.value,
                    "patient_price": entry.patient_price,
                    "provider_share": entry.provider_share,
                    "platform_fee": entry.platform_fee,
                    "description": entry.description,
                    "created_at": entry.created_at,
                    "updated_at": entry.updated_at,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist pricing entry")
        return _row_to_entry(row)

    def update_entry(self, entry: PricingEntry) -> PricingEntry:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE pricing
                SET patient_price = %(patient_price)s,
                    provider_share = %(provider_share)s,
                    platform_fee = %(platform_fee)s,
                    description = %(description)s,
                    updated_at = NOW()
                WHERE id = %(id)s
                RETURNING *
                """,
                {
                    "id": entry.id,
                    "patient_price": entry.patient_price,
                    "provider_share": entry.provider_share,
                    "platform_fee": entry.platform_fee,
                    "description": entry.description,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError(f"Pricing entry {entry.id} disappeared during update")
        return _row_to_entry(row)

    def delete_entry(self, entry_id: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM pricing WHERE id = %s", (entry_id,))
            return cursor.rowcount > 0


__all__ = ["PostgresPricingRepository"]
