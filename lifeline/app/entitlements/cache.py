"""Process-local memo of resolved patient packages.

Only safe for single-process deployments: a subscription change made by
another process is not seen until the entry lapses.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Protocol, Tuple

from .models import PackageType


@dataclass(frozen=True)
class ResolvedPackage:
    """The package a patient's current subscription grants."""

    patient_id: str
    subscription_id: str
    package_type: PackageType
    end_date: datetime


class PackageCache(Protocol):
    def get(self, patient_id: str) -> Optional[ResolvedPackage]:
        ...

    def put(self, resolved: ResolvedPackage, expires_at: datetime) -> None:
        ...

    def discard(self, patient_id: str) -> None:
        ...


class InMemoryPackageCache:
    """Patient-keyed memo with an absolute expiry per entry."""

    def __init__(self, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._lock = threading.Lock()
        self._by_patient: Dict[str, Tuple[ResolvedPackage, datetime]] = {}
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def get(self, patient_id: str) -> Optional[ResolvedPackage]:
        with self._lock:
            held = self._by_patient.get(patient_id)
            if held is None:
                return None
            resolved, expires_at = held
            if self._clock() >= expires_at:
                del self._by_patient[patient_id]
                return None
            return resolved

    def put(self, resolved: ResolvedPackage, expires_at: datetime) -> None:
        if expires_at <= self._clock():
            return
        with self._lock:
            self._by_patient[resolved.patient_id] = (resolved, expires_at)

    def discard(self, patient_id: str) -> None:
        with self._lock:
            self._by_patient.pop(patient_id, None)

    def __len__(self) -> int:
        return len(self._by_patient)


__all__ = ["InMemoryPackageCache", "PackageCache", "ResolvedPackage"]
