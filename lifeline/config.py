"""Engine configuration helpers."""
from __future__ import annotations

import math
import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Dict, Mapping, Optional

from dotenv import load_dotenv


@dataclass(frozen=True)
class EngineConfig:
    """Runtime configuration for the coverage engine."""

    db_host: str
    db_port: int
    db_name: str
    db_user: str
    db_password: str
    db_connect_timeout: int
    catalog_path: Optional[str]
    subscription_term_days: int
    expiry_notice_days: int
    platform_fee_rate: Decimal
    entitlement_cache_ttl_seconds: int

    def db_settings(self) -> Dict[str, object]:
        """Keyword arguments accepted by ``psycopg2.connect``."""

        return dict(
            host=self.db_host,
            port=self.db_port,
            dbname=self.db_name,
            user=self.db_user,
            password=self.db_password,
            connect_timeout=self.db_connect_timeout,
        )


def _to_int(key: str, value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{key} must be an integer, got {value!r}") from exc


def _to_decimal(key: str, value: Optional[str], *, default: Decimal) -> Decimal:
    if value is None or value == "":
        return default
    try:
        return Decimal(value)
    except InvalidOperation as exc:
        raise ValueError(f"{key} must be a number, got {value!r}") from exc


def _parse_connect_timeout(raw_value: str) -> int:
    try:
        timeout = float(raw_value)
    except ValueError as exc:
        raise ValueError("DB_CONNECT_TIMEOUT must be a number") from exc
    if timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")
    return int(math.ceil(timeout))


def _cache_ttl(raw_value: Optional[str]) -> int:
    # 0 disables the process-local package cache; enabled values have a floor.
    ttl = _to_int("ENTITLEMENT_CACHE_TTL_SECONDS", raw_value, default=0)
    if ttl <= 0:
        return 0
    return max(ttl, 60)


def load_engine_config(env: Optional[Mapping[str, str]] = None) -> EngineConfig:
    """Load :class:`EngineConfig` from environment variables."""

    if env is None:
        load_dotenv()
        env_mapping: Mapping[str, str] = os.environ
    else:
        env_mapping = env

    term_days = _to_int("SUBSCRIPTION_TERM_DAYS", env_mapping.get("SUBSCRIPTION_TERM_DAYS"), default=30)
    if term_days < 1:
        raise ValueError("SUBSCRIPTION_TERM_DAYS must be >= 1")

    fee_rate = _to_decimal(
        "STATEMENT_PLATFORM_FEE_RATE",
        env_mapping.get("STATEMENT_PLATFORM_FEE_RATE"),
        default=Decimal("0.10"),
    )
    if not Decimal("0") <= fee_rate <= Decimal("1"):
        raise ValueError("STATEMENT_PLATFORM_FEE_RATE must be between 0 and 1")

    return EngineConfig(
        db_host=env_mapping.get("DB_HOST", "127.0.0.1"),
        db_port=_to_int("DB_PORT", env_mapping.get("DB_PORT"), default=5432),
        db_name=env_mapping.get("DB_NAME", "lifeline"),
        db_user=env_mapping.get("DB_USER", "lifeline"),
        db_password=env_mapping.get("DB_PASSWORD", "lifeline"),
        db_connect_timeout=_parse_connect_timeout(env_mapping.get("DB_CONNECT_TIMEOUT", "5")),
        catalog_path=env_mapping.get("COVERAGE_CATALOG_PATH") or None,
        subscription_term_days=term_days,
        expiry_notice_days=max(
            0,
            _to_int(
                "SUBSCRIPTION_EXPIRY_NOTICE_DAYS",
                env_mapping.get("SUBSCRIPTION_EXPIRY_NOTICE_DAYS"),
                default=7,
            ),
        ),
        platform_fee_rate=fee_rate,
        entitlement_cache_ttl_seconds=_cache_ttl(env_mapping.get("ENTITLEMENT_CACHE_TTL_SECONDS")),
    )


__all__ = ["EngineConfig", "load_engine_config"]
