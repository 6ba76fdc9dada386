"""Connection factory wiring for the Postgres repositories."""
from __future__ import annotations

import logging
from typing import Optional

import psycopg2
from psycopg2.extensions import connection as PgConnection

from . import app_context
from .config import EngineConfig, load_engine_config

logger = logging.getLogger(__name__)


def connect(config: EngineConfig) -> PgConnection:
    return psycopg2.connect(**config.db_settings())


def configure_database(config: Optional[EngineConfig] = None) -> EngineConfig:
    """Register a connection factory built from ``config`` with the app context."""

    resolved = config or load_engine_config()
    app_context.configure(get_conn=lambda: connect(resolved))
    logger.info(
        "Database configured host=%s port=%s dbname=%s",
        resolved.db_host,
        resolved.db_port,
        resolved.db_name,
    )
    return resolved


__all__ = ["configure_database", "connect"]
