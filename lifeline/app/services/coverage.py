"""Application wiring for entitlement checks, subscriptions and dependents."""
from __future__ import annotations

import logging
from functools import lru_cache

from ...config import EngineConfig, load_engine_config
from ..audit import LoggingAuditLogger
from ..entitlements import (
    DEFAULT_CATALOG,
    EntitlementCatalog,
    EntitlementEvaluator,
    EntitlementService,
    InMemoryPackageCache,
)
from ..subscriptions import DependentService, PostgresCoverageRepository, SubscriptionService

logger = logging.getLogger("lifeline.coverage")


@lru_cache(maxsize=1)
def get_engine_config() -> EngineConfig:
    return load_engine_config()


@lru_cache(maxsize=1)
def get_catalog() -> EntitlementCatalog:
    """Catalog from ``COVERAGE_CATALOG_PATH`` when set, else the built-in packages."""

    config = get_engine_config()
    if not config.catalog_path:
        return DEFAULT_CATALOG
    catalog = EntitlementCatalog.load(config.catalog_path)
    logger.info("Loaded coverage catalog path=%s packages=%s", config.catalog_path, len(catalog))
    return catalog


@lru_cache(maxsize=1)
def get_entitlement_service() -> EntitlementService:
    """Entitlement checks read the ledger directly unless a cache TTL is configured."""

    config = get_engine_config()
    evaluator = EntitlementEvaluator(get_catalog())
    if not config.entitlement_cache_ttl_seconds:
        return EntitlementService(evaluator, PostgresCoverageRepository())
    logger.warning(
        "Process-local package cache enabled ttl=%ss; only safe with a single worker",
        config.entitlement_cache_ttl_seconds,
    )
    return EntitlementService(
        evaluator,
        PostgresCoverageRepository(),
        InMemoryPackageCache(),
        ttl_seconds=config.entitlement_cache_ttl_seconds,
    )


@lru_cache(maxsize=1)
def get_subscription_service() -> SubscriptionService:
    config = get_engine_config()
    return SubscriptionService(
        repository=PostgresCoverageRepository(),
        audit_logger=LoggingAuditLogger(),
        entitlement_invalidator=get_entitlement_service(),
        catalog=get_catalog(),
        term_days=config.subscription_term_days,
        expiry_notice_days=config.expiry_notice_days,
    )


@lru_cache(maxsize=1)
def get_dependent_service() -> DependentService:
    return DependentService(
        repository=PostgresCoverageRepository(),
        audit_logger=LoggingAuditLogger(),
        catalog=get_catalog(),
    )


__all__ = [
    "get_catalog",
    "get_dependent_service",
    "get_engine_config",
    "get_entitlement_service",
    "get_subscription_service",
]
