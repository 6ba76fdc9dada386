from __future__ import annotations

import json
from decimal import Decimal

import pytest

from lifeline.app.entitlements import DEFAULT_CATALOG, DEFAULT_CATALOG_CONFIG, InMemoryPackageCache
from lifeline.app.services import billing as billing_wiring
from lifeline.app.services import coverage as coverage_wiring
from lifeline.app.subscriptions import PostgresCoverageRepository

_GETTERS = (
    coverage_wiring.get_engine_config,
    coverage_wiring.get_catalog,
    coverage_wiring.get_entitlement_service,
    coverage_wiring.get_subscription_service,
    coverage_wiring.get_dependent_service,
    billing_wiring.get_billing_service,
    billing_wiring.get_pricing_service,
)


@pytest.fixture(autouse=True)
def clear_caches(monkeypatch):
    for name in (
        "COVERAGE_CATALOG_PATH",
        "ENTITLEMENT_CACHE_TTL_SECONDS",
        "STATEMENT_PLATFORM_FEE_RATE",
        "SUBSCRIPTION_TERM_DAYS",
    ):
        monkeypatch.delenv(name, raising=False)
    for getter in _GETTERS:
        getter.cache_clear()
    yield
    for getter in _GETTERS:
        getter.cache_clear()


def test_default_wiring_uses_builtin_catalog():
    assert coverage_wiring.get_catalog() is DEFAULT_CATALOG

    subscriptions = coverage_wiring.get_subscription_service()

    assert subscriptions.entitlement_invalidator is coverage_wiring.get_entitlement_service()
    assert isinstance(subscriptions.repository, PostgresCoverageRepository)
    assert coverage_wiring.get_dependent_service().catalog is DEFAULT_CATALOG


def test_wiring_reads_environment(monkeypatch, tmp_path):
    config = json.loads(json.dumps(DEFAULT_CATALOG_CONFIG))
    config["BASIC"]["maxDependents"] = 2
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps(config), encoding="utf-8")
    monkeypatch.setenv("COVERAGE_CATALOG_PATH", str(path))
    monkeypatch.setenv("STATEMENT_PLATFORM_FEE_RATE", "0.2")
    monkeypatch.setenv("SUBSCRIPTION_TERM_DAYS", "60")

    assert coverage_wiring.get_catalog().require("BASIC").max_dependents == 2
    assert coverage_wiring.get_subscription_service().term_days == 60
    assert billing_wiring.get_billing_service().platform_fee_rate == Decimal("0.2")
    assert billing_wiring.get_pricing_service() is billing_wiring.get_pricing_service()


def test_entitlements_read_ledger_unless_cache_configured(monkeypatch):
    assert coverage_wiring.get_entitlement_service()._cache is None

    coverage_wiring.get_engine_config.cache_clear()
    coverage_wiring.get_entitlement_service.cache_clear()
    monkeypatch.setenv("ENTITLEMENT_CACHE_TTL_SECONDS", "120")

    assert isinstance(coverage_wiring.get_entitlement_service()._cache, InMemoryPackageCache)


def test_billing_reads_prices_from_pricing_service():
    billing = billing_wiring.get_billing_service()

    assert billing.pricing is billing_wiring.get_pricing_service()
    assert isinstance(billing.pricing.subscriptions, PostgresCoverageRepository)
