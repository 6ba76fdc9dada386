"""Pure entitlement rules evaluated against an injected catalog."""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from ..errors import coerce_model
from .catalog import DEFAULT_CATALOG, MAJOR_SURGERIES, MINOR_SURGERIES, EntitlementCatalog
from .models import (
    Bounded,
    CategoryEntitlement,
    EntitlementVerdict,
    Limited,
    PackageDefinition,
    PackageType,
    ServiceCategory,
    ServiceDetails,
    ServiceType,
    UpgradeOption,
    Unrestricted,
)

logger = logging.getLogger(__name__)

GENERAL_PRACTITIONER = "general_practitioner"

DetailsInput = Union[ServiceDetails, Mapping[str, Any], None]


def _coerce_details(details: DetailsInput) -> ServiceDetails:
    if details is None:
        return ServiceDetails()
    return coerce_model(ServiceDetails, details)


def _limit_reached(entry: CategoryEntitlement, count: Optional[int]) -> bool:
    return entry.limit is not None and count is not None and entry.limit.is_reached(count)


class EntitlementEvaluator:
    """Decide whether a package covers a requested service.

    Evaluation never raises for well-formed input: unknown packages and
    service types fail closed with an explanatory reason. Malformed
    ``details`` raise :class:`ValidationFailure`.
    """

    def __init__(self, catalog: EntitlementCatalog = DEFAULT_CATALOG) -> None:
        self.catalog = catalog
        self._rules: Dict[ServiceType, Callable[[PackageDefinition, ServiceDetails], "_Outcome"]] = {
            ServiceType.CONSULTATION: self._consultation,
            ServiceType.PRESCRIPTION: self._drugs,
            ServiceType.DRUG_DISPENSING: self._drugs,
            ServiceType.MINOR_SURGERY: self._minor_surgery,
            ServiceType.MAJOR_SURGERY: self._major_surgery,
            ServiceType.LABORATORY_TEST: self._laboratory_test,
            ServiceType.IMAGING: self._imaging,
            ServiceType.ADMISSION: self._admission,
            ServiceType.EMERGENCY: self._emergency,
        }

    def evaluate(
        self,
        package_type: Union[PackageType, str, None],
        service_type: Union[ServiceType, str],
        details: DetailsInput = None,
    ) -> EntitlementVerdict:
        raw_service = service_type.value if isinstance(service_type, ServiceType) else str(service_type)
        definition = self.catalog.get(package_type)
        if definition is None:
            logger.warning("Invalid package type %r", package_type)
            return EntitlementVerdict(entitled=False, reason="Invalid package type", service_type=raw_service)

        try:
            resolved_service = ServiceType(service_type)
        except ValueError:
            return EntitlementVerdict(
                entitled=False,
                reason=f"Unknown service type: {raw_service}",
                service_type=raw_service,
                package_type=definition.package_type,
            )

        outcome = self._rules[resolved_service](definition, _coerce_details(details))
        return EntitlementVerdict(
            entitled=outcome.entitled,
            reason=outcome.reason,
            service_type=raw_service,
            package_type=definition.package_type,
            coverage_tier=outcome.coverage_tier,
        )

    def upgrade_options(
        self,
        current: Union[PackageType, str, None],
        service_type: Union[ServiceType, str],
        details: DetailsInput = None,
    ) -> List[UpgradeOption]:
        """Other packages, in tier order, that would entitle the service."""

        current_definition = self.catalog.get(current)
        resolved = _coerce_details(details)
        options: List[UpgradeOption] = []
        for definition in self.catalog:
            if current_definition is not None and definition.package_type is current_definition.package_type:
                continue
            if self.evaluate(definition.package_type, service_type, resolved).entitled:
                options.append(
                    UpgradeOption(
                        package_type=definition.package_type,
                        name=definition.name,
                        price=definition.price,
                        currency=definition.currency,
                    )
                )
        return options

    def limitations(self, package_type: Union[PackageType, str, None]) -> List[str]:
        definition = self.catalog.get(package_type)
        if definition is None:
            return []
        return list(definition.limitations)

    def package(self, package_type: Union[PackageType, str, None]) -> Optional[PackageDefinition]:
        return self.catalog.get(package_type)

    # Category rules -----------------------------------------------------

    def _consultation(self, definition: PackageDefinition, details: ServiceDetails) -> "_Outcome":
        consultations = definition.category(ServiceCategory.CONSULTATIONS)
        if not consultations.allowed:
            return _deny("Consultations not allowed for this package")

        specialty = details.specialty
        if specialty and specialty != GENERAL_PRACTITIONER:
            specialists = definition.category(ServiceCategory.SPECIALISTS)
            if not specialists.allowed:
                return _deny("Specialist consultations not allowed for this package. Upgrade to Medium or Advanced.")
            if not specialists.coverage.covers(specialty):
                return _deny(
                    f"This specialty ({specialty}) is not covered. "
                    "Upgrade to Advanced for full specialist access."
                )
            if _limit_reached(specialists, details.monthly_count):
                return _deny(
                    f"Monthly specialist limit ({specialists.bounded_limit}) reached. Limit resets next month."
                )

        if details.ailment and not consultations.coverage.covers(details.ailment):
            return _deny(
                f"This ailment ({details.ailment}) is not covered by your {definition.name}. "
                "Upgrade to Medium or Advanced."
            )

        return _allow("Service is covered by your package")

    def _drugs(self, definition: PackageDefinition, details: ServiceDetails) -> "_Outcome":
        dispensing = definition.category(ServiceCategory.DRUG_DISPENSING)
        if not dispensing.allowed:
            return _deny("Drug dispensing not allowed for this package")

        if details.drug_category and not dispensing.coverage.covers(details.drug_category):
            return _deny(f"This drug category ({details.drug_category}) is not covered. Upgrade your package.")

        if _limit_reached(dispensing, details.monthly_count):
            return _deny(f"Monthly drug limit ({dispensing.bounded_limit}) reached. Limit resets next month.")

        return _allow("Drug is covered by your package")

    def _minor_surgery(self, definition: PackageDefinition, details: ServiceDetails) -> "_Outcome":
        surgeries = definition.category(ServiceCategory.SURGERIES)
        if not surgeries.allowed:
            return _deny("Surgeries not allowed for this package. Upgrade to Medium or Advanced.")

        if isinstance(surgeries.coverage, Limited) and not surgeries.coverage.intersects(MINOR_SURGERIES):
            return _deny("Minor surgeries not covered. Please check your package.")

        if details.surgery_type and not surgeries.coverage.covers(details.surgery_type):
            return _deny(f"This surgery ({details.surgery_type}) is not covered. Upgrade your package.")

        if _limit_reached(surgeries, details.yearly_count):
            return _deny(f"Annual surgery limit ({surgeries.bounded_limit}) reached. Limit resets next year.")

        return _allow("Minor surgery is covered by your package")

    def _major_surgery(self, definition: PackageDefinition, details: ServiceDetails) -> "_Outcome":
        surgeries = definition.category(ServiceCategory.SURGERIES)
        if not surgeries.allowed:
            return _deny("Surgeries not allowed for this package. Upgrade to Medium or Advanced.")

        coverage = surgeries.coverage
        if not (isinstance(coverage, Unrestricted) or coverage.intersects(MAJOR_SURGERIES)):
            return _deny("Major surgeries not covered. Upgrade to Advanced package.")

        if details.surgery_type and not coverage.covers(details.surgery_type):
            return _deny(f"This surgery ({details.surgery_type}) is not covered. Upgrade your package.")

        if _limit_reached(surgeries, details.yearly_count):
            return _deny(f"Annual surgery limit ({surgeries.bounded_limit}) reached. Limit resets next year.")

        return _allow("Major surgery is covered by your package")

    def _laboratory_test(self, definition: PackageDefinition, details: ServiceDetails) -> "_Outcome":
        tests = definition.category(ServiceCategory.LABORATORY_TESTS)
        if not tests.allowed:
            return _deny("Laboratory tests not allowed for this package")

        if details.test_type and not tests.coverage.covers(details.test_type):
            return _deny(f"This test ({details.test_type}) is not covered. Upgrade your package.")

        if _limit_reached(tests, details.monthly_count):
            return _deny(f"Monthly lab test limit ({tests.bounded_limit}) reached. Limit resets next month.")

        return _allow("Laboratory test is covered by your package")

    def _imaging(self, definition: PackageDefinition, details: ServiceDetails) -> "_Outcome":
        imaging = definition.category(ServiceCategory.IMAGING)
        if not imaging.allowed:
            return _deny("Imaging tests not allowed for this package. Upgrade to Medium or Advanced.")

        if details.imaging_type and not imaging.coverage.covers(details.imaging_type):
            return _deny(
                f"This imaging type ({details.imaging_type}) is not covered. "
                "Upgrade to Advanced for full imaging access."
            )

        if _limit_reached(imaging, details.monthly_count):
            return _deny(f"Monthly imaging limit ({imaging.bounded_limit}) reached. Limit resets next month.")

        return _allow("Imaging test is covered by your package")

    def _admission(self, definition: PackageDefinition, details: ServiceDetails) -> "_Outcome":
        admissions = definition.category(ServiceCategory.ADMISSIONS)
        if not admissions.allowed:
            return _deny("Hospital admissions not allowed for this package. Upgrade to Medium or Advanced.")

        limit = admissions.limit
        if isinstance(limit, Bounded) and details.requested_days is not None:
            if limit.is_exceeded_by(details.requested_days):
                return _deny(
                    f"Admission exceeds package limit of {limit.value} days. "
                    "Upgrade to Advanced for unlimited days."
                )

        return _allow("Hospital admission is covered by your package", admissions.tier)

    def _emergency(self, definition: PackageDefinition, details: ServiceDetails) -> "_Outcome":
        emergency = definition.category(ServiceCategory.EMERGENCY)
        if not emergency.allowed:
            return _deny("Emergency services not configured")
        return _allow(f"Emergency service covered: {emergency.tier}", emergency.tier)


class _Outcome:
    __slots__ = ("entitled", "reason", "coverage_tier")

    def __init__(self, entitled: bool, reason: str, coverage_tier: Optional[str] = None) -> None:
        self.entitled = entitled
        self.reason = reason
        self.coverage_tier = coverage_tier


def _allow(reason: str, coverage_tier: Optional[str] = None) -> _Outcome:
    return _Outcome(True, reason, coverage_tier)


def _deny(reason: str) -> _Outcome:
    return _Outcome(False, reason)


__all__ = ["EntitlementEvaluator", "GENERAL_PRACTITIONER"]
