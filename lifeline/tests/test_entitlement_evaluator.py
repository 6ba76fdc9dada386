from __future__ import annotations

import pytest

from lifeline.app.entitlements import (
    DEFAULT_CATALOG_CONFIG,
    EntitlementCatalog,
    EntitlementEvaluator,
    PackageType,
    ServiceDetails,
    ServiceType,
)
from lifeline.app.errors import ValidationFailure


@pytest.fixture
def evaluator() -> EntitlementEvaluator:
    return EntitlementEvaluator()


def test_basic_package_denies_cardiology_specialist(evaluator):
    verdict = evaluator.evaluate(PackageType.BASIC, ServiceType.CONSULTATION, {"specialty": "cardiology"})

    assert verdict.entitled is False
    assert "Specialist consultations not allowed" in verdict.reason
    assert verdict.package_type is PackageType.BASIC


def test_medium_package_covers_ent_specialist(evaluator):
    verdict = evaluator.evaluate("MEDIUM", "consultation", ServiceDetails(specialty="ent"))

    assert verdict.entitled is True
    assert verdict.reason == "Service is covered by your package"


def test_medium_package_denies_uncovered_specialty(evaluator):
    verdict = evaluator.evaluate(PackageType.MEDIUM, ServiceType.CONSULTATION, {"specialty": "cardiology"})

    assert verdict.entitled is False
    assert verdict.reason == (
        "This specialty (cardiology) is not covered. Upgrade to Advanced for full specialist access."
    )


def test_general_practitioner_is_not_a_specialist(evaluator):
    verdict = evaluator.evaluate(PackageType.BASIC, ServiceType.CONSULTATION, {"specialty": "general_practitioner"})

    assert verdict.entitled is True


def test_basic_consultation_checks_ailment(evaluator):
    covered = evaluator.evaluate(PackageType.BASIC, ServiceType.CONSULTATION, {"ailment": "malaria"})
    uncovered = evaluator.evaluate(PackageType.BASIC, ServiceType.CONSULTATION, {"ailment": "cardiology"})

    assert covered.entitled is True
    assert uncovered.entitled is False
    assert "Basic Plan" in uncovered.reason


@pytest.mark.parametrize("count", [0, 1, 499, 500, 10_000])
def test_advanced_lab_tests_are_unlimited(evaluator, count):
    verdict = evaluator.evaluate(
        PackageType.ADVANCED,
        ServiceType.LABORATORY_TEST,
        {"testType": "hepatitis_panel", "monthlyCount": count},
    )

    assert verdict.entitled is True


@pytest.mark.parametrize(
    ("count", "entitled"),
    [(0, True), (9, True), (10, False), (11, False)],
)
def test_basic_drug_limit_boundary_is_inclusive(evaluator, count, entitled):
    verdict = evaluator.evaluate(PackageType.BASIC, ServiceType.DRUG_DISPENSING, {"monthlyCount": count})

    assert verdict.entitled is entitled
    if not entitled:
        assert verdict.reason == "Monthly drug limit (10) reached. Limit resets next month."


def test_prescription_uses_dispensing_rules(evaluator):
    verdict = evaluator.evaluate(PackageType.BASIC, ServiceType.PRESCRIPTION, {"drugCategory": "oncology_drugs"})

    assert verdict.entitled is False
    assert "oncology_drugs" in verdict.reason


def test_advanced_drugs_have_no_monthly_cap(evaluator):
    verdict = evaluator.evaluate(
        PackageType.ADVANCED,
        ServiceType.DRUG_DISPENSING,
        {"drugCategory": "oncology_drugs", "monthlyCount": 1_000},
    )

    assert verdict.entitled is True


def test_surgery_rules_by_package(evaluator):
    assert evaluator.evaluate(PackageType.BASIC, ServiceType.MINOR_SURGERY).entitled is False
    assert evaluator.evaluate(PackageType.MEDIUM, ServiceType.MINOR_SURGERY).entitled is True

    major = evaluator.evaluate(PackageType.MEDIUM, ServiceType.MAJOR_SURGERY)
    assert major.entitled is False
    assert major.reason == "Major surgeries not covered. Upgrade to Advanced package."

    assert evaluator.evaluate(PackageType.ADVANCED, ServiceType.MAJOR_SURGERY).entitled is True


def test_medium_annual_surgery_limit(evaluator):
    verdict = evaluator.evaluate(PackageType.MEDIUM, ServiceType.MINOR_SURGERY, {"yearlyCount": 2})

    assert verdict.entitled is False
    assert verdict.reason == "Annual surgery limit (2) reached. Limit resets next year."


def test_medium_imaging_excludes_advanced_modalities(evaluator):
    x_ray = evaluator.evaluate(PackageType.MEDIUM, ServiceType.IMAGING, {"imagingType": "x_ray"})
    mri = evaluator.evaluate(PackageType.MEDIUM, ServiceType.IMAGING, {"imagingType": "mri"})

    assert x_ray.entitled is True
    assert mri.entitled is False
    assert mri.reason == "This imaging type (mri) is not covered. Upgrade to Advanced for full imaging access."


def test_admission_day_limits(evaluator):
    within = evaluator.evaluate(PackageType.MEDIUM, ServiceType.ADMISSION, {"requestedDays": 7})
    beyond = evaluator.evaluate(PackageType.MEDIUM, ServiceType.ADMISSION, {"requestedDays": 8})
    advanced = evaluator.evaluate(PackageType.ADVANCED, ServiceType.ADMISSION, {"requestedDays": 60})

    assert within.entitled is True
    assert within.coverage_tier == "general_ward"
    assert beyond.entitled is False
    assert beyond.reason == "Admission exceeds package limit of 7 days. Upgrade to Advanced for unlimited days."
    assert advanced.entitled is True
    assert advanced.coverage_tier == "private_ward"
    assert evaluator.evaluate(PackageType.BASIC, ServiceType.ADMISSION).entitled is False


@pytest.mark.parametrize(
    ("package_type", "tier"),
    [
        (PackageType.BASIC, "basic_emergency_care"),
        (PackageType.MEDIUM, "full_emergency_care"),
        (PackageType.ADVANCED, "premium_emergency_care"),
    ],
)
def test_emergency_always_covered_with_tier(evaluator, package_type, tier):
    verdict = evaluator.evaluate(package_type, ServiceType.EMERGENCY)

    assert verdict.entitled is True
    assert verdict.coverage_tier == tier
    assert verdict.reason == f"Emergency service covered: {tier}"


def test_unknown_inputs_fail_closed(evaluator):
    invalid_package = evaluator.evaluate("PLATINUM", ServiceType.CONSULTATION)
    unknown_service = evaluator.evaluate(PackageType.ADVANCED, "teleportation")

    assert invalid_package.entitled is False
    assert invalid_package.reason == "Invalid package type"
    assert unknown_service.entitled is False
    assert unknown_service.reason == "Unknown service type: teleportation"


def test_upgrade_options_are_tier_ordered(evaluator):
    options = evaluator.upgrade_options(PackageType.BASIC, ServiceType.IMAGING, {"imagingType": "x_ray"})

    assert [option.package_type for option in options] == [PackageType.MEDIUM, PackageType.ADVANCED]
    assert options[0].name == "Medium Plan"

    mri_options = evaluator.upgrade_options(PackageType.MEDIUM, ServiceType.IMAGING, {"imagingType": "mri"})
    assert [option.package_type for option in mri_options] == [PackageType.ADVANCED]


def test_limitations_listed_per_package(evaluator):
    assert "No surgeries" in evaluator.limitations(PackageType.BASIC)
    assert evaluator.limitations(PackageType.ADVANCED) == []
    assert evaluator.limitations("unknown") == []


def test_injected_catalog_changes_rules():
    config = {key: value for key, value in DEFAULT_CATALOG_CONFIG.items()}
    basic = dict(config["BASIC"])
    basic["entitlements"] = {
        **basic["entitlements"],
        "specialists": {"allowed": True, "covered": ["cardiology"], "limitPerMonth": 1},
    }
    config["BASIC"] = basic
    evaluator = EntitlementEvaluator(EntitlementCatalog.from_config(config))

    assert evaluator.evaluate(PackageType.BASIC, ServiceType.CONSULTATION, {"specialty": "cardiology"}).entitled
    capped = evaluator.evaluate(
        PackageType.BASIC,
        ServiceType.CONSULTATION,
        {"specialty": "cardiology", "monthlyCount": 1},
    )
    assert capped.entitled is False
    assert capped.reason == "Monthly specialist limit (1) reached. Limit resets next month."


def test_malformed_details_raise_validation_failure(evaluator):
    with pytest.raises(ValidationFailure) as excinfo:
        evaluator.evaluate("BASIC", "laboratory_test", {"monthlyCount": "lots"})

    assert excinfo.value.status_code == 422
    assert excinfo.value.payload["errors"][0]["loc"] == ("monthlyCount",)

    with pytest.raises(ValidationFailure):
        evaluator.upgrade_options(PackageType.BASIC, ServiceType.ADMISSION, {"requestedDays": "a week"})
