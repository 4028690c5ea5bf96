#!/usr/bin/env python3
# CUI // SP-CTI
"""Tests for atoengine.compliance.finding_classifier and the Finding model."""

import pytest
from conftest import FIXED_NOW, STORAGE_ID

from atoengine.compliance.finding_classifier import (
    FindingClassifier,
    RawObservation,
    finding_id,
)
from atoengine.resilience.errors import ValidationError
from atoengine.schemas.compliance import Finding, Severity


@pytest.fixture(scope="module")
def classifier():
    return FindingClassifier.from_catalog(clock=lambda: FIXED_NOW)


class TestClassify:
    def test_rule_drives_severity_and_controls(self, classifier):
        finding = classifier.classify(RawObservation(
            resource_id=STORAGE_ID, rule_id="encryption-at-rest",
            resource_type="Microsoft.Storage/storageAccounts",
        ))
        assert finding.severity is Severity.CRITICAL
        assert finding.affected_controls == ("SC-28", "SC-13")
        assert finding.is_auto_remediable is True
        assert finding.resource_name == "stlogs"
        assert finding.detected_at == FIXED_NOW
        assert finding.control_family == "SC"

    def test_scanner_extra_controls_appended_after_rule_controls(self, classifier):
        finding = classifier.classify(RawObservation(
            resource_id=STORAGE_ID, rule_id="encryption-at-rest", controls=("sc-13", "SC-12"),
        ))
        assert finding.affected_controls == ("SC-28", "SC-13", "SC-12")

    def test_id_is_stable_across_scans(self, classifier):
        raw = RawObservation(resource_id=STORAGE_ID, rule_id="encryption-at-rest")
        first = classifier.classify(raw)
        second = classifier.classify(RawObservation(
            resource_id=STORAGE_ID.upper(), rule_id="encryption-at-rest",
        ))
        assert first.id == second.id == finding_id(STORAGE_ID, "encryption-at-rest")
        assert first.id.startswith("FND-") and len(first.id) == 20

    def test_unknown_rule_with_declared_severity(self, classifier):
        finding = classifier.classify(RawObservation(
            resource_id=STORAGE_ID, rule_id="custom-check", controls=("CM-6",), severity="low",
        ))
        assert finding.severity is Severity.LOW
        assert finding.is_auto_remediable is False
        assert finding.title == "custom-check"

    def test_unknown_rule_without_controls_rejected(self, classifier):
        with pytest.raises(ValidationError) as exc_info:
            classifier.classify(RawObservation(resource_id=STORAGE_ID, rule_id="nope"))
        assert exc_info.value.valid_values

    def test_classify_many_drops_duplicates(self, classifier):
        raw = RawObservation(resource_id=STORAGE_ID, rule_id="encryption-at-rest")
        assert len(classifier.classify_many([raw, raw])) == 1


class TestRawObservation:
    def test_from_dict(self):
        raw = RawObservation.from_dict({
            "resourceId": STORAGE_ID, "ruleId": "backups-enabled",
            "detectedAt": "2025-01-02T03:04:05Z", "config": {"sku": "Standard"},
        })
        assert raw.detected_at.year == 2025
        assert raw.config == {"sku": "Standard"}

    def test_from_dict_requires_ids(self):
        with pytest.raises(ValidationError):
            RawObservation.from_dict({"ruleId": "backups-enabled"})


class TestFindingModel:
    def test_requires_at_least_one_control(self, make_finding):
        with pytest.raises(ValidationError):
            make_finding(controls=())

    def test_rejects_malformed_control(self, make_finding):
        with pytest.raises(ValidationError):
            make_finding(controls=("SC7",))

    def test_enhancement_control_accepted(self, make_finding):
        assert make_finding(controls=("ia-2(1)",)).affected_controls == ("IA-2(1)",)

    def test_reclassified_is_new_version(self, make_finding):
        original = make_finding(fid="FND-abc", severity=Severity.HIGH)
        updated = original.reclassified("Low")
        assert original.severity is Severity.HIGH
        assert updated.id == "FND-abc-v2"
        assert updated.severity is Severity.LOW
        assert updated.reclassified(Severity.MEDIUM).id == "FND-abc-v3"

    def test_round_trip_through_dict(self, make_finding):
        finding = make_finding()
        assert Finding.from_dict(finding.to_dict()) == finding

    def test_severity_ordering(self):
        assert Severity.CRITICAL > Severity.HIGH > Severity.MEDIUM
        assert Severity.INFORMATIONAL.bucket is Severity.LOW
        assert Severity.CRITICAL.risk_weight == 4
        assert Severity.INFORMATIONAL.risk_weight == 0

    def test_severity_parse_rejects_unknown(self):
        with pytest.raises(ValidationError) as exc_info:
            Severity.parse("urgent")
        assert "Critical" in exc_info.value.valid_values
