#!/usr/bin/env python3
# CUI // SP-CTI
"""Tests for atoengine.compliance.assessment_orchestrator."""

import queue
import threading

import pytest
from conftest import FIXED_NOW, SUB, SUBNET_ID, VM_ID, StubScanner, sample_feeds

from atoengine.compliance.assessment_orchestrator import AssessmentOrchestrator, base_control
from atoengine.compliance.finding_classifier import FindingClassifier, RawObservation
from atoengine.compliance.scanner import ScanFeed
from atoengine.db.assessment_store import AssessmentStore
from atoengine.resilience.errors import (
    AssessmentCancelledError,
    UpstreamUnavailableError,
    ValidationError,
)


@pytest.fixture
def classifier():
    return FindingClassifier.from_catalog(clock=lambda: FIXED_NOW)


@pytest.fixture
def orchestrator(scanner, classifier, config):
    return AssessmentOrchestrator(scanner, classifier, config)


class TestRunAssessment:
    def test_scores_and_counts(self, orchestrator):
        assessment = orchestrator.run_assessment(SUB)
        assert assessment.family_scores == {"AC": 87.5, "SC": 40.0, "AU": 100.0}
        assert assessment.overall_compliance_score == 75.83
        assert assessment.grade == "B"
        assert assessment.status == "Partially Compliant"
        assert assessment.total_findings == 3
        assert assessment.critical_findings == 1
        assert assessment.high_findings == 2
        assert assessment.end_time >= assessment.start_time

    def test_families_in_configured_order(self, orchestrator):
        assessment = orchestrator.run_assessment(SUB)
        assert list(assessment.control_family_results) == ["AC", "SC", "AU"]
        assert assessment.control_family_results["AC"].family_name == "Access Control"

    def test_risk_profile_and_summary(self, orchestrator):
        assessment = orchestrator.run_assessment(SUB)
        assert assessment.risk_profile.risk_level == "Critical"
        assert assessment.risk_profile.risk_score == 25.0
        assert assessment.risk_profile.top_risks == ("SC: 40.0% compliant",)
        assert assessment.executive_summary == (
            "ATO Compliance Assessment completed with 75.8% compliance. "
            "Found 1 critical, 2 high, 0 medium, and 0 low severity findings. "
            "Risk level: Critical"
        )

    def test_resource_group_forwarded_to_scanner(self, orchestrator, scanner):
        orchestrator.run_assessment(SUB, resource_group="rg-app")
        assert sorted(c[1] for c in scanner.calls) == ["AC", "AU", "SC"]
        assert all(c[2] == "rg-app" for c in scanner.calls)

    def test_latest_is_cached(self, orchestrator):
        assert orchestrator.latest(SUB) is None
        assessment = orchestrator.run_assessment(SUB)
        assert orchestrator.latest(SUB) is assessment

    def test_latest_falls_back_to_store(self, scanner, classifier, config, tmp_db):
        store = AssessmentStore(tmp_db)
        try:
            first = AssessmentOrchestrator(scanner, classifier, config, store=store)
            assessment = first.run_assessment(SUB)
            second = AssessmentOrchestrator(scanner, classifier, config, store=store)
            loaded = second.latest(SUB)
            assert loaded.assessment_id == assessment.assessment_id
            assert loaded.overall_compliance_score == 75.83
        finally:
            store.close()

    def test_rejects_non_guid_subscription(self, orchestrator):
        with pytest.raises(ValidationError):
            orchestrator.run_assessment("production")

    def test_rejects_non_positive_timeout(self, orchestrator):
        with pytest.raises(ValidationError):
            orchestrator.run_assessment(SUB, timeout=0)


class TestFindingMerge:
    def test_duplicate_across_families_stays_with_first(self, classifier, config):
        nsg = RawObservation(resource_id=SUBNET_ID, rule_id="nsg-missing")
        feeds = sample_feeds()
        feeds["AC"] = ScanFeed(observations=(nsg,))
        orchestrator = AssessmentOrchestrator(StubScanner(feeds), classifier, config)
        assessment = orchestrator.run_assessment(SUB)
        ac_ids = {f.id for f in assessment.control_family_results["AC"].findings}
        sc_ids = {f.id for f in assessment.control_family_results["SC"].findings}
        assert ac_ids and not ac_ids & sc_ids
        assert assessment.total_findings == 2

    def test_unclassifiable_observation_skipped(self, classifier, config):
        feeds = sample_feeds()
        feeds["AU"] = ScanFeed(
            observations=(RawObservation(resource_id=VM_ID, rule_id="mystery-rule"),),
            controls_evaluated=("AU-2",),
        )
        orchestrator = AssessmentOrchestrator(StubScanner(feeds), classifier, config)
        assessment = orchestrator.run_assessment(SUB)
        assert assessment.control_family_results["AU"].findings == ()
        assert assessment.control_family_results["AU"].compliance_score == 100.0

    def test_enhancements_count_against_base_control(self):
        assert base_control("AC-2(7)") == "AC-2"
        assert base_control("SC-28") == "SC-28"


class TestProgress:
    def test_one_update_per_family_on_queue(self, orchestrator):
        updates = queue.Queue()
        assessment = orchestrator.run_assessment(SUB, progress=updates)
        received = [updates.get_nowait() for _ in range(updates.qsize())]
        assert len(received) == 3
        assert {u.control_family for u in received} == {"AC", "SC", "AU"}
        assert [u.completed_families for u in received] == [1, 2, 3]
        assert received[-1].percent_complete == 100.0
        assert all(u.assessment_id == assessment.assessment_id for u in received)

    def test_full_queue_drops_updates(self, orchestrator):
        updates = queue.Queue(maxsize=1)
        orchestrator.run_assessment(SUB, progress=updates)
        assert updates.qsize() == 1

    def test_failing_callback_does_not_stop_scan(self, orchestrator):
        def _boom(update):
            raise RuntimeError("display closed")

        assessment = orchestrator.run_assessment(SUB, progress=_boom)
        assert assessment.total_findings == 3


class TestCancellationAndFailure:
    def test_cancel_before_start(self, orchestrator):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(AssessmentCancelledError) as exc_info:
            orchestrator.run_assessment(SUB, cancel_event=cancel)
        assert exc_info.value.completed_families == []
        assert orchestrator.latest(SUB) is None

    def test_cancel_mid_scan_stores_nothing(self, orchestrator):
        cancel = threading.Event()
        with pytest.raises(AssessmentCancelledError) as exc_info:
            orchestrator.run_assessment(SUB, progress=lambda u: cancel.set(), cancel_event=cancel)
        assert exc_info.value.completed_families
        assert orchestrator.latest(SUB) is None

    def test_timeout_raises_retryable_error(self, classifier, config):
        gate = threading.Event()
        orchestrator = AssessmentOrchestrator(
            StubScanner(sample_feeds(), gate=gate), classifier, config,
        )
        try:
            with pytest.raises(UpstreamUnavailableError) as exc_info:
                orchestrator.run_assessment(SUB, timeout=0.2)
            assert exc_info.value.retryable is True
            assert "timed out" in exc_info.value.message
        finally:
            gate.set()
        assert orchestrator.latest(SUB) is None

    def test_scanner_exception_wrapped(self, classifier, config):
        scanner = StubScanner(sample_feeds(), errors={"SC": RuntimeError("throttled")})
        orchestrator = AssessmentOrchestrator(scanner, classifier, config)
        with pytest.raises(UpstreamUnavailableError) as exc_info:
            orchestrator.run_assessment(SUB)
        assert "SC" in exc_info.value.message
        assert orchestrator.latest(SUB) is None
