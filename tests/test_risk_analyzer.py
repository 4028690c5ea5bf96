#!/usr/bin/env python3
# CUI // SP-CTI
"""Tests for atoengine.compliance.risk_analyzer -- profile, categories, timeline."""

from datetime import date, timedelta

import pytest
from conftest import FIXED_NOW, SUB

from atoengine.compliance.risk_analyzer import (
    RISK_CATEGORY_FAMILIES,
    assess_risk,
    build_risk_profile,
    build_timeline,
    risk_level_for_counts,
    risk_level_for_score,
)
from atoengine.db.assessment_store import AssessmentStore
from atoengine.resilience.errors import ValidationError
from atoengine.schemas.compliance import Assessment, ControlFamilyResult


def _assessment(aid, results, day_offset=0):
    start = FIXED_NOW + timedelta(days=day_offset)
    return Assessment(
        assessment_id=aid, subscription_id=SUB,
        start_time=start, end_time=start + timedelta(minutes=5),
        control_family_results=results,
    )


@pytest.fixture
def assessment(assessed_engine):
    return assessed_engine.get_latest_assessment(SUB).value


class TestRiskProfile:
    @pytest.mark.parametrize("counts,level", [
        ((1, 0, 0), "Critical"),
        ((0, 6, 0), "High"),
        ((0, 5, 11), "Medium"),
        ((0, 5, 10), "Low"),
    ])
    def test_level_from_counts(self, counts, level):
        assert risk_level_for_counts(*counts) == level

    def test_profile_of_sample(self, assessment):
        profile = build_risk_profile(assessment)
        assert profile.risk_level == "Critical"
        assert profile.risk_score == 25.0
        assert profile.top_risks == ("SC: 40.0% compliant",)


class TestAssessRisk:
    def test_eight_categories(self, assessment):
        risk = assess_risk(assessment, now=FIXED_NOW)
        assert list(risk.risk_categories) == list(RISK_CATEGORY_FAMILIES)
        assert risk.risk_categories["Data Protection"].risk_score == 6.0
        assert risk.risk_categories["Data Protection"].risk_level == "High"
        assert risk.risk_categories["Access Control"].risk_score == 1.25
        assert risk.risk_categories["Business Continuity"].risk_score == 0.0
        assert risk.risk_trend == "Stable"
        assert risk.top_risks == ()
        assert risk.source_assessment_id == assessment.assessment_id

    def test_vulnerabilities_ordered_by_severity(self, assessment):
        category = assess_risk(assessment).risk_categories["Data Protection"]
        assert category.vulnerabilities[0] == "Storage encryption at rest disabled (SC-28)"
        assert category.mitigations[0] == "Enable encryption at rest"

    def test_top_risks_and_mitigations(self):
        weak = _assessment("a-1", {"SC": ControlFamilyResult("SC", 10, 0)})
        risk = assess_risk(weak, now=FIXED_NOW)
        assert risk.top_risks == ("Data Protection: Critical", "Network Security: Critical")
        assert risk.mitigation_recommendations[0].recommendation == (
            "Implement controls to address Data Protection: Critical"
        )
        assert risk.executive_summary.endswith("Assessment completed at 2025-03-01 12:00:00 UTC.")

    def test_trend_against_previous(self):
        previous = _assessment("a-1", {"AC": ControlFamilyResult("AC", 10, 9)})
        current = _assessment("a-2", {"AC": ControlFamilyResult("AC", 10, 6)}, day_offset=1)
        assert assess_risk(current, previous).risk_trend == "Declining"
        assert assess_risk(previous, current).risk_trend == "Improving"

    @pytest.mark.parametrize("score,level", [
        (8.0, "Critical"), (6.0, "High"), (4.0, "Medium"), (2.0, "Low"), (1.99, "Minimal"),
    ])
    def test_level_for_score(self, score, level):
        assert risk_level_for_score(score) == level

    def test_engine_uses_stored_previous(self, engine):
        engine.store.save(_assessment("a-old", {"AC": ControlFamilyResult("AC", 10, 10)}))
        engine.run_assessment(SUB)
        assert engine.assess_risk(SUB).risk_trend == "Declining"


class TestTimeline:
    @pytest.fixture
    def store(self, make_finding):
        s = AssessmentStore()
        f1 = make_finding("FND-1", controls=("AC-4",))
        f2 = make_finding("FND-2", controls=("AC-5",))
        s.save(_assessment("a-0", {"AC": ControlFamilyResult("AC", 10, 5, (f1, f2))}))
        s.save(_assessment("a-2", {"AC": ControlFamilyResult("AC", 10, 9, (f1,))}, day_offset=2))
        yield s
        s.close()

    def test_daily_points_skip_days_before_history(self, store):
        timeline = build_timeline(SUB, date(2025, 2, 28), date(2025, 3, 4), store)
        assert [p.day for p in timeline.data_points] == [
            date(2025, 3, 1), date(2025, 3, 2), date(2025, 3, 3), date(2025, 3, 4),
        ]
        assert [p.compliance_score for p in timeline.data_points] == [50.0, 50.0, 90.0, 90.0]
        assert [p.remediated_findings for p in timeline.data_points] == [0, 0, 1, 0]

    def test_trends_events_insights(self, store):
        timeline = build_timeline(SUB, date(2025, 3, 1), date(2025, 3, 4), store)
        assert timeline.trends.compliance_score_trend == "Improving"
        assert timeline.trends.findings_trend == "Decreasing"
        assert timeline.trends.remediation_rate == "Moderate"
        assert "Compliance score improved by 40.0% on 2025-03-03" in timeline.significant_events
        assert "Achieved 90.0% compliance (high compliance milestone)" in timeline.significant_events
        assert timeline.insights[0] == (
            "Compliance score improved by 40.0% over the period (from 50.0% to 90.0%)"
        )

    def test_empty_history(self, store):
        timeline = build_timeline(SUB, date(2025, 1, 1), date(2025, 1, 5), store)
        assert timeline.data_points == ()
        assert timeline.insights == ("No historical data available for trend analysis",)
        assert timeline.trends.compliance_score_trend == "Stable"

    def test_end_before_start(self, store):
        with pytest.raises(ValidationError):
            build_timeline(SUB, date(2025, 3, 4), date(2025, 3, 1), store)

    def test_range_limit(self, store):
        with pytest.raises(ValidationError):
            build_timeline(SUB, date(2024, 1, 1), date(2025, 1, 2), store)
