#!/usr/bin/env python3
# CUI // SP-CTI
"""Risk & Timeline Analyzer.

Three views over completed assessments:

    build_risk_profile  -- level/score/top risks stored on every Assessment
    assess_risk         -- eight business risk categories scored 0-10
    build_timeline      -- daily compliance data points with trends,
                           significant events and insights

All functions are pure over their inputs; the timeline reads history from
an AssessmentStore passed in by the caller.
"""

import logging
import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from atoengine.compat.datetime_utils import utc_now
from atoengine.resilience.errors import ValidationError
from atoengine.schemas.compliance import Assessment, AssessmentView, RiskProfile, Severity
from atoengine.schemas.risk import (
    CategoryRisk,
    ComplianceDataPoint,
    ComplianceTimeline,
    ComplianceTrends,
    RiskAssessment,
    RiskMitigation,
)

logger = logging.getLogger("atoengine.compliance.risk_analyzer")

# Risk score contribution per finding.
SEVERITY_RISK_POINTS = {
    Severity.CRITICAL: 10.0,
    Severity.HIGH: 7.5,
    Severity.MEDIUM: 5.0,
    Severity.LOW: 2.5,
    Severity.INFORMATIONAL: 0.0,
}

TOP_RISK_SCORE_THRESHOLD = 70.0
MAX_TOP_RISKS = 5

RISK_CATEGORY_FAMILIES: Dict[str, Tuple[str, ...]] = {
    "Data Protection": ("SC", "MP"),
    "Access Control": ("AC", "IA"),
    "Network Security": ("SC", "AC"),
    "Incident Response": ("IR", "AU"),
    "Business Continuity": ("CP",),
    "Compliance": ("CA", "PL", "PM", "RA"),
    "Third-Party Risk": ("SA", "PS"),
    "Configuration Management": ("CM", "SI"),
}

MAX_CATEGORY_VULNERABILITIES = 5


# ---------------------------------------------------------------------------
# Risk profile
# ---------------------------------------------------------------------------
def risk_level_for_counts(critical: int, high: int, medium: int) -> str:
    if critical > 0:
        return "Critical"
    if high > 5:
        return "High"
    if medium > 10:
        return "Medium"
    return "Low"


def build_risk_profile(view: AssessmentView) -> RiskProfile:
    """Risk profile for an assessment or any other AssessmentView."""
    counts = {s: 0 for s in Severity}
    for finding in view.all_findings():
        counts[finding.severity] += 1
    score = sum(SEVERITY_RISK_POINTS[s] * n for s, n in counts.items())
    weak = sorted(
        (
            (r.compliance_score, code)
            for code, r in view.control_family_results.items()
            if r.compliance_score < TOP_RISK_SCORE_THRESHOLD
        ),
    )[:MAX_TOP_RISKS]
    return RiskProfile(
        risk_level=risk_level_for_counts(
            counts[Severity.CRITICAL], counts[Severity.HIGH], counts[Severity.MEDIUM]
        ),
        risk_score=score,
        top_risks=tuple(f"{code}: {s:.1f}% compliant" for s, code in weak),
    )


def assessment_summary(assessment: Assessment, risk_level: str) -> str:
    return (
        f"ATO Compliance Assessment completed with "
        f"{assessment.overall_compliance_score:.1f}% compliance. "
        f"Found {assessment.critical_findings} critical, {assessment.high_findings} high, "
        f"{assessment.medium_findings} medium, and {assessment.low_findings} low "
        f"severity findings. Risk level: {risk_level}"
    )


# ---------------------------------------------------------------------------
# Risk categories
# ---------------------------------------------------------------------------
def risk_level_for_score(score: float) -> str:
    if score >= 8:
        return "Critical"
    if score >= 6:
        return "High"
    if score >= 4:
        return "Medium"
    if score >= 2:
        return "Low"
    return "Minimal"


def _category_risk(category: str, families: Sequence[str], assessment: Assessment) -> CategoryRisk:
    results = [
        assessment.control_family_results[f]
        for f in families if f in assessment.control_family_results
    ]
    if results:
        mean_score = sum(r.compliance_score for r in results) / len(results)
        score = round(min(10.0, max(0.0, (100.0 - mean_score) / 10.0)), 2)
    else:
        score = 0.0
    findings = sorted(
        (f for r in results for f in r.findings),
        key=lambda f: (-f.severity.rank, f.id),
    )
    vulnerabilities = []
    mitigations = []
    for finding in findings:
        label = f"{finding.title} ({finding.affected_controls[0]})"
        if label not in vulnerabilities:
            vulnerabilities.append(label)
        if finding.recommendation and finding.recommendation not in mitigations:
            mitigations.append(finding.recommendation)
    return CategoryRisk(
        category=category,
        risk_score=score,
        risk_level=risk_level_for_score(score),
        control_families=tuple(families),
        vulnerabilities=tuple(vulnerabilities[:MAX_CATEGORY_VULNERABILITIES]),
        mitigations=tuple(mitigations[:MAX_CATEGORY_VULNERABILITIES]),
    )


def risk_trend(current: Assessment, previous: Optional[Assessment]) -> str:
    """Risk falls when compliance rises."""
    if previous is None:
        return "Stable"
    delta = current.overall_compliance_score - previous.overall_compliance_score
    if delta > 0:
        return "Improving"
    if delta < 0:
        return "Declining"
    return "Stable"


def assess_risk(
    assessment: Assessment,
    previous: Optional[Assessment] = None,
    now: Optional[datetime] = None,
) -> RiskAssessment:
    """Score the eight risk categories for one assessment."""
    categories = {
        name: _category_risk(name, families, assessment)
        for name, families in RISK_CATEGORY_FAMILIES.items()
    }
    overall = round(sum(c.risk_score for c in categories.values()) / len(categories), 2)
    level = risk_level_for_score(overall)
    top = sorted(
        (c for c in categories.values() if c.risk_score > 7),
        key=lambda c: (-c.risk_score, c.category),
    )[:MAX_TOP_RISKS]
    top_risks = tuple(f"{c.category}: {c.risk_level}" for c in top)
    mitigations = tuple(
        RiskMitigation(
            risk=risk,
            recommendation=f"Implement controls to address {risk}",
        )
        for risk in top_risks
    )
    assessed_at = now or utc_now()
    summary = (
        f"Risk assessment identified overall risk level as {level} "
        f"with risk score {overall:.1f}/10. "
        f"Assessment completed at {assessed_at.strftime('%Y-%m-%d %H:%M:%S')} UTC."
    )
    return RiskAssessment(
        assessment_id=str(uuid.uuid4()),
        subscription_id=assessment.subscription_id,
        source_assessment_id=assessment.assessment_id,
        assessment_date=assessed_at,
        risk_categories=categories,
        overall_risk_score=overall,
        risk_level=level,
        top_risks=top_risks,
        mitigation_recommendations=mitigations,
        risk_trend=risk_trend(assessment, previous),
        executive_summary=summary,
    )


# ---------------------------------------------------------------------------
# Timeline
# ---------------------------------------------------------------------------
def _end_of_day(day: date) -> datetime:
    return datetime.combine(day, time.max, tzinfo=timezone.utc)


def _data_point(day: date, assessment: Assessment, previous: Optional[Assessment]) -> ComplianceDataPoint:
    results = assessment.control_family_results.values()
    remediated = 0
    if previous is not None and previous.assessment_id != assessment.assessment_id:
        current_ids = {f.id for f in assessment.all_findings()}
        remediated = sum(1 for f in previous.all_findings() if f.id not in current_ids)
    return ComplianceDataPoint(
        day=day,
        assessment_id=assessment.assessment_id,
        compliance_score=assessment.overall_compliance_score,
        controls_passed=sum(r.passed_controls for r in results),
        controls_failed=sum(r.failed_controls for r in results),
        active_findings=assessment.total_findings,
        critical_findings=assessment.critical_findings,
        remediated_findings=remediated,
    )


def _trends(points: Sequence[ComplianceDataPoint]) -> ComplianceTrends:
    if len(points) < 2:
        return ComplianceTrends("Stable", "Stable", "None")
    first, last = points[0], points[-1]
    delta = last.compliance_score - first.compliance_score
    score_trend = "Improving" if delta > 0 else "Declining" if delta < 0 else "Stable"
    f_delta = last.active_findings - first.active_findings
    findings_trend = "Decreasing" if f_delta < 0 else "Increasing" if f_delta > 0 else "Stable"
    remediated = sum(p.remediated_findings for p in points)
    if remediated > 50:
        rate = "High"
    elif remediated > 0:
        rate = "Moderate"
    else:
        rate = "None"
    return ComplianceTrends(score_trend, findings_trend, rate)


def significant_events(points: Sequence[ComplianceDataPoint]) -> List[str]:
    events: List[str] = []
    if len(points) < 2:
        return events
    for previous, current in zip(points, points[1:]):
        day = current.day.isoformat()
        delta = current.compliance_score - previous.compliance_score
        if delta >= 10:
            events.append(f"Compliance score improved by {delta:.1f}% on {day}")
        elif delta <= -10:
            events.append(f"Compliance score declined by {abs(delta):.1f}% on {day}")
        remediated = current.remediated_findings - previous.remediated_findings
        if remediated >= 15:
            events.append(f"{remediated} findings remediated on {day}")
        new_findings = current.active_findings - previous.active_findings
        if new_findings >= 5:
            events.append(f"{new_findings} new findings discovered on {day}")
        fixed = previous.controls_failed - current.controls_failed
        if fixed >= 8:
            events.append(f"{fixed} controls brought into compliance on {day}")
        elif fixed <= -5:
            events.append(f"{abs(fixed)} additional controls failed on {day}")

    first, last = points[0], points[-1]
    if last.compliance_score >= 90 and first.compliance_score < 90:
        events.append(
            f"Achieved {last.compliance_score:.1f}% compliance (high compliance milestone)"
        )
    overall = last.compliance_score - first.compliance_score
    if overall >= 20:
        events.append(f"Overall compliance improved by {overall:.1f}% over the period")
    elif overall <= -20:
        events.append(f"Overall compliance declined by {abs(overall):.1f}% over the period")
    return events


def timeline_insights(points: Sequence[ComplianceDataPoint], trends: ComplianceTrends) -> List[str]:
    if not points:
        return ["No historical data available for trend analysis"]
    insights: List[str] = []
    first, last = points[0], points[-1]
    delta = last.compliance_score - first.compliance_score
    if delta > 0:
        insights.append(
            f"Compliance score improved by {delta:.1f}% over the period "
            f"(from {first.compliance_score:.1f}% to {last.compliance_score:.1f}%)"
        )
    elif delta < 0:
        insights.append(
            f"Compliance score declined by {abs(delta):.1f}% over the period, "
            "immediate action recommended"
        )
    else:
        insights.append("Compliance score remained stable over the period")

    remediated = sum(p.remediated_findings for p in points)
    if remediated > 50:
        insights.append(f"Strong remediation efforts: {remediated} total findings remediated")
    elif remediated > 0:
        insights.append(
            f"Moderate remediation progress: {remediated} findings remediated, "
            "consider accelerating efforts"
        )
    else:
        insights.append("No remediation activity detected, develop and execute a remediation plan")

    controls = last.controls_passed - first.controls_passed
    if controls > 10:
        insights.append(f"{controls} additional controls brought into compliance")
    elif controls < -5:
        insights.append(f"Control compliance degraded: {abs(controls)} controls now failing")

    if len(points) > 3:
        changes = [
            abs(b.compliance_score - a.compliance_score) for a, b in zip(points, points[1:])
        ]
        average = sum(changes) / len(changes)
        if average > 8:
            insights.append("High compliance score volatility detected")
        elif average < 2:
            insights.append("Stable compliance posture maintained")

    if last.compliance_score < 70:
        insights.append("Compliance below 70%: prioritize critical findings")
    elif last.compliance_score >= 90:
        insights.append(
            f"Compliance posture at {last.compliance_score:.1f}%: focus on maintaining this level"
        )
    if len(points) >= 7 and remediated < 20:
        insights.append("Consider automated compliance monitoring and remediation")
    if trends.compliance_score_trend == "Improving":
        insights.append("Compliance trajectory is positive")
    elif trends.compliance_score_trend == "Declining":
        insights.append("Compliance is declining: review recent changes")
    return insights


def build_timeline(subscription_id: str, start: date, end: date, store) -> ComplianceTimeline:
    """Daily data points from the latest stored assessment at or before each day.

    Days before the first stored assessment have no data point.
    """
    if isinstance(start, datetime):
        start = start.date()
    if isinstance(end, datetime):
        end = end.date()
    if end < start:
        raise ValidationError("Timeline end date precedes start date")
    if (end - start).days > 366:
        raise ValidationError("Timeline range is limited to 366 days")

    history = store.list_assessments(subscription_id, until=_end_of_day(end))
    points: List[ComplianceDataPoint] = []
    idx = -1
    previous_point_assessment: Optional[Assessment] = None
    day = start
    while day <= end:
        cutoff = _end_of_day(day)
        while idx + 1 < len(history) and history[idx + 1].end_time <= cutoff:
            idx += 1
        if idx >= 0:
            current = history[idx]
            baseline = previous_point_assessment
            if baseline is None and idx > 0:
                baseline = history[idx - 1]
            points.append(_data_point(day, current, baseline))
            previous_point_assessment = current
        day += timedelta(days=1)

    trends = _trends(points)
    logger.info("Timeline for %s: %d data points (%s..%s)",
                subscription_id, len(points), start, end)
    return ComplianceTimeline(
        subscription_id=subscription_id,
        start_date=start,
        end_date=end,
        data_points=tuple(points),
        trends=trends,
        significant_events=tuple(significant_events(points)),
        insights=tuple(timeline_insights(points, trends)),
    )
