#!/usr/bin/env python3
# CUI // SP-CTI
"""Risk assessment and compliance timeline schema models."""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, Optional, Tuple

from atoengine.compat.datetime_utils import to_iso


@dataclass(frozen=True)
class CategoryRisk:
    category: str
    risk_score: float
    risk_level: str
    control_families: Tuple[str, ...] = ()
    vulnerabilities: Tuple[str, ...] = ()
    mitigations: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "riskScore": self.risk_score,
            "riskLevel": self.risk_level,
            "controlFamilies": list(self.control_families),
            "vulnerabilities": list(self.vulnerabilities),
            "mitigations": list(self.mitigations),
        }


@dataclass(frozen=True)
class RiskMitigation:
    risk: str
    recommendation: str
    priority: str = "High"
    estimated_effort_hours: float = 8.0

    def to_dict(self) -> dict:
        return {
            "risk": self.risk,
            "recommendation": self.recommendation,
            "priority": self.priority,
            "estimatedEffortHours": self.estimated_effort_hours,
        }


@dataclass(frozen=True)
class RiskAssessment:
    assessment_id: str
    subscription_id: str
    assessment_date: datetime
    risk_categories: Dict[str, CategoryRisk]
    overall_risk_score: float
    risk_level: str
    top_risks: Tuple[str, ...]
    mitigation_recommendations: Tuple[RiskMitigation, ...]
    risk_trend: str
    executive_summary: str
    source_assessment_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "assessmentId": self.assessment_id,
            "subscriptionId": self.subscription_id,
            "sourceAssessmentId": self.source_assessment_id,
            "assessmentDate": to_iso(self.assessment_date),
            "riskCategories": {k: v.to_dict() for k, v in self.risk_categories.items()},
            "overallRiskScore": self.overall_risk_score,
            "riskLevel": self.risk_level,
            "topRisks": list(self.top_risks),
            "mitigationRecommendations": [m.to_dict() for m in self.mitigation_recommendations],
            "riskTrend": self.risk_trend,
            "executiveSummary": self.executive_summary,
        }


@dataclass(frozen=True)
class ComplianceDataPoint:
    day: date
    assessment_id: str
    compliance_score: float
    controls_passed: int
    controls_failed: int
    active_findings: int
    critical_findings: int
    remediated_findings: int = 0

    def to_dict(self) -> dict:
        return {
            "date": self.day.isoformat(),
            "assessmentId": self.assessment_id,
            "complianceScore": self.compliance_score,
            "controlsPassed": self.controls_passed,
            "controlsFailed": self.controls_failed,
            "activeFindings": self.active_findings,
            "criticalFindings": self.critical_findings,
            "remediatedFindings": self.remediated_findings,
        }


@dataclass(frozen=True)
class ComplianceTrends:
    compliance_score_trend: str
    findings_trend: str
    remediation_rate: str

    def to_dict(self) -> dict:
        return {
            "complianceScoreTrend": self.compliance_score_trend,
            "findingsTrend": self.findings_trend,
            "remediationRate": self.remediation_rate,
        }


@dataclass(frozen=True)
class ComplianceTimeline:
    subscription_id: str
    start_date: date
    end_date: date
    data_points: Tuple[ComplianceDataPoint, ...]
    trends: ComplianceTrends
    significant_events: Tuple[str, ...] = ()
    insights: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "subscriptionId": self.subscription_id,
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat(),
            "dataPoints": [p.to_dict() for p in self.data_points],
            "trends": self.trends.to_dict(),
            "significantEvents": list(self.significant_events),
            "insights": list(self.insights),
        }
