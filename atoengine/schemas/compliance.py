#!/usr/bin/env python3
# CUI // SP-CTI
"""Assessment schema models: Severity, Finding, ControlFamilyResult, Assessment.

Findings and assessments are frozen dataclasses. An Assessment is built once
per scan after every family has completed and is safe to share between
threads afterwards.
"""

import re
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Protocol, Tuple

from atoengine.compat.datetime_utils import (
    ensure_utc,
    format_duration,
    from_iso,
    to_iso,
    utc_now,
)
from atoengine.compliance.scoring import (
    display_score,
    grade_for_score,
    score_family,
    score_overall,
    status_for_score,
)
from atoengine.resilience.errors import NotFoundError, ValidationError
from atoengine.resilience.result import Err, Ok, Result

CONTROL_ID_RE = re.compile(r"^[A-Z]{2}-\d+(\(\d+\))?$")
_VERSION_SUFFIX_RE = re.compile(r"^(?P<base>.+)-v(?P<n>\d+)$")


class Severity(Enum):
    """Finding severity, totally ordered (Critical highest)."""

    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"
    INFORMATIONAL = "Informational"

    @property
    def rank(self) -> int:
        """4 for Critical down to 0 for Informational."""
        return _RANK[self]

    @property
    def risk_weight(self) -> int:
        return _RANK[self]

    @property
    def bucket(self) -> "Severity":
        """Priority bucket used for plans and milestones (Informational -> Low)."""
        return Severity.LOW if self is Severity.INFORMATIONAL else self

    @classmethod
    def parse(cls, value) -> "Severity":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        for member in cls:
            if member.value.lower() == text or member.name.lower() == text:
                return member
        raise ValidationError(
            f"Unknown severity '{value}'",
            valid_values=[m.value for m in cls],
        )

    def __lt__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank


_RANK = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
    Severity.INFORMATIONAL: 0,
}

SEVERITIES_DESC: Tuple[Severity, ...] = (
    Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW,
    Severity.INFORMATIONAL,
)


def control_family_of(control_id: str) -> str:
    return control_id.split("-", 1)[0].upper()


def normalize_controls(controls) -> Tuple[str, ...]:
    """Upper-case, trim and de-duplicate control ids preserving order."""
    seen = []
    for control in controls or ():
        cid = str(control).strip().upper()
        if cid and cid not in seen:
            seen.append(cid)
    return tuple(seen)


@dataclass(frozen=True)
class Finding:
    """A detected control gap on one resource."""

    id: str
    title: str
    severity: Severity
    resource_id: str
    affected_controls: Tuple[str, ...]
    rule_id: str
    detected_at: datetime
    description: str = ""
    resource_type: str = ""
    resource_name: str = ""
    is_auto_remediable: bool = False
    recommendation: str = ""
    remediation_guidance: str = ""
    compliance_status: str = "NonCompliant"

    def __post_init__(self):
        object.__setattr__(self, "severity", Severity.parse(self.severity))
        controls = normalize_controls(self.affected_controls)
        if not controls:
            raise ValidationError(
                f"Finding '{self.id}' has no affected controls",
                hint="Every finding must map to at least one control id (e.g. AC-2)",
            )
        bad = [c for c in controls if not CONTROL_ID_RE.match(c)]
        if bad:
            raise ValidationError(
                f"Invalid control id(s) on finding '{self.id}': {', '.join(bad)}",
                hint="Control ids look like 'AC-2' or 'AC-2(1)'",
            )
        object.__setattr__(self, "affected_controls", controls)
        if not self.id:
            raise ValidationError("Finding id is required")
        if not self.resource_id:
            raise ValidationError(f"Finding '{self.id}' has no resource id")
        object.__setattr__(self, "detected_at", ensure_utc(self.detected_at))

    @property
    def control_family(self) -> str:
        return control_family_of(self.affected_controls[0])

    def reclassified(self, severity) -> "Finding":
        """Return a new Finding version with a different severity.

        The original is untouched; the new one gets a ``-vN`` id suffix.
        """
        new_severity = Severity.parse(severity)
        match = _VERSION_SUFFIX_RE.match(self.id)
        if match:
            new_id = f"{match['base']}-v{int(match['n']) + 1}"
        else:
            new_id = f"{self.id}-v2"
        return replace(self, id=new_id, severity=new_severity)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "severity": self.severity.value,
            "resourceId": self.resource_id,
            "resourceType": self.resource_type,
            "resourceName": self.resource_name,
            "affectedControls": list(self.affected_controls),
            "controlFamily": self.control_family,
            "isAutoRemediable": self.is_auto_remediable,
            "recommendation": self.recommendation,
            "remediationGuidance": self.remediation_guidance,
            "complianceStatus": self.compliance_status,
            "detectedAt": to_iso(self.detected_at),
            "ruleId": self.rule_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Finding":
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            description=data.get("description", ""),
            severity=Severity.parse(data.get("severity")),
            resource_id=data.get("resourceId", ""),
            resource_type=data.get("resourceType", ""),
            resource_name=data.get("resourceName", ""),
            affected_controls=tuple(data.get("affectedControls") or ()),
            is_auto_remediable=bool(data.get("isAutoRemediable", False)),
            recommendation=data.get("recommendation", ""),
            remediation_guidance=data.get("remediationGuidance", ""),
            compliance_status=data.get("complianceStatus", "NonCompliant"),
            detected_at=from_iso(data.get("detectedAt")) or utc_now(),
            rule_id=data.get("ruleId", ""),
        )


@dataclass(frozen=True)
class ControlFamilyResult:
    """Pass/fail counts and findings for one control family."""

    control_family: str
    total_controls: int
    passed_controls: int
    findings: Tuple[Finding, ...] = ()
    family_name: str = ""

    def __post_init__(self):
        object.__setattr__(self, "control_family", self.control_family.upper())
        object.__setattr__(self, "findings", tuple(self.findings))
        # Range checks live in score_family.
        score_family(self.total_controls, self.passed_controls)

    @property
    def compliance_score(self) -> float:
        return score_family(self.total_controls, self.passed_controls)

    @property
    def failed_controls(self) -> int:
        return self.total_controls - self.passed_controls

    def to_dict(self) -> dict:
        return {
            "controlFamily": self.control_family,
            "familyName": self.family_name,
            "totalControls": self.total_controls,
            "passedControls": self.passed_controls,
            "failedControls": self.failed_controls,
            "complianceScore": round(self.compliance_score, 2),
            "findings": [f.to_dict() for f in self.findings],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ControlFamilyResult":
        return cls(
            control_family=data["controlFamily"],
            family_name=data.get("familyName", ""),
            total_controls=int(data.get("totalControls", 0)),
            passed_controls=int(data.get("passedControls", 0)),
            findings=tuple(Finding.from_dict(f) for f in data.get("findings", [])),
        )


@dataclass(frozen=True)
class RiskProfile:
    risk_level: str
    risk_score: float
    top_risks: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "riskLevel": self.risk_level,
            "riskScore": self.risk_score,
            "topRisks": list(self.top_risks),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RiskProfile":
        return cls(
            risk_level=data.get("riskLevel", "Unknown"),
            risk_score=float(data.get("riskScore", 0.0)),
            top_risks=tuple(data.get("topRisks", ())),
        )


@dataclass(frozen=True)
class Assessment:
    """Immutable snapshot of one completed scan."""

    assessment_id: str
    subscription_id: str
    start_time: datetime
    end_time: datetime
    control_family_results: Mapping[str, ControlFamilyResult]
    resource_group: Optional[str] = None
    executive_summary: str = ""
    risk_profile: Optional[RiskProfile] = None

    def __post_init__(self):
        object.__setattr__(self, "start_time", ensure_utc(self.start_time))
        object.__setattr__(self, "end_time", ensure_utc(self.end_time))
        if self.end_time < self.start_time:
            raise ValidationError("Assessment end time precedes start time")
        object.__setattr__(
            self, "control_family_results",
            MappingProxyType(dict(self.control_family_results)),
        )

    # -- derived values ---------------------------------------------------
    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    @property
    def overall_compliance_score(self) -> float:
        return score_overall(
            [r.compliance_score for r in self.control_family_results.values()]
        )

    @property
    def display_score(self) -> float:
        return display_score(self.overall_compliance_score)

    @property
    def grade(self) -> str:
        return grade_for_score(self.overall_compliance_score)

    @property
    def status(self) -> str:
        return status_for_score(self.overall_compliance_score)

    def all_findings(self) -> List[Finding]:
        findings: List[Finding] = []
        for result in self.control_family_results.values():
            findings.extend(result.findings)
        return findings

    def _count(self, severity: Severity) -> int:
        return sum(1 for f in self.all_findings() if f.severity is severity)

    @property
    def total_findings(self) -> int:
        return len(self.all_findings())

    @property
    def critical_findings(self) -> int:
        return self._count(Severity.CRITICAL)

    @property
    def high_findings(self) -> int:
        return self._count(Severity.HIGH)

    @property
    def medium_findings(self) -> int:
        return self._count(Severity.MEDIUM)

    @property
    def low_findings(self) -> int:
        return self._count(Severity.LOW)

    @property
    def informational_findings(self) -> int:
        return self._count(Severity.INFORMATIONAL)

    # AssessmentView accessors
    @property
    def family_scores(self) -> Dict[str, float]:
        return {k: r.compliance_score for k, r in self.control_family_results.items()}

    def find_finding(self, finding_id: str) -> Result:
        for finding in self.all_findings():
            if finding.id == finding_id:
                return Ok(finding)
        return Err(NotFoundError("Finding", finding_id))

    def with_summary(self, executive_summary: str, risk_profile: RiskProfile) -> "Assessment":
        return replace(self, executive_summary=executive_summary, risk_profile=risk_profile)

    def to_dict(self, include_findings: bool = True) -> dict:
        families = {}
        for code, result in self.control_family_results.items():
            data = result.to_dict()
            if not include_findings:
                data.pop("findings")
                data["findingCount"] = len(result.findings)
            families[code] = data
        return {
            "assessmentId": self.assessment_id,
            "subscriptionId": self.subscription_id,
            "resourceGroup": self.resource_group,
            "startTime": to_iso(self.start_time),
            "endTime": to_iso(self.end_time),
            "duration": format_duration(self.duration),
            "overallComplianceScore": self.overall_compliance_score,
            "grade": self.grade,
            "status": self.status,
            "totalFindings": self.total_findings,
            "criticalFindings": self.critical_findings,
            "highFindings": self.high_findings,
            "mediumFindings": self.medium_findings,
            "lowFindings": self.low_findings,
            "informationalFindings": self.informational_findings,
            "controlFamilyResults": families,
            "executiveSummary": self.executive_summary,
            "riskProfile": self.risk_profile.to_dict() if self.risk_profile else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Assessment":
        families = data.get("controlFamilyResults", {})
        risk = data.get("riskProfile")
        return cls(
            assessment_id=data["assessmentId"],
            subscription_id=data["subscriptionId"],
            resource_group=data.get("resourceGroup"),
            start_time=from_iso(data["startTime"]),
            end_time=from_iso(data["endTime"]),
            control_family_results={
                code: ControlFamilyResult.from_dict(r) for code, r in families.items()
            },
            executive_summary=data.get("executiveSummary", ""),
            risk_profile=RiskProfile.from_dict(risk) if risk else None,
        )


class AssessmentView(Protocol):
    """Read-only view of an assessment used by risk and hardening analysis."""

    subscription_id: str
    control_family_results: Mapping[str, ControlFamilyResult]

    def all_findings(self) -> List[Finding]:
        ...


@dataclass(frozen=True)
class AssessmentProgress:
    """One progress update, pushed after each family completes."""

    assessment_id: str
    control_family: str
    completed_families: int
    total_families: int
    findings_in_family: int
    family_score: float
    timestamp: Optional[datetime] = None

    @property
    def percent_complete(self) -> float:
        if self.total_families == 0:
            return 100.0
        return round(100.0 * self.completed_families / self.total_families, 1)

    def to_dict(self) -> dict:
        return {
            "assessmentId": self.assessment_id,
            "controlFamily": self.control_family,
            "completedFamilies": self.completed_families,
            "totalFamilies": self.total_families,
            "percentComplete": self.percent_complete,
            "findingsInFamily": self.findings_in_family,
            "familyScore": round(self.family_score, 2),
            "timestamp": to_iso(self.timestamp),
        }
