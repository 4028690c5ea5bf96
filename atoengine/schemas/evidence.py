#!/usr/bin/env python3
# CUI // SP-CTI
"""Evidence and POA&M schema models."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple

from atoengine.compat.datetime_utils import ensure_utc, format_duration, hours, to_iso
from atoengine.resilience.errors import ValidationError
from atoengine.schemas.remediation import Milestone


@dataclass(frozen=True)
class EvidenceItem:
    """One artifact supporting one control."""

    evidence_id: str
    control_id: str
    evidence_type: str
    resource_id: str
    collected_at: datetime
    data: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "collected_at", ensure_utc(self.collected_at))
        # Insertion order is kept; serializers rely on it.
        object.__setattr__(self, "data", MappingProxyType(dict(self.data)))

    def to_dict(self) -> dict:
        return {
            "evidenceId": self.evidence_id,
            "controlId": self.control_id,
            "evidenceType": self.evidence_type,
            "resourceId": self.resource_id,
            "collectedAt": to_iso(self.collected_at),
            "data": dict(self.data),
        }


@dataclass(frozen=True)
class EvidencePackage:
    package_id: str
    subscription_id: str
    control_family: str
    collection_date: datetime
    collection_duration: timedelta
    evidence: Tuple[EvidenceItem, ...]
    completeness_score: float
    attestation_statement: str = ""
    summary: str = ""
    warnings: Tuple[str, ...] = ()
    error: Optional[str] = None
    collected_by: str = "system"

    def __post_init__(self):
        object.__setattr__(self, "evidence", tuple(self.evidence))
        object.__setattr__(self, "warnings", tuple(self.warnings))
        if not 0.0 <= self.completeness_score <= 100.0:
            raise ValidationError(
                f"Completeness score {self.completeness_score} is outside [0, 100]"
            )

    @property
    def total_items(self) -> int:
        return len(self.evidence)

    def to_dict(self) -> dict:
        return {
            "packageId": self.package_id,
            "subscriptionId": self.subscription_id,
            "controlFamily": self.control_family,
            "collectionDate": to_iso(self.collection_date),
            "collectionDuration": format_duration(self.collection_duration),
            "evidence": [e.to_dict() for e in self.evidence],
            "totalItems": self.total_items,
            "completenessScore": self.completeness_score,
            "attestationStatement": self.attestation_statement,
            "summary": self.summary,
            "warnings": list(self.warnings),
            "error": self.error,
            "collectedBy": self.collected_by,
        }


@dataclass(frozen=True)
class PoamRemediation:
    description: str
    is_automated: bool
    estimated_effort: Optional[timedelta] = None
    milestone_due_date: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "isAutomated": self.is_automated,
            "estimatedEffort": format_duration(self.estimated_effort),
            "milestoneDueDate": to_iso(self.milestone_due_date),
        }


@dataclass(frozen=True)
class PoamItem:
    item_number: int
    finding_id: str
    weakness: str
    control_number: str
    severity: str
    resource_id: str
    remediation: PoamRemediation
    status: str = "Open"

    @property
    def risk_level(self) -> str:
        return self.severity

    def to_dict(self) -> dict:
        return {
            "itemNumber": self.item_number,
            "findingId": self.finding_id,
            "weakness": self.weakness,
            "controlNumber": self.control_number,
            "severity": self.severity,
            "resourceId": self.resource_id,
            "remediation": self.remediation.to_dict(),
            "status": self.status,
            "riskLevel": self.risk_level,
        }


@dataclass(frozen=True)
class PoamDocument:
    poam_id: str
    subscription_id: str
    generated_at: datetime
    priority: str
    items: Tuple[PoamItem, ...]
    control_family: Optional[str] = None
    estimated_completion: Optional[datetime] = None
    estimated_effort: timedelta = timedelta()
    projected_risk_reduction: float = 0.0
    milestones: Tuple[Milestone, ...] = ()
    status: str = "Open"
    responsible_party: str = "Platform Engineering Team"

    def _count(self, severity: str) -> int:
        return sum(1 for i in self.items if i.severity == severity)

    def summary(self) -> dict:
        return {
            "totalFindings": len(self.items),
            "criticalCount": self._count("Critical"),
            "highCount": self._count("High"),
            "mediumCount": self._count("Medium"),
            "lowCount": self._count("Low"),
            "estimatedEffort": format_duration(self.estimated_effort),
            "estimatedEffortHours": hours(self.estimated_effort),
            "projectedRiskReduction": round(self.projected_risk_reduction, 2),
        }

    def to_dict(self) -> dict:
        return {
            "poamId": self.poam_id,
            "subscriptionId": self.subscription_id,
            "controlFamily": self.control_family,
            "status": self.status,
            "priority": self.priority,
            "generatedAt": to_iso(self.generated_at),
            "estimatedCompletion": to_iso(self.estimated_completion),
            "responsibleParty": self.responsible_party,
            "summary": self.summary(),
            "milestones": [m.to_dict() for m in self.milestones],
            "poamItems": [i.to_dict() for i in self.items],
        }


@dataclass(frozen=True)
class ExportArtifact:
    """Rendered download: body, media type and suggested file name."""

    content: str
    media_type: str
    file_name: str

    def to_dict(self) -> dict:
        return {"content": self.content, "mediaType": self.media_type, "fileName": self.file_name}
