#!/usr/bin/env python3
# CUI // SP-CTI
"""Finding Classifier -- turns raw scanner observations into Findings.

Classification is rule-driven: each scanner rule id maps to a severity, a
list of NIST 800-53 controls and an auto-remediation flag. The rule catalog
is ``context/compliance/classification_rules.json``.

Finding ids are a stable hash of resource id and rule id, so re-scanning the
same resource yields the same id and severity and two scans can be diffed.

Usage:
    classifier = FindingClassifier.from_catalog()
    finding = classifier.classify(RawObservation(
        resource_id="/subscriptions/.../storageAccounts/logs",
        resource_type="Microsoft.Storage/storageAccounts",
        rule_id="encryption-at-rest",
    ))
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from atoengine.compat.datetime_utils import from_iso, utc_now
from atoengine.resilience.errors import ConfigurationError, ValidationError
from atoengine.schemas.compliance import Finding, Severity, normalize_controls

logger = logging.getLogger("atoengine.compliance.finding_classifier")

BASE_DIR = Path(__file__).resolve().parent.parent.parent
RULES_PATH = BASE_DIR / "context" / "compliance" / "classification_rules.json"


def finding_id(resource_id: str, rule_id: str) -> str:
    """``FND-`` + first 16 hex chars of sha256(lower(resource) | rule)."""
    digest = hashlib.sha256(
        f"{resource_id.lower()}|{rule_id}".encode("utf-8")
    ).hexdigest()
    return f"FND-{digest[:16]}"


@dataclass(frozen=True)
class RawObservation:
    """One issue reported by a resource scanner, before classification."""

    resource_id: str
    rule_id: str
    resource_type: str = ""
    resource_name: str = ""
    title: Optional[str] = None
    description: Optional[str] = None
    controls: Tuple[str, ...] = ()
    severity: Optional[str] = None
    config: Dict[str, Any] = field(default_factory=dict)
    detected_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: dict) -> "RawObservation":
        if not data.get("resourceId") or not data.get("ruleId"):
            raise ValidationError(
                "Scan observation requires 'resourceId' and 'ruleId'",
                valid_values=["resourceId", "ruleId"],
            )
        return cls(
            resource_id=data["resourceId"],
            rule_id=data["ruleId"],
            resource_type=data.get("resourceType", ""),
            resource_name=data.get("resourceName", ""),
            title=data.get("title"),
            description=data.get("description"),
            controls=tuple(data.get("controls") or ()),
            severity=data.get("severity"),
            config=dict(data.get("config") or {}),
            detected_at=from_iso(data.get("detectedAt")),
        )


@dataclass(frozen=True)
class ClassificationRule:
    rule_id: str
    title: str
    severity: Severity
    controls: Tuple[str, ...]
    auto_remediable: bool = False
    recommendation: str = ""
    guidance: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "ClassificationRule":
        controls = normalize_controls(data.get("controls"))
        if not controls:
            raise ConfigurationError(
                f"Classification rule '{data.get('rule_id')}' has no controls",
                config_key="classification_rules",
            )
        return cls(
            rule_id=data["rule_id"],
            title=data.get("title", data["rule_id"]),
            severity=Severity.parse(data.get("severity")),
            controls=controls,
            auto_remediable=bool(data.get("auto_remediable", False)),
            recommendation=data.get("recommendation", ""),
            guidance=data.get("guidance", ""),
        )


def load_rules(path: Optional[Path] = None) -> Dict[str, ClassificationRule]:
    rules_path = Path(path or RULES_PATH)
    if not rules_path.exists():
        raise ConfigurationError(
            f"Classification rules not found: {rules_path}",
            config_key="classification_rules",
        )
    with open(rules_path, "r", encoding="utf-8") as f:
        data = json.load(f)
    rules = {}
    for entry in data.get("rules", []):
        rule = ClassificationRule.from_dict(entry)
        rules[rule.rule_id] = rule
    logger.debug("Loaded %d classification rules from %s", len(rules), rules_path)
    return rules


class FindingClassifier:
    """Assigns severity, controls and auto-remediability to observations."""

    def __init__(
        self,
        rules: Optional[Dict[str, ClassificationRule]] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._rules = dict(rules or {})
        self._clock = clock

    @classmethod
    def from_catalog(cls, path: Optional[Path] = None, **kwargs) -> "FindingClassifier":
        return cls(load_rules(path), **kwargs)

    @property
    def rule_ids(self) -> List[str]:
        return sorted(self._rules)

    def rule_for(self, rule_id: str) -> Optional[ClassificationRule]:
        return self._rules.get(rule_id)

    def classify(self, raw: RawObservation) -> Finding:
        if not raw.resource_id or not raw.rule_id:
            raise ValidationError("Observation requires a resource id and a rule id")

        rule = self._rules.get(raw.rule_id)
        if rule is not None:
            # Rule controls first; scanner-declared extras follow.
            controls = normalize_controls(tuple(rule.controls) + tuple(raw.controls))
            severity = rule.severity
            auto = rule.auto_remediable
            title = raw.title or rule.title
            recommendation = rule.recommendation
            guidance = rule.guidance
        else:
            controls = normalize_controls(raw.controls)
            if not controls or not raw.severity:
                raise ValidationError(
                    f"No classification rule for '{raw.rule_id}' and the scanner "
                    "did not declare both controls and severity",
                    hint="Add the rule to classification_rules.json",
                    valid_values=self.rule_ids[:10],
                )
            severity = Severity.parse(raw.severity)
            auto = False
            title = raw.title or raw.rule_id
            recommendation = ""
            guidance = ""

        return Finding(
            id=finding_id(raw.resource_id, raw.rule_id),
            title=title,
            description=raw.description or title,
            severity=severity,
            resource_id=raw.resource_id,
            resource_type=raw.resource_type,
            resource_name=raw.resource_name or raw.resource_id.rsplit("/", 1)[-1],
            affected_controls=controls,
            is_auto_remediable=auto,
            recommendation=recommendation,
            remediation_guidance=guidance or recommendation,
            compliance_status="NonCompliant",
            detected_at=raw.detected_at or self._clock(),
            rule_id=raw.rule_id,
        )

    def classify_many(self, raws: Iterable[RawObservation]) -> List[Finding]:
        """Classify a batch; duplicate (resource, rule) pairs keep the first."""
        findings: List[Finding] = []
        seen = set()
        for raw in raws:
            finding = self.classify(raw)
            if finding.id in seen:
                logger.debug("Duplicate observation %s on %s skipped",
                             raw.rule_id, raw.resource_id)
                continue
            seen.add(finding.id)
            findings.append(finding)
        return findings
