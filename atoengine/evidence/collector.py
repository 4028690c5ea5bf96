#!/usr/bin/env python3
# CUI // SP-CTI
"""Evidence Collector -- gathers evidence items into auditable packages.

An ``EvidenceSource`` supplies items for one subscription and control family.
The collector validates the family against the control catalog, scores
completeness as the share of the family's controls that have at least one
evidence item, attaches warnings for thin packages, and keeps every package
in a lock-guarded registry for later download.

A failing source does not raise: the package is returned with ``error`` set,
no evidence, and a completeness score of 0.
"""

import logging
import re
import threading
import time
import uuid
from abc import ABC, abstractmethod
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from atoengine.audit.audit_logger import safe_log_event
from atoengine.compat.datetime_utils import to_iso, utc_now
from atoengine.compliance.control_catalog import ALL_FAMILIES, ControlCatalog, get_default_catalog
from atoengine.compliance.subscription_resolver import require_guid
from atoengine.config.engine_config import EngineConfig
from atoengine.resilience.errors import NotFoundError
from atoengine.resilience.result import Err, Ok, Result
from atoengine.schemas.compliance import Assessment
from atoengine.schemas.evidence import EvidenceItem, EvidencePackage

logger = logging.getLogger("atoengine.evidence.collector")

_ENHANCEMENT_RE = re.compile(r"\(\d+\)$")


class EvidenceSource(ABC):
    """Supplies evidence items for a subscription and control family."""

    @abstractmethod
    def gather(self, subscription_id: str, control_family: str) -> Iterable[EvidenceItem]:
        """``control_family`` is a family code or ``All``."""


class FindingsEvidenceSource(EvidenceSource):
    """Derives evidence from the latest completed assessment.

    Each catalog control in scope yields one ``Configuration`` item when the
    assessment holds no finding for it, and one ``Finding`` item per finding
    otherwise.
    """

    def __init__(self, latest_assessment: Callable[[str], Optional[Assessment]],
                 catalog: Optional[ControlCatalog] = None):
        self._latest = latest_assessment
        self._catalog = catalog or get_default_catalog()

    def gather(self, subscription_id, control_family):
        assessment = self._latest(subscription_id)
        if assessment is None:
            raise NotFoundError(
                "Assessment", subscription_id,
                f"No assessment found for subscription {subscription_id}. "
                "Run an assessment before collecting evidence.",
            )
        if control_family == ALL_FAMILIES:
            families = [f for f in self._catalog.family_codes()
                        if f in assessment.control_family_results]
        elif control_family in assessment.control_family_results:
            families = [control_family]
        else:
            families = []

        items: List[EvidenceItem] = []
        for family in families:
            result = assessment.control_family_results[family]
            by_control: Dict[str, list] = {}
            for finding in result.findings:
                for control in finding.affected_controls:
                    by_control.setdefault(_ENHANCEMENT_RE.sub("", control), []).append(finding)
            for control in self._catalog.controls_for(family):
                findings = by_control.get(control, [])
                if not findings:
                    items.append(EvidenceItem(
                        evidence_id=f"EV-{uuid.uuid4().hex[:12]}",
                        control_id=control,
                        evidence_type="Configuration",
                        resource_id=f"/subscriptions/{subscription_id}",
                        collected_at=assessment.end_time,
                        data=OrderedDict([
                            ("assessmentId", assessment.assessment_id),
                            ("status", "Compliant"),
                            ("familyScore", round(result.compliance_score, 2)),
                        ]),
                    ))
                    continue
                for finding in findings:
                    items.append(EvidenceItem(
                        evidence_id=f"EV-{uuid.uuid4().hex[:12]}",
                        control_id=control,
                        evidence_type="Finding",
                        resource_id=finding.resource_id,
                        collected_at=assessment.end_time,
                        data=OrderedDict([
                            ("assessmentId", assessment.assessment_id),
                            ("findingId", finding.id),
                            ("severity", finding.severity.value),
                            ("status", finding.compliance_status),
                            ("title", finding.title),
                        ]),
                    ))
        return items


def evidence_summary(evidence: Sequence[EvidenceItem]) -> str:
    counts: Dict[str, int] = OrderedDict()
    for item in evidence:
        counts[item.evidence_type] = counts.get(item.evidence_type, 0) + 1
    text = f"Collected {len(evidence)} pieces of evidence"
    if counts:
        text += ": " + ", ".join(f"{n} {kind}" for kind, n in counts.items())
    return text


def completeness_score(evidence: Sequence[EvidenceItem], family_controls: Sequence[str]) -> float:
    """Percent of the family's controls with at least one evidence item."""
    if not family_controls:
        return 0.0
    wanted = set(family_controls)
    covered = {_ENHANCEMENT_RE.sub("", e.control_id.upper()) for e in evidence} & wanted
    return round(max(0.0, min(100.0, 100.0 * len(covered) / len(wanted))), 2)


def attestation_statement(package_id: str, collected_on: datetime, control_family: str,
                          score: float, subscription_id: str) -> str:
    return (
        f"Evidence package {package_id} collected on {collected_on:%Y-%m-%d} "
        f"for control family {control_family} with {score:.1f}% completeness. "
        f"This evidence supports compliance attestation for subscription {subscription_id}."
    )


class EvidenceCollector:
    """Builds EvidencePackages and keeps them for download by id."""

    def __init__(
        self,
        source: EvidenceSource,
        catalog: Optional[ControlCatalog] = None,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._source = source
        self._catalog = catalog or get_default_catalog()
        self._config = config or EngineConfig()
        self._clock = clock
        self._packages: Dict[str, EvidencePackage] = {}
        self._lock = threading.Lock()

    def _family_controls(self, family: str) -> Sequence[str]:
        if family == ALL_FAMILIES:
            return self._catalog.all_controls()
        return self._catalog.controls_for(family)

    def collect(self, subscription_id: str, control_family: str,
                collected_by: str = "system") -> EvidencePackage:
        subscription_id = require_guid(subscription_id)
        family = self._catalog.require_family(control_family, allow_all=True)
        package_id = str(uuid.uuid4())
        started = self._clock()
        timer = time.monotonic()
        logger.info("Collecting evidence for %s family %s", subscription_id, family)

        try:
            evidence = tuple(self._source.gather(subscription_id, family))
        except Exception as exc:
            logger.error("Evidence source failed for %s/%s: %s", subscription_id, family, exc)
            package = EvidencePackage(
                package_id=package_id,
                subscription_id=subscription_id,
                control_family=family,
                collection_date=started,
                collection_duration=timedelta(seconds=time.monotonic() - timer),
                evidence=(),
                completeness_score=0.0,
                summary=evidence_summary(()),
                error=getattr(exc, "message", None) or str(exc),
                collected_by=collected_by,
            )
            self._register(package)
            return package

        score = completeness_score(evidence, self._family_controls(family))
        warnings = []
        if score < self._config.evidence_completeness_warning:
            warnings.append(
                f"Evidence completeness {score:.1f}% is below the "
                f"{self._config.evidence_completeness_warning:.0f}% target"
            )
        if len(evidence) < self._config.evidence_min_items:
            warnings.append(
                f"Only {len(evidence)} evidence items collected "
                f"(minimum {self._config.evidence_min_items} recommended)"
            )
        for warning in warnings:
            logger.warning("Package %s: %s", package_id, warning)

        package = EvidencePackage(
            package_id=package_id,
            subscription_id=subscription_id,
            control_family=family,
            collection_date=started,
            collection_duration=timedelta(seconds=time.monotonic() - timer),
            evidence=evidence,
            completeness_score=score,
            attestation_statement=attestation_statement(
                package_id, started, family, score, subscription_id,
            ),
            summary=evidence_summary(evidence),
            warnings=tuple(warnings),
            collected_by=collected_by,
        )
        self._register(package)
        logger.info("Collected %d pieces of evidence for %s (completeness %.2f%%)",
                    package.total_items, family, score)
        safe_log_event(
            event_type="evidence_collected",
            actor=collected_by,
            action=f"Evidence package {package_id} collected for {family}",
            subscription_id=subscription_id,
            entity_id=package_id,
            details={"items": package.total_items, "completeness": score,
                     "collectedAt": to_iso(started)},
            db_path=self._config.db_path,
        )
        return package

    def _register(self, package: EvidencePackage):
        with self._lock:
            self._packages[package.package_id] = package

    def get_package(self, package_id: str) -> Result:
        with self._lock:
            package = self._packages.get(package_id)
        if package is None:
            return Err(NotFoundError("Evidence package", package_id))
        return Ok(package)
