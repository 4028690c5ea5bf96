#!/usr/bin/env python3
# CUI // SP-CTI
"""Remediation Planner -- turns findings into an ordered remediation plan.

Ordering is deterministic: automatable items first, then severity
(Critical first), then estimated effort (shortest first), then finding id.
Milestones group deliverables by priority bucket (Informational findings
land in the Low bucket) at fixed offsets from the plan creation time.

Usage:
    planner = RemediationPlanner(config)
    plan = planner.build_plan(assessment.all_findings(), subscription_guid)
"""

import logging
import uuid
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from atoengine.audit.audit_logger import safe_log_event
from atoengine.compat.datetime_utils import ensure_utc, hours, utc_now
from atoengine.compliance.subscription_resolver import require_guid
from atoengine.config.engine_config import EngineConfig
from atoengine.config.options import PlanOptions
from atoengine.remediation.step_catalog import StepCatalog
from atoengine.schemas.compliance import Finding, Severity, control_family_of
from atoengine.schemas.remediation import (
    Milestone,
    RemediationItem,
    RemediationPlan,
    RemediationTimeline,
)

logger = logging.getLogger("atoengine.remediation.planner")

BUCKETS = (Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW)

MILESTONE_DESCRIPTIONS = {
    Severity.CRITICAL: "Remediate critical findings",
    Severity.HIGH: "Remediate high severity findings",
    Severity.MEDIUM: "Remediate medium severity findings",
    Severity.LOW: "Remediate low severity and informational findings",
}


def estimate_effort(finding: Finding, config: Optional[EngineConfig] = None) -> timedelta:
    """Effort from the configured policy for automated vs manual fixes."""
    config = config or EngineConfig()
    table = (config.automated_effort_minutes if finding.is_auto_remediable
             else config.manual_effort_minutes)
    return timedelta(minutes=table[finding.severity.value])


def projected_risk_reduction(findings: Iterable[Finding]) -> float:
    """Share of total risk weight that automation removes, in percent.

    0.0 when the findings carry no risk weight at all.
    """
    total = 0
    automated = 0
    for finding in findings:
        weight = finding.severity.risk_weight
        total += weight
        if finding.is_auto_remediable:
            automated += weight
    if total == 0:
        return 0.0
    return 100.0 * automated / total


def plan_priority(findings: Iterable[Finding]) -> str:
    """Highest bucket among the findings; Low for an empty plan."""
    best = Severity.LOW
    for finding in findings:
        if finding.severity.bucket.rank > best.rank:
            best = finding.severity.bucket
    return best.value


def build_timeline(items: List[RemediationItem], created_at: datetime,
                   config: Optional[EngineConfig] = None) -> RemediationTimeline:
    config = config or EngineConfig()
    grouped: Dict[Severity, List[str]] = OrderedDict((b, []) for b in BUCKETS)
    for item in items:
        grouped[item.severity.bucket].append(item.finding_id)

    milestones = []
    for bucket, deliverables in grouped.items():
        if not deliverables:
            continue
        offset = timedelta(days=config.milestone_offsets_days[bucket.value])
        milestones.append(Milestone(
            date=created_at + offset,
            description=f"{MILESTONE_DESCRIPTIONS[bucket]} ({len(deliverables)})",
            deliverables=tuple(deliverables),
            severity=bucket,
        ))
    end_date = milestones[-1].date if milestones else created_at
    return RemediationTimeline(
        start_date=created_at, end_date=end_date, milestones=tuple(milestones),
    )


def _matches_family(finding: Finding, family: str) -> bool:
    return any(control_family_of(c) == family for c in finding.affected_controls)


class RemediationPlanner:
    """Builds RemediationPlans from findings."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        step_catalog: Optional[StepCatalog] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._config = config or EngineConfig()
        self._steps = step_catalog or StepCatalog.from_file()
        self._clock = clock

    def build_plan(
        self,
        findings: Iterable[Finding],
        subscription_id: str,
        created_at: Optional[datetime] = None,
        options: Optional[PlanOptions] = None,
    ) -> RemediationPlan:
        subscription_id = require_guid(subscription_id)
        options = options or PlanOptions()
        created_at = ensure_utc(created_at) if created_at else self._clock()

        selected: List[Finding] = []
        seen = set()
        for finding in findings:
            if finding.id in seen:
                continue
            seen.add(finding.id)
            if options.auto_remediable_only and not finding.is_auto_remediable:
                continue
            if options.control_family and not _matches_family(finding, options.control_family):
                continue
            selected.append(finding)

        efforts = {f.id: estimate_effort(f, self._config) for f in selected}
        ordered = sorted(
            selected,
            key=lambda f: (not f.is_auto_remediable, -f.severity.rank, efforts[f.id], f.id),
        )

        items: List[RemediationItem] = []
        by_resource: Dict[str, List[str]] = {}
        for finding in ordered:
            earlier = by_resource.setdefault(finding.resource_id.lower(), [])
            items.append(RemediationItem(
                finding_id=finding.id,
                title=finding.title,
                control_id=finding.affected_controls[0],
                resource_id=finding.resource_id,
                severity=finding.severity,
                estimated_effort=efforts[finding.id],
                automation_available=finding.is_auto_remediable,
                steps=self._steps.steps_for(finding),
                validation_steps=self._steps.validation_steps_for(finding),
                dependencies=tuple(earlier),
            ))
            earlier.append(finding.id)

        total_effort = sum((i.estimated_effort for i in items), timedelta())
        reduction = projected_risk_reduction(selected)
        timeline = build_timeline(items, created_at, self._config) \
            if options.include_timeline else None
        automated = sum(1 for i in items if i.automation_available)

        plan = RemediationPlan(
            plan_id=str(uuid.uuid4()),
            subscription_id=subscription_id,
            created_at=created_at,
            total_findings=len(items),
            remediation_items=tuple(items),
            estimated_effort=total_effort,
            priority=plan_priority(selected),
            projected_risk_reduction=reduction,
            timeline=timeline,
            executive_summary=(
                f"Remediation plan addresses {len(items)} findings with estimated "
                f"effort of {hours(total_effort):.1f} hours. Projected risk reduction: "
                f"{reduction:.1f}%. {automated} items can be automated."
            ),
        )
        logger.info("Plan %s for %s: %d items, priority %s, %.1f%% risk reduction",
                    plan.plan_id, subscription_id, len(items), plan.priority, reduction)
        safe_log_event(
            event_type="remediation_plan_generated",
            actor="atoengine",
            action=f"Remediation plan {plan.plan_id} generated with {len(items)} items",
            subscription_id=subscription_id,
            entity_id=plan.plan_id,
            details={"priority": plan.priority, "automated": automated},
            db_path=self._config.db_path,
        )
        return plan
