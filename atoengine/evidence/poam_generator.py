#!/usr/bin/env python3
# CUI // SP-CTI
"""POA&M (Plan of Action & Milestones) generator.

Builds a PoamDocument from findings and the remediation plan drafted for
them. Items keep the order of the input findings and are numbered from 1.
Each item's ``milestoneDueDate`` is the plan milestone for the finding's
priority bucket.

Renderings: JSON (``PoamDocument.to_dict``), a plain-text document, and the
eMASS POA&M bulk-import CSV.
"""

import csv
import io
import logging
import uuid
from datetime import datetime, timedelta
from typing import Iterable, Optional

from atoengine.audit.audit_logger import safe_log_event
from atoengine.compat.datetime_utils import format_duration, utc_now
from atoengine.compliance.subscription_resolver import require_guid
from atoengine.remediation.planner import estimate_effort, projected_risk_reduction
from atoengine.schemas.compliance import Finding, control_family_of
from atoengine.schemas.evidence import PoamDocument, PoamItem, PoamRemediation
from atoengine.schemas.remediation import RemediationPlan

logger = logging.getLogger("atoengine.evidence.poam_generator")

EMASS_POAM_HEADER = (
    "POAM ID", "Weakness Name", "Weakness Source", "Security Control Number",
    "Severity", "Scheduled Completion Date", "Milestone Description",
    "Status", "Resources Required",
)

# eMASS accepts: Very High, High, Moderate, Low, Very Low.
EMASS_SEVERITY = {
    "Critical": "Very High",
    "High": "High",
    "Medium": "Moderate",
    "Low": "Low",
    "Informational": "Very Low",
}

# eMASS accepts: Ongoing, Completed, Risk Accepted, Delayed, Cancelled.
EMASS_STATUS = {
    "Open": "Ongoing",
    "Closed": "Completed",
    "Completed": "Completed",
    "Risk Accepted": "Risk Accepted",
}


def new_poam_id(now: datetime) -> str:
    return f"POAM-{now:%Y%m%d}-{uuid.uuid4().hex[:8].upper()}"


def _in_family(finding: Finding, family: str) -> bool:
    return any(control_family_of(c) == family for c in finding.affected_controls)


def generate_poam(
    findings: Iterable[Finding],
    plan: RemediationPlan,
    subscription_id: str,
    control_family: Optional[str] = None,
    generated_at: Optional[datetime] = None,
    config=None,
) -> PoamDocument:
    subscription_id = require_guid(subscription_id)
    generated_at = generated_at or utc_now()
    family = control_family.strip().upper() if control_family else None

    selected = [f for f in findings if family is None or _in_family(f, family)]
    items = []
    total_effort = timedelta()
    for number, finding in enumerate(selected, start=1):
        plan_item = plan.item_for(finding.id)
        effort = plan_item.estimated_effort if plan_item else estimate_effort(finding, config)
        total_effort += effort
        milestone = plan.timeline.milestone_for(finding.severity) if plan.timeline else None
        items.append(PoamItem(
            item_number=number,
            finding_id=finding.id,
            weakness=finding.title,
            control_number=finding.affected_controls[0] if finding.affected_controls else "N/A",
            severity=finding.severity.value,
            resource_id=finding.resource_id,
            remediation=PoamRemediation(
                description=finding.remediation_guidance or finding.recommendation,
                is_automated=finding.is_auto_remediable,
                estimated_effort=effort,
                milestone_due_date=milestone.date if milestone else None,
            ),
        ))

    doc = PoamDocument(
        poam_id=new_poam_id(generated_at),
        subscription_id=subscription_id,
        control_family=family,
        generated_at=generated_at,
        priority=plan.priority,
        items=tuple(items),
        estimated_completion=plan.timeline.end_date if plan.timeline else None,
        estimated_effort=total_effort,
        projected_risk_reduction=projected_risk_reduction(selected),
        milestones=plan.timeline.milestones if plan.timeline else (),
    )
    logger.info("POA&M %s generated with %d items (family %s)",
                doc.poam_id, len(items), family or "All")
    safe_log_event(
        event_type="poam_generated",
        actor="atoengine",
        action=f"POA&M {doc.poam_id} generated with {len(items)} items",
        subscription_id=subscription_id,
        entity_id=doc.poam_id,
        details={"controlFamily": family, "planId": plan.plan_id},
        db_path=getattr(config, "db_path", None),
    )
    return doc


def render_poam_text(doc: PoamDocument) -> str:
    summary = doc.summary()
    lines = [
        "PLAN OF ACTION & MILESTONES (POA&M)",
        "=" * 41,
        "",
        f"POA&M ID: {doc.poam_id}",
        f"Subscription: {doc.subscription_id}",
        f"Control Family: {doc.control_family or 'All'}",
        f"Generated: {doc.generated_at:%Y-%m-%d %H:%M:%S}",
        f"Priority: {doc.priority}",
        f"Estimated Effort: {format_duration(doc.estimated_effort)}",
        f"Responsible Party: {doc.responsible_party}",
        "",
        "SUMMARY",
        "-------",
        f"Total Findings: {summary['totalFindings']}",
        f"Critical: {summary['criticalCount']}",
        f"High: {summary['highCount']}",
        f"Medium: {summary['mediumCount']}",
        f"Low: {summary['lowCount']}",
        "",
    ]
    if doc.milestones:
        lines.extend(["MILESTONES", "----------"])
        for milestone in doc.milestones:
            lines.append(f"{milestone.date:%Y-%m-%d}  {milestone.description}")
        lines.append("")
    lines.extend(["POA&M ITEMS", "-----------"])
    for item in doc.items:
        due = item.remediation.milestone_due_date
        lines.extend([
            f"{item.item_number}. {item.weakness}",
            f"   Control: {item.control_number}",
            f"   Severity: {item.severity}",
            f"   Resource: {item.resource_id}",
            f"   Remediation: {item.remediation.description}",
            f"   Auto-remediable: {'Yes' if item.remediation.is_automated else 'No'}",
            f"   Due: {due:%Y-%m-%d}" if due else "   Due: Not scheduled",
            "",
        ])
    return "\n".join(lines)


def render_poam_emass_csv(doc: PoamDocument) -> str:
    """POA&M items in the eMASS bulk-import column layout."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(EMASS_POAM_HEADER)
    for item in doc.items:
        due = item.remediation.milestone_due_date
        writer.writerow([
            f"{doc.poam_id}-{item.item_number:03d}",
            item.weakness,
            "Continuous Monitoring",
            item.control_number,
            EMASS_SEVERITY.get(item.severity, "Moderate"),
            f"{due:%Y-%m-%d}" if due else "",
            item.remediation.description or "Remediation planned",
            EMASS_STATUS.get(item.status, "Ongoing"),
            "Automated remediation" if item.remediation.is_automated else "Engineering effort",
        ])
    return buffer.getvalue()
