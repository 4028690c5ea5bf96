#!/usr/bin/env python3
# CUI // SP-CTI
"""Security hardening action generator.

Maps the enabled hardening areas (HardeningOptions) to concrete actions and
sizes each action against an assessment: ``affected_resource_count`` is the
number of distinct resources with a finding on one of the action's controls.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from atoengine.config.options import HardeningOptions
from atoengine.schemas.compliance import AssessmentView

logger = logging.getLogger("atoengine.remediation.hardening")

_ENHANCEMENT_RE = re.compile(r"\(\d+\)$")

# Estimated score gain per hardening action, capped at 100.
SCORE_GAIN_PER_ACTION = 3.5


@dataclass(frozen=True)
class HardeningAction:
    category: str
    description: str
    resource_type: str
    priority: str
    estimated_duration: str
    compliance_controls: Tuple[str, ...]
    action_type: str
    affected_resource_count: int = 0

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "description": self.description,
            "resourceType": self.resource_type,
            "affectedResourceCount": self.affected_resource_count,
            "priority": self.priority,
            "estimatedDuration": self.estimated_duration,
            "complianceControls": list(self.compliance_controls),
            "actionType": self.action_type,
        }


# (option field, action template), in output order.
HARDENING_CATALOG = (
    ("encryption", HardeningAction(
        "Encryption", "Enable customer-managed encryption keys for all storage and databases",
        "Storage, SQL, Cosmos DB", "Critical", "15-30 minutes", ("SC-28", "SC-13"),
        "encryption")),
    ("network_security", HardeningAction(
        "Network Security", "Disable public access and enable private endpoints for all PaaS services",
        "Storage, SQL, Key Vault, App Services", "Critical", "20-45 minutes", ("SC-7", "AC-4"),
        "network-isolation")),
    ("authentication", HardeningAction(
        "Authentication", "Enforce directory authentication and disable local/basic auth",
        "SQL, Storage, App Services, Key Vault", "High", "10-20 minutes", ("IA-2", "IA-5"),
        "authentication")),
    ("mfa", HardeningAction(
        "MFA", "Require multi-factor authentication for all administrative access",
        "Identity, Conditional Access", "Critical", "15-30 minutes", ("IA-2(1)", "IA-2(2)"),
        "mfa")),
    ("rbac", HardeningAction(
        "RBAC", "Apply least privilege principle and remove Owner role from users",
        "Subscriptions, Resource Groups", "High", "30-60 minutes", ("AC-6", "AC-2"),
        "rbac")),
    ("logging", HardeningAction(
        "Logging", "Enable diagnostic settings and activity logs on all resources",
        "All Resources", "High", "20-40 minutes", ("AU-2", "AU-3", "AU-12"),
        "logging")),
    ("monitoring", HardeningAction(
        "Monitoring", "Enable threat protection for all resource plans",
        "Subscription", "High", "10-15 minutes", ("SI-4", "RA-5"),
        "monitoring")),
    ("secret_management", HardeningAction(
        "Secret Management", "Replace connection strings in app config with Key Vault references",
        "App Services, Functions, Container Apps", "Critical", "30-60 minutes", ("SC-12", "SC-13"),
        "secrets")),
    ("certificate_management", HardeningAction(
        "Certificate Management", "Enable managed certificates with auto-renewal",
        "App Services, Application Gateway, Front Door", "Medium", "15-30 minutes", ("SC-17",),
        "certificates")),
    ("vulnerability_scanning", HardeningAction(
        "Vulnerability Protection", "Enable vulnerability scanning for containers, SQL and storage",
        "AKS, SQL, Storage Accounts", "High", "10-20 minutes", ("RA-5", "SI-2"),
        "vulnerability-scanning")),
)


def _base(control_id: str) -> str:
    return _ENHANCEMENT_RE.sub("", control_id.upper())


def affected_resource_count(view: AssessmentView, controls) -> int:
    wanted = {_base(c) for c in controls}
    resources = {
        f.resource_id.lower()
        for f in view.all_findings()
        if any(_base(c) in wanted for c in f.affected_controls)
    }
    return len(resources)


def generate_hardening_actions(view: AssessmentView,
                               options: Optional[HardeningOptions] = None) -> List[HardeningAction]:
    options = options or HardeningOptions()
    actions = []
    for option_name, template in HARDENING_CATALOG:
        if not getattr(options, option_name):
            continue
        count = affected_resource_count(view, template.compliance_controls)
        actions.append(HardeningAction(
            category=template.category,
            description=template.description,
            resource_type=template.resource_type,
            priority=template.priority,
            estimated_duration=template.estimated_duration,
            compliance_controls=template.compliance_controls,
            action_type=template.action_type,
            affected_resource_count=count,
        ))
    logger.info("Generated %d hardening actions for %s", len(actions), view.subscription_id)
    return actions


def estimated_score_after(current_score: float, action_count: int) -> float:
    return round(min(100.0, current_score + action_count * SCORE_GAIN_PER_ACTION), 1)


def hardening_plan(view: AssessmentView, current_score: float,
                   options: Optional[HardeningOptions] = None) -> dict:
    """JSON-ready hardening plan (actions plus score estimate)."""
    options = options or HardeningOptions()
    actions = generate_hardening_actions(view, options)
    return {
        "subscriptionId": view.subscription_id,
        "totalActions": len(actions),
        "currentSecurityScore": current_score,
        "estimatedSecurityScoreAfter": estimated_score_after(current_score, len(actions)),
        "enabledAreas": options.enabled(),
        "actions": [
            dict(a.to_dict(), actionNumber=i) for i, a in enumerate(actions, start=1)
        ],
    }
