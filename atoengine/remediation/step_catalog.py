#!/usr/bin/env python3
# CUI // SP-CTI
"""Remediation step catalog.

Loads ``context/compliance/nist_remediation_steps.json`` and returns the
ordered steps for a finding. Lookup order: the finding's rule id, then its
primary control id (enhancement stripped), then a single step built from
the finding's own remediation guidance.
"""

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple

from atoengine.resilience.errors import ConfigurationError
from atoengine.schemas.compliance import Finding
from atoengine.schemas.remediation import RemediationStep

logger = logging.getLogger("atoengine.remediation.step_catalog")

BASE_DIR = Path(__file__).resolve().parent.parent.parent
STEPS_PATH = BASE_DIR / "context" / "compliance" / "nist_remediation_steps.json"

_ENHANCEMENT_RE = re.compile(r"\(\d+\)$")


@dataclass(frozen=True)
class StepTemplate:
    automated: bool
    resource_types: Tuple[str, ...]
    steps: Tuple[RemediationStep, ...]

    @classmethod
    def from_dict(cls, data: dict) -> "StepTemplate":
        steps = tuple(
            RemediationStep(
                order=i,
                description=action["description"],
                command=action.get("command"),
                automation_script=action.get("script"),
            )
            for i, action in enumerate(data.get("actions", []), start=1)
        )
        return cls(
            automated=bool(data.get("automated", False)),
            resource_types=tuple(data.get("resource_types", [])),
            steps=steps,
        )

    def applies_to(self, resource_type: str) -> bool:
        if not self.resource_types or not resource_type:
            return True
        return resource_type.lower() in (t.lower() for t in self.resource_types)


class StepCatalog:
    def __init__(
        self,
        by_rule: Optional[Dict[str, StepTemplate]] = None,
        by_control: Optional[Dict[str, StepTemplate]] = None,
    ):
        self._by_rule = dict(by_rule or {})
        self._by_control = {k.upper(): v for k, v in (by_control or {}).items()}

    @classmethod
    def from_file(cls, path: Optional[Path] = None) -> "StepCatalog":
        steps_path = Path(path or STEPS_PATH)
        if not steps_path.exists():
            raise ConfigurationError(
                f"Remediation step catalog not found: {steps_path}",
                config_key="remediation_steps",
            )
        with open(steps_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return cls(
            by_rule={k: StepTemplate.from_dict(v) for k, v in data.get("rules", {}).items()},
            by_control={k: StepTemplate.from_dict(v) for k, v in data.get("controls", {}).items()},
        )

    def template_for(self, finding: Finding) -> Optional[StepTemplate]:
        template = self._by_rule.get(finding.rule_id)
        if template is not None and template.applies_to(finding.resource_type):
            return template
        primary = _ENHANCEMENT_RE.sub("", finding.affected_controls[0])
        template = self._by_control.get(primary)
        if template is not None and template.applies_to(finding.resource_type):
            return template
        return None

    def steps_for(self, finding: Finding) -> Tuple[RemediationStep, ...]:
        template = self.template_for(finding)
        if template is not None and template.steps:
            return template.steps
        description = (
            finding.remediation_guidance
            or finding.recommendation
            or f"Remediate {finding.title} on {finding.resource_name or finding.resource_id}"
        )
        logger.debug("No catalog steps for %s (%s), using guidance",
                     finding.rule_id, finding.affected_controls[0])
        return (RemediationStep(order=1, description=description),)

    @staticmethod
    def validation_steps_for(finding: Finding) -> Tuple[str, ...]:
        target = finding.resource_name or finding.resource_id
        controls = ", ".join(finding.affected_controls)
        return (
            f"Verify the configuration change on {target}",
            f"Re-scan {target} and confirm {controls} no longer report a finding",
            f"Document the remediation as evidence for {controls}",
        )
