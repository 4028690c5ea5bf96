#!/usr/bin/env python3
# CUI // SP-CTI
"""Typed per-call option structs for remediation, planning and hardening.

Callers (REST handlers, CLI) pass JSON objects; ``from_dict`` maps them onto
named fields with explicit defaults. Keys may be snake_case or camelCase.
Unknown keys are rejected with ValidationError (policy ``reject``) or
dropped with a warning (policy ``ignore``); values are never coerced from
unexpected types.
"""

import logging
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

from atoengine.resilience.errors import ValidationError

logger = logging.getLogger("atoengine.config.options")


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _parse_options(cls, data: Optional[Dict[str, Any]], policy: str = "reject",
                   base=None):
    if data is None:
        return base if base is not None else cls()
    if not isinstance(data, dict):
        raise ValidationError(f"{cls.__name__} must be a JSON object")
    by_key = {}
    for f in fields(cls):
        by_key[f.name] = f
        by_key[_camel(f.name)] = f

    values: Dict[str, Any] = {}
    unknown = []
    for key, value in data.items():
        f = by_key.get(key)
        if f is None:
            unknown.append(key)
            continue
        if f.type is bool and not isinstance(value, bool):
            raise ValidationError(
                f"Option '{key}' must be true or false",
                valid_values=["true", "false"],
            )
        if f.type in (str, Optional[str]) and value is not None \
                and not isinstance(value, str):
            raise ValidationError(f"Option '{key}' must be a string")
        values[f.name] = value

    if unknown:
        valid = sorted(_camel(f.name) for f in fields(cls))
        if policy == "reject":
            raise ValidationError(
                f"Unknown {cls.__name__} key(s): {', '.join(sorted(unknown))}",
                valid_values=valid,
            )
        logger.warning("Ignoring unknown %s key(s): %s",
                       cls.__name__, ", ".join(sorted(unknown)))

    if base is not None:
        merged = {f.name: getattr(base, f.name) for f in fields(cls)}
        merged.update(values)
        values = merged
    return cls(**values)


@dataclass(frozen=True)
class RemediationOptions:
    """How one remediation execution runs."""

    dry_run: bool = True
    require_approval: bool = False
    auto_rollback_on_failure: bool = False
    executed_by: str = "system"

    @classmethod
    def from_dict(cls, data, policy: str = "reject", defaults=None) -> "RemediationOptions":
        return _parse_options(cls, data, policy, base=defaults)

    def to_dict(self) -> dict:
        return {
            "dryRun": self.dry_run,
            "requireApproval": self.require_approval,
            "autoRollbackOnFailure": self.auto_rollback_on_failure,
            "executedBy": self.executed_by,
        }


@dataclass(frozen=True)
class PlanOptions:
    include_timeline: bool = True
    auto_remediable_only: bool = False
    control_family: Optional[str] = None

    def __post_init__(self):
        if self.control_family is not None:
            object.__setattr__(self, "control_family", self.control_family.strip().upper())

    @classmethod
    def from_dict(cls, data, policy: str = "reject") -> "PlanOptions":
        return _parse_options(cls, data, policy)


@dataclass(frozen=True)
class HardeningOptions:
    """Which hardening areas to generate actions for. All on by default."""

    encryption: bool = True
    network_security: bool = True
    authentication: bool = True
    mfa: bool = True
    rbac: bool = True
    logging: bool = True
    monitoring: bool = True
    secret_management: bool = True
    certificate_management: bool = True
    vulnerability_scanning: bool = True

    @classmethod
    def from_dict(cls, data, policy: str = "reject") -> "HardeningOptions":
        return _parse_options(cls, data, policy)

    def enabled(self):
        return [f.name for f in fields(self) if getattr(self, f.name)]
