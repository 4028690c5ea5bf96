#!/usr/bin/env python3
# CUI // SP-CTI
"""Engine configuration loaded from ``args/engine_config.yaml``.

The YAML file is parsed once into an immutable ``EngineConfig`` that is
passed to every component at construction. Nothing reads configuration
from module globals at call time, so tests build configs directly:

    config = EngineConfig(max_workers=2, named_subscriptions={"prod": GUID})

Unknown keys follow ``options.unknown_keys``: ``reject`` raises
ConfigurationError, ``ignore`` logs a warning and drops the key.
"""

import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from atoengine.resilience.errors import ConfigurationError

logger = logging.getLogger("atoengine.config")

BASE_DIR = Path(__file__).resolve().parent.parent.parent
DEFAULT_CONFIG_PATH = BASE_DIR / "args" / "engine_config.yaml"
CONFIG_ENV_VAR = "ATOENGINE_CONFIG"

NIST_CONTROL_FAMILIES: Tuple[str, ...] = (
    "AC", "AU", "SC", "SI", "CM", "CP", "IA", "IR", "MA", "MP",
    "PE", "PL", "PS", "RA", "SA", "CA", "AT", "PM",
)

UNKNOWN_KEY_POLICIES = ("reject", "ignore")

_SEVERITY_KEYS = ("Critical", "High", "Medium", "Low", "Informational")


def _frozen(mapping: Mapping) -> Mapping:
    return MappingProxyType(dict(mapping))


@dataclass(frozen=True)
class EngineConfig:
    """Immutable engine policy values."""

    # Assessment orchestration
    control_families: Tuple[str, ...] = NIST_CONTROL_FAMILIES
    max_workers: int = 6
    assessment_timeout_seconds: float = 300.0

    # Remediation planning / execution
    milestone_offsets_days: Mapping[str, int] = field(default_factory=lambda: _frozen(
        {"Critical": 2, "High": 7, "Medium": 30, "Low": 90}
    ))
    automated_effort_minutes: Mapping[str, int] = field(default_factory=lambda: _frozen(
        {"Critical": 30, "High": 20, "Medium": 10, "Low": 10, "Informational": 10}
    ))
    manual_effort_minutes: Mapping[str, int] = field(default_factory=lambda: _frozen(
        {"Critical": 240, "High": 120, "Medium": 60, "Low": 30, "Informational": 30}
    ))
    require_approval: bool = False
    auto_rollback_on_failure: bool = False

    # Evidence packaging
    evidence_completeness_warning: float = 95.0
    evidence_min_items: int = 10
    emass_valid_threshold: float = 80.0
    emass_schema_version: str = "6.2"

    # Subscription resolution
    named_subscriptions: Mapping[str, str] = field(default_factory=lambda: _frozen({}))
    available_names_limit: int = 5
    subscription_directory_url: Optional[str] = None
    subscription_directory_timeout: float = 10.0

    # Storage
    db_path: Optional[Path] = None

    unknown_keys: str = "reject"

    def __post_init__(self):
        # Normalize mutable inputs so callers can pass plain dicts/lists.
        object.__setattr__(self, "control_families",
                           tuple(f.upper() for f in self.control_families))
        object.__setattr__(self, "named_subscriptions", _frozen(
            {k.lower(): v for k, v in dict(self.named_subscriptions).items()}
        ))
        for name in ("milestone_offsets_days", "automated_effort_minutes",
                     "manual_effort_minutes"):
            object.__setattr__(self, name, _frozen(dict(getattr(self, name))))
        if self.db_path is not None:
            object.__setattr__(self, "db_path", Path(self.db_path))
        self._validate()

    def _validate(self):
        if not self.control_families:
            raise ConfigurationError("control_families must not be empty",
                                     config_key="assessment.control_families")
        bad = [f for f in self.control_families if len(f) != 2 or not f.isalpha()]
        if bad:
            raise ConfigurationError(
                f"Invalid control family codes: {', '.join(bad)}",
                config_key="assessment.control_families",
            )
        if self.max_workers < 1:
            raise ConfigurationError("max_workers must be >= 1",
                                     config_key="assessment.max_workers")
        if self.assessment_timeout_seconds <= 0:
            raise ConfigurationError("timeout_seconds must be positive",
                                     config_key="assessment.timeout_seconds")
        missing = [k for k in ("Critical", "High", "Medium", "Low")
                   if k not in self.milestone_offsets_days]
        if missing:
            raise ConfigurationError(
                f"milestone_offsets_days missing: {', '.join(missing)}",
                config_key="remediation.milestone_offsets_days",
            )
        for name in ("automated_effort_minutes", "manual_effort_minutes"):
            absent = [k for k in _SEVERITY_KEYS if k not in getattr(self, name)]
            if absent:
                raise ConfigurationError(
                    f"{name} missing: {', '.join(absent)}",
                    config_key=f"remediation.{name}",
                )
        if self.unknown_keys not in UNKNOWN_KEY_POLICIES:
            raise ConfigurationError(
                f"unknown_keys must be one of {', '.join(UNKNOWN_KEY_POLICIES)}",
                config_key="options.unknown_keys",
            )
        if self.available_names_limit < 1:
            raise ConfigurationError("available_names_limit must be >= 1",
                                     config_key="subscriptions.available_names_limit")

    def with_overrides(self, **changes) -> "EngineConfig":
        return replace(self, **changes)


# ---------------------------------------------------------------------------
# YAML loading
# ---------------------------------------------------------------------------
# yaml section -> {yaml key: EngineConfig field}
_SECTION_MAP: Dict[str, Dict[str, str]] = {
    "assessment": {
        "control_families": "control_families",
        "max_workers": "max_workers",
        "timeout_seconds": "assessment_timeout_seconds",
    },
    "remediation": {
        "milestone_offsets_days": "milestone_offsets_days",
        "automated_effort_minutes": "automated_effort_minutes",
        "manual_effort_minutes": "manual_effort_minutes",
        "require_approval": "require_approval",
        "auto_rollback_on_failure": "auto_rollback_on_failure",
    },
    "evidence": {
        "completeness_warning_threshold": "evidence_completeness_warning",
        "min_items_warning": "evidence_min_items",
        "emass_valid_threshold": "emass_valid_threshold",
        "emass_schema_version": "emass_schema_version",
    },
    "subscriptions": {
        "named": "named_subscriptions",
        "available_names_limit": "available_names_limit",
        "directory_url": "subscription_directory_url",
        "directory_timeout_seconds": "subscription_directory_timeout",
    },
    "storage": {
        "db_path": "db_path",
    },
    "options": {
        "unknown_keys": "unknown_keys",
    },
}


def _unknown(policy: str, key: str):
    if policy == "reject":
        raise ConfigurationError(f"Unknown configuration key '{key}'", config_key=key)
    logger.warning("Ignoring unknown configuration key '%s'", key)


def config_from_dict(raw: Dict[str, Any], base_dir: Optional[Path] = None) -> EngineConfig:
    """Build an EngineConfig from the parsed YAML document."""
    raw = raw or {}
    if not isinstance(raw, dict):
        raise ConfigurationError("Configuration root must be a mapping")
    policy = (raw.get("options") or {}).get("unknown_keys", "reject")
    if policy not in UNKNOWN_KEY_POLICIES:
        raise ConfigurationError(
            f"unknown_keys must be one of {', '.join(UNKNOWN_KEY_POLICIES)}",
            config_key="options.unknown_keys",
        )

    kwargs: Dict[str, Any] = {}
    for section, values in raw.items():
        mapping = _SECTION_MAP.get(section)
        if mapping is None:
            _unknown(policy, section)
            continue
        if values is None:
            continue
        if not isinstance(values, dict):
            raise ConfigurationError(f"Section '{section}' must be a mapping",
                                     config_key=section)
        for key, value in values.items():
            target = mapping.get(key)
            if target is None:
                _unknown(policy, f"{section}.{key}")
                continue
            if value is not None:
                kwargs[target] = value

    if "control_families" in kwargs:
        kwargs["control_families"] = tuple(kwargs["control_families"])
    if "db_path" in kwargs:
        db_path = Path(kwargs["db_path"])
        if not db_path.is_absolute():
            db_path = (base_dir or BASE_DIR) / db_path
        kwargs["db_path"] = db_path

    known = {f.name for f in fields(EngineConfig)}
    try:
        return EngineConfig(**{k: v for k, v in kwargs.items() if k in known})
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc


def load_engine_config(path: Optional[Path] = None) -> EngineConfig:
    """Load ``args/engine_config.yaml`` (or ``$ATOENGINE_CONFIG``).

    A missing file yields the built-in defaults.
    """
    env_path = os.environ.get(CONFIG_ENV_VAR)
    config_path = Path(path or env_path or DEFAULT_CONFIG_PATH)
    if not config_path.exists():
        logger.info("No engine config at %s, using defaults", config_path)
        return EngineConfig()
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Cannot parse {config_path}: {exc}") from exc
    logger.debug("Loaded engine config from %s", config_path)
    return config_from_dict(raw, base_dir=config_path.parent.parent)
