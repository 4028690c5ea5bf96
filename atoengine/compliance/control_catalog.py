#!/usr/bin/env python3
# CUI // SP-CTI
"""NIST 800-53 control family catalog.

Loads ``context/compliance/nist_800_53_families.json`` (family code, name and
the base controls evaluated per family). Used by the orchestrator for family
names, by the evidence collector for completeness, and by the REST/CLI
layers for the list of valid family codes.
"""

import json
import threading
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from atoengine.resilience.errors import ConfigurationError, ValidationError

BASE_DIR = Path(__file__).resolve().parent.parent.parent
CATALOG_DIR = BASE_DIR / "context" / "compliance"
FAMILIES_FILENAME = "nist_800_53_families.json"

ALL_FAMILIES = "All"


class ControlCatalog:
    """Family code -> (name, controls) lookups."""

    def __init__(self, families: Dict[str, Tuple[str, Tuple[str, ...]]]):
        self._families = dict(families)

    @classmethod
    def from_file(cls, path: Optional[Path] = None) -> "ControlCatalog":
        catalog_path = Path(path or CATALOG_DIR / FAMILIES_FILENAME)
        if not catalog_path.exists():
            raise ConfigurationError(
                f"Catalog not found: {catalog_path}\n"
                f"Expected: context/compliance/{FAMILIES_FILENAME}",
                config_key="catalog",
            )
        with open(catalog_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        families = {}
        for entry in data.get("families", []):
            code = entry["code"].upper()
            families[code] = (
                entry.get("name", code),
                tuple(c.upper() for c in entry.get("controls", [])),
            )
        return cls(families)

    def family_codes(self) -> List[str]:
        return sorted(self._families)

    def is_known_family(self, code: str) -> bool:
        return (code or "").upper() in self._families

    def family_name(self, code: str) -> str:
        entry = self._families.get((code or "").upper())
        return entry[0] if entry else code

    def controls_for(self, code: str) -> Tuple[str, ...]:
        entry = self._families.get((code or "").upper())
        return entry[1] if entry else ()

    def total_controls(self, code: str) -> int:
        return len(self.controls_for(code))

    def all_controls(self) -> Tuple[str, ...]:
        controls: List[str] = []
        for code in self.family_codes():
            controls.extend(self._families[code][1])
        return tuple(controls)

    def require_family(self, code: str, allow_all: bool = False) -> str:
        """Normalize ``code`` or raise ValidationError listing valid codes."""
        normalized = (code or "").strip().upper()
        if allow_all and normalized == ALL_FAMILIES.upper():
            return ALL_FAMILIES
        if normalized not in self._families:
            valid = self.family_codes() + ([ALL_FAMILIES] if allow_all else [])
            raise ValidationError(
                f"Unknown control family '{code}'",
                hint="Use a two-letter NIST 800-53 family code",
                valid_values=valid,
            )
        return normalized


_default_catalog: Optional[ControlCatalog] = None
_default_lock = threading.Lock()


def get_default_catalog() -> ControlCatalog:
    """Process-wide catalog loaded once from the context directory."""
    global _default_catalog
    with _default_lock:
        if _default_catalog is None:
            _default_catalog = ControlCatalog.from_file()
        return _default_catalog
