#!/usr/bin/env python3
# CUI // SP-CTI
"""Resource scanner boundary.

Scanners that read live cloud configuration live outside this package; the
engine only consumes ``ResourceScanner.scan_family``. ``FileResourceScanner``
replays a JSON scan export and is what the CLI uses:

    {
      "families": {
        "AC": {
          "controlsEvaluated": ["AC-2", "AC-3", "AC-6"],
          "observations": [
            {"resourceId": "...", "ruleId": "admin-accounts-restricted", ...}
          ]
        }
      }
    }
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from atoengine.compliance.finding_classifier import RawObservation
from atoengine.resilience.errors import UpstreamUnavailableError, ValidationError

logger = logging.getLogger("atoengine.compliance.scanner")


@dataclass(frozen=True)
class ScanFeed:
    """Observations for one family plus the controls that were evaluated.

    ``controls_evaluated`` of None means "the family's full catalog".
    """

    observations: Tuple[RawObservation, ...] = ()
    controls_evaluated: Optional[Tuple[str, ...]] = None


class ResourceScanner(ABC):
    """Produces raw observations for one control family."""

    @abstractmethod
    def scan_family(
        self,
        subscription_id: str,
        family: str,
        resource_group: Optional[str] = None,
    ) -> ScanFeed:
        """Scan one family. Raise UpstreamUnavailableError on scanner outage."""


def in_resource_group(resource_id: str, resource_group: Optional[str]) -> bool:
    if not resource_group:
        return True
    return f"/resourcegroups/{resource_group.lower()}/" in resource_id.lower() + "/"


class FileResourceScanner(ResourceScanner):
    """Replays a JSON scan export from disk."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._data = None

    def _load(self) -> dict:
        if self._data is None:
            if not self.path.exists():
                raise ValidationError(f"Scan export not found: {self.path}")
            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    self._data = json.load(f)
            except (OSError, json.JSONDecodeError) as exc:
                raise UpstreamUnavailableError(
                    f"Cannot read scan export {self.path}: {exc}",
                    service="scanner",
                ) from exc
        return self._data

    def scan_family(self, subscription_id, family, resource_group=None) -> ScanFeed:
        family_data = (self._load().get("families") or {}).get(family.upper())
        if not family_data:
            return ScanFeed()
        observations = tuple(
            obs for obs in (
                RawObservation.from_dict(o) for o in family_data.get("observations", [])
            )
            if in_resource_group(obs.resource_id, resource_group)
        )
        evaluated = family_data.get("controlsEvaluated")
        logger.debug("Scan export %s: %s -> %d observations",
                     self.path.name, family, len(observations))
        return ScanFeed(
            observations=observations,
            controls_evaluated=tuple(evaluated) if evaluated is not None else None,
        )
