#!/usr/bin/env python3
# CUI // SP-CTI
"""Cloud mutation boundary used by the remediation executor.

The executor never talks to a cloud SDK directly. A ``CloudMutationApi``
implementation is injected; ``InMemoryMutationApi`` keeps resource state in a
dict and is used by the CLI demo and the test suite.
"""

import copy
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Set

from atoengine.resilience.errors import NotFoundError, UpstreamUnavailableError

logger = logging.getLogger("atoengine.remediation.mutation_api")


class CloudMutationApi(ABC):
    """Applies configuration changes to cloud resources."""

    @abstractmethod
    def apply_change(self, resource_id: str, change: Dict[str, Any]) -> str:
        """Apply one change and return a human readable description."""

    @abstractmethod
    def snapshot(self, resource_id: str) -> str:
        """Capture the resource configuration and return a backup id."""

    @abstractmethod
    def restore(self, backup_id: str) -> None:
        """Put the resource back to the configuration captured in ``backup_id``."""


class InMemoryMutationApi(CloudMutationApi):
    """Dict-backed resource state with deep-copied snapshots.

    ``fail_on`` lets tests inject failures: a set of step descriptions (or
    ``"snapshot"`` / ``"restore"``) that raise UpstreamUnavailableError.
    """

    def __init__(self, resources: Optional[Dict[str, Dict[str, Any]]] = None,
                 fail_on: Optional[Set[str]] = None):
        self._resources: Dict[str, Dict[str, Any]] = {
            k.lower(): dict(v) for k, v in (resources or {}).items()
        }
        self._backups: Dict[str, tuple] = {}
        self.fail_on: Set[str] = set(fail_on or ())
        self.applied = []
        self._lock = threading.Lock()

    def state(self, resource_id: str) -> Dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._resources.get(resource_id.lower(), {}))

    def apply_change(self, resource_id, change):
        description = change.get("description", "")
        if description in self.fail_on:
            raise UpstreamUnavailableError(
                f"Mutation failed on {resource_id}: {description}", service="cloud",
            )
        with self._lock:
            state = self._resources.setdefault(resource_id.lower(), {})
            state.setdefault("appliedSteps", []).append(description)
            if change.get("command"):
                state["lastCommand"] = change["command"]
            self.applied.append((resource_id, description))
        logger.debug("Applied '%s' to %s", description, resource_id)
        return f"Applied: {description}"

    def snapshot(self, resource_id):
        if "snapshot" in self.fail_on:
            raise UpstreamUnavailableError(
                f"Snapshot failed for {resource_id}", service="cloud",
            )
        backup_id = f"backup-{uuid.uuid4().hex[:12]}"
        with self._lock:
            self._backups[backup_id] = (
                resource_id.lower(),
                copy.deepcopy(self._resources.get(resource_id.lower(), {})),
            )
        return backup_id

    def restore(self, backup_id):
        if "restore" in self.fail_on:
            raise UpstreamUnavailableError(f"Restore of {backup_id} failed", service="cloud")
        with self._lock:
            if backup_id not in self._backups:
                raise NotFoundError("Backup", backup_id)
            resource_key, saved = self._backups[backup_id]
            self._resources[resource_key] = copy.deepcopy(saved)
        logger.info("Restored %s from %s", resource_key, backup_id)
