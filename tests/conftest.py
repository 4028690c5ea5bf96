#!/usr/bin/env python3
# CUI // SP-CTI
"""Shared pytest fixtures for the ATO Engine test suite.

Centralizes the engine configuration, a scripted resource scanner, sample
findings, an in-memory mutation API, a temp SQLite path and the Flask test
client so individual test modules stay focused on behavior.
"""

import sys
import threading
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Ensure project root is on sys.path
BASE_DIR = Path(__file__).resolve().parent.parent
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from atoengine.compliance.finding_classifier import RawObservation  # noqa: E402
from atoengine.compliance.scanner import ResourceScanner, ScanFeed  # noqa: E402
from atoengine.config.engine_config import EngineConfig  # noqa: E402
from atoengine.remediation.mutation_api import InMemoryMutationApi  # noqa: E402
from atoengine.resilience.circuit_breaker import reset_all  # noqa: E402
from atoengine.schemas.compliance import Finding, Severity  # noqa: E402

SUB = "11111111-2222-3333-4444-555555555555"
OTHER_SUB = "99999999-8888-7777-6666-555555555555"
RG = f"/subscriptions/{SUB}/resourceGroups/rg-app/providers"

STORAGE_ID = f"{RG}/Microsoft.Storage/storageAccounts/stlogs"
SUBNET_ID = f"{RG}/Microsoft.Network/virtualNetworks/vnet1/subnets/app"
VM_ID = f"{RG}/Microsoft.Compute/virtualMachines/vm1"

FIXED_NOW = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Scanner double
# ---------------------------------------------------------------------------
class StubScanner(ResourceScanner):
    """Returns scripted feeds per family.

    ``errors`` maps family -> exception to raise; ``gate`` (a threading.Event)
    blocks every scan until set, for cancellation and timeout tests.
    """

    def __init__(self, feeds=None, errors=None, gate=None):
        self.feeds = dict(feeds or {})
        self.errors = dict(errors or {})
        self.gate = gate
        self.calls = []
        self._lock = threading.Lock()

    def scan_family(self, subscription_id, family, resource_group=None):
        with self._lock:
            self.calls.append((subscription_id, family, resource_group))
        if self.gate is not None:
            self.gate.wait(5)
        if family in self.errors:
            raise self.errors[family]
        return self.feeds.get(family, ScanFeed())


def sample_feeds():
    """AC 14/16 (87.5), SC 2/5 (40.0), AU 2/2 (100.0) -> overall 75.83."""
    return {
        "AC": ScanFeed(observations=(
            RawObservation(resource_id=VM_ID, rule_id="admin-accounts-restricted",
                           resource_type="Microsoft.Compute/virtualMachines"),
        )),
        "SC": ScanFeed(
            observations=(
                RawObservation(resource_id=STORAGE_ID, rule_id="encryption-at-rest",
                               resource_type="Microsoft.Storage/storageAccounts"),
                RawObservation(resource_id=SUBNET_ID, rule_id="nsg-missing",
                               resource_type="Microsoft.Network/virtualNetworks/subnets"),
            ),
            controls_evaluated=("SC-7", "SC-8", "SC-12", "SC-13", "SC-28"),
        ),
        "AU": ScanFeed(controls_evaluated=("AU-2", "AU-3")),
    }


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _reset_breakers():
    reset_all()
    yield
    reset_all()


@pytest.fixture
def config():
    return EngineConfig(
        control_families=("AC", "SC", "AU"),
        max_workers=3,
        assessment_timeout_seconds=10,
        named_subscriptions={"production": SUB, "staging": OTHER_SUB},
    )


@pytest.fixture
def scanner():
    return StubScanner(sample_feeds())


@pytest.fixture
def mutation_api():
    return InMemoryMutationApi(resources={STORAGE_ID: {"encryption": "disabled"}})


@pytest.fixture
def tmp_db(tmp_path):
    return tmp_path / "atoengine.db"


@pytest.fixture
def make_finding():
    """Factory for findings with sensible defaults."""

    def _make(fid="FND-0001", severity=Severity.HIGH, controls=("SC-7",),
              resource_id=SUBNET_ID, auto=True, rule_id="nsg-missing",
              title=None, resource_type="Microsoft.Network/virtualNetworks/subnets"):
        return Finding(
            id=fid,
            title=title or f"Finding {fid}",
            severity=severity,
            resource_id=resource_id,
            resource_type=resource_type,
            affected_controls=tuple(controls),
            rule_id=rule_id,
            detected_at=FIXED_NOW,
            is_auto_remediable=auto,
            recommendation=f"Fix {fid}",
        )

    return _make


@pytest.fixture
def engine(config, scanner, mutation_api):
    from atoengine.engine import ComplianceEngine
    eng = ComplianceEngine(config, scanner=scanner, mutation_api=mutation_api)
    yield eng
    eng.close()


@pytest.fixture
def assessed_engine(engine):
    """Engine with one completed assessment for SUB."""
    engine.run_assessment(SUB)
    return engine


@pytest.fixture
def app(engine):
    from atoengine.api.app import create_app
    application = create_app(engine, {"TESTING": True})
    return application


@pytest.fixture
def client(app):
    return app.test_client()
