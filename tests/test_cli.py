#!/usr/bin/env python3
# CUI // SP-CTI
"""Tests for the atoengine command-line interface."""

import csv
import io
import json

import pytest
from conftest import STORAGE_ID, SUB, SUBNET_ID, VM_ID

from atoengine.cli import build_parser, main


@pytest.fixture
def workspace(tmp_path):
    config = tmp_path / "engine_config.yaml"
    config.write_text(
        "assessment:\n"
        "  control_families: [AC, SC, AU]\n"
        "  max_workers: 3\n"
        "subscriptions:\n"
        f"  named:\n    production: \"{SUB}\"\n"
        "storage:\n"
        f"  db_path: \"{(tmp_path / 'cli.db').as_posix()}\"\n",
        encoding="utf-8",
    )
    scan = tmp_path / "scan.json"
    scan.write_text(json.dumps({"families": {
        "AC": {"observations": [
            {"resourceId": VM_ID, "ruleId": "admin-accounts-restricted",
             "resourceType": "Microsoft.Compute/virtualMachines"},
        ]},
        "SC": {
            "controlsEvaluated": ["SC-7", "SC-8", "SC-12", "SC-13", "SC-28"],
            "observations": [
                {"resourceId": STORAGE_ID, "ruleId": "encryption-at-rest",
                 "resourceType": "Microsoft.Storage/storageAccounts"},
                {"resourceId": SUBNET_ID, "ruleId": "nsg-missing",
                 "resourceType": "Microsoft.Network/virtualNetworks/subnets"},
            ],
        },
        "AU": {"controlsEvaluated": ["AU-2", "AU-3"]},
    }}), encoding="utf-8")
    return {"dir": tmp_path, "config": str(config), "scan": str(scan)}


def _run(workspace, *argv, scan=True):
    base = ["--config", workspace["config"]]
    if scan:
        base += ["--scan-file", workspace["scan"]]
    return main(base + list(argv))


class TestParser:
    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_evidence_family_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["evidence", "-s", "production"])


class TestCommands:
    def test_assess(self, workspace, capsys):
        assert _run(workspace, "assess", "-s", "production") == 0
        out = capsys.readouterr().out
        assert f"Subscription: {SUB}" in out
        assert "Score:        75.8" in out
        assert "Findings:     3" in out

    def test_assess_json_without_findings(self, workspace, capsys):
        assert _run(workspace, "assess", "-s", SUB, "--json", "--no-findings") == 0
        data = json.loads(capsys.readouterr().out)
        assert data["overallComplianceScore"] == 75.83
        assert "findings" not in data["controlFamilyResults"]["AC"]

    def test_plan_reads_stored_assessment(self, workspace, capsys):
        _run(workspace, "assess", "-s", "production")
        capsys.readouterr()
        assert _run(workspace, "plan", "-s", "production", "--json", scan=False) == 0
        plan = json.loads(capsys.readouterr().out)
        assert plan["totalFindings"] == 3
        assert plan["priority"] == "Critical"

    def test_plan_auto_only(self, workspace, capsys):
        _run(workspace, "assess", "-s", "production")
        capsys.readouterr()
        assert _run(workspace, "plan", "-s", "production", "--auto-only", scan=False) == 0
        out = capsys.readouterr().out
        assert "Milestones:" in out
        assert "manual" not in out

    def test_poam_emass_csv_to_file(self, workspace, capsys):
        _run(workspace, "assess", "-s", "production")
        output = workspace["dir"] / "poam.csv"
        assert _run(workspace, "poam", "-s", "production", "--format", "emass-csv",
                    "--output", str(output), scan=False) == 0
        rows = list(csv.reader(io.StringIO(output.read_text(encoding="utf-8"))))
        assert len(rows) == 4
        assert f"Wrote {output}" in capsys.readouterr().out

    def test_evidence_export(self, workspace):
        _run(workspace, "assess", "-s", "production")
        output = workspace["dir"] / "ac.xml"
        assert _run(workspace, "evidence", "-s", "production", "--family", "AC",
                    "--export", "emass", "--output", str(output), scan=False) == 0
        assert "<control-family>AC</control-family>" in output.read_text(encoding="utf-8")

    def test_evidence_without_assessment_fails(self, workspace, capsys):
        assert _run(workspace, "evidence", "-s", "production", "--family", "AC",
                    scan=False) == 1
        assert "No assessment found" in capsys.readouterr().out

    def test_risk(self, workspace, capsys):
        _run(workspace, "assess", "-s", "production")
        capsys.readouterr()
        assert _run(workspace, "risk", "-s", "production", scan=False) == 0
        out = capsys.readouterr().out
        assert "trend Stable" in out
        assert "Data Protection" in out


class TestErrors:
    def test_unknown_subscription(self, workspace, capsys):
        assert _run(workspace, "assess", "-s", "nope") == 1
        err = capsys.readouterr().err
        assert "Error: Subscription 'nope' not found" in err

    def test_error_as_json(self, workspace, capsys):
        assert _run(workspace, "risk", "-s", "production", "--json", scan=False) == 1
        assert json.loads(capsys.readouterr().out)["code"] == "NOT_FOUND"

    def test_assess_without_scanner(self, workspace):
        assert _run(workspace, "assess", "-s", "production", scan=False) == 1

    def test_bad_config_is_startup_failure(self, workspace, tmp_path):
        bad = tmp_path / "bad.yaml"
        bad.write_text("metrics:\n  enabled: true\n", encoding="utf-8")
        assert main(["--config", str(bad), "risk", "-s", SUB]) == 2
