#!/usr/bin/env python3
# CUI // SP-CTI
"""Tests for the Flask app factory and the /api/v1 blueprint."""

import csv
import io

import pytest
from conftest import OTHER_SUB, SUB


def _finding_id(engine, rule_id):
    assessment = engine.get_latest_assessment(SUB).value
    return [f for f in assessment.all_findings() if f.rule_id == rule_id][0].id


@pytest.fixture
def assessed(client, engine):
    resp = client.post("/api/v1/assessments", json={"subscription": "production"})
    assert resp.status_code == 201
    return engine


@pytest.fixture
def enc_id(assessed):
    return _finding_id(assessed, "encryption-at-rest")


class TestAppFactory:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["status"] == "ok"
        assert data["service"] == "atoengine"
        assert data["components"]["assessment_store"] == {"status": "ok", "assessments": 0}
        assert data["components"]["scanner"]["status"] == "ok"

    def test_health_degraded_when_breaker_open(self, client):
        from atoengine.resilience.circuit_breaker import get_circuit_breaker
        get_circuit_breaker("inventory-api", failure_threshold=1).record_failure()
        assert client.get("/health").get_json()["status"] == "degraded"

    def test_cui_headers(self, client):
        resp = client.get("/health")
        assert resp.headers["X-Classification"]
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["X-Frame-Options"] == "DENY"

    def test_unknown_route_is_json(self, client):
        resp = client.get("/api/v1/nothing-here")
        assert resp.status_code == 404
        assert resp.get_json()["code"] == "NOT_FOUND"

    def test_method_not_allowed(self, client):
        resp = client.get("/api/v1/assessments")
        assert resp.status_code == 405
        assert resp.get_json()["code"] == "METHOD_NOT_ALLOWED"


class TestAssessments:
    def test_run_assessment(self, client):
        resp = client.post("/api/v1/assessments", json={"subscription": "production"})
        assert resp.status_code == 201
        data = resp.get_json()
        assert data["subscriptionId"] == SUB
        assert data["overallComplianceScore"] == 75.83
        assert list(data["controlFamilyResults"]) == ["AC", "SC", "AU"]
        assert data["totalFindings"] == 3

    def test_without_findings(self, client):
        resp = client.post("/api/v1/assessments?includeFindings=false",
                           json={"subscription": SUB})
        sc = resp.get_json()["controlFamilyResults"]["SC"]
        assert "findings" not in sc
        assert sc["findingCount"] == 2

    def test_unknown_subscription(self, client):
        resp = client.post("/api/v1/assessments", json={"subscription": "nope"})
        assert resp.status_code == 400
        data = resp.get_json()
        assert data["code"] == "VALIDATION_ERROR"
        assert data["validValues"] == ["production", "staging"]

    def test_malformed_body(self, client):
        resp = client.post("/api/v1/assessments", data="{not json",
                           content_type="application/json")
        assert resp.status_code == 400

    def test_body_must_be_object(self, client):
        resp = client.post("/api/v1/assessments", json=["production"])
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Request body must be a JSON object"

    def test_timeout_must_be_number(self, client):
        resp = client.post("/api/v1/assessments",
                           json={"subscription": SUB, "timeoutSeconds": "soon"})
        assert resp.status_code == 400

    def test_latest_before_any_assessment(self, client):
        resp = client.get(f"/api/v1/assessments/{OTHER_SUB}/latest")
        assert resp.status_code == 404
        assert resp.get_json()["code"] == "NOT_FOUND"

    def test_latest_and_finding(self, client, enc_id):
        latest = client.get("/api/v1/assessments/production/latest")
        assert latest.status_code == 200
        assert latest.get_json()["subscriptionId"] == SUB
        resp = client.get(f"/api/v1/assessments/{SUB}/findings/{enc_id}")
        assert resp.status_code == 200
        assert resp.get_json()["ruleId"] == "encryption-at-rest"

    def test_missing_finding(self, client, assessed):
        resp = client.get(f"/api/v1/assessments/{SUB}/findings/FND-missing")
        assert resp.status_code == 404


class TestRemediation:
    def test_plan(self, client, assessed):
        resp = client.post("/api/v1/remediation/plans", json={"subscription": SUB})
        assert resp.status_code == 201
        data = resp.get_json()
        assert data["totalFindings"] == 3
        assert data["priority"] == "Critical"

    def test_plan_unknown_option(self, client, assessed):
        resp = client.post("/api/v1/remediation/plans",
                           json={"subscription": SUB, "options": {"fast": True}})
        assert resp.status_code == 400

    def test_plan_requires_subscription(self, client):
        resp = client.post("/api/v1/remediation/plans", json={})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "'subscription' is required"

    def test_dry_run_execution(self, client, enc_id):
        resp = client.post("/api/v1/remediation/executions",
                           json={"subscription": SUB, "findingId": enc_id})
        assert resp.status_code == 201
        data = resp.get_json()
        assert data["mode"] == "DryRun"
        assert data["status"] == "Succeeded"
        fetched = client.get(f"/api/v1/remediation/executions/{data['executionId']}")
        assert fetched.get_json()["executionId"] == data["executionId"]

    def test_approval_flow(self, client, enc_id):
        resp = client.post("/api/v1/remediation/executions", json={
            "subscription": SUB, "findingId": enc_id,
            "options": {"dryRun": False, "requireApproval": True},
        })
        assert resp.status_code == 202
        execution_id = resp.get_json()["executionId"]
        assert resp.get_json()["status"] == "Pending"

        approved = client.post(f"/api/v1/remediation/executions/{execution_id}/approve",
                               json={"approver": "isso@example.mil"})
        assert approved.status_code == 200
        assert approved.get_json()["status"] == "Succeeded"
        assert approved.get_json()["approvedBy"] == "isso@example.mil"

        validation = client.get(f"/api/v1/remediation/executions/{execution_id}/validate")
        assert validation.get_json()["isValid"] is True

        rolled = client.post(f"/api/v1/remediation/executions/{execution_id}/rollback")
        assert rolled.status_code == 200
        assert rolled.get_json()["status"] == "RolledBack"

    def test_approve_requires_approver(self, client, enc_id):
        resp = client.post("/api/v1/remediation/executions/anything/approve", json={})
        assert resp.status_code == 400

    def test_rollback_dry_run_rejected(self, client, enc_id):
        resp = client.post("/api/v1/remediation/executions",
                           json={"subscription": SUB, "findingId": enc_id})
        execution_id = resp.get_json()["executionId"]
        rolled = client.post(f"/api/v1/remediation/executions/{execution_id}/rollback")
        assert rolled.status_code == 400
        assert rolled.get_json()["code"] == "INVALID_TRANSITION"

    def test_unknown_execution(self, client):
        assert client.get("/api/v1/remediation/executions/missing").status_code == 404
        assert client.post("/api/v1/remediation/executions/missing/rollback").status_code == 404

    def test_missing_finding_id(self, client, assessed):
        resp = client.post("/api/v1/remediation/executions", json={"subscription": SUB})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "'findingId' is required"

    def test_batch(self, client, assessed):
        resp = client.post("/api/v1/remediation/batches", json={"subscription": SUB})
        assert resp.status_code == 201
        data = resp.get_json()
        assert data["succeeded"] == 2
        assert len(data["skipped"]) == 1

    def test_batch_ids_must_be_list(self, client, assessed):
        resp = client.post("/api/v1/remediation/batches",
                           json={"subscription": SUB, "findingIds": "FND-1"})
        assert resp.status_code == 400

    def test_progress(self, client, enc_id):
        client.post("/api/v1/remediation/executions", json={"subscription": SUB, "findingId": enc_id})
        resp = client.get("/api/v1/remediation/progress?subscription=production")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["totalExecutions"] == 1
        assert data["succeeded"] == 1

    def test_progress_bad_date(self, client):
        resp = client.get("/api/v1/remediation/progress?since=yesterday")
        assert resp.status_code == 400

    def test_history(self, client, enc_id):
        execution_id = client.post(
            "/api/v1/remediation/executions", json={"subscription": SUB, "findingId": enc_id},
        ).get_json()["executionId"]
        resp = client.get("/api/v1/remediation/history/production")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["totalExecutions"] == 1
        assert [e["executionId"] for e in data["executions"]] == [execution_id]

    def test_history_outside_window_is_empty(self, client, enc_id):
        client.post("/api/v1/remediation/executions", json={"subscription": SUB, "findingId": enc_id})
        resp = client.get(f"/api/v1/remediation/history/{SUB}?start=2020-01-01&end=2020-02-01")
        assert resp.status_code == 200
        assert resp.get_json()["executions"] == []

    def test_history_bad_range(self, client):
        resp = client.get(f"/api/v1/remediation/history/{SUB}?start=2025-03-05&end=2025-03-01")
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "History end date precedes start date"


    def test_hardening(self, client, assessed):
        resp = client.post("/api/v1/hardening",
                           json={"subscription": SUB, "options": {"mfa": False}})
        assert resp.status_code == 200
        assert resp.get_json()["totalActions"] == 9


class TestEvidenceAndPoam:
    def test_collect_and_download(self, client, assessed):
        resp = client.post("/api/v1/evidence", json={"subscription": SUB, "controlFamily": "AC"})
        assert resp.status_code == 201
        package_id = resp.get_json()["packageId"]
        assert resp.get_json()["completenessScore"] == 100.0

        download = client.get(f"/api/v1/evidence/{package_id}/download?format=csv")
        assert download.status_code == 200
        assert download.mimetype == "text/csv"
        assert download.headers["Content-Disposition"] == (
            f'attachment; filename="evidence-AC-{package_id}.csv"'
        )

    def test_download_emass(self, client, assessed):
        package_id = client.post(
            "/api/v1/evidence", json={"subscription": SUB, "controlFamily": "SC"},
        ).get_json()["packageId"]
        download = client.get(f"/api/v1/evidence/{package_id}/download?format=emass")
        assert download.mimetype == "application/xml"
        assert b"<emass-package" in download.data

    def test_download_bad_format(self, client, assessed):
        package_id = client.post(
            "/api/v1/evidence", json={"subscription": SUB, "controlFamily": "AC"},
        ).get_json()["packageId"]
        resp = client.get(f"/api/v1/evidence/{package_id}/download?format=docx")
        assert resp.status_code == 400
        assert resp.get_json()["validValues"] == ["json", "csv", "pdf", "emass"]

    def test_download_unknown_package(self, client):
        assert client.get("/api/v1/evidence/PKG-missing/download").status_code == 404

    def test_poam_formats(self, client, assessed):
        data = client.post("/api/v1/poam", json={"subscription": SUB}).get_json()
        assert len(data["poamItems"]) == 3

        text = client.post("/api/v1/poam", json={"subscription": SUB, "format": "text"})
        assert text.status_code == 201
        assert text.get_data(as_text=True).startswith("PLAN OF ACTION & MILESTONES")

        emass = client.post("/api/v1/poam", json={"subscription": SUB, "format": "emass-csv"})
        rows = list(csv.reader(io.StringIO(emass.get_data(as_text=True))))
        assert len(rows) == 4

    def test_poam_bad_format(self, client, assessed):
        resp = client.post("/api/v1/poam", json={"subscription": SUB, "format": "xlsx"})
        assert resp.status_code == 400
        assert resp.get_json()["validValues"] == ["json", "text", "emass-csv"]


class TestRiskAndTimeline:
    def test_risk(self, client, assessed):
        resp = client.get("/api/v1/risk/production")
        assert resp.status_code == 200
        data = resp.get_json()
        assert len(data["riskCategories"]) == 8
        assert data["riskTrend"] == "Stable"

    def test_risk_without_assessment(self, client):
        assert client.get(f"/api/v1/risk/{SUB}").status_code == 404

    def test_timeline_default_window(self, client, assessed):
        resp = client.get(f"/api/v1/timeline/{SUB}")
        assert resp.status_code == 200
        data = resp.get_json()
        assert len(data["dataPoints"]) == 1
        assert data["dataPoints"][0]["complianceScore"] == 75.83

    def test_timeline_bad_range(self, client):
        resp = client.get(f"/api/v1/timeline/{SUB}?start=2025-03-05&end=2025-03-01")
        assert resp.status_code == 400
