#!/usr/bin/env python3
# CUI // SP-CTI
"""ATO Engine -- REST API v1 Blueprint.

Thin JSON layer over ComplianceEngine (``current_app.config["ATO_ENGINE"]``).
Engine errors map to HTTP status codes in one place (``_error_response``):

    ValidationError            400  (with hint / validValues)
    NotFoundError              404
    AssessmentCancelledError   409
    SerializationError         422
    ConfigurationError         500
    Upstream/ServiceUnavailable 503 (retryable: true)

Endpoint groups:
    /api/v1/assessments         - Run and read assessments, findings
    /api/v1/remediation/...     - Plans, executions, approval, rollback, progress,
                                  history
    /api/v1/evidence            - Evidence collection and downloads
    /api/v1/poam                - POA&M generation
    /api/v1/risk, /timeline     - Risk assessment and compliance timeline
    /api/v1/hardening           - Security hardening plan

Usage:
    from atoengine.api.rest_api import api_bp
    app.register_blueprint(api_bp)
"""

import logging
from datetime import timedelta

from flask import Blueprint, Response, current_app, jsonify, request

from atoengine.compat.datetime_utils import from_iso, to_iso, utc_now
from atoengine.evidence.poam_generator import render_poam_emass_csv, render_poam_text
from atoengine.resilience.errors import (
    AssessmentCancelledError,
    AtoEngineError,
    AtoEngineTransientError,
    ConfigurationError,
    NotFoundError,
    SerializationError,
    ValidationError,
)
from atoengine.schemas.remediation import ExecutionStatus

logger = logging.getLogger("atoengine.api.rest_api")

api_bp = Blueprint("api_v1", __name__, url_prefix="/api/v1")

DEFAULT_TIMELINE_DAYS = 30
DEFAULT_HISTORY_DAYS = 30


def _engine():
    return current_app.config["ATO_ENGINE"]


def _status_for(exc: AtoEngineError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, AssessmentCancelledError):
        return 409
    if isinstance(exc, SerializationError):
        return 422
    if isinstance(exc, AtoEngineTransientError):
        return 503
    if isinstance(exc, ConfigurationError):
        return 500
    return 500


def _error_response(exc: AtoEngineError):
    status = _status_for(exc)
    if status >= 500:
        logger.error("API error %s: %s", exc.code, exc.message)
    else:
        logger.info("API request rejected (%s): %s", exc.code, exc.message)
    return jsonify(exc.to_dict()), status


@api_bp.errorhandler(AtoEngineError)
def _handle_engine_error(exc):
    return _error_response(exc)


def _body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _required(data: dict, key: str):
    value = data.get(key)
    if value in (None, ""):
        raise ValidationError(f"'{key}' is required")
    return value


def _flag(name: str, default: bool) -> bool:
    value = request.args.get(name)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes")


def _date_arg(name: str):
    value = request.args.get(name)
    if not value:
        return None
    try:
        return from_iso(value) if "T" in value else from_iso(value + "T00:00:00Z")
    except ValueError:
        raise ValidationError(f"'{name}' must be an ISO-8601 date", hint="e.g. 2025-01-31")


# ---------------------------------------------------------------------------
# Assessments
# ---------------------------------------------------------------------------
@api_bp.route("/assessments", methods=["POST"])
def run_assessment():
    """POST /api/v1/assessments -- Run a full assessment (synchronous)."""
    data = _body()
    timeout = data.get("timeoutSeconds")
    if timeout is not None and not isinstance(timeout, (int, float)):
        raise ValidationError("'timeoutSeconds' must be a number")
    assessment = _engine().run_assessment(
        data.get("subscription", ""),
        resource_group=data.get("resourceGroup"),
        timeout=timeout,
    )
    return jsonify(assessment.to_dict(include_findings=_flag("includeFindings", True))), 201


@api_bp.route("/assessments/<subscription>/latest", methods=["GET"])
def latest_assessment(subscription):
    """GET /api/v1/assessments/<sub>/latest -- Latest completed assessment."""
    result = _engine().get_latest_assessment(subscription)
    if result.is_err:
        return _error_response(result.error)
    return jsonify(result.value.to_dict(include_findings=_flag("includeFindings", True)))


@api_bp.route("/assessments/<subscription>/findings/<finding_id>", methods=["GET"])
def get_finding(subscription, finding_id):
    """GET /api/v1/assessments/<sub>/findings/<id> -- One finding."""
    result = _engine().get_finding(subscription, finding_id)
    if result.is_err:
        return _error_response(result.error)
    return jsonify(result.value.to_dict())


# ---------------------------------------------------------------------------
# Remediation
# ---------------------------------------------------------------------------
@api_bp.route("/remediation/plans", methods=["POST"])
def create_plan():
    """POST /api/v1/remediation/plans -- Plan for the latest assessment."""
    data = _body()
    plan = _engine().generate_plan(_required(data, "subscription"), options=data.get("options"))
    return jsonify(plan.to_dict()), 201


@api_bp.route("/remediation/executions", methods=["POST"])
def submit_execution():
    """POST /api/v1/remediation/executions -- Remediate one finding."""
    data = _body()
    execution = _engine().execute_remediation(
        _required(data, "subscription"),
        _required(data, "findingId"),
        options=data.get("options"),
    )
    status = 202 if execution.status is ExecutionStatus.PENDING else 201
    return jsonify(execution.to_dict()), status


@api_bp.route("/remediation/batches", methods=["POST"])
def submit_batch():
    """POST /api/v1/remediation/batches -- Remediate many findings."""
    data = _body()
    finding_ids = data.get("findingIds")
    if finding_ids is not None and not isinstance(finding_ids, list):
        raise ValidationError("'findingIds' must be a list")
    result = _engine().execute_batch(
        _required(data, "subscription"), finding_ids=finding_ids, options=data.get("options"),
    )
    return jsonify(result.to_dict()), 201


@api_bp.route("/remediation/executions/<execution_id>", methods=["GET"])
def get_execution(execution_id):
    """GET /api/v1/remediation/executions/<id> -- Execution status."""
    result = _engine().get_execution(execution_id)
    if result.is_err:
        return _error_response(result.error)
    return jsonify(result.value.to_dict())


@api_bp.route("/remediation/executions/<execution_id>/approve", methods=["POST"])
def approve_execution(execution_id):
    """POST /api/v1/remediation/executions/<id>/approve -- Approve and run."""
    data = _body()
    execution = _engine().approve_remediation(execution_id, _required(data, "approver"))
    return jsonify(execution.to_dict())


@api_bp.route("/remediation/executions/<execution_id>/rollback", methods=["POST"])
def rollback_execution(execution_id):
    """POST /api/v1/remediation/executions/<id>/rollback -- Restore backup."""
    return jsonify(_engine().rollback_remediation(execution_id).to_dict())


@api_bp.route("/remediation/executions/<execution_id>/validate", methods=["GET"])
def validate_execution(execution_id):
    """GET /api/v1/remediation/executions/<id>/validate -- Validation checks."""
    return jsonify(_engine().validate_remediation(execution_id).to_dict())


@api_bp.route("/remediation/progress", methods=["GET"])
def remediation_progress():
    """GET /api/v1/remediation/progress?subscription=&since= -- Counts by status."""
    progress = _engine().get_remediation_progress(
        request.args.get("subscription") or None, since=_date_arg("since"),
    )
    return jsonify(progress.to_dict())


@api_bp.route("/remediation/history/<subscription>", methods=["GET"])
def remediation_history(subscription):
    """GET /api/v1/remediation/history/<sub>?start=&end= -- Executions in a window."""
    end = _date_arg("end") or utc_now()
    start = _date_arg("start") or end - timedelta(days=DEFAULT_HISTORY_DAYS)
    history = _engine().get_remediation_history(subscription, start, end)
    return jsonify({
        "start": to_iso(start),
        "end": to_iso(end),
        "totalExecutions": len(history),
        "executions": [e.to_dict() for e in history],
    })



@api_bp.route("/hardening", methods=["POST"])
def hardening():
    """POST /api/v1/hardening -- Hardening actions for the latest assessment."""
    data = _body()
    plan = _engine().hardening_plan(_required(data, "subscription"), options=data.get("options"))
    return jsonify(plan)


# ---------------------------------------------------------------------------
# Evidence / POA&M
# ---------------------------------------------------------------------------
@api_bp.route("/evidence", methods=["POST"])
def collect_evidence():
    """POST /api/v1/evidence -- Collect an evidence package."""
    data = _body()
    package = _engine().collect_evidence(
        _required(data, "subscription"),
        _required(data, "controlFamily"),
        collected_by=data.get("collectedBy") or "system",
    )
    return jsonify(package.to_dict()), 201


@api_bp.route("/evidence/<package_id>/download", methods=["GET"])
def download_evidence(package_id):
    """GET /api/v1/evidence/<id>/download?format=json|csv|pdf|emass"""
    artifact = _engine().export_evidence(package_id, request.args.get("format", "json"))
    return Response(
        artifact.content,
        mimetype=artifact.media_type,
        headers={"Content-Disposition": f'attachment; filename="{artifact.file_name}"'},
    )


@api_bp.route("/poam", methods=["POST"])
def create_poam():
    """POST /api/v1/poam -- POA&M as json (default), text or emass-csv."""
    data = _body()
    doc = _engine().generate_poam(
        _required(data, "subscription"), control_family=data.get("controlFamily"),
    )
    fmt = (data.get("format") or "json").lower()
    if fmt == "json":
        return jsonify(doc.to_dict()), 201
    if fmt == "text":
        return Response(render_poam_text(doc), status=201, mimetype="text/plain")
    if fmt == "emass-csv":
        return Response(
            render_poam_emass_csv(doc), status=201, mimetype="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{doc.poam_id}.csv"'},
        )
    raise ValidationError(f"Unknown POA&M format '{fmt}'",
                          valid_values=["json", "text", "emass-csv"])


# ---------------------------------------------------------------------------
# Risk / timeline
# ---------------------------------------------------------------------------
@api_bp.route("/risk/<subscription>", methods=["GET"])
def risk_assessment(subscription):
    """GET /api/v1/risk/<sub> -- Category risk for the latest assessment."""
    return jsonify(_engine().assess_risk(subscription).to_dict())


@api_bp.route("/timeline/<subscription>", methods=["GET"])
def compliance_timeline(subscription):
    """GET /api/v1/timeline/<sub>?start=&end= -- Daily compliance history."""
    end = _date_arg("end") or utc_now()
    start = _date_arg("start") or end - timedelta(days=DEFAULT_TIMELINE_DAYS)
    timeline = _engine().compliance_timeline(subscription, start.date(), end.date())
    return jsonify(timeline.to_dict())
