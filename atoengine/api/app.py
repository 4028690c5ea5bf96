#!/usr/bin/env python3
# CUI // SP-CTI
"""ATO Engine -- Flask application factory.

Assembles the REST API v1 blueprint with correlation-id middleware, CUI
classification headers, JSON error handlers and a health check.

Usage:
    # Development
    atoengine --scan-file scans.json serve --port 8443

    # Production (gunicorn)
    gunicorn "atoengine.api.app:create_app()" --bind 0.0.0.0:8443 --workers 1
"""

import logging
import os
import time

from flask import Flask, jsonify

from atoengine import __version__
from atoengine.compat.datetime_utils import to_iso, utc_now
from atoengine.resilience.circuit_breaker import get_all_breakers
from atoengine.resilience.correlation import register_correlation_middleware

logger = logging.getLogger("atoengine.api.app")

SERVICE_NAME = "atoengine"

_start_time = time.time()


def _register_cui_headers(app):
    """Add CUI/classification headers to all responses."""
    classification = os.environ.get("CLASSIFICATION", "CUI // SP-CTI")

    @app.after_request
    def _add_cui_headers(response):
        response.headers["X-Classification"] = classification
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"
        response.headers["X-Powered-By"] = SERVICE_NAME
        return response


def _register_error_handlers(app):
    """Register global JSON error handlers."""

    @app.errorhandler(400)
    def bad_request(exc):
        return jsonify({
            "error": "Bad request",
            "code": "BAD_REQUEST",
            "details": str(exc),
        }), 400

    @app.errorhandler(404)
    def not_found(exc):
        return jsonify({"error": "Not found", "code": "NOT_FOUND"}), 404

    @app.errorhandler(405)
    def method_not_allowed(exc):
        return jsonify({"error": "Method not allowed", "code": "METHOD_NOT_ALLOWED"}), 405

    @app.errorhandler(500)
    def internal_error(exc):
        logger.error("Internal server error: %s", exc)
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


def _register_health_check(app):
    """Register the /health endpoint."""

    @app.route("/health", methods=["GET"])
    def health_check():
        """GET /health -- Service health with store and circuit breaker state."""
        engine = app.config["ATO_ENGINE"]
        try:
            assessments = engine.store.count()
            store = {"status": "ok", "assessments": assessments}
        except Exception as exc:
            store = {"status": "error", "message": str(exc)}
        breakers = {name: stats["state"] for name, stats in get_all_breakers().items()}
        degraded = store["status"] != "ok" or "open" in breakers.values()
        return jsonify({
            "status": "degraded" if degraded else "ok",
            "service": SERVICE_NAME,
            "version": __version__,
            "uptime_seconds": int(time.time() - _start_time),
            "timestamp": to_iso(utc_now()),
            "components": {
                "assessment_store": store,
                "scanner": {"status": "ok" if engine.scanner else "not_configured"},
                "circuit_breakers": breakers,
            },
        })


def create_app(engine=None, config=None):
    """Flask application factory for the ATO Engine API.

    Args:
        engine: ComplianceEngine to serve. Built from the YAML config
            when omitted.
        config: Optional dict of Flask configuration overrides.

    Returns:
        Configured Flask app instance.
    """
    if engine is None:
        from atoengine.config.engine_config import load_engine_config
        from atoengine.engine import ComplianceEngine
        engine = ComplianceEngine(load_engine_config())

    app = Flask(__name__)
    app.config["JSON_SORT_KEYS"] = False
    app.json.sort_keys = False
    app.config["MAX_CONTENT_LENGTH"] = 16 * 1024 * 1024
    app.config["ATO_ENGINE"] = engine
    if config:
        app.config.update(config)

    register_correlation_middleware(app)
    _register_cui_headers(app)
    _register_error_handlers(app)
    _register_health_check(app)

    from atoengine.api.rest_api import api_bp
    app.register_blueprint(api_bp)
    logger.info("ATO Engine API v%s initialized (CUI // SP-CTI)", __version__)
    return app
