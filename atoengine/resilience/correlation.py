# CUI // SP-CTI
"""Request-scoped correlation IDs for API calls and background scans.

The Flask middleware reads (or creates) an ``X-Correlation-ID`` per request;
assessment worker threads inherit the caller's id through thread-local
storage so every log line of one scan can be grouped.

Usage:
    from atoengine.resilience.correlation import register_correlation_middleware
    register_correlation_middleware(app)
"""

import logging
import threading
import uuid
from typing import Optional

logger = logging.getLogger("atoengine.resilience.correlation")

CORRELATION_HEADER = "X-Correlation-ID"

_thread_local = threading.local()


def generate_correlation_id() -> str:
    """Generate a 12-character correlation ID (UUID prefix)."""
    return uuid.uuid4().hex[:12]


def get_correlation_id() -> Optional[str]:
    """Current correlation ID: Flask ``g`` first, then thread-local."""
    try:
        from flask import g, has_app_context
        if has_app_context():
            cid = getattr(g, "correlation_id", None)
            if cid:
                return cid
    except RuntimeError:
        pass
    return getattr(_thread_local, "correlation_id", None)


def set_correlation_id(correlation_id: Optional[str]):
    """Bind a correlation ID to the current thread (workers, CLI)."""
    _thread_local.correlation_id = correlation_id


def clear_correlation_id():
    _thread_local.correlation_id = None


def register_correlation_middleware(app):
    """Attach correlation ID handling to a Flask app."""
    from flask import g, request

    @app.before_request
    def _inject_correlation_id():
        cid = request.headers.get(CORRELATION_HEADER) or generate_correlation_id()
        g.correlation_id = cid
        _thread_local.correlation_id = cid

    @app.after_request
    def _add_correlation_header(response):
        cid = getattr(g, "correlation_id", None)
        if cid:
            response.headers[CORRELATION_HEADER] = cid
        return response

    @app.teardown_request
    def _clear_correlation(exc=None):
        _thread_local.correlation_id = None


class CorrelationLogFilter(logging.Filter):
    """Logging filter that injects ``correlation_id`` into log records.

    Usage:
        handler = logging.StreamHandler()
        handler.addFilter(CorrelationLogFilter())
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(correlation_id)s] %(name)s: %(message)s"))
    """

    def filter(self, record):
        record.correlation_id = get_correlation_id() or "-"
        return True
