# CUI // SP-CTI
"""Append-only audit trail."""

from atoengine.audit.audit_logger import log_event, safe_log_event  # noqa: F401
