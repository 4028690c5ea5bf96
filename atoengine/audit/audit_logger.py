#!/usr/bin/env python3
# CUI // SP-CTI
"""Append-only audit trail writer. Satisfies NIST 800-53 AU controls.
No UPDATE or DELETE operations; all entries are immutable.

Engine components call ``log_event`` best-effort: an audit write failure is
logged and never fails the remediation or export that triggered it.
"""

import argparse
import json
import logging
import sqlite3
from pathlib import Path
from typing import List, Optional

from atoengine.compat.db_utils import MEMORY_DB, get_db_connection
from atoengine.resilience.correlation import get_correlation_id

logger = logging.getLogger("atoengine.audit.audit_logger")

VALID_EVENT_TYPES = (
    "assessment_completed", "assessment_cancelled", "assessment_failed",
    "remediation_plan_generated",
    "remediation_submitted", "remediation_approved",
    "remediation_succeeded", "remediation_failed", "remediation_rolled_back",
    "evidence_collected", "evidence_exported",
    "poam_generated",
)


def log_event(
    event_type: str,
    actor: str,
    action: str,
    subscription_id: str = None,
    entity_id: str = None,
    details: dict = None,
    classification: str = "CUI",
    session_id: str = None,
    db_path: Path = None,
) -> Optional[int]:
    """Write an immutable audit trail entry. Returns the entry ID.

    Without a file-backed ``db_path`` the event only goes to the log.
    """
    if event_type not in VALID_EVENT_TYPES:
        raise ValueError(f"Invalid event_type '{event_type}'. Valid: {VALID_EVENT_TYPES}")

    if session_id is None:
        session_id = get_correlation_id()

    logger.info("audit [%s] %s: %s", event_type, actor, action)
    if db_path is None or str(db_path) == MEMORY_DB:
        return None

    conn = get_db_connection(db_path, row_factory=False)
    try:
        c = conn.cursor()
        c.execute(
            """INSERT INTO audit_trail
               (event_type, actor, action, subscription_id, entity_id,
                details, classification, session_id)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                event_type,
                actor,
                action,
                subscription_id,
                entity_id,
                json.dumps(details, default=str) if details else None,
                classification,
                session_id,
            ),
        )
        conn.commit()
        return c.lastrowid
    finally:
        conn.close()


def safe_log_event(*args, **kwargs) -> Optional[int]:
    """``log_event`` that logs instead of raising on storage errors."""
    try:
        return log_event(*args, **kwargs)
    except (sqlite3.Error, OSError) as exc:
        logger.warning("Could not write audit event %s: %s",
                       kwargs.get("event_type", args[0] if args else "?"), exc)
        return None


def query_events(
    db_path: Path,
    subscription_id: str = None,
    event_type: str = None,
    limit: int = 100,
) -> List[dict]:
    conn = get_db_connection(db_path)
    try:
        query = "SELECT * FROM audit_trail WHERE 1=1"
        params = []
        if subscription_id:
            query += " AND subscription_id = ?"
            params.append(subscription_id)
        if event_type:
            query += " AND event_type = ?"
            params.append(event_type)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        rows = conn.execute(query, params).fetchall()
        results = []
        for row in rows:
            entry = dict(row)
            if entry.get("details"):
                entry["details"] = json.loads(entry["details"])
            results.append(entry)
        return results
    finally:
        conn.close()


def main():
    parser = argparse.ArgumentParser(description="Query the ATO Engine audit trail")
    parser.add_argument("--db", required=True, help="Database path")
    parser.add_argument("--subscription", help="Filter by subscription id")
    parser.add_argument("--event", choices=VALID_EVENT_TYPES, help="Filter by event type")
    parser.add_argument("--limit", type=int, default=50)
    parser.add_argument("--json", action="store_true", dest="json_output", help="JSON output")
    args = parser.parse_args()

    events = query_events(Path(args.db), args.subscription, args.event, args.limit)
    if args.json_output:
        print(json.dumps(events, indent=2))
        return
    for e in events:
        print(f"#{e['id']} {e['created_at']} [{e['event_type']}] {e['actor']}: {e['action']}")


if __name__ == "__main__":
    main()
