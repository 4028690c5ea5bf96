#!/usr/bin/env python3
# CUI // SP-CTI
"""SQLite store for completed assessments.

Each assessment is written in a single transaction (summary columns plus the
full JSON payload), so a reader never sees a partially stored assessment.
History queries feed the compliance timeline and the risk trend.
"""

import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from atoengine.compat.datetime_utils import to_iso
from atoengine.compat.db_utils import MEMORY_DB, get_db_connection
from atoengine.schemas.compliance import Assessment

logger = logging.getLogger("atoengine.db.assessment_store")


class AssessmentStore:
    """Thread-safe assessment persistence over one SQLite connection."""

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        self.db_path = db_path or MEMORY_DB
        self._conn = get_db_connection(self.db_path, check_same_thread=False)
        self._lock = threading.Lock()

    def close(self):
        with self._lock:
            self._conn.close()

    def save(self, assessment: Assessment):
        payload = json.dumps(assessment.to_dict())
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(
                        """INSERT OR REPLACE INTO assessments
                           (assessment_id, subscription_id, resource_group,
                            start_time, end_time, overall_score,
                            total_findings, critical_findings, payload)
                           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                        (
                            assessment.assessment_id,
                            assessment.subscription_id,
                            assessment.resource_group,
                            to_iso(assessment.start_time),
                            to_iso(assessment.end_time),
                            assessment.overall_compliance_score,
                            assessment.total_findings,
                            assessment.critical_findings,
                            payload,
                        ),
                    )
            except sqlite3.Error:
                logger.exception("Failed to store assessment %s", assessment.assessment_id)
                raise
        logger.debug("Stored assessment %s for %s",
                     assessment.assessment_id, assessment.subscription_id)

    def _load(self, rows) -> List[Assessment]:
        return [Assessment.from_dict(json.loads(row["payload"])) for row in rows]

    def get(self, assessment_id: str) -> Optional[Assessment]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT payload FROM assessments WHERE assessment_id = ?",
                (assessment_id,),
            ).fetchall()
        found = self._load(rows)
        return found[0] if found else None

    def latest(self, subscription_id: str, before: Optional[datetime] = None) -> Optional[Assessment]:
        """Most recent assessment, optionally strictly before ``before``."""
        query = "SELECT payload FROM assessments WHERE subscription_id = ?"
        params = [subscription_id]
        if before is not None:
            query += " AND end_time < ?"
            params.append(to_iso(before))
        query += " ORDER BY end_time DESC LIMIT 1"
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        found = self._load(rows)
        return found[0] if found else None

    def list_assessments(
        self,
        subscription_id: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[Assessment]:
        """Assessments for a subscription, oldest first."""
        query = "SELECT payload FROM assessments WHERE subscription_id = ?"
        params = [subscription_id]
        if since is not None:
            query += " AND end_time >= ?"
            params.append(to_iso(since))
        if until is not None:
            query += " AND end_time <= ?"
            params.append(to_iso(until))
        query += " ORDER BY end_time ASC"
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return self._load(rows)

    def count(self, subscription_id: Optional[str] = None) -> int:
        with self._lock:
            if subscription_id:
                row = self._conn.execute(
                    "SELECT COUNT(*) FROM assessments WHERE subscription_id = ?",
                    (subscription_id,),
                ).fetchone()
            else:
                row = self._conn.execute("SELECT COUNT(*) FROM assessments").fetchone()
        return row[0]
