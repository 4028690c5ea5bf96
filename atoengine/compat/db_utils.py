#!/usr/bin/env python3
# CUI // SP-CTI
"""Database path resolution, connections and schema for the ATO Engine.

Fallback chain for the database path:
    1. Explicit path argument (EngineConfig.db_path)
    2. ATOENGINE_DB_PATH environment variable
    3. Default: <project_root>/data/atoengine.db

Usage:
    from atoengine.compat.db_utils import get_db_connection
    conn = get_db_connection(db_path)
"""

import os
import sqlite3
from pathlib import Path
from typing import Optional, Union

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
_DEFAULT_DB = _PROJECT_ROOT / "data" / "atoengine.db"

MEMORY_DB = ":memory:"

SCHEMA = """
CREATE TABLE IF NOT EXISTS assessments (
    assessment_id TEXT PRIMARY KEY,
    subscription_id TEXT NOT NULL,
    resource_group TEXT,
    start_time TEXT NOT NULL,
    end_time TEXT NOT NULL,
    overall_score REAL NOT NULL,
    total_findings INTEGER NOT NULL,
    critical_findings INTEGER NOT NULL,
    payload TEXT NOT NULL,
    created_at TEXT DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_assessments_subscription
    ON assessments(subscription_id, end_time);

CREATE TABLE IF NOT EXISTS audit_trail (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_type TEXT NOT NULL,
    actor TEXT NOT NULL,
    action TEXT NOT NULL,
    subscription_id TEXT,
    entity_id TEXT,
    details TEXT,
    classification TEXT DEFAULT 'CUI',
    session_id TEXT,
    created_at TEXT DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_audit_subscription
    ON audit_trail(subscription_id, created_at);
"""


def get_db_path(explicit: Optional[Union[str, Path]] = None) -> Union[Path, str]:
    """Resolve the engine database path (see module docstring)."""
    if explicit:
        return explicit if str(explicit) == MEMORY_DB else Path(explicit)
    env_path = os.environ.get("ATOENGINE_DB_PATH")
    if env_path:
        return Path(env_path)
    return _DEFAULT_DB


def get_db_connection(
    db_path: Optional[Union[str, Path]] = None,
    row_factory: bool = True,
    check_same_thread: bool = True,
) -> sqlite3.Connection:
    """Open a connection, creating the parent directory and schema."""
    path = get_db_path(db_path)
    if str(path) != MEMORY_DB:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), check_same_thread=check_same_thread)
    if row_factory:
        conn.row_factory = sqlite3.Row
    conn.executescript(SCHEMA)
    return conn
