"""Database schema DDL definitions and initialization utilities.

Tables:
  - calculations: saved calculation headers (owner, amounts, currency, title)
  - calculation_steps: ordered ledger rows belonging to a calculation
  - metadata: key/value store (schema version)
"""

from __future__ import annotations
import sqlite3
from typing import Sequence
from pathlib import Path

BASIC_UTC_NOW = "strftime('%Y-%m-%dT%H:%M:%fZ','now')"

CALCULATIONS_DDL = f"""
CREATE TABLE IF NOT EXISTS calculations (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    title TEXT,
    initial_amount REAL NOT NULL,
    final_amount REAL NOT NULL,
    currency_code TEXT NOT NULL DEFAULT 'BRL',
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW})
);
"""

CALCULATION_STEPS_DDL = """
CREATE TABLE IF NOT EXISTS calculation_steps (
    id TEXT PRIMARY KEY,
    calculation_id TEXT NOT NULL,
    step_order INTEGER NOT NULL,
    description TEXT NOT NULL,
    calculation_details TEXT NOT NULL,
    result_intermediate REAL NOT NULL,
    result_running_total REAL NOT NULL,
    explanation TEXT,
    step_type TEXT NOT NULL,
    FOREIGN KEY (calculation_id) REFERENCES calculations(id) ON DELETE CASCADE
);
"""

METADATA_DDL = f"""
CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW})
);
"""

CALCULATIONS_USER_INDEX_DDL = (
    "CREATE INDEX IF NOT EXISTS idx_calculations_user ON calculations(user_id, created_at);"
)
STEPS_CALCULATION_INDEX_DDL = (
    "CREATE INDEX IF NOT EXISTS idx_steps_calculation "
    "ON calculation_steps(calculation_id, step_order);"
)

DDL_ORDER: Sequence[str] = (
    CALCULATIONS_DDL,
    CALCULATION_STEPS_DDL,
    METADATA_DDL,
)


def init_db(path: Path) -> None:
    """Create all tables idempotently.

    Parameters
    ----------
    path: Path to SQLite database file.
    """
    conn = sqlite3.connect(path)
    try:
        cur = conn.cursor()
        for ddl in DDL_ORDER:
            cur.execute(ddl)
        for ddl in (CALCULATIONS_USER_INDEX_DDL, STEPS_CALCULATION_INDEX_DDL):
            cur.execute(ddl)
        conn.commit()
    finally:
        conn.close()
