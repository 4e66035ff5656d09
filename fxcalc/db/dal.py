"""Data Access Layer for saved calculations.

Responsibilities
----------------
- Persist a finished calculation and its ordered step ledger atomically.
- Scope every read and delete to the owning user id; another user's
  calculation is indistinguishable from a missing one.
- Return plain dict rows; routers shape them into response models.
"""

from __future__ import annotations

from pathlib import Path
import sqlite3
import uuid
from typing import Any, Dict, List, Optional

from fxcalc.models.history import CalculationIn

UTC_NOW_SQL = "strftime('%Y-%m-%dT%H:%M:%fZ','now')"


class Database:
    def __init__(self, db_path: Path):
        self.db_path = db_path

    # ------------------------------------------------------------------
    # Connection helpers
    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _steps_for(self, cur: sqlite3.Cursor, calculation_ids: List[str]) -> Dict[str, List[Dict[str, Any]]]:
        grouped: Dict[str, List[Dict[str, Any]]] = {cid: [] for cid in calculation_ids}
        if not calculation_ids:
            return grouped
        placeholders = ",".join("?" for _ in calculation_ids)
        cur.execute(
            f"""
            SELECT * FROM calculation_steps
            WHERE calculation_id IN ({placeholders})
            ORDER BY calculation_id, step_order ASC
            """,
            calculation_ids,
        )
        for row in cur.fetchall():
            grouped[row["calculation_id"]].append(dict(row))
        return grouped

    # ------------------------------------------------------------------
    # Calculations
    def save_calculation(self, calculation: CalculationIn, user_id: str) -> Dict[str, Any]:
        calc_id = str(uuid.uuid4())
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                f"""
                INSERT INTO calculations (
                    id, user_id, title, initial_amount, final_amount, currency_code,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ({UTC_NOW_SQL}), ({UTC_NOW_SQL}))
                """,
                (
                    calc_id,
                    user_id,
                    calculation.title,
                    calculation.initial_amount,
                    calculation.final_amount,
                    calculation.currency_code,
                ),
            )
            cur.executemany(
                """
                INSERT INTO calculation_steps (
                    id, calculation_id, step_order, description, calculation_details,
                    result_intermediate, result_running_total, explanation, step_type
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        str(uuid.uuid4()),
                        calc_id,
                        step.order,
                        step.description,
                        step.calculation_details,
                        step.result_intermediate,
                        step.result_running_total,
                        step.explanation,
                        step.step_type,
                    )
                    for step in calculation.steps
                ],
            )
            conn.commit()
        saved = self.get_calculation(calc_id, user_id)
        if saved is None:  # pragma: no cover - just inserted
            raise RuntimeError("calculation not found after insert")
        return saved

    def list_calculations(self, user_id: str) -> List[Dict[str, Any]]:
        """Newest first; each row carries its ``steps`` in ledger order."""
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT * FROM calculations
                WHERE user_id = ?
                ORDER BY created_at DESC, rowid DESC
                """,
                (user_id,),
            )
            rows = [dict(r) for r in cur.fetchall()]
            steps = self._steps_for(cur, [r["id"] for r in rows])
        for row in rows:
            row["steps"] = steps.get(row["id"], [])
        return rows

    def get_calculation(self, calculation_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                "SELECT * FROM calculations WHERE id = ? AND user_id = ?",
                (calculation_id, user_id),
            )
            row = cur.fetchone()
            if not row:
                return None
            data = dict(row)
            data["steps"] = self._steps_for(cur, [calculation_id])[calculation_id]
            return data

    def delete_calculation(self, calculation_id: str, user_id: str) -> bool:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                "SELECT 1 FROM calculations WHERE id = ? AND user_id = ?",
                (calculation_id, user_id),
            )
            if cur.fetchone() is None:
                return False
            cur.execute(
                "DELETE FROM calculation_steps WHERE calculation_id = ?", (calculation_id,)
            )
            cur.execute(
                "DELETE FROM calculations WHERE id = ? AND user_id = ?",
                (calculation_id, user_id),
            )
            conn.commit()
            return True
