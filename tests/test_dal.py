import sqlite3

import pytest

from fxcalc.db.dal import Database
from fxcalc.db.migrate import CURRENT_SCHEMA_VERSION, apply_migrations
from fxcalc.models.history import CalculationIn


@pytest.fixture
def db(tmp_path) -> Database:
    path = tmp_path / "history.sqlite3"
    apply_migrations(path)
    return Database(path)


def make_calc(title="Trip", final=252.0) -> CalculationIn:
    return CalculationIn.model_validate(
        {
            "initialAmount": 100,
            "finalAmount": final,
            "currencyCode": "brl",
            "title": title,
            "steps": [
                {
                    "order": 2,
                    "description": "Reduction 1: 10%",
                    "calculationDetails": "500.00 BRL - 10% = 450.00 BRL",
                    "resultIntermediate": 50,
                    "resultRunningTotal": 450,
                    "stepType": "percentage_reduction",
                },
                {
                    "order": 1,
                    "description": "Initial",
                    "calculationDetails": "Initial value: 100.00 USD",
                    "resultIntermediate": 100,
                    "resultRunningTotal": 100,
                    "stepType": "initial",
                },
            ],
        }
    )


def test_migrations_are_idempotent(tmp_path):
    path = tmp_path / "m.sqlite3"
    assert apply_migrations(path) == CURRENT_SCHEMA_VERSION
    assert apply_migrations(path) == CURRENT_SCHEMA_VERSION
    with sqlite3.connect(path) as conn:
        tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    assert {"calculations", "calculation_steps", "metadata"} <= tables


def test_save_and_get_round_trip(db):
    saved = db.save_calculation(make_calc(), "user-1")
    assert saved["user_id"] == "user-1"
    assert saved["currency_code"] == "BRL"
    assert [s["step_order"] for s in saved["steps"]] == [1, 2]

    fetched = db.get_calculation(saved["id"], "user-1")
    assert fetched == saved


def test_calculations_are_scoped_to_owner(db):
    saved = db.save_calculation(make_calc(), "owner")
    assert db.get_calculation(saved["id"], "intruder") is None
    assert db.list_calculations("intruder") == []
    assert db.delete_calculation(saved["id"], "intruder") is False
    assert db.get_calculation(saved["id"], "owner") is not None


def test_list_newest_first(db):
    first = db.save_calculation(make_calc("first"), "u")
    second = db.save_calculation(make_calc("second"), "u")
    listed = db.list_calculations("u")
    assert [c["id"] for c in listed] == [second["id"], first["id"]]
    assert all(len(c["steps"]) == 2 for c in listed)


def test_delete_removes_steps(db):
    saved = db.save_calculation(make_calc(), "u")
    assert db.delete_calculation(saved["id"], "u") is True
    assert db.get_calculation(saved["id"], "u") is None
    with sqlite3.connect(db.db_path) as conn:
        (count,) = conn.execute(
            "SELECT COUNT(*) FROM calculation_steps WHERE calculation_id = ?", (saved["id"],)
        ).fetchone()
    assert count == 0


def test_unsupported_currency_rejected():
    with pytest.raises(ValueError):
        CalculationIn(initial_amount=1, final_amount=1, currency_code="XYZ")
