"""
Pytest configuration and shared fixtures for the expense anomaly tests.
"""

import sys
from pathlib import Path

import pytest
import yaml

sys.path.insert(0, str(Path(__file__).parent.parent))


def make_expense(**overrides) -> dict:
    """Return a plain weekday expense that triggers no rule on its own."""
    base = {
        "id": "EXP-000001",
        "amount": 10.0,
        "category": "meals",
        "date": "2024-01-03",  # Wednesday
        "vendor": "Zomato",
        "description": "Team lunch",
        "status": "pending",
    }
    base.update(overrides)
    return base


@pytest.fixture
def triage_batch() -> list[dict]:
    """Thirteen expenses: ten quiet meals plus one high, one medium, one low.

    Baseline: mean ≈ 137.5, population σ ≈ 281.8, so only 999 is a 2σ outlier.
        EXP-B  999  office  Sunday    → outlier + weekend + threshold = 75 (high)
        EXP-C  489  office  Saturday  → weekend + threshold           = 45 (medium)
        EXP-D  200  travel  Wednesday → round number                  = 10 (low)
    """
    batch = [make_expense(id=f"EXP-{i:03d}") for i in range(10)]
    batch.append(make_expense(
        id="EXP-B", amount=999.0, category="office", date="2024-01-07", vendor="Staples",
    ))
    batch.append(make_expense(
        id="EXP-C", amount=489.0, category="office", date="2024-01-06", vendor="Office Depot",
    ))
    batch.append(make_expense(
        id="EXP-D", amount=200.0, category="travel", date="2024-01-03", vendor="Uber",
    ))
    return batch


@pytest.fixture
def tmp_config(tmp_path) -> str:
    """Write a config.yaml whose every output lands inside tmp_path."""
    cfg = {
        "project": {"name": "Expense Anomaly Scorer", "currency": "INR"},
        "paths": {
            "raw_data": str(tmp_path / "data" / "expenses.csv"),
            "output_dir": str(tmp_path / "outputs"),
            "report_filename": "report_{date}.xlsx",
            "export_filename": "flagged-{date}.csv",
            "log_dir": str(tmp_path / "logs"),
        },
        "scoring": {"extended_rules": False},
        "export": {"min_score": 1},
        "data_generation": {
            "seed": 7,
            "days_history": 30,
            "expenses_per_day_mean": 6,
            "expenses_per_day_std": 1,
        },
    }
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(cfg), encoding="utf-8")
    return str(path)
