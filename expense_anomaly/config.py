"""
config.py — YAML configuration loading.

Every pipeline stage takes a ``config_path`` and reads its settings through
``load_config``. Values in the file are shallow-merged over ``DEFAULTS`` so a
partial config.yaml (e.g. only ``paths``) is still a working configuration.
"""

import copy
import logging
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULTS: dict[str, Any] = {
    "project": {
        "name": "Expense Anomaly Scorer",
        "currency": "INR",
    },
    "paths": {
        "raw_data": "data/raw/expenses.csv",
        "output_dir": "outputs",
        "report_filename": "expense_anomaly_report_{date}.xlsx",
        "export_filename": "flagged-expenses-{date}.csv",
        "log_dir": "logs",
    },
    "scoring": {
        "extended_rules": False,
    },
    "export": {
        "min_score": 1,
    },
    "data_generation": {
        "seed": 42,
        "days_history": 90,
        "expenses_per_day_mean": 6,
        "expenses_per_day_std": 2,
        "categories": {
            "office":   {"mean": 45.0,  "std": 15.0},
            "travel":   {"mean": 180.0, "std": 60.0},
            "meals":    {"mean": 35.0,  "std": 12.0},
            "software": {"mean": 60.0,  "std": 20.0},
        },
        "vendors": {
            "office":   ["Staples", "Office Depot", "Paper Planet"],
            "travel":   ["Uber", "IndiGo", "Marriott"],
            "meals":    ["Swiggy", "Zomato", "Cafe Coffee Day"],
            "software": ["Atlassian", "Notion", "GitHub"],
        },
        "anomaly_rates": {
            "outlier_count": 4,
            "round_number_rate": 0.03,
            "threshold_gaming_rate": 0.03,
            "weekend_office_rate": 0.02,
            "duplicate_rate": 0.02,
            "late_submission_rate": 0.02,
            "ai_flagged_rate": 0.005,
        },
    },
}


def _merge(defaults: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Shallow-merge one level of nested sections over the defaults."""
    merged = copy.deepcopy(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            section = dict(merged[key])
            section.update(value)
            merged[key] = section
        else:
            merged[key] = value
    return merged


def load_config(config_path: str = "config.yaml") -> dict[str, Any]:
    """Load the YAML configuration file and merge it over the defaults.

    Args:
        config_path: Path to config.yaml relative to project root.

    Returns:
        Parsed configuration dictionary.

    Raises:
        FileNotFoundError: If config file does not exist.
        yaml.YAMLError: If config file is malformed.
        ValueError: If the file does not hold a mapping at the top level.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")
    with open(path, "r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Configuration root must be a mapping: {path}")
    config = _merge(DEFAULTS, raw)
    logger.debug("Configuration loaded from %s", path)
    return config
