"""
data_generator.py — Synthetic Expense Extract Generator.

Generates a realistic expense-claim history for one organisation with
controlled anomaly injection. Anomalies are recorded in ``injected_pattern``
so the scoring engine can be checked against known answers.

Injected patterns:
    outlier           — amounts many times the category mean
    round_number      — whole hundreds (100, 500, 1000, ...)
    threshold_gaming  — amounts just under an approval threshold
    weekend_office    — office purchases moved onto a weekend
    duplicate         — exact vendor + amount + date re-submissions
    late_submission   — submitted more than 90 days after the bill date
    ai_flagged        — receipt flagged by image forensics

Outputs:
    data/raw/expenses.csv   — primary dataset (path from config.yaml)
"""

import logging
import random
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

from expense_anomaly.config import load_config
from expense_anomaly.detector import APPROVAL_THRESHOLDS

logger = logging.getLogger(__name__)

EMPLOYEES = ["EMP-101", "EMP-102", "EMP-103", "EMP-104", "EMP-105", "EMP-106"]
STATUSES = ["pending", "approved", "approved", "approved", "rejected"]


def _build_expense_id(index: int) -> str:
    """Generate a zero-padded expense reference, e.g. 'EXP-000042'."""
    return f"EXP-{index:06d}"


def _mark(df: pd.DataFrame, idx: Any, pattern: str) -> None:
    current = df.at[idx, "injected_pattern"]
    df.at[idx, "injected_pattern"] = pattern if not current else f"{current}|{pattern}"


def _generate_base_expenses(
    cfg: dict[str, Any],
    rng: np.random.Generator,
) -> pd.DataFrame:
    """Generate the baseline expense corpus without anomalies.

    Weekday volumes follow a normal distribution around the configured mean;
    weekends carry a fraction of the volume and never contain office
    purchases. Amounts are drawn per category, kept off round hundreds and
    away from the approval thresholds so every injected pattern stands out.

    Args:
        cfg: Full configuration dictionary.
        rng: Seeded NumPy random generator for reproducibility.

    Returns:
        DataFrame with columns:
            id, user_id, date, created_at, amount, category, vendor,
            description, status, ai_flagged, injected_pattern
    """
    gen_cfg = cfg["data_generation"]
    days = gen_cfg["days_history"]
    mean_per_day = gen_cfg["expenses_per_day_mean"]
    std_per_day = gen_cfg["expenses_per_day_std"]
    categories = gen_cfg["categories"]
    vendors = gen_cfg["vendors"]

    random.seed(gen_cfg["seed"])
    start_date = datetime.today().replace(
        hour=0, minute=0, second=0, microsecond=0
    ) - timedelta(days=days)
    category_names = list(categories)

    records = []
    index = 1
    for day_offset in range(days):
        current_date = start_date + timedelta(days=day_offset)
        is_weekend = current_date.weekday() >= 5
        day_mean = max(1, mean_per_day * 0.2) if is_weekend else mean_per_day
        n_expenses = max(0, int(rng.normal(day_mean, std_per_day)))

        for _ in range(n_expenses):
            pool = [c for c in category_names if not (is_weekend and c == "office")]
            category = random.choice(pool or category_names)
            params = categories[category]
            amount = round(float(abs(rng.normal(params["mean"], params["std"]))), 2)
            amount = max(5.0, amount)
            # Nudge off round hundreds and out of threshold windows
            if amount >= 100 and amount % 100 == 0:
                amount += 0.5
            if any(t - 10 <= amount <= t for t in APPROVAL_THRESHOLDS):
                amount = round(amount - 11.0, 2)

            submitted = current_date + timedelta(
                days=int(rng.integers(0, 8)), hours=int(rng.integers(8, 19))
            )
            records.append(
                {
                    "id": _build_expense_id(index),
                    "user_id": random.choice(EMPLOYEES),
                    "date": current_date.strftime("%Y-%m-%d"),
                    "created_at": submitted.strftime("%Y-%m-%dT%H:%M:%S"),
                    "amount": amount,
                    "category": category,
                    "vendor": random.choice(vendors[category]),
                    "description": f"{category.title()} expense",
                    "status": random.choice(STATUSES),
                    "ai_flagged": False,
                    "injected_pattern": "",
                }
            )
            index += 1

    df = pd.DataFrame(records)
    logger.info("Generated %d base expenses across %d days", len(df), days)
    return df


def _inject_outliers(
    df: pd.DataFrame,
    count: int,
    rng: np.random.Generator,
) -> pd.DataFrame:
    """Inflate a few amounts far beyond the batch distribution.

    Args:
        df: Expense DataFrame.
        count: Number of rows to inflate.
        rng: Seeded NumPy random generator.

    Returns:
        DataFrame with the selected amounts inflated.
    """
    indices = rng.choice(df.index, size=min(count, len(df)), replace=False)
    for idx in indices:
        # 2,050 – 4,900 plus pence stays clear of round hundreds and threshold windows
        df.at[idx, "amount"] = round(float(rng.uniform(2050, 4900)), 2) + 0.37
        _mark(df, idx, "outlier")
    logger.info("Injected %d statistical outliers", len(indices))
    return df


def _inject_round_numbers(
    df: pd.DataFrame,
    rate: float,
    rng: np.random.Generator,
) -> pd.DataFrame:
    """Replace amounts with whole hundreds to simulate estimated claims."""
    n_round = max(1, int(len(df) * rate))
    indices = rng.choice(df.index, size=n_round, replace=False)
    for idx in indices:
        df.at[idx, "amount"] = float(rng.choice([100, 200, 300, 500, 1000]))
        _mark(df, idx, "round_number")
    logger.info("Injected %d round-number expenses", n_round)
    return df


def _inject_threshold_gaming(
    df: pd.DataFrame,
    rate: float,
    rng: np.random.Generator,
) -> pd.DataFrame:
    """Set amounts to sit just under a common approval threshold."""
    n_gaming = max(1, int(len(df) * rate))
    indices = rng.choice(df.index, size=n_gaming, replace=False)
    for idx in indices:
        threshold = int(rng.choice([99, 199, 499, 999]))
        df.at[idx, "amount"] = round(threshold - float(rng.uniform(0, 9.5)), 2)
        _mark(df, idx, "threshold_gaming")
    logger.info("Injected %d threshold-gaming expenses", n_gaming)
    return df


def _inject_weekend_office(
    df: pd.DataFrame,
    rate: float,
    rng: np.random.Generator,
) -> pd.DataFrame:
    """Re-date office purchases onto the following Saturday or Sunday."""
    office_rows = df.index[df["category"] == "office"]
    if len(office_rows) == 0:
        return df
    n_weekend = max(1, int(len(df) * rate))
    indices = rng.choice(office_rows, size=min(n_weekend, len(office_rows)), replace=False)
    for idx in indices:
        bill_date = datetime.strptime(df.at[idx, "date"], "%Y-%m-%d")
        shift = (5 - bill_date.weekday()) % 7 + int(rng.integers(0, 2))
        weekend = bill_date + timedelta(days=shift)
        df.at[idx, "date"] = weekend.strftime("%Y-%m-%d")
        df.at[idx, "created_at"] = (weekend + timedelta(days=1, hours=9)).strftime(
            "%Y-%m-%dT%H:%M:%S"
        )
        _mark(df, idx, "weekend_office")
    logger.info("Injected %d weekend office expenses", len(indices))
    return df


def _inject_duplicates(
    df: pd.DataFrame,
    rate: float,
    rng: np.random.Generator,
) -> pd.DataFrame:
    """Re-submit existing claims with the same vendor, amount and date.

    Args:
        df: Base expense DataFrame.
        rate: Proportion of rows to duplicate (e.g. 0.02 = 2%).
        rng: Seeded NumPy random generator.

    Returns:
        DataFrame with duplicate rows appended.
    """
    n_dupes = max(1, int(len(df) * rate))
    source_indices = rng.choice(df.index, size=n_dupes, replace=False)
    dupes = df.loc[source_indices].copy()

    for idx in dupes.index:
        dupes.at[idx, "id"] = f"EXP-DUP-{idx:06d}"
        dupes.at[idx, "status"] = "pending"
        dupes.at[idx, "injected_pattern"] = "duplicate"

    result = pd.concat([df, dupes], ignore_index=True)
    logger.info("Injected %d duplicate claims", n_dupes)
    return result


def _inject_late_submissions(
    df: pd.DataFrame,
    rate: float,
    rng: np.random.Generator,
) -> pd.DataFrame:
    """Push created_at far past the bill date (stale receipts)."""
    n_late = max(1, int(len(df) * rate))
    indices = rng.choice(df.index, size=n_late, replace=False)
    for idx in indices:
        bill_date = datetime.strptime(df.at[idx, "date"], "%Y-%m-%d")
        lag = int(rng.integers(95, 200))
        df.at[idx, "created_at"] = (bill_date + timedelta(days=lag, hours=10)).strftime(
            "%Y-%m-%dT%H:%M:%S"
        )
        _mark(df, idx, "late_submission")
    logger.info("Injected %d late submissions", n_late)
    return df


def _inject_ai_flags(
    df: pd.DataFrame,
    rate: float,
    rng: np.random.Generator,
) -> pd.DataFrame:
    """Mark a handful of receipts as flagged by image forensics."""
    n_flagged = max(1, int(len(df) * rate))
    indices = rng.choice(df.index, size=n_flagged, replace=False)
    for idx in indices:
        df.at[idx, "ai_flagged"] = True
        _mark(df, idx, "ai_flagged")
    logger.info("Injected %d AI-flagged receipts", n_flagged)
    return df


def generate_dataset(config_path: str = "config.yaml") -> pd.DataFrame:
    """Build the seeded synthetic extract and write it to paths.raw_data.

    Each injection step tags the rows it touches in ``injected_pattern``;
    duplicates are added last so copies match their source exactly.

    Args:
        config_path: Path to configuration YAML file.

    Returns:
        Complete expense DataFrame including injected anomalies.

    Raises:
        OSError: If paths.raw_data cannot be written.
    """
    cfg = load_config(config_path)
    seed = cfg["data_generation"]["seed"]
    rng = np.random.default_rng(seed)

    logger.info("Starting dataset generation (seed=%d)", seed)

    df = _generate_base_expenses(cfg, rng)
    if df.empty:
        logger.warning("Base generation produced no expenses — nothing to inject")
    else:
        rates = cfg["data_generation"]["anomaly_rates"]
        df = _inject_outliers(df, rates["outlier_count"], rng)
        df = _inject_round_numbers(df, rates["round_number_rate"], rng)
        df = _inject_threshold_gaming(df, rates["threshold_gaming_rate"], rng)
        df = _inject_weekend_office(df, rates["weekend_office_rate"], rng)
        df = _inject_late_submissions(df, rates["late_submission_rate"], rng)
        df = _inject_ai_flags(df, rates["ai_flagged_rate"], rng)
        # Duplicates last so copies carry their source's final amount and date
        df = _inject_duplicates(df, rates["duplicate_rate"], rng)
        df = df.sort_values(["date", "id"]).reset_index(drop=True)

    output_path = Path(cfg["paths"]["raw_data"])
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(output_path, index=False)

    injected = int((df["injected_pattern"] != "").sum()) if not df.empty else 0
    logger.info(
        "Dataset written to %s — %d rows | %d with injected anomalies",
        output_path,
        len(df),
        injected,
    )
    return df
