"""
loader.py — Expense extract loading.

Reads a tenant-scoped expense extract (CSV) produced by the storage layer.
Only the presence of the required columns is validated here; field values are
left as read, because the scoring engine coerces malformed amounts and dates
itself and must see the same loosely typed data the application stores.
"""

import logging
from pathlib import Path

import pandas as pd

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = {"id", "amount", "category", "date"}


def load_expenses(csv_path: str) -> pd.DataFrame:
    """Load and validate an expense extract from disk.

    Args:
        csv_path: Absolute or relative path to the expenses CSV.

    Returns:
        Expense DataFrame, one row per expense, in file order.

    Raises:
        FileNotFoundError: If the CSV does not exist.
        ValueError: If required columns are missing.
    """
    path = Path(csv_path)
    if not path.exists():
        raise FileNotFoundError(
            f"Expense data not found at {path}. "
            "Run with --generate-data first or pass --input."
        )

    # Keep ids and free text as strings; amounts stay raw for the scorer
    df = pd.read_csv(
        path,
        dtype={"id": str, "vendor": str, "description": str, "status": str},
        keep_default_na=True,
    )

    missing = REQUIRED_COLUMNS - set(df.columns)
    if missing:
        raise ValueError(f"Missing required columns: {missing}")

    # NaN placeholders become None so downstream records look like the source
    df = df.astype(object).where(df.notna(), None)

    logger.info("Loaded %d expenses from %s", len(df), path)
    return df
