"""
detector.py — Expense Anomaly Scoring Engine.

Scores a batch of expense records against a fixed rule set and returns every
record annotated with a suspicion score and the reason codes that fired.
Rules are independent and additive, so one expense can trigger several.

Baseline:
    mean / population standard deviation of ALL amounts in the batch,
    recomputed on every call (no caching).

Core rules (evaluated in this order):
    1. statistical_outlier  — |amount - mean| > 2σ                     +30
    2. round_number         — amount ≥ 100 and a multiple of 100        +10
    3. weekend_office       — office expense dated Saturday / Sunday    +20
    4. threshold_gaming     — amount within 10 below an approval limit  +25

Extended rules (opt-in, appended after the core rules):
    5. ai_generated         — receipt flagged by image forensics        +100
    6. duplicate_claim      — same vendor + amount + date in the batch  +40
    7. date_mismatch        — bill date vs submission > 90 days         +15

Scoring is pure: no I/O, input records are never mutated, and malformed
fields are coerced rather than raised.
"""

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Iterable, Mapping, Optional

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

APPROVAL_THRESHOLDS = (99, 199, 499, 999, 1999, 4999, 9999)
THRESHOLD_MARGIN = 10
OUTLIER_SIGMA = 2.0
ROUND_NUMBER_MINIMUM = 100
STALE_SUBMISSION_DAYS = 90


@dataclass(frozen=True)
class Baseline:
    """Population statistics of the amounts in one scoring batch."""

    count: int
    mean: float
    variance: float
    std_dev: float


@dataclass(frozen=True)
class Rule:
    """One scoring rule: a reason code, its weight and a vectorised predicate.

    The predicate receives the prepared frame (see ``_prepare_frame``) and the
    batch baseline, and returns a boolean Series aligned to the frame index.
    """

    code: str
    weight: int
    predicate: Callable[[pd.DataFrame, Baseline], pd.Series]
    description: str


# ---------------------------------------------------------------------------
# Boundary coercion
# ---------------------------------------------------------------------------

def parse_amount(value: Any) -> float:
    """Coerce a loosely typed amount to a non-negative float.

    Missing, non-numeric, boolean, NaN, infinite and negative values all
    become 0.0, so one bad record cannot abort or poison the batch.

    Args:
        value: Raw amount (number, Decimal, numeric string, None, ...).

    Returns:
        Amount as float, or 0.0 when the input is not a valid amount.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return 0.0
    try:
        amount = float(value)
    except (TypeError, ValueError, ArithmeticError):
        return 0.0
    if not math.isfinite(amount) or amount < 0:
        return 0.0
    return amount


# Strings pandas resolves against the clock rather than the input
_RELATIVE_DATE_WORDS = frozenset({"now", "today", "tomorrow", "yesterday"})


def _parse_timestamp(value: Any) -> Optional[pd.Timestamp]:
    """Return a naive wall-clock Timestamp, or None when the value is unusable.

    Timezone-aware values keep their own wall-clock time; they are not
    converted to UTC first.
    """
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        if not text or text.lower() in _RELATIVE_DATE_WORDS:
            return None
        value = text
    elif not isinstance(value, (date, np.datetime64)):
        return None
    try:
        stamp = pd.to_datetime(value, errors="coerce")
    except (ValueError, OverflowError):
        return None
    if pd.isna(stamp):
        return None
    if stamp.tzinfo is not None:
        stamp = stamp.tz_localize(None)
    return stamp


def parse_expense_date(value: Any) -> Optional[date]:
    """Return the calendar date of an expense, or None when it is unusable.

    Accepts ``date``, ``datetime``, ``pandas.Timestamp``, ``numpy.datetime64``
    and parseable strings. Relative words such as "now" or "today" are
    rejected so a record's dates never depend on when it is scored.
    """
    if value is None or value is pd.NaT:
        return None
    if isinstance(value, datetime):
        return None if pd.isna(value) else value.date()
    if isinstance(value, date):
        return value
    stamp = _parse_timestamp(value)
    return None if stamp is None else stamp.date()


def _parse_flag(value: Any) -> bool:
    """Strict boolean check for forensics flags (True or the string 'true')."""
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return False


def _normalize_text(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return " ".join(value.lower().split())


# ---------------------------------------------------------------------------
# Baseline
# ---------------------------------------------------------------------------

def compute_baseline(amounts: Iterable[float]) -> Baseline:
    """Compute the population mean / variance / std dev of a batch.

    The divisor is guarded with max(count, 1), so an empty batch yields a
    zero baseline rather than a division error. Variance divides by N.

    Args:
        amounts: Already-coerced amounts.

    Returns:
        Baseline for the batch.
    """
    values = pd.Series(list(amounts), dtype="float64")
    count = len(values)
    divisor = max(count, 1)
    mean = float(values.sum()) / divisor
    variance = float(((values - mean) ** 2).sum()) / divisor
    return Baseline(
        count=count,
        mean=mean,
        variance=variance,
        std_dev=math.sqrt(variance),
    )


# ---------------------------------------------------------------------------
# Rule predicates
# ---------------------------------------------------------------------------

def _is_statistical_outlier(frame: pd.DataFrame, baseline: Baseline) -> pd.Series:
    return (frame["_amount"] - baseline.mean).abs() > OUTLIER_SIGMA * baseline.std_dev


def _is_round_number(frame: pd.DataFrame, baseline: Baseline) -> pd.Series:
    amount = frame["_amount"]
    return (amount >= ROUND_NUMBER_MINIMUM) & (
        (amount % 100 == 0) | (amount % 1000 == 0)
    )


def _is_weekend_office(frame: pd.DataFrame, baseline: Baseline) -> pd.Series:
    return (frame["_category"] == "office") & frame["_is_weekend"]


def _is_threshold_gaming(frame: pd.DataFrame, baseline: Baseline) -> pd.Series:
    amount = frame["_amount"]
    mask = pd.Series(False, index=frame.index)
    for threshold in APPROVAL_THRESHOLDS:
        mask |= amount.between(threshold - THRESHOLD_MARGIN, threshold)
    return mask


def _is_ai_generated(frame: pd.DataFrame, baseline: Baseline) -> pd.Series:
    return frame["_ai_flagged"]


def _is_duplicate_claim(frame: pd.DataFrame, baseline: Baseline) -> pd.Series:
    if frame.empty:
        return pd.Series(False, index=frame.index)
    return frame.groupby("_duplicate_key")["_duplicate_key"].transform("size") > 1


def _is_date_mismatch(frame: pd.DataFrame, baseline: Baseline) -> pd.Series:
    return frame["_submission_lag_days"] > STALE_SUBMISSION_DAYS


CORE_RULES: tuple[Rule, ...] = (
    Rule(
        "statistical_outlier", 30, _is_statistical_outlier,
        "Amount more than 2 standard deviations from the batch mean",
    ),
    Rule(
        "round_number", 10, _is_round_number,
        "Amount of at least 100 that is a whole multiple of 100",
    ),
    Rule(
        "weekend_office", 20, _is_weekend_office,
        "Office-category expense dated on a Saturday or Sunday",
    ),
    Rule(
        "threshold_gaming", 25, _is_threshold_gaming,
        "Amount at or up to 10 below an approval threshold",
    ),
)

EXTENDED_RULES: tuple[Rule, ...] = (
    Rule(
        "ai_generated", 100, _is_ai_generated,
        "Receipt image flagged as AI-generated or altered",
    ),
    Rule(
        "duplicate_claim", 40, _is_duplicate_claim,
        "Same vendor, amount and date claimed more than once in the batch",
    ),
    Rule(
        "date_mismatch", 15, _is_date_mismatch,
        "Bill date and submission date more than 90 days apart",
    ),
)


def active_rules(extended: bool = False) -> tuple[Rule, ...]:
    """Return the ordered rule set for a scoring run."""
    return CORE_RULES + EXTENDED_RULES if extended else CORE_RULES


# ---------------------------------------------------------------------------
# Frame preparation
# ---------------------------------------------------------------------------

def _column(frame: pd.DataFrame, name: str) -> pd.Series:
    """Return a column, or an all-None column when the batch lacks it."""
    if name in frame.columns:
        return frame[name]
    return pd.Series([None] * len(frame), index=frame.index, dtype=object)


def _prepare_frame(expenses: pd.DataFrame) -> pd.DataFrame:
    """Build the typed working columns every rule predicate reads.

    Returns a new frame; the caller's frame is left untouched.
    """
    prepared = pd.DataFrame(index=expenses.index)
    prepared["_amount"] = (
        _column(expenses, "amount").map(parse_amount).astype("float64")
    )
    prepared["_category"] = _column(expenses, "category").map(
        lambda value: value.lower() if isinstance(value, str) else ""
    )

    dates = _column(expenses, "date").map(parse_expense_date)
    prepared["_is_weekend"] = dates.map(
        lambda d: d is not None and d.weekday() >= 5
    ).astype(bool)

    # Extended-rule inputs
    ai_flagged = _column(expenses, "ai_flagged").map(_parse_flag).astype(bool)
    legacy_flag = _column(expenses, "is_ai_generated").map(_parse_flag).astype(bool)
    prepared["_ai_flagged"] = ai_flagged | legacy_flag

    raw_dates = _column(expenses, "date")
    vendors = _column(expenses, "vendor").map(_normalize_text)
    keys = []
    for vendor, amount, parsed, raw in zip(
        vendors, prepared["_amount"], dates, raw_dates
    ):
        date_key = parsed.isoformat() if parsed is not None else str(raw)
        keys.append(f"{vendor}|{amount:.2f}|{date_key}")
    prepared["_duplicate_key"] = pd.Series(keys, index=expenses.index, dtype=object)

    # Elapsed time, not calendar days: 90 days and 23 hours is over 90
    billed = raw_dates.map(_parse_timestamp)
    submitted = _column(expenses, "created_at").map(_parse_timestamp)
    prepared["_submission_lag_days"] = pd.Series(
        [
            abs((sub - bill).total_seconds()) / 86400
            if sub is not None and bill is not None else np.nan
            for sub, bill in zip(submitted, billed)
        ],
        index=expenses.index,
        dtype="float64",
    )
    return prepared


def _duplicate_info(
    expenses: pd.DataFrame,
    prepared: pd.DataFrame,
    fired: pd.Series,
) -> list[Optional[dict[str, Any]]]:
    """Describe each record's duplicate group, or None if it has none."""
    ids = _column(expenses, "id")
    groups: dict[str, list[int]] = {}
    for position, key in enumerate(prepared["_duplicate_key"]):
        groups.setdefault(key, []).append(position)

    info: list[Optional[dict[str, Any]]] = []
    for position, key in enumerate(prepared["_duplicate_key"]):
        if not fired.iat[position]:
            info.append(None)
            continue
        members = groups[key]
        info.append({
            "count": len(members),
            "expense_ids": [ids.iat[m] for m in members],
            "total_amount": round(
                float(sum(prepared["_amount"].iat[m] for m in members)), 2
            ),
        })
    return info


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

def _evaluate(
    expenses: pd.DataFrame,
    extended: bool,
) -> tuple[pd.Series, list[list[str]], Optional[list], Baseline]:
    """Run every active rule once over the batch.

    Returns:
        Tuple of (scores, reason code lists, duplicate info or None, baseline),
        all positionally aligned with ``expenses``.
    """
    prepared = _prepare_frame(expenses)
    baseline = compute_baseline(prepared["_amount"])
    logger.info(
        "Scoring %d expenses | baseline mean=%.2f std=%.2f",
        baseline.count,
        baseline.mean,
        baseline.std_dev,
    )

    rules = active_rules(extended)
    scores = pd.Series(0, index=expenses.index, dtype="int64")
    fired: dict[str, pd.Series] = {}
    for rule in rules:
        mask = rule.predicate(prepared, baseline).fillna(False).astype(bool)
        fired[rule.code] = mask
        scores += mask.astype("int64") * rule.weight
        logger.debug("Rule %s fired on %d expenses", rule.code, int(mask.sum()))

    reason_codes = [
        [rule.code for rule in rules if fired[rule.code].iat[position]]
        for position in range(len(expenses))
    ]

    duplicates = None
    if extended:
        duplicates = _duplicate_info(expenses, prepared, fired["duplicate_claim"])

    logger.info(
        "Scoring complete — %d of %d expenses triggered at least one rule",
        sum(1 for codes in reason_codes if codes),
        len(reason_codes),
    )
    return scores, reason_codes, duplicates, baseline


def score_expenses(expenses: pd.DataFrame, extended: bool = False) -> pd.DataFrame:
    """Score a DataFrame of expenses.

    Adds columns:
        suspicion_score — sum of the weights of every rule that fired
        reason_codes    — list of fired rule codes, in rule order
        duplicate_info  — duplicate group summary (extended rules only)

    Args:
        expenses: One comparison population of expense rows.
        extended: Also run the extended rule set.

    Returns:
        New DataFrame with the same rows, in the same order.
    """
    scores, reason_codes, duplicates, _ = _evaluate(expenses, extended)

    scored = expenses.copy()
    scored["suspicion_score"] = scores
    scored["reason_codes"] = pd.Series(reason_codes, index=expenses.index, dtype=object)
    if extended:
        scored["duplicate_info"] = pd.Series(duplicates, index=expenses.index, dtype=object)
    return scored


def score(
    expenses: Iterable[Mapping[str, Any]],
    extended: bool = False,
) -> list[dict[str, Any]]:
    """Score a batch of expense records.

    Each output record is a new dict: the input record's fields plus
    ``suspicion_score`` and ``reason_codes`` (and ``duplicate_info`` when
    ``extended`` is set). Output length and order match the input.

    Args:
        expenses: Expense records (mappings) of one comparison population.
        extended: Also run the extended rule set.

    Returns:
        List of scored expense dicts.
    """
    records = [dict(expense) for expense in expenses]
    if not records:
        logger.info("Scoring 0 expenses — empty batch")
        return []

    # Coerce amounts before pandas sees them; out-of-range ints overflow in inference
    frame = pd.DataFrame(
        [
            dict(record, amount=parse_amount(record["amount"])) if "amount" in record
            else record
            for record in records
        ],
        dtype=object,
    )
    scores, reason_codes, duplicates, _ = _evaluate(frame, extended)

    scored = []
    for position, record in enumerate(records):
        enriched = dict(record)
        enriched["suspicion_score"] = int(scores.iat[position])
        enriched["reason_codes"] = list(reason_codes[position])
        if duplicates is not None:
            enriched["duplicate_info"] = duplicates[position]
        scored.append(enriched)
    return scored
