"""
scorer.py — Severity Classification and Triage Summary.

Turns scored expenses into a review queue. Each expense's suspicion score
maps to a fixed severity band:

    High      ≥ 60  — Requires immediate review
    Medium    ≥ 40  — Flagged for review
    Low       < 40  — Monitor only

An expense is "flagged" for triage iff its score is at least 40.

Reason codes are explained through a static glossary (title, description,
typical severity, suggested action), which is also what the report and the
dashboard render next to each flagged expense.
"""

import logging
from typing import Any, Optional

import pandas as pd

logger = logging.getLogger(__name__)

SEVERITY_BANDS = {"high": 60, "medium": 40}
FLAG_THRESHOLD = SEVERITY_BANDS["medium"]

# Severity label ordering for sort/comparison
SEVERITY_ORDER = {"high": 3, "medium": 2, "low": 1}

REASON_GLOSSARY: dict[str, dict[str, str]] = {
    "statistical_outlier": {
        "title": "Statistical Outlier",
        "description": "Expense amount exceeds 2 standard deviations from the mean of the batch.",
        "severity": "high",
        "action": "Review legitimacy and request supporting documentation.",
    },
    "round_number": {
        "title": "Round Number Pattern",
        "description": "Expense is a round number (100, 1000, etc.), suggesting estimation or inflation.",
        "severity": "low",
        "action": "Require itemized receipts.",
    },
    "weekend_office": {
        "title": "Weekend Office Expense",
        "description": "Office category expense dated on a Saturday or Sunday.",
        "severity": "medium",
        "action": "Verify legitimacy or reclassify category.",
    },
    "threshold_gaming": {
        "title": "Threshold Gaming",
        "description": "Amount is suspiciously close to approval thresholds (99, 199, 499, etc.).",
        "severity": "medium",
        "action": "Implement split-transaction audits and spot checks.",
    },
    "ai_generated": {
        "title": "AI-Generated Receipt",
        "description": "Receipt image was flagged as AI-generated or digitally altered.",
        "severity": "high",
        "action": "Reject or request the original receipt before approval.",
    },
    "duplicate_claim": {
        "title": "Duplicate Claim",
        "description": "Same vendor, amount, and date appears multiple times.",
        "severity": "high",
        "action": "Investigate for double-billing or reimbursement fraud.",
    },
    "date_mismatch": {
        "title": "Date Mismatch",
        "description": "Bill date and submission date differ by 90+ days.",
        "severity": "medium",
        "action": "Verify timing and confirm expense validity.",
    },
}

SEVERITY_ACTIONS = {
    "high":   "TODAY: Requires immediate review before approval.",
    "medium": "THIS WEEK: Add to the review queue and request clarification.",
    "low":    "MONITOR: No action unless the pattern repeats.",
}


def classify_severity(score: float) -> str:
    """Map a suspicion score to a severity label.

    Args:
        score: Suspicion score (≥ 0).

    Returns:
        One of: 'high', 'medium', 'low'.
    """
    if score >= SEVERITY_BANDS["high"]:
        return "high"
    elif score >= SEVERITY_BANDS["medium"]:
        return "medium"
    else:
        return "low"


def is_flagged(score: float) -> bool:
    """True when the score puts the expense in the triage queue."""
    return score >= FLAG_THRESHOLD


def describe_reason(code: str) -> dict[str, str]:
    """Return the glossary entry for a reason code.

    Unknown codes get a generic entry titled with the code itself, so a
    newer producer never breaks rendering.
    """
    entry = REASON_GLOSSARY.get(code)
    if entry is not None:
        return dict(entry, code=code)
    return {
        "code": code,
        "title": code.replace("_", " ").title(),
        "description": "No description available.",
        "severity": "low",
        "action": "Review manually.",
    }


def apply_severity(scored: pd.DataFrame) -> pd.DataFrame:
    """Add triage columns to a scored expense DataFrame.

    Adds columns:
        severity         — 'high' | 'medium' | 'low'
        severity_rank    — integer rank for sorting (1=low, 3=high)
        flagged          — score ≥ 40
        primary_reason   — first reason code, or '' when none fired
        reason_labels    — human-readable titles joined with '; '
        action_required  — suggested next step for the reviewer

    Row order is preserved.

    Args:
        scored: Output of detector.score_expenses().

    Returns:
        New DataFrame with the triage columns.

    Raises:
        ValueError: If scored DataFrame is missing required columns.
    """
    required = {"suspicion_score", "reason_codes"}
    missing = required - set(scored.columns)
    if missing:
        raise ValueError(f"Scored DataFrame missing columns: {missing}")

    df = scored.copy()
    df["severity"] = df["suspicion_score"].map(classify_severity)
    df["severity_rank"] = df["severity"].map(SEVERITY_ORDER)
    df["flagged"] = df["suspicion_score"].map(is_flagged).astype(bool)
    df["primary_reason"] = df["reason_codes"].map(
        lambda codes: codes[0] if codes else ""
    )
    df["reason_labels"] = df["reason_codes"].map(
        lambda codes: "; ".join(describe_reason(c)["title"] for c in codes)
    )
    df["action_required"] = [
        describe_reason(primary)["action"] if severity != "low" and primary
        else SEVERITY_ACTIONS[severity]
        for severity, primary in zip(df["severity"], df["primary_reason"])
    ]

    severity_counts = df["severity"].value_counts().to_dict()
    logger.info(
        "Severity assigned — High: %d | Medium: %d | Low: %d",
        severity_counts.get("high", 0),
        severity_counts.get("medium", 0),
        severity_counts.get("low", 0),
    )
    return df


def rank_for_review(triaged: pd.DataFrame) -> pd.DataFrame:
    """Order expenses for the review queue: highest severity, then score."""
    return triaged.sort_values(
        ["severity_rank", "suspicion_score"],
        ascending=[False, False],
        kind="stable",
    ).reset_index(drop=True)


def filter_scored(
    triaged: pd.DataFrame,
    severity: Optional[str] = None,
    query: Optional[str] = None,
    min_score: int = 0,
) -> pd.DataFrame:
    """Select expenses by severity bucket, free-text search and minimum score.

    Args:
        triaged: Output of apply_severity().
        severity: 'high', 'medium' or 'low'; None or 'all' keeps every bucket.
        query: Case-insensitive substring matched against vendor and category.
        min_score: Keep only expenses scoring at least this much.

    Returns:
        Filtered DataFrame (original order).
    """
    mask = triaged["suspicion_score"] >= min_score

    if severity and severity != "all":
        if severity not in SEVERITY_ORDER:
            raise ValueError(f"Unknown severity filter: {severity!r}")
        mask &= triaged["severity"] == severity

    if query:
        needle = query.strip().lower()
        text_match = pd.Series(False, index=triaged.index)
        for column in ("vendor", "category"):
            if column in triaged.columns:
                text_match |= (
                    triaged[column].fillna("").astype(str).str.lower()
                    .str.contains(needle, regex=False)
                )
        mask &= text_match

    return triaged[mask]


def build_triage_summary(
    triaged: pd.DataFrame,
    extended: bool = False,
) -> dict[str, Any]:
    """Build the KPI block shown at the top of the anomaly dashboard.

    Args:
        triaged: Output of apply_severity() over the whole batch.
        extended: Whether the extended rule set was used (adds the count of
            AI-flagged receipts as ``critical_count``).

    Returns:
        Dict with keys:
            total_expenses, flagged_count, flagged_pct, high_risk_count,
            avg_suspicion_score, severity_breakdown, by_reason,
            flagged_by_category, top_vendors, critical_count (extended only)
    """
    total = len(triaged)
    flagged = triaged[triaged["flagged"]]
    high_count = int((triaged["severity"] == "high").sum())
    medium_count = int((triaged["severity"] == "medium").sum())
    low_count = int((triaged["severity"] == "low").sum())

    avg_score = round(float(triaged["suspicion_score"].mean()), 1) if total else 0.0

    by_reason: dict[str, int] = {}
    for codes in triaged["reason_codes"]:
        for code in codes:
            by_reason[code] = by_reason.get(code, 0) + 1

    flagged_by_category: dict[str, int] = {}
    top_vendors: dict[str, float] = {}
    if not flagged.empty:
        if "category" in flagged.columns:
            flagged_by_category = (
                flagged.groupby(flagged["category"].fillna("uncategorised"))
                .size()
                .sort_values(ascending=False)
                .astype(int)
                .to_dict()
            )
        if "vendor" in flagged.columns and "amount" in flagged.columns:
            top_vendors = (
                flagged.assign(
                    _amount=pd.to_numeric(flagged["amount"], errors="coerce").fillna(0.0)
                )
                .groupby(flagged["vendor"].fillna("unknown"))["_amount"]
                .sum()
                .round(2)
                .sort_values(ascending=False)
                .head(5)
                .to_dict()
            )

    summary = {
        "total_expenses": total,
        "flagged_count": len(flagged),
        "flagged_pct": round(len(flagged) / max(total, 1) * 100, 1),
        "high_risk_count": high_count,
        "avg_suspicion_score": avg_score,
        "severity_breakdown": {
            "high": high_count,
            "medium": medium_count,
            "low": low_count,
        },
        "by_reason": by_reason,
        "flagged_by_category": flagged_by_category,
        "top_vendors": top_vendors,
    }
    if extended:
        summary["critical_count"] = by_reason.get("ai_generated", 0)

    logger.info(
        "Triage summary built — %d of %d flagged (%.1f%%) | %d high risk",
        summary["flagged_count"],
        total,
        summary["flagged_pct"],
        high_count,
    )
    return summary
