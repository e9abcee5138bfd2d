"""
test_scorer.py — Unit tests for severity classification and triage summary.
"""

import sys
from pathlib import Path

import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from expense_anomaly.detector import score_expenses
from expense_anomaly.scorer import (
    REASON_GLOSSARY,
    SEVERITY_ACTIONS,
    apply_severity,
    build_triage_summary,
    classify_severity,
    describe_reason,
    filter_scored,
    is_flagged,
    rank_for_review,
)


@pytest.fixture
def triaged(triage_batch) -> pd.DataFrame:
    return apply_severity(score_expenses(pd.DataFrame(triage_batch)))


def _row(df: pd.DataFrame, expense_id: str) -> pd.Series:
    return df[df["id"] == expense_id].iloc[0]


class TestClassifySeverity:
    """Tests for the fixed severity bands."""

    @pytest.mark.parametrize(
        "score,expected",
        [
            (0, "low"),
            (39, "low"),
            (40, "medium"),
            (59, "medium"),
            (60, "high"),
            (85, "high"),
            (185, "high"),
        ],
    )
    def test_band_boundaries(self, score, expected):
        assert classify_severity(score) == expected

    def test_flagged_from_40(self):
        assert not is_flagged(39)
        assert is_flagged(40)
        assert is_flagged(75)


class TestDescribeReason:
    """Tests for the reason-code glossary lookup."""

    def test_every_rule_has_glossary_entry(self):
        for code in (
            "statistical_outlier", "round_number", "weekend_office",
            "threshold_gaming", "ai_generated", "duplicate_claim", "date_mismatch",
        ):
            assert code in REASON_GLOSSARY

    def test_known_code(self):
        entry = describe_reason("threshold_gaming")
        assert entry["code"] == "threshold_gaming"
        assert entry["title"] == "Threshold Gaming"
        assert entry["action"]

    def test_unknown_code_falls_back(self):
        entry = describe_reason("split_purchase")
        assert entry["title"] == "Split Purchase"
        assert entry["severity"] == "low"

    def test_lookup_does_not_leak_glossary(self):
        describe_reason("round_number")["title"] = "changed"
        assert REASON_GLOSSARY["round_number"]["title"] == "Round Number Pattern"


class TestApplySeverity:
    """Tests for apply_severity."""

    def test_triage_columns_added(self, triaged):
        for column in (
            "severity", "severity_rank", "flagged",
            "primary_reason", "reason_labels", "action_required",
        ):
            assert column in triaged.columns

    def test_severity_per_expense(self, triaged):
        assert _row(triaged, "EXP-B")["severity"] == "high"
        assert _row(triaged, "EXP-C")["severity"] == "medium"
        assert _row(triaged, "EXP-D")["severity"] == "low"
        assert _row(triaged, "EXP-000")["severity"] == "low"

    def test_flagged_only_at_40_and_above(self, triaged):
        flagged_ids = list(triaged.loc[triaged["flagged"], "id"])
        assert flagged_ids == ["EXP-B", "EXP-C"]

    def test_row_order_preserved(self, triage_batch, triaged):
        assert list(triaged["id"]) == [e["id"] for e in triage_batch]

    def test_reason_labels_joined(self, triaged):
        assert _row(triaged, "EXP-C")["reason_labels"] == (
            "Weekend Office Expense; Threshold Gaming"
        )
        assert _row(triaged, "EXP-000")["reason_labels"] == ""

    def test_action_follows_primary_reason_when_flagged(self, triaged):
        assert _row(triaged, "EXP-B")["primary_reason"] == "statistical_outlier"
        assert _row(triaged, "EXP-B")["action_required"] == (
            REASON_GLOSSARY["statistical_outlier"]["action"]
        )
        assert _row(triaged, "EXP-C")["action_required"] == (
            REASON_GLOSSARY["weekend_office"]["action"]
        )

    def test_low_severity_gets_monitor_action(self, triaged):
        assert _row(triaged, "EXP-D")["action_required"] == SEVERITY_ACTIONS["low"]
        assert _row(triaged, "EXP-000")["action_required"] == SEVERITY_ACTIONS["low"]

    def test_missing_columns_raise(self):
        with pytest.raises(ValueError, match="missing columns"):
            apply_severity(pd.DataFrame({"id": ["EXP-1"], "amount": [10.0]}))


class TestRankForReview:
    """Tests for review queue ordering."""

    def test_highest_severity_first(self, triaged):
        queue = rank_for_review(triaged)
        assert list(queue["id"][:3]) == ["EXP-B", "EXP-C", "EXP-D"]

    def test_ties_keep_input_order(self, triaged):
        queue = rank_for_review(triaged)
        assert list(queue["id"][3:]) == [f"EXP-{i:03d}" for i in range(10)]


class TestFilterScored:
    """Tests for severity / search / minimum-score filtering."""

    def test_no_filters_keeps_everything(self, triaged):
        assert len(filter_scored(triaged)) == 13

    def test_all_is_no_filter(self, triaged):
        assert len(filter_scored(triaged, severity="all")) == 13

    def test_high_bucket(self, triaged):
        assert list(filter_scored(triaged, severity="high")["id"]) == ["EXP-B"]

    def test_medium_bucket(self, triaged):
        assert list(filter_scored(triaged, severity="medium")["id"]) == ["EXP-C"]

    def test_vendor_search(self, triaged):
        assert list(filter_scored(triaged, query="depot")["id"]) == ["EXP-C"]

    def test_search_is_case_insensitive_on_category(self, triaged):
        assert list(filter_scored(triaged, query="OFFICE")["id"]) == ["EXP-B", "EXP-C"]

    def test_min_score(self, triaged):
        assert list(filter_scored(triaged, min_score=1)["id"]) == ["EXP-B", "EXP-C", "EXP-D"]

    def test_unknown_severity_raises(self, triaged):
        with pytest.raises(ValueError, match="Unknown severity"):
            filter_scored(triaged, severity="critical")


class TestBuildTriageSummary:
    """Tests for the dashboard KPI block."""

    def test_headline_counts(self, triaged):
        summary = build_triage_summary(triaged)
        assert summary["total_expenses"] == 13
        assert summary["flagged_count"] == 2
        assert summary["flagged_pct"] == 15.4
        assert summary["high_risk_count"] == 1
        assert summary["avg_suspicion_score"] == 10.0

    def test_severity_breakdown(self, triaged):
        summary = build_triage_summary(triaged)
        assert summary["severity_breakdown"] == {"high": 1, "medium": 1, "low": 11}

    def test_reason_counts(self, triaged):
        summary = build_triage_summary(triaged)
        assert summary["by_reason"] == {
            "statistical_outlier": 1,
            "weekend_office": 2,
            "threshold_gaming": 2,
            "round_number": 1,
        }

    def test_flagged_breakdowns(self, triaged):
        summary = build_triage_summary(triaged)
        assert summary["flagged_by_category"] == {"office": 2}
        assert summary["top_vendors"] == {"Staples": 999.0, "Office Depot": 489.0}

    def test_core_summary_has_no_critical_count(self, triaged):
        assert "critical_count" not in build_triage_summary(triaged)

    def test_empty_batch(self):
        empty = apply_severity(score_expenses(
            pd.DataFrame(columns=["id", "amount", "category", "date"])
        ))
        summary = build_triage_summary(empty)
        assert summary["total_expenses"] == 0
        assert summary["flagged_count"] == 0
        assert summary["flagged_pct"] == 0.0
        assert summary["avg_suspicion_score"] == 0.0
        assert summary["by_reason"] == {}

    def test_extended_counts_ai_flagged_receipts(self, triage_batch):
        triage_batch[0]["ai_flagged"] = True
        triaged = apply_severity(score_expenses(pd.DataFrame(triage_batch), extended=True))
        summary = build_triage_summary(triaged, extended=True)
        assert summary["critical_count"] == 1
        assert summary["high_risk_count"] == 2
