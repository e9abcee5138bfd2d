"""
expense-anomaly-scorer — Source package.

Modules:
    config          — YAML configuration loading with defaults
    loader          — Expense extract (CSV) loading and validation
    detector        — Rule-based suspicion scoring engine
    scorer          — Severity bands, reason glossary, triage summary
    reporter        — Excel triage workbook + flagged-expense CSV export
    data_generator  — Synthetic expense extract with injected anomalies
"""

from expense_anomaly.detector import score, score_expenses
from expense_anomaly.scorer import classify_severity, is_flagged

__all__ = ["score", "score_expenses", "classify_severity", "is_flagged"]
