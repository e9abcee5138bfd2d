"""
reporter.py — Triage Workbook and CSV Export.

Produces the outputs a finance reviewer works from after a scoring run:

    expense_anomaly_report_<date>.xlsx
        1. Summary            — KPI tiles, severity breakdown, reason counts
        2. Flagged Expenses   — review queue with severity-coloured rows
        3. Reason Codes       — glossary of every rule with its firing count

    flagged-expenses-<date>.csv
        Plain export of every expense with a non-zero score (or the
        configured minimum), reason codes joined with '; '.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from expense_anomaly.config import load_config
from expense_anomaly.detector import CORE_RULES, EXTENDED_RULES, parse_amount
from expense_anomaly.scorer import describe_reason, filter_scored, rank_for_review

logger = logging.getLogger(__name__)

COLOURS = {
    "navy":        "1F4E79",
    "dark_red":    "C00000",
    "amber":       "BF8F00",
    "dark_green":  "375623",
    "light_grey":  "F2F2F2",
    "white":       "FFFFFF",
    "high_row":    "FFCCCC",
    "medium_row":  "FFE5CC",
    "low_row":     "E2EFDA",
}

SEVERITY_ROW_COLOURS = {
    "high":   COLOURS["high_row"],
    "medium": COLOURS["medium_row"],
    "low":    COLOURS["low_row"],
}

THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)

EXPORT_COLUMNS = [
    ("id", "Expense ID"),
    ("amount", "Amount"),
    ("vendor", "Vendor"),
    ("category", "Category"),
    ("date", "Date"),
    ("status", "Status"),
    ("suspicion_score", "Suspicion Score"),
    ("reason_codes", "Reason Codes"),
]

FLAGGED_SHEET_COLUMNS = [
    ("id", "Expense ID"),
    ("date", "Date"),
    ("vendor", "Vendor"),
    ("category", "Category"),
    ("amount", "Amount"),
    ("status", "Status"),
    ("suspicion_score", "Score"),
    ("severity", "Severity"),
    ("reason_labels", "Reasons"),
    ("action_required", "Action Required"),
]


def _fill(hex_colour: str) -> PatternFill:
    return PatternFill(fill_type="solid", fgColor=hex_colour)


def _header_font() -> Font:
    return Font(name="Calibri", bold=True, color=COLOURS["white"], size=11)


def _title_font(size: int = 14) -> Font:
    return Font(name="Calibri", bold=True, color=COLOURS["navy"], size=size)


def _auto_fit_columns(ws, min_width: int = 10, max_width: int = 60) -> None:
    """Size every column to its longest value, clamped to [min_width, max_width]."""
    for col in ws.columns:
        longest = max(
            (len(str(cell.value)) for cell in col if cell.value is not None),
            default=0,
        )
        letter = get_column_letter(col[0].column)
        ws.column_dimensions[letter].width = min(max(longest + 4, min_width), max_width)


def _write_header_row(ws, row: int, headers: list[str], colour: str, start_col: int = 1) -> None:
    for col_i, header in enumerate(headers, start=start_col):
        cell = ws.cell(row=row, column=col_i, value=header)
        cell.fill = _fill(colour)
        cell.font = _header_font()
        cell.alignment = Alignment(horizontal="center", wrap_text=True)
        cell.border = THIN_BORDER


def _write_kpi_tile(ws, row: int, col: int, label: str, value: str, colour: str) -> None:
    """Write a two-cell KPI tile: label on top, value underneath."""
    label_cell = ws.cell(row=row, column=col, value=label)
    label_cell.fill = _fill(colour)
    label_cell.font = _header_font()
    label_cell.alignment = Alignment(horizontal="center", vertical="center")
    label_cell.border = THIN_BORDER

    value_cell = ws.cell(row=row + 1, column=col, value=value)
    value_cell.font = Font(name="Calibri", bold=True, size=16, color=colour)
    value_cell.alignment = Alignment(horizontal="center", vertical="center")
    value_cell.fill = _fill(COLOURS["light_grey"])
    value_cell.border = THIN_BORDER


def _build_summary_sheet(ws, summary: dict[str, Any], run_date: str, project: str) -> None:
    """Fill the Summary tab: title band, KPI tiles, severity and reason tables.

    Args:
        ws: Empty worksheet to populate.
        summary: Triage summary dict from scorer.build_triage_summary().
        run_date: ISO date string for the report header.
        project: Project name for the title row.
    """
    ws.sheet_properties.tabColor = COLOURS["navy"]
    ws.merge_cells("A1:F1")
    title = ws["A1"]
    title.value = f"{project.upper()} — TRIAGE SUMMARY"
    title.font = Font(name="Calibri", bold=True, size=16, color=COLOURS["white"])
    title.fill = _fill(COLOURS["navy"])
    title.alignment = Alignment(horizontal="center", vertical="center")
    ws.row_dimensions[1].height = 30

    ws.merge_cells("A2:F2")
    sub = ws["A2"]
    sub.value = f"Report Date: {run_date}"
    sub.font = Font(name="Calibri", italic=True, size=10, color=COLOURS["navy"])
    sub.alignment = Alignment(horizontal="center")

    tiles = [
        ("TOTAL EXPENSES", f"{summary['total_expenses']:,}", COLOURS["navy"]),
        ("FLAGGED", f"{summary['flagged_count']:,} ({summary['flagged_pct']:.1f}%)", COLOURS["amber"]),
        ("HIGH RISK", str(summary["high_risk_count"]), COLOURS["dark_red"]),
        ("AVG SUSPICION", f"{summary['avg_suspicion_score']:.1f}", COLOURS["dark_green"]),
    ]
    if "critical_count" in summary:
        tiles.append(("AI-FLAGGED", str(summary["critical_count"]), COLOURS["dark_red"]))
    for col_i, (label, value, colour) in enumerate(tiles, start=1):
        _write_kpi_tile(ws, row=4, col=col_i, label=label, value=value, colour=colour)
    ws.row_dimensions[5].height = 30

    ws.cell(row=7, column=1, value="SEVERITY BREAKDOWN").font = _title_font(12)
    _write_header_row(ws, 8, ["Severity", "Expenses"], COLOURS["navy"])
    for row_i, (severity, count) in enumerate(summary["severity_breakdown"].items(), start=9):
        ws.cell(row=row_i, column=1, value=severity.title()).border = THIN_BORDER
        ws.cell(row=row_i, column=2, value=count).border = THIN_BORDER

    ws.cell(row=7, column=4, value="REASON CODES FIRED").font = _title_font(12)
    _write_header_row(ws, 8, ["Reason", "Expenses"], COLOURS["dark_red"], start_col=4)
    for row_i, (code, count) in enumerate(summary["by_reason"].items(), start=9):
        ws.cell(row=row_i, column=4, value=describe_reason(code)["title"]).border = THIN_BORDER
        ws.cell(row=row_i, column=5, value=count).border = THIN_BORDER

    _auto_fit_columns(ws)


def _build_flagged_sheet(ws, triaged: pd.DataFrame) -> None:
    """Write the review queue with severity-coloured rows.

    Args:
        ws: openpyxl Worksheet (Flagged Expenses tab).
        triaged: Flagged expenses in review order.
    """
    ws.sheet_properties.tabColor = COLOURS["dark_red"]
    columns = [(key, label) for key, label in FLAGGED_SHEET_COLUMNS if key in triaged.columns]
    _write_header_row(ws, 1, [label for _, label in columns], COLOURS["dark_red"])
    ws.row_dimensions[1].height = 24
    ws.freeze_panes = "A2"

    for row_i, record in enumerate(triaged.to_dict(orient="records"), start=2):
        fill = _fill(SEVERITY_ROW_COLOURS.get(record.get("severity"), COLOURS["light_grey"]))
        for col_i, (key, _) in enumerate(columns, start=1):
            value = record.get(key)
            if key == "amount":
                value = parse_amount(value)
            elif key == "suspicion_score":
                value = int(value)
            elif value is not None and not isinstance(value, (str, int, float)):
                value = str(value)
            cell = ws.cell(row=row_i, column=col_i, value=value)
            cell.fill = fill
            cell.border = THIN_BORDER
            if key == "amount":
                cell.number_format = "#,##0.00"

    ws.auto_filter.ref = f"A1:{get_column_letter(len(columns))}1"
    _auto_fit_columns(ws)


def _build_reason_sheet(ws, summary: dict[str, Any], extended: bool) -> None:
    """Write the reason-code glossary with each rule's weight and firing count."""
    ws.sheet_properties.tabColor = COLOURS["dark_green"]
    ws.cell(row=1, column=1, value="REASON CODE GLOSSARY").font = _title_font()
    headers = ["Code", "Title", "Weight", "Fired", "Description", "Suggested Action"]
    _write_header_row(ws, 2, headers, COLOURS["dark_green"])

    rules = CORE_RULES + EXTENDED_RULES if extended else CORE_RULES
    for row_i, rule in enumerate(rules, start=3):
        entry = describe_reason(rule.code)
        row = [
            rule.code,
            entry["title"],
            rule.weight,
            summary["by_reason"].get(rule.code, 0),
            entry["description"],
            entry["action"],
        ]
        for col_i, value in enumerate(row, start=1):
            cell = ws.cell(row=row_i, column=col_i, value=value)
            cell.fill = _fill(COLOURS["light_grey"])
            cell.border = THIN_BORDER

    _auto_fit_columns(ws)


def _output_path(cfg: dict[str, Any], filename_key: str, run_date: str) -> Path:
    """Dated output file under paths.output_dir, creating the directory."""
    output_dir = Path(cfg["paths"]["output_dir"])
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir / cfg["paths"][filename_key].format(date=run_date)


def generate_report(
    triaged: pd.DataFrame,
    summary: dict[str, Any],
    config_path: str = "config.yaml",
    extended: Optional[bool] = None,
) -> Path:
    """Generate the triage workbook and write it to the output directory.

    Args:
        triaged: Output of scorer.apply_severity() for the whole batch.
        summary: Triage summary dict from scorer.build_triage_summary().
        config_path: Path to configuration YAML.
        extended: Whether extended rules were used; defaults to the
            ``scoring.extended_rules`` config value.

    Returns:
        Path to the generated .xlsx file.

    Raises:
        OSError: If output directory cannot be created.
    """
    cfg = load_config(config_path)
    if extended is None:
        extended = bool(cfg["scoring"]["extended_rules"])

    run_date = datetime.today().strftime("%Y-%m-%d")
    output_path = _output_path(cfg, "report_filename", run_date)

    queue = rank_for_review(triaged[triaged["flagged"]])

    wb = Workbook()
    wb.remove(wb.active)

    _build_summary_sheet(wb.create_sheet("Summary"), summary, run_date, cfg["project"]["name"])
    logger.info("Built Summary sheet")

    _build_flagged_sheet(wb.create_sheet("Flagged Expenses"), queue)
    logger.info("Built Flagged Expenses sheet (%d rows)", len(queue))

    _build_reason_sheet(wb.create_sheet("Reason Codes"), summary, extended)
    logger.info("Built Reason Codes sheet")

    wb.save(output_path)
    logger.info("Excel report saved to %s", output_path)
    return output_path


def export_flagged_csv(
    triaged: pd.DataFrame,
    config_path: str = "config.yaml",
    severity: Optional[str] = None,
    query: Optional[str] = None,
) -> Path:
    """Write the flagged-expense CSV export.

    Rows scoring below ``export.min_score`` are left out, as are rows outside
    the optional severity / search filters. Input order is kept.

    Args:
        triaged: Output of scorer.apply_severity().
        config_path: Path to configuration YAML.
        severity: Optional severity bucket to export.
        query: Optional vendor / category search string.

    Returns:
        Path to the written CSV.
    """
    cfg = load_config(config_path)
    min_score = int(cfg["export"]["min_score"])

    selected = filter_scored(triaged, severity=severity, query=query, min_score=min_score)

    export = pd.DataFrame(index=selected.index)
    for key, label in EXPORT_COLUMNS:
        if key == "reason_codes":
            export[label] = selected[key].map("; ".join)
        elif key in selected.columns:
            export[label] = selected[key]
        else:
            export[label] = None

    output_path = _output_path(cfg, "export_filename", datetime.today().strftime("%Y-%m-%d"))
    export.to_csv(output_path, index=False)

    logger.info("Exported %d flagged expenses to %s", len(export), output_path)
    return output_path
