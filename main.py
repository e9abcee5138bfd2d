"""
main.py — command-line pipeline for the Expense Anomaly Scorer.

Stages can be combined; they always run in this order:
  1. --generate-data   seeded synthetic extract (demo / validation data)
  2. --score           load, score and assign severity
  3. --report          Excel triage workbook
  4. --export          flagged-expense CSV
--full-run selects all four.

Usage examples:
    python main.py --full-run
    python main.py --score --input exports/acme_expenses.csv
    python main.py --score --report --extended-rules
    python main.py --export --severity high

Environment:
    LOG_LEVEL           Override log verbosity (default: INFO)
"""

import argparse
import logging
import logging.handlers
import os
import sys
from datetime import datetime
from pathlib import Path

import yaml


LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s"


def _configure_logging(log_dir: str = "logs", level: str = "INFO") -> None:
    """Send pipeline logs to a daily rotating file and to stdout.

    LOG_LEVEL in the environment wins over ``level``. Handlers installed by
    an earlier call are replaced, so repeated runs in one process do not
    duplicate every line.

    Args:
        log_dir: Directory for ``scoring_<YYYYMMDD>.log``.
        level: Fallback level name (DEBUG, INFO, WARNING, ERROR).
    """
    level_name = os.environ.get("LOG_LEVEL", level).upper()
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    handlers = [
        logging.handlers.RotatingFileHandler(
            log_path / f"scoring_{datetime.today():%Y%m%d}.log",
            maxBytes=5 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        ),
        logging.StreamHandler(sys.stdout),
    ]

    root = logging.getLogger()
    for old in list(root.handlers):
        root.removeHandler(old)
        old.close()
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(getattr(logging, level_name, logging.INFO))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="expense-anomaly",
        description=(
            "Expense Anomaly Scorer — "
            "rule-based suspicion scoring and triage reporting.\n\n"
            "Run --full-run to execute all pipeline stages in sequence."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --full-run
  python main.py --generate-data
  python main.py --score --input exports/acme_expenses.csv
  python main.py --report --export --extended-rules
  python main.py --export --severity high --log-level DEBUG
        """,
    )

    parser.add_argument(
        "--config",
        default="config.yaml",
        metavar="PATH",
        help="Path to configuration YAML file (default: config.yaml)",
    )
    parser.add_argument(
        "--input",
        default=None,
        metavar="CSV",
        help="Expense extract to score (default: paths.raw_data from config)",
    )
    parser.add_argument(
        "--extended-rules",
        action="store_true",
        help="Also run the ai_generated, duplicate_claim and date_mismatch rules",
    )
    parser.add_argument(
        "--severity",
        default=None,
        choices=["all", "high", "medium", "low"],
        help="Only export expenses in this severity band",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity level (default: INFO)",
    )

    stages = parser.add_argument_group("Pipeline Stages")
    for flag, help_text in (
        ("--generate-data", "write a seeded synthetic expense extract to paths.raw_data"),
        ("--score", "score the extract and assign severity bands"),
        ("--report", "write the Excel triage workbook (implies --score)"),
        ("--export", "write the flagged-expense CSV (implies --score)"),
        ("--full-run", "generate -> score -> report -> export"),
    ):
        stages.add_argument(flag, action="store_true", help=help_text)
    return parser


def _banner(logger: logging.Logger, title: str) -> None:
    logger.info("=" * 60)
    logger.info(title)
    logger.info("=" * 60)


def run_pipeline(
    args: argparse.Namespace,
    logger: logging.Logger,
) -> int:
    """Run the selected stages in order and return a process exit code.

    Report and export both need a scored batch, so selecting either one also
    runs the scoring stage. The extract is read and scored once per run.

    Args:
        args: Parsed CLI arguments (see ``_build_parser``).
        logger: Logger for stage progress.

    Returns:
        0 when every selected stage succeeds, 1 as soon as one fails.
    """
    from expense_anomaly.config import load_config
    from expense_anomaly.data_generator import generate_dataset
    from expense_anomaly.detector import score_expenses
    from expense_anomaly.loader import load_expenses
    from expense_anomaly.reporter import export_flagged_csv, generate_report
    from expense_anomaly.scorer import apply_severity, build_triage_summary

    try:
        cfg = load_config(args.config)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        logger.error("Cannot start pipeline, bad configuration: %s", exc)
        return 1

    run_all = args.full_run
    extended = bool(args.extended_rules or cfg["scoring"]["extended_rules"])
    triaged = None
    summary = None

    if run_all or args.generate_data:
        _banner(logger, "STAGE 1: Synthetic expense extract")
        try:
            generated = generate_dataset(args.config)
        except Exception as exc:
            logger.error("Data generation failed: %s", exc, exc_info=True)
            return 1
        logger.info("%d synthetic expenses written", len(generated))

    if run_all or args.score or args.report or args.export:
        rule_set = "core + extended rules" if extended else "core rules"
        _banner(logger, f"STAGE 2: Suspicion scoring ({rule_set})")
        input_path = args.input or cfg["paths"]["raw_data"]
        try:
            triaged = apply_severity(
                score_expenses(load_expenses(input_path), extended=extended)
            )
            summary = build_triage_summary(triaged, extended=extended)
        except FileNotFoundError as exc:
            logger.error("%s", exc)
            return 1
        except Exception as exc:
            logger.error("Scoring %s failed: %s", input_path, exc, exc_info=True)
            return 1

    if run_all or args.report:
        _banner(logger, "STAGE 3: Triage workbook")
        try:
            workbook = generate_report(triaged, summary, args.config, extended=extended)
        except Exception as exc:
            logger.error("Writing triage workbook failed: %s", exc, exc_info=True)
            return 1
        logger.info("Workbook: %s", workbook)

    if run_all or args.export:
        _banner(logger, "STAGE 4: Flagged expense export")
        try:
            export = export_flagged_csv(triaged, args.config, severity=args.severity)
        except Exception as exc:
            logger.error("Writing flagged export failed: %s", exc, exc_info=True)
            return 1
        logger.info("Export: %s", export)

    _banner(logger, "RUN COMPLETE")
    if summary is not None:
        breakdown = summary["severity_breakdown"]
        logger.info(
            "%d expenses scored | %d flagged (%.1f%%) | avg score %.1f",
            summary["total_expenses"],
            summary["flagged_count"],
            summary["flagged_pct"],
            summary["avg_suspicion_score"],
        )
        logger.info(
            "High %d | Medium %d | Low %d",
            breakdown["high"],
            breakdown["medium"],
            breakdown["low"],
        )
    return 0


def _log_dir_for(config_path: str) -> str:
    """Resolve paths.log_dir before logging exists; fall back to ./logs."""
    from expense_anomaly.config import load_config

    try:
        return load_config(config_path)["paths"]["log_dir"]
    except (OSError, ValueError, yaml.YAMLError):
        return "logs"


def main(argv=None) -> None:
    """CLI entry point for ``expense-anomaly`` / ``python main.py``."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not (args.full_run or args.generate_data or args.score or args.report or args.export):
        parser.print_help()
        sys.exit(0)

    _configure_logging(log_dir=_log_dir_for(args.config), level=args.log_level)
    logger = logging.getLogger(__name__)
    logger.info(
        "Expense Anomaly Scorer v1.0 started %s (config=%s, level=%s)",
        f"{datetime.today():%Y-%m-%d %H:%M:%S}",
        args.config,
        args.log_level,
    )
    sys.exit(run_pipeline(args, logger))


if __name__ == "__main__":
    main()
