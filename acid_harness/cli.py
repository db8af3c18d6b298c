"""Command-line entry point: run the row-atomicity scenarios and report pass/fail."""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from .config import (
    BACKEND_CHOICES,
    DEFAULT_CONFIG_PATH,
    LOG_LEVELS,
    LoggingSettings,
    apply_cli_overrides,
    load_harness_config,
    validate_settings,
)
from .harness import resolve_scenario, run_scenario, scenario_names


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Build the CLI parser for the harness entry point."""
    parser = argparse.ArgumentParser(
        description=(
            "Run concurrent writers, point readers and scanners against a multi-family "
            "table and fail if any reader sees a partially applied row write."
        )
    )
    parser.add_argument(
        "--config",
        default=None,
        help=f"Path to TOML config (default: {DEFAULT_CONFIG_PATH}, built-in defaults if absent)",
    )
    parser.add_argument(
        "--scenario",
        action="append",
        choices=scenario_names(),
        help="Scenario to run; repeat for several (default: get, scan and mixed)",
    )
    parser.add_argument("--backend", choices=BACKEND_CHOICES, help="Store binding (overrides config)")
    parser.add_argument("--duration", type=float, help="Seconds per scenario (overrides scenario)")
    parser.add_argument("--writers", type=int, help="Writer actors (overrides scenario)")
    parser.add_argument("--getters", type=int, help="Point-reader actors (overrides scenario)")
    parser.add_argument("--scanners", type=int, help="Scan-reader actors (overrides scenario)")
    parser.add_argument("--rows", type=int, help="Unique target rows (overrides scenario)")
    parser.add_argument("--seed", type=int, help="Seed for the writers' row selection")
    parser.add_argument("--log-level", choices=LOG_LEVELS, help="Log level (overrides config)")
    parser.add_argument("--log-file", help="Log file path (default: <log_dir>/run_<timestamp>_<label>.log)")
    return parser.parse_args(argv)


def configure_logging(log_settings: LoggingSettings, label: str) -> Path:
    """Set up logging to stdout and tee the stream to a log file."""
    log_level = getattr(logging, log_settings.log_level.upper(), logging.INFO)
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if log_settings.log_file:
        log_path = Path(log_settings.log_file).expanduser()
    else:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_path = Path(log_settings.log_dir).expanduser() / f"run_{timestamp}_{label}.log"

    log_path.parent.mkdir(parents=True, exist_ok=True)
    handlers.append(logging.FileHandler(log_path))

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(threadName)s %(message)s",
        handlers=handlers,
        force=True,
    )
    return log_path


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    if args.config:
        config_path = Path(args.config).expanduser()
        required = True
    else:
        config_path = DEFAULT_CONFIG_PATH
        required = False

    try:
        settings = load_harness_config(config_path, required=required)
    except FileNotFoundError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2

    apply_cli_overrides(settings, args)
    validate_settings(settings, scenario_names())
    log_path = configure_logging(settings.logging, "_".join(settings.scenarios))
    logging.info("Logging to %s", log_path)
    if settings.path is not None and settings.path.exists():
        logging.info("Config: %s", settings.path)

    for name in settings.scenarios:
        scenario = resolve_scenario(name, settings)
        try:
            report = run_scenario(scenario, settings)
        except Exception as exc:
            logging.error("Scenario %s FAILED: %s", scenario.name, exc)
            return 1
        logging.info(
            "Scenario %s passed: writes=%d reads=%d scans=%d rows_verified=%d flushes=%d",
            scenario.name,
            report.total_written,
            report.total_read,
            report.total_scans,
            report.total_rows_scanned,
            report.flushes,
        )

    logging.info("All %d scenario(s) passed; detailed log saved at %s", len(settings.scenarios), log_path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
