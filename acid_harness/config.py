"""TOML-backed runtime settings for the harness."""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

try:  # Python 3.11+
    import tomllib  # type: ignore
except ModuleNotFoundError:  # pragma: no cover - fallback for 3.10
    import tomli as tomllib  # type: ignore


REPO_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = REPO_ROOT / "config" / "acid.toml"

BACKEND_CHOICES: Tuple[str, ...] = ("memory", "mysql")
LOG_LEVELS: Tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR")
DEFAULT_SCENARIOS: Tuple[str, ...] = ("get", "scan", "mixed")


# Settings dataclasses ----------------------------------------------------------


@dataclass
class RunSettings:
    table: str = "TestAcidGuarantees"
    families: List[str] = field(default_factory=lambda: ["A", "B", "C"])
    columns: int = 10
    payload: str = "value"
    filter_column: str = "A:data1"
    seed: Optional[int] = None
    writer_sleep: float = 0.0
    reader_sleep: float = 0.0
    flush: bool = True
    flush_interval: float = 0.1

    def family_bytes(self) -> List[bytes]:
        return [family.encode() for family in self.families]

    def payload_bytes(self) -> bytes:
        return self.payload.encode()

    def filter_cell(self) -> Tuple[bytes, bytes]:
        family, _, qualifier = self.filter_column.partition(":")
        return family.encode(), qualifier.encode()


@dataclass
class ScenarioOverrides:
    """Per-run replacements for the counts baked into the named scenarios."""

    duration: Optional[float] = None
    writers: Optional[int] = None
    getters: Optional[int] = None
    scanners: Optional[int] = None
    rows: Optional[int] = None


@dataclass
class MemorySettings:
    flush_size: int = 128 * 1024
    max_segments: int = 8


@dataclass
class MySQLSettings:
    host: Optional[str] = "127.0.0.1"
    port: int = 3306
    user: Optional[str] = "root"
    password: Optional[str] = None
    socket: Optional[str] = None
    database: Optional[str] = None
    database_prefix: str = "acid_harness"
    isolated: bool = True
    connect_timeout: int = 10
    flush_statement: Optional[str] = None


@dataclass
class LoggingSettings:
    log_level: str = "INFO"
    log_file: Optional[str] = None
    log_dir: str = "logs"


@dataclass
class HarnessSettings:
    path: Optional[Path] = None
    backend: str = "memory"
    scenarios: List[str] = field(default_factory=lambda: list(DEFAULT_SCENARIOS))
    overrides: ScenarioOverrides = field(default_factory=ScenarioOverrides)
    run: RunSettings = field(default_factory=RunSettings)
    memory: MemorySettings = field(default_factory=MemorySettings)
    mysql: MySQLSettings = field(default_factory=MySQLSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)


# Loading -----------------------------------------------------------------------


def _section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = raw.get(name, {})
    if not isinstance(value, dict):
        logging.warning("Config section [%s] ignored because it is not a table", name)
        return {}
    return value


def _apply_section(target: Any, section: Dict[str, Any], name: str) -> None:
    for key, value in section.items():
        if not hasattr(target, key):
            logging.warning("Unknown key %s.%s in config; ignoring", name, key)
            continue
        setattr(target, key, value)


def load_harness_config(config_path: Path, *, required: bool = True) -> HarnessSettings:
    """Parse the TOML file into ``HarnessSettings``.

    A missing file is an error when ``required``; otherwise the built-in
    defaults are returned so an installed package runs without a checkout.
    """
    settings = HarnessSettings(path=config_path)
    if not config_path.exists():
        if required:
            raise FileNotFoundError(f"Config {config_path} not found")
        logging.debug("Config %s not found; using built-in defaults", config_path)
        return settings

    raw = tomllib.loads(config_path.read_text(encoding="utf-8"))

    harness_section = _section(raw, "harness")
    if "backend" in harness_section:
        settings.backend = harness_section["backend"]
    if "scenarios" in harness_section:
        settings.scenarios = list(harness_section["scenarios"])
    for key in ("duration", "writers", "getters", "scanners", "rows"):
        if key in harness_section:
            setattr(settings.overrides, key, harness_section[key])

    _apply_section(settings.run, _section(raw, "run"), "run")
    _apply_section(settings.memory, _section(raw, "memory"), "memory")
    _apply_section(settings.mysql, _section(raw, "mysql"), "mysql")
    _apply_section(settings.logging, _section(raw, "logging"), "logging")
    return settings


def apply_cli_overrides(settings: HarnessSettings, args: argparse.Namespace) -> None:
    """Command-line values win over the config file."""
    if getattr(args, "backend", None):
        settings.backend = args.backend
    if getattr(args, "scenario", None):
        settings.scenarios = list(args.scenario)
    for key in ("duration", "writers", "getters", "scanners", "rows"):
        value = getattr(args, key, None)
        if value is not None:
            setattr(settings.overrides, key, value)
    if getattr(args, "seed", None) is not None:
        settings.run.seed = args.seed
    if getattr(args, "log_level", None):
        settings.logging.log_level = args.log_level
    if getattr(args, "log_file", None):
        settings.logging.log_file = args.log_file


# Validation --------------------------------------------------------------------


def _fail(message: str, *values: Any) -> None:
    logging.error(message, *values)
    raise SystemExit(2)


def _coerce(obj: Any, name: str, kind: type, label: str) -> None:
    value = getattr(obj, name)
    if value is None:
        return
    try:
        setattr(obj, name, kind(value))
    except (TypeError, ValueError):
        _fail("Invalid %s value in config: %r", label, value)


def validate_settings(settings: HarnessSettings, known_scenarios: Optional[List[str]] = None) -> None:
    """Check and coerce every knob; exits with status 2 on the first bad value."""
    if settings.backend not in BACKEND_CHOICES:
        _fail("Unsupported backend %r (choose from %s)", settings.backend, ", ".join(BACKEND_CHOICES))

    if not settings.scenarios:
        _fail("No scenarios selected")
    if known_scenarios is not None:
        unknown = sorted(set(settings.scenarios) - set(known_scenarios))
        if unknown:
            _fail("Unknown scenario(s): %s", ", ".join(unknown))

    overrides = settings.overrides
    _coerce(overrides, "duration", float, "duration")
    for name in ("writers", "getters", "scanners", "rows"):
        _coerce(overrides, name, int, name)
    if overrides.duration is not None and overrides.duration < 0:
        _fail("duration must be >= 0 (got %s)", overrides.duration)
    for name in ("writers", "getters", "scanners"):
        value = getattr(overrides, name)
        if value is not None and value < 0:
            _fail("%s must be >= 0 (got %s)", name, value)
    if overrides.rows is not None and overrides.rows < 1:
        _fail("rows must be >= 1 (got %s)", overrides.rows)

    run = settings.run
    _coerce(run, "columns", int, "columns")
    _coerce(run, "seed", int, "seed")
    _coerce(run, "writer_sleep", float, "writer_sleep")
    _coerce(run, "reader_sleep", float, "reader_sleep")
    _coerce(run, "flush_interval", float, "flush_interval")
    for name in ("table", "payload", "filter_column"):
        if not isinstance(getattr(run, name), str):
            _fail("Invalid %s type in config: %r", name, getattr(run, name))
    if not isinstance(run.flush, bool):
        _fail("Invalid flush value in config: %r (expected true or false)", run.flush)
    if not isinstance(run.families, list) or not run.families:
        _fail("families must be a non-empty list (got %r)", run.families)
    run.families = [str(family) for family in run.families]
    if len(set(run.families)) != len(run.families):
        _fail("families must be unique (got %s)", run.families)
    if run.columns < 1:
        _fail("columns must be >= 1 (got %s)", run.columns)
    if not run.payload:
        _fail("payload must not be empty")
    if min(run.writer_sleep, run.reader_sleep, run.flush_interval) < 0:
        _fail("sleep/interval values must be >= 0")
    if not run.table or "`" in run.table:
        _fail("Invalid table name %r", run.table)

    family, sep, qualifier = run.filter_column.partition(":")
    if not sep or family not in run.families:
        _fail("filter_column must be <family>:<qualifier> with a configured family (got %r)", run.filter_column)
    expected_qualifiers = {f"data{i}" for i in range(run.columns)}
    if qualifier not in expected_qualifiers:
        _fail("filter_column qualifier %r is not one of the written columns", qualifier)

    memory = settings.memory
    _coerce(memory, "flush_size", int, "memory.flush_size")
    _coerce(memory, "max_segments", int, "memory.max_segments")
    if memory.flush_size < 0 or memory.max_segments < 1:
        _fail("memory.flush_size must be >= 0 and memory.max_segments >= 1")

    mysql = settings.mysql
    _coerce(mysql, "port", int, "mysql.port")
    _coerce(mysql, "connect_timeout", int, "mysql.connect_timeout")
    if not isinstance(mysql.isolated, bool):
        _fail("Invalid mysql.isolated value in config: %r (expected true or false)", mysql.isolated)
    for name in ("host", "user", "password", "socket", "database", "database_prefix", "flush_statement"):
        value = getattr(mysql, name)
        if value is not None and not isinstance(value, str):
            _fail("Invalid mysql.%s type in config: %r", name, value)
    if settings.backend == "mysql":
        if not mysql.user:
            _fail("mysql.user is required for the mysql backend")
        if not mysql.socket and not mysql.host:
            _fail("mysql.host or mysql.socket is required for the mysql backend")
        if not mysql.isolated and not mysql.database:
            _fail("mysql.database is required when mysql.isolated is false")

    log_settings = settings.logging
    if not isinstance(log_settings.log_level, str):
        _fail("Invalid log_level type in config: %r", log_settings.log_level)
    log_settings.log_level = log_settings.log_level.strip().upper()
    if log_settings.log_level not in LOG_LEVELS:
        _fail("Unsupported log_level in config: %s", log_settings.log_level)
    if isinstance(log_settings.log_file, str):
        log_settings.log_file = log_settings.log_file.strip() or None
    elif log_settings.log_file is not None:
        _fail("Invalid log_file type in config: %r", log_settings.log_file)
