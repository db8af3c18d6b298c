"""Drives writers, get readers and scan readers against one table and reports counters."""

from __future__ import annotations

import logging
import random
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Dict, Iterator, List, Optional

from .actors import AtomicGetReader, AtomicityWriter, AtomicScanReader, Flusher
from .config import HarnessSettings, RunSettings
from .context import RepeatingActor, TestContext
from .mysql_store import DBConfig, MySQLBackend, create_database, drop_database
from .store import MemoryBackend, StoreBackend, TableClient, row_key


@dataclass(frozen=True)
class Scenario:
    name: str
    duration: float
    writers: int
    getters: int
    scanners: int
    rows: int


SCENARIOS: Dict[str, Scenario] = {
    "get": Scenario("get", 20.0, 5, 5, 0, 3),
    "scan": Scenario("scan", 20.0, 5, 0, 5, 3),
    "mixed": Scenario("mixed", 20.0, 5, 2, 2, 3),
    # heavy write load meant for an already running server
    "cluster": Scenario("cluster", 5.0, 50, 2, 2, 3),
}


@dataclass
class AtomicityReport:
    elapsed: float
    writes: List[int] = field(default_factory=list)
    reads: List[int] = field(default_factory=list)
    verified_columns: List[int] = field(default_factory=list)
    scans: List[int] = field(default_factory=list)
    rows_scanned: List[int] = field(default_factory=list)
    flushes: int = 0

    @property
    def total_written(self) -> int:
        return sum(self.writes)

    @property
    def total_read(self) -> int:
        return sum(self.reads)

    @property
    def total_scans(self) -> int:
        return sum(self.scans)

    @property
    def total_rows_scanned(self) -> int:
        return sum(self.rows_scanned)


def build_row_keys(num_unique_rows: int) -> List[bytes]:
    return [row_key(i) for i in range(num_unique_rows)]


def _actor_rng(settings: RunSettings, index: int) -> random.Random:
    if settings.seed is not None:
        return random.Random(settings.seed + index)
    return random.Random(time.time() + index * 7919)


def run_test_atomicity(
    backend: StoreBackend,
    duration: float,
    num_writers: int,
    num_getters: int,
    num_scanners: int,
    num_unique_rows: int,
    settings: Optional[RunSettings] = None,
) -> AtomicityReport:
    """Run the actor mix for ``duration`` seconds and return per-actor counters.

    Raises the first failure recorded by any actor (for example a
    ``ConsistencyViolation``) once every actor has been joined.
    """
    settings = settings or RunSettings()
    if duration < 0:
        raise ValueError(f"duration must be >= 0 (got {duration})")
    if min(num_writers, num_getters, num_scanners) < 0:
        raise ValueError("actor counts must be >= 0")
    if num_unique_rows < 1:
        raise ValueError(f"num_unique_rows must be >= 1 (got {num_unique_rows})")

    families = settings.family_bytes()
    payload = settings.payload_bytes()
    backend.create_table_if_missing()
    rows = build_row_keys(num_unique_rows)

    ctx = TestContext()
    clients: List[TableClient] = []
    writers: List[AtomicityWriter] = []
    getters: List[AtomicGetReader] = []
    scanners: List[AtomicScanReader] = []
    flusher: Optional[Flusher] = None

    def open_client() -> TableClient:
        client = backend.connect()
        clients.append(client)
        return client

    start = time.monotonic()
    try:
        for i in range(num_writers):
            writer = AtomicityWriter(
                open_client(),
                rows,
                families,
                settings.columns,
                payload,
                rng=_actor_rng(settings, i),
                name=f"writer-{i:02d}",
            )
            writers.append(writer)
            ctx.add_actor(RepeatingActor(ctx, writer, sleep=settings.writer_sleep))

        if settings.flush:
            flusher = Flusher(backend)
            ctx.add_actor(RepeatingActor(ctx, flusher, sleep=settings.flush_interval))

        for i in range(num_getters):
            getter = AtomicGetReader(
                open_client(),
                rows[i % num_unique_rows],
                families,
                settings.columns,
                name=f"getter-{i:02d}",
            )
            getters.append(getter)
            ctx.add_actor(RepeatingActor(ctx, getter, sleep=settings.reader_sleep))

        for i in range(num_scanners):
            scanner = AtomicScanReader(
                open_client(),
                families,
                settings.columns,
                settings.filter_cell(),
                payload,
                name=f"scanner-{i:02d}",
            )
            scanners.append(scanner)
            ctx.add_actor(RepeatingActor(ctx, scanner, sleep=settings.reader_sleep))

        logging.info(
            "Launching %d writer(s), %d getter(s), %d scanner(s)%s over %d row(s) for %.1fs",
            num_writers,
            num_getters,
            num_scanners,
            " and a flusher" if flusher else "",
            num_unique_rows,
            duration,
        )
        ctx.start_all()
        ctx.wait_for(duration)
    finally:
        try:
            ctx.stop_all()
        finally:
            for client in clients:
                client.close()

    report = AtomicityReport(
        elapsed=time.monotonic() - start,
        writes=[writer.num_written for writer in writers],
        reads=[getter.num_read for getter in getters],
        verified_columns=[getter.num_verified for getter in getters],
        scans=[scanner.num_scans for scanner in scanners],
        rows_scanned=[scanner.num_rows_scanned for scanner in scanners],
        flushes=flusher.num_flushes if flusher else 0,
    )
    log_report(writers, getters, scanners, flusher, report)
    return report


def log_report(
    writers: List[AtomicityWriter],
    getters: List[AtomicGetReader],
    scanners: List[AtomicScanReader],
    flusher: Optional[Flusher],
    report: AtomicityReport,
) -> None:
    logging.info("Finished test after %.1fs. Writers:", report.elapsed)
    for writer in writers:
        logging.info("  %s wrote %d", writer.name, writer.num_written)
    logging.info("Readers:")
    for getter in getters:
        logging.info(
            "  %s read %d (verified %d columns, %d miss(es))",
            getter.name,
            getter.num_read,
            getter.num_verified,
            getter.num_misses,
        )
    logging.info("Scanners:")
    for scanner in scanners:
        logging.info("  %s scanned %d", scanner.name, scanner.num_scans)
        logging.info("  %s verified %d rows", scanner.name, scanner.num_rows_scanned)
    if flusher:
        logging.info("Flusher: %d flush(es)", flusher.num_flushes)


# Store provisioning ------------------------------------------------------------


@contextmanager
def provision_store(settings: HarnessSettings, label: str) -> Iterator[StoreBackend]:
    """Yield an isolated store instance for one run and tear it down afterwards."""
    run = settings.run
    if settings.backend == "memory":
        backend = MemoryBackend(
            run.family_bytes(),
            flush_size=settings.memory.flush_size,
            max_segments=settings.memory.max_segments,
        )
        try:
            yield backend
        finally:
            backend.close()
        return

    mysql = settings.mysql
    cfg = DBConfig(
        host=mysql.host,
        port=mysql.port,
        user=mysql.user or "",
        password=mysql.password,
        socket=mysql.socket,
    )
    if mysql.isolated:
        database = f"{mysql.database_prefix}_{label}_{uuid.uuid4().hex[:8]}"
        create_database(cfg, database, connect_timeout=mysql.connect_timeout)
    else:
        database = mysql.database or ""

    backend = MySQLBackend(
        cfg.with_db(database),
        run.table,
        connect_timeout=mysql.connect_timeout,
        flush_statement=mysql.flush_statement,
    )
    try:
        yield backend
    finally:
        backend.close()
        if mysql.isolated:
            drop_database(cfg, database, connect_timeout=mysql.connect_timeout)


def resolve_scenario(name: str, settings: HarnessSettings) -> Scenario:
    scenario = SCENARIOS[name]
    overrides = {
        key: value
        for key, value in vars(settings.overrides).items()
        if value is not None
    }
    return replace(scenario, **overrides)


def run_scenario(scenario: Scenario, settings: HarnessSettings) -> AtomicityReport:
    """Provision a store, run one scenario against it, tear the store down."""
    logging.info(
        "Scenario %s on %s backend: duration=%.1fs writers=%d getters=%d scanners=%d rows=%d",
        scenario.name,
        settings.backend,
        scenario.duration,
        scenario.writers,
        scenario.getters,
        scenario.scanners,
        scenario.rows,
    )
    with provision_store(settings, scenario.name) as backend:
        return run_test_atomicity(
            backend,
            scenario.duration,
            scenario.writers,
            scenario.getters,
            scenario.scanners,
            scenario.rows,
            settings.run,
        )


def scenario_names() -> List[str]:
    return list(SCENARIOS)

