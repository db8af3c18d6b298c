"""The actions driven by ``RepeatingActor``: writer, get reader, scan reader and flusher."""

from __future__ import annotations

import logging
import random
from typing import Optional, Sequence, Tuple

from .consistency import ConsistencyViolation, find_torn_column, iter_columns
from .store import Put, Scan, SingleColumnValueFilter, StoreBackend, TableClient

DEFAULT_PAYLOAD = b"value"


class AtomicityWriter:
    """Random full-row writes: one put sets the payload into every column of every family."""

    def __init__(
        self,
        client: TableClient,
        target_rows: Sequence[bytes],
        target_families: Sequence[bytes],
        num_columns: int,
        payload: bytes = DEFAULT_PAYLOAD,
        rng: Optional[random.Random] = None,
        name: str = "writer",
    ) -> None:
        if not target_rows:
            raise ValueError("AtomicityWriter needs at least one target row")
        self.client = client
        self.target_rows = tuple(target_rows)
        self.target_families = tuple(target_families)
        self.num_columns = num_columns
        self.payload = payload
        self.rng = rng or random.Random()
        self.name = name
        self.num_written = 0

    def build_put(self, target_row: bytes) -> Put:
        put = Put(target_row)
        for family, qualifier in iter_columns(self.target_families, self.num_columns):
            put.add(family, qualifier, self.payload)
        return put

    def do_one_action(self) -> None:
        target_row = self.target_rows[self.rng.randrange(len(self.target_rows))]
        self.client.put(self.build_put(target_row))
        self.num_written += 1


class AtomicGetReader:
    """Single-row reads of one target row, looking for partially completed writes."""

    def __init__(
        self,
        client: TableClient,
        target_row: bytes,
        target_families: Sequence[bytes],
        num_columns: int,
        name: str = "getter",
    ) -> None:
        self.client = client
        self.target_row = target_row
        self.target_families = tuple(target_families)
        self.num_columns = num_columns
        self.name = name
        self.num_read = 0
        self.num_verified = 0
        self.num_misses = 0

    def do_one_action(self) -> None:
        row = self.client.get(self.target_row, self.target_families)
        if row is None:
            # no writer has landed on this row yet
            self.num_misses += 1
            return

        torn = find_torn_column(row, self.target_families, self.num_columns)
        if torn is not None:
            self.num_verified += torn.index
            raise ConsistencyViolation(torn.expected, row, self.num_verified, torn)
        self.num_verified += len(self.target_families) * self.num_columns
        self.num_read += 1


class AtomicScanReader:
    """Filtered full-table scans checking every returned row for partial writes.

    The filter keeps only rows whose filter column already holds the writers'
    payload, so rows nobody has written yet are skipped rather than reported.
    """

    def __init__(
        self,
        client: TableClient,
        target_families: Sequence[bytes],
        num_columns: int,
        filter_column: Tuple[bytes, bytes],
        payload: bytes = DEFAULT_PAYLOAD,
        name: str = "scanner",
    ) -> None:
        self.client = client
        self.target_families = tuple(target_families)
        self.num_columns = num_columns
        self.filter_column = filter_column
        self.payload = payload
        self.name = name
        self.num_scans = 0
        self.num_rows_scanned = 0

    def build_scan(self) -> Scan:
        scan = Scan()
        for family in self.target_families:
            scan.add_family(family)
        family, qualifier = self.filter_column
        scan.filter = SingleColumnValueFilter(family, qualifier, self.payload)
        return scan

    def do_one_action(self) -> None:
        for row in self.client.scan(self.build_scan()):
            torn = find_torn_column(row, self.target_families, self.num_columns)
            if torn is not None:
                raise ConsistencyViolation(torn.expected, row, self.num_rows_scanned, torn)
            self.num_rows_scanned += 1
        self.num_scans += 1


class Flusher:
    """Keeps pushing in-memory state to durable storage so reads cross both paths."""

    def __init__(self, backend: StoreBackend, name: str = "flusher") -> None:
        self.backend = backend
        self.name = name
        self.num_flushes = 0

    def do_one_action(self) -> None:
        self.backend.flush()
        self.num_flushes += 1
        logging.debug("%s flush #%d", self.name, self.num_flushes)
