"""Client-side view of the multi-family table the harness drives.

The harness only talks to a store through two narrow protocols:

* ``StoreBackend`` owns a table: idempotent creation, flushes, and handing out
  per-actor clients.
* ``TableClient`` is what one actor thread uses for puts, point reads and
  filtered scans.

``MemoryBackend`` is the in-process binding. Every put, every get and every
row produced by a scan holds the table lock, so one write unit is atomic per
row; writes land in a memstore that ``flush()`` freezes into an immutable
segment, and reads merge the memstore over the segments newest-first.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Protocol, Sequence, Tuple


Cell = Tuple[bytes, bytes]
CellMap = Dict[Cell, bytes]

QUALIFIER_PREFIX = "data"
ROW_KEY_PREFIX = "test_row_"


class StoreError(RuntimeError):
    """Raised when the store rejects an operation (unknown table, closed client, ...)."""


def column_qualifier(index: int) -> bytes:
    return f"{QUALIFIER_PREFIX}{index}".encode()


def row_key(index: int) -> bytes:
    return f"{ROW_KEY_PREFIX}{index}".encode()


# Request / result types --------------------------------------------------------


@dataclass(frozen=True)
class Row:
    """One row as returned by a get or a scan."""

    key: bytes
    cells: CellMap = field(default_factory=dict)

    def value(self, family: bytes, qualifier: bytes) -> Optional[bytes]:
        return self.cells.get((family, qualifier))

    def sorted_cells(self) -> List[Tuple[bytes, bytes, bytes]]:
        """Cells sorted by family then qualifier, as (family, qualifier, value)."""
        return [(fam, qual, self.cells[(fam, qual)]) for fam, qual in sorted(self.cells)]

    def __len__(self) -> int:
        return len(self.cells)


@dataclass
class Put:
    """A single-row mutation applied as one atomic unit."""

    key: bytes
    cells: List[Tuple[bytes, bytes, bytes]] = field(default_factory=list)

    def add(self, family: bytes, qualifier: bytes, value: bytes) -> "Put":
        self.cells.append((family, qualifier, value))
        return self

    @property
    def families(self) -> Tuple[bytes, ...]:
        return tuple(dict.fromkeys(family for family, _, _ in self.cells))


@dataclass(frozen=True)
class SingleColumnValueFilter:
    """Keep rows where ``family:qualifier`` equals ``value``."""

    family: bytes
    qualifier: bytes
    value: bytes

    def matches(self, row: Row) -> bool:
        return row.value(self.family, self.qualifier) == self.value


@dataclass
class Scan:
    families: List[bytes] = field(default_factory=list)
    filter: Optional[SingleColumnValueFilter] = None

    def add_family(self, family: bytes) -> "Scan":
        self.families.append(family)
        return self


# Protocols ---------------------------------------------------------------------


class TableClient(Protocol):
    def put(self, put: Put) -> None: ...

    def get(self, key: bytes, families: Optional[Sequence[bytes]] = None) -> Optional[Row]: ...

    def scan(self, scan: Scan) -> Iterator[Row]: ...

    def close(self) -> None: ...


class StoreBackend(Protocol):
    def create_table_if_missing(self) -> None: ...

    def connect(self) -> TableClient: ...

    def flush(self) -> None: ...

    def close(self) -> None: ...


# In-memory binding -------------------------------------------------------------


def _cell_size(key: bytes, family: bytes, qualifier: bytes, value: bytes) -> int:
    return len(key) + len(family) + len(qualifier) + len(value)


class MemoryTable:
    """Thread-safe multi-family table with a memstore and flushed segments."""

    def __init__(
        self,
        families: Sequence[bytes],
        *,
        flush_size: int = 0,
        max_segments: int = 8,
    ) -> None:
        self.families: Tuple[bytes, ...] = tuple(families)
        self.flush_size = flush_size
        self.max_segments = max(1, max_segments)
        self._lock = threading.Lock()
        self._memstore: Dict[bytes, CellMap] = {}
        self._memstore_bytes = 0
        self._segments: List[Dict[bytes, CellMap]] = []
        self.flush_count = 0
        self.compaction_count = 0

    @property
    def segment_count(self) -> int:
        with self._lock:
            return len(self._segments)

    @property
    def memstore_bytes(self) -> int:
        with self._lock:
            return self._memstore_bytes

    def _check_families(self, families: Iterable[bytes]) -> None:
        unknown = [family for family in families if family not in self.families]
        if unknown:
            raise StoreError(f"Unknown column families: {', '.join(repr(f) for f in unknown)}")

    def put(self, put: Put) -> None:
        if not put.cells:
            raise StoreError(f"Empty put for row {put.key!r}")
        self._check_families(put.families)
        with self._lock:
            row = self._memstore.setdefault(put.key, {})
            for family, qualifier, value in put.cells:
                row[(family, qualifier)] = value
                self._memstore_bytes += _cell_size(put.key, family, qualifier, value)
            if self.flush_size and self._memstore_bytes >= self.flush_size:
                self._flush_locked()

    def _merged_row(self, key: bytes, families: Sequence[bytes]) -> Optional[Row]:
        # caller holds self._lock
        cells: CellMap = {}
        for segment in self._segments:
            cells.update(segment.get(key, ()))
        cells.update(self._memstore.get(key, ()))
        wanted = {(fam, qual): value for (fam, qual), value in cells.items() if fam in families}
        if not wanted:
            return None
        return Row(key, wanted)

    def get(self, key: bytes, families: Optional[Sequence[bytes]] = None) -> Optional[Row]:
        families = tuple(families) if families else self.families
        self._check_families(families)
        with self._lock:
            return self._merged_row(key, families)

    def scan(self, scan: Scan) -> Iterator[Row]:
        families = tuple(scan.families) if scan.families else self.families
        self._check_families(families)
        if scan.filter is not None:
            self._check_families((scan.filter.family,))
            # the filter column must be materialized even when it is not projected
            read_families = tuple(dict.fromkeys(families + (scan.filter.family,)))
        else:
            read_families = families

        with self._lock:
            keys = set(self._memstore)
            for segment in self._segments:
                keys.update(segment)

        for key in sorted(keys):
            with self._lock:
                row = self._merged_row(key, read_families)
            if row is None:
                continue
            if scan.filter is not None and not scan.filter.matches(row):
                continue
            if read_families != families:
                row = Row(key, {cell: v for cell, v in row.cells.items() if cell[0] in families})
            yield row

    def _flush_locked(self) -> bool:
        if not self._memstore:
            return False
        self._segments.append(self._memstore)
        self._memstore = {}
        self._memstore_bytes = 0
        self.flush_count += 1
        if len(self._segments) > self.max_segments:
            merged: Dict[bytes, CellMap] = {}
            for segment in self._segments:
                for key, cells in segment.items():
                    merged.setdefault(key, {}).update(cells)
            self._segments = [merged]
            self.compaction_count += 1
        return True

    def flush(self) -> bool:
        """Freeze the memstore into a new segment. Returns False when there was nothing to flush."""
        with self._lock:
            return self._flush_locked()

    def row_keys(self) -> List[bytes]:
        with self._lock:
            keys = set(self._memstore)
            for segment in self._segments:
                keys.update(segment)
        return sorted(keys)


class MemoryTableClient:
    """Per-actor handle on a ``MemoryTable``."""

    def __init__(self, table: MemoryTable) -> None:
        self._table = table
        self._closed = False

    def _live_table(self) -> MemoryTable:
        if self._closed:
            raise StoreError("Client is closed")
        return self._table

    def put(self, put: Put) -> None:
        self._live_table().put(put)

    def get(self, key: bytes, families: Optional[Sequence[bytes]] = None) -> Optional[Row]:
        return self._live_table().get(key, families)

    def scan(self, scan: Scan) -> Iterator[Row]:
        return self._live_table().scan(scan)

    def close(self) -> None:
        self._closed = True


class MemoryBackend:
    """In-process store instance; one table, created on demand."""

    def __init__(
        self,
        families: Sequence[bytes],
        *,
        flush_size: int = 0,
        max_segments: int = 8,
    ) -> None:
        self.families: Tuple[bytes, ...] = tuple(families)
        self.flush_size = flush_size
        self.max_segments = max_segments
        self.table: Optional[MemoryTable] = None
        self._lock = threading.Lock()
        self._closed = False

    def create_table_if_missing(self) -> None:
        with self._lock:
            if self._closed:
                raise StoreError("Backend is closed")
            if self.table is not None:
                logging.debug("Memory table already exists; reusing it")
                return
            self.table = MemoryTable(
                self.families,
                flush_size=self.flush_size,
                max_segments=self.max_segments,
            )

    def _require_table(self) -> MemoryTable:
        if self._closed:
            raise StoreError("Backend is closed")
        if self.table is None:
            raise StoreError("Table does not exist; call create_table_if_missing() first")
        return self.table

    def connect(self) -> MemoryTableClient:
        return MemoryTableClient(self._require_table())

    def flush(self) -> None:
        self._require_table().flush()

    def close(self) -> None:
        self._closed = True
