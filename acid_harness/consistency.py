"""Torn-write detection shared by the get and scan readers."""

from __future__ import annotations

from typing import Iterator, NamedTuple, Optional, Sequence, Tuple

from .store import Row, column_qualifier


class TornColumn(NamedTuple):
    index: int
    family: bytes
    qualifier: bytes
    expected: Optional[bytes]
    actual: Optional[bytes]


class ConsistencyViolation(RuntimeError):
    """A reader saw a row whose columns do not all carry the same value."""

    def __init__(self, expected: Optional[bytes], row: Row, verified: int, column: Optional[TornColumn] = None) -> None:
        self.expected = expected
        self.row = row
        self.verified = verified
        self.column = column
        super().__init__(format_violation(expected, row, verified, column))


def iter_columns(families: Sequence[bytes], num_columns: int) -> Iterator[Tuple[bytes, bytes]]:
    """Yield (family, qualifier) in the fixed order every reader checks them."""
    for family in families:
        for i in range(num_columns):
            yield family, column_qualifier(i)


_UNSET = object()


def find_torn_column(row: Row, families: Sequence[bytes], num_columns: int) -> Optional[TornColumn]:
    """Return the first column whose value differs from the column checked just before it.

    Only one value can be correct for the whole row at a consistent point in
    time, but which write unit produced it is unknown, so each column is
    compared with its predecessor rather than with a constant. A missing
    column reads as ``None`` and therefore differs from any written value.
    """
    previous = _UNSET
    for index, (family, qualifier) in enumerate(iter_columns(families, num_columns)):
        value = row.value(family, qualifier)
        if previous is not _UNSET and value != previous:
            return TornColumn(index, family, qualifier, previous, value)  # type: ignore[arg-type]
        previous = value
    return None


def format_violation(expected: Optional[bytes], row: Row, verified: int, column: Optional[TornColumn] = None) -> str:
    lines = [f"Failed after {verified}! Expected={expected!r} Got:"]
    if column is not None:
        lines[0] += f" (first mismatch at {column.family.decode(errors='replace')}:{column.qualifier.decode(errors='replace')})"
    for family, qualifier, value in row.sorted_cells():
        lines.append(f"{row.key!r}/{family.decode(errors='replace')}:{qualifier.decode(errors='replace')} val= {value!r}")
    return "\n".join(lines)
