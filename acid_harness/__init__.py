"""Concurrent harness that checks a multi-family table never exposes torn row writes."""

from .actors import AtomicGetReader, AtomicityWriter, AtomicScanReader, Flusher
from .consistency import ConsistencyViolation, find_torn_column
from .context import ActorFailure, RepeatingActor, TestContext
from .harness import SCENARIOS, AtomicityReport, Scenario, run_scenario, run_test_atomicity
from .store import MemoryBackend, Put, Row, Scan, SingleColumnValueFilter, StoreError

__version__ = "0.1.0"

__all__ = [
    "ActorFailure",
    "AtomicGetReader",
    "AtomicityReport",
    "AtomicityWriter",
    "AtomicScanReader",
    "ConsistencyViolation",
    "Flusher",
    "MemoryBackend",
    "Put",
    "RepeatingActor",
    "Row",
    "SCENARIOS",
    "Scan",
    "Scenario",
    "SingleColumnValueFilter",
    "StoreError",
    "TestContext",
    "find_torn_column",
    "run_scenario",
    "run_test_atomicity",
]
