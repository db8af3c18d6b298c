"""Shared fixtures: an in-memory table and a store that deliberately tears writes."""

import logging

import pytest

from acid_harness.config import RunSettings
from acid_harness.store import MemoryBackend, MemoryTableClient, Put

FAMILIES = [b"A", b"B", b"C"]
NUM_COLUMNS = 10


class TearingClient(MemoryTableClient):
    """Applies only the first half of every put, which no atomic store may do."""

    def put(self, put):
        half = Put(put.key, put.cells[: max(1, len(put.cells) // 2)])
        super().put(half)


class TearingBackend(MemoryBackend):
    def connect(self):
        return TearingClient(self._require_table())


def full_row_put(key, value, families=FAMILIES, num_columns=NUM_COLUMNS):
    put = Put(key)
    for family in families:
        for i in range(num_columns):
            put.add(family, f"data{i}".encode(), value)
    return put


@pytest.fixture
def backend():
    store = MemoryBackend(FAMILIES, flush_size=0)
    store.create_table_if_missing()
    yield store
    store.close()


@pytest.fixture
def client(backend):
    handle = backend.connect()
    yield handle
    handle.close()


@pytest.fixture
def tearing_backend():
    store = TearingBackend(FAMILIES)
    store.create_table_if_missing()
    yield store
    store.close()


@pytest.fixture
def run_settings():
    return RunSettings(seed=7, flush_interval=0.01)


@pytest.fixture
def restore_root_logging():
    """Undo logging.basicConfig(force=True) calls made by the CLI under test."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
