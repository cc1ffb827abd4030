"""Shared test fixtures."""

from pathlib import Path

import pytest

from pstndb.config import DEFAULT_CONFIG
from pstndb.ndb.directory import NodeDirectory
from pstndb.ndb.nid import PstFormat
from pstndb.ndb.store import FileBackingStore, MemoryBackingStore


@pytest.fixture
def memory_store() -> MemoryBackingStore:
    return MemoryBackingStore()


@pytest.fixture
def directory(memory_store: MemoryBackingStore) -> NodeDirectory:
    """Fresh Unicode index over an in-memory container."""
    return NodeDirectory.create(memory_store, PstFormat.UNICODE)


@pytest.fixture
def ansi_directory() -> NodeDirectory:
    return NodeDirectory.create(MemoryBackingStore(), PstFormat.ANSI)


@pytest.fixture
def container_path(tmp_path: Path) -> Path:
    return tmp_path / "archive.pst"


@pytest.fixture
def file_store(container_path: Path):
    store = FileBackingStore(container_path, create=True)
    yield store
    store.close()


@pytest.fixture
def config():
    return DEFAULT_CONFIG
