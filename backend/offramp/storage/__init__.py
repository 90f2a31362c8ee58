"""
Storage backend selection.

The backend is chosen once from `STORAGE_BACKEND`; request handlers receive a
`Storage` through the `get_storage` dependency and background jobs open one
with `open_storage()`.
"""
from contextlib import contextmanager
from functools import lru_cache

from offramp.config import get_settings
from offramp.storage.base import Storage
from offramp.storage.memory import MemoryStorage
from offramp.storage.sql import SqlStorage

__all__ = ["Storage", "SqlStorage", "MemoryStorage", "get_storage", "open_storage"]


@lru_cache()
def _memory_storage() -> MemoryStorage:
    return MemoryStorage()


def _new_storage() -> Storage:
    backend = get_settings().STORAGE_BACKEND
    if backend == "memory":
        return _memory_storage()
    if backend == "sql":
        from offramp.database import SessionLocal
        return SqlStorage(SessionLocal())
    raise ValueError(f"Unsupported STORAGE_BACKEND '{backend}'. Allowed: sql, memory")


@contextmanager
def open_storage():
    """Storage handle for work outside a request (scheduler, background tasks)."""
    storage = _new_storage()
    try:
        yield storage
    finally:
        storage.close()


def get_storage():
    """FastAPI dependency: yields a storage handle, auto-closes on finish."""
    with open_storage() as storage:
        yield storage
