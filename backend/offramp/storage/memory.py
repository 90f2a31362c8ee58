"""
In-memory storage backend.

Holds ORM instances (never attached to a SQLAlchemy session) in per-model
dicts. One lock serializes every read-check-write, which gives `update` the
same compare-and-swap semantics as the relational backend.
"""
import copy
import itertools
import threading
from collections import defaultdict
from datetime import datetime
from typing import Optional

from sqlalchemy import inspect as sa_inspect

from offramp.models import WebhookEvent
from offramp.storage.base import Storage


def _apply_column_defaults(obj) -> None:
    """Mirror INSERT-time column defaults for attributes left unset."""
    for prop in sa_inspect(type(obj)).column_attrs:
        column = prop.columns[0]
        if getattr(obj, prop.key) is not None or column.default is None:
            continue
        default = column.default
        if default.is_scalar:
            setattr(obj, prop.key, default.arg)
        elif default.is_callable:
            setattr(obj, prop.key, default.arg(None))


class MemoryStorage(Storage):
    def __init__(self):
        self._tables: dict[type, dict] = defaultdict(dict)
        self._lock = threading.RLock()
        self._sequence = itertools.count(1)

    def _snapshot(self, obj):
        # Callers get detached copies; stored rows only change through `update`.
        if obj is None:
            return None
        mapper = sa_inspect(type(obj))
        return type(obj)(**{
            prop.key: copy.deepcopy(getattr(obj, prop.key)) for prop in mapper.column_attrs
        })

    def add(self, obj):
        with self._lock:
            _apply_column_defaults(obj)
            if getattr(obj, "id", None) is None:
                obj.id = next(self._sequence)
            self._tables[type(obj)][obj.id] = self._snapshot(obj)
            return self._snapshot(obj)

    def get(self, model, key):
        with self._lock:
            return self._snapshot(self._tables[model].get(key))

    def find(self, model, order_by: Optional[str] = None, descending: bool = False,
             limit: Optional[int] = None, **filters) -> list:
        with self._lock:
            rows = [
                row for row in self._tables[model].values()
                if all(getattr(row, column) == value for column, value in filters.items())
            ]
            if order_by:
                rows.sort(key=lambda row: getattr(row, order_by), reverse=descending)
            if limit:
                rows = rows[:limit]
            return [self._snapshot(row) for row in rows]

    def update(self, model, key, fields: dict, expected: Optional[dict] = None):
        with self._lock:
            row = self._tables[model].get(key)
            if row is None:
                return None
            for column, value in (expected or {}).items():
                if getattr(row, column) != value:
                    return None
            for column, value in fields.items():
                setattr(row, column, value)
            return self._snapshot(row)

    def due_webhook_events(self, now: datetime, limit: int) -> list:
        with self._lock:
            rows = [
                row for row in self._tables[WebhookEvent].values()
                if row.status in ("pending", "retrying")
                and row.next_retry_at is not None
                and row.next_retry_at <= now
            ]
            rows.sort(key=lambda row: row.next_retry_at)
            return [self._snapshot(row) for row in rows[:limit]]
