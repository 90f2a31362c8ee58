"""
Relational storage backend (SQLAlchemy ORM).
"""
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from offramp.models import WebhookEvent
from offramp.storage.base import Storage


class SqlStorage(Storage):
    """Storage bound to one SQLAlchemy session (one request, or one sweep run)."""

    def __init__(self, db: Session):
        self.db = db

    def add(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def get(self, model, key):
        return self.db.get(model, key)

    def find(self, model, order_by: Optional[str] = None, descending: bool = False,
             limit: Optional[int] = None, **filters) -> list:
        query = self.db.query(model)
        for column, value in filters.items():
            query = query.filter(getattr(model, column) == value)
        if order_by:
            column = getattr(model, order_by)
            query = query.order_by(column.desc() if descending else column.asc())
        if limit:
            query = query.limit(limit)
        return query.all()

    def update(self, model, key, fields: dict, expected: Optional[dict] = None):
        query = self.db.query(model).filter(model.id == key)
        for column, value in (expected or {}).items():
            attr = getattr(model, column)
            query = query.filter(attr.is_(None) if value is None else attr == value)

        # Single UPDATE ... WHERE: the precondition and the write are atomic.
        updated = query.update(fields, synchronize_session=False)
        self.db.commit()
        if not updated:
            return None

        obj = self.db.get(model, key)
        self.db.refresh(obj)
        return obj

    def due_webhook_events(self, now: datetime, limit: int) -> list:
        return (
            self.db.query(WebhookEvent)
            .filter(
                WebhookEvent.status.in_(("pending", "retrying")),
                WebhookEvent.next_retry_at <= now,
            )
            .order_by(WebhookEvent.next_retry_at.asc())
            .limit(limit)
            .all()
        )

    def close(self) -> None:
        self.db.close()
