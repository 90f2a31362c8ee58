"""
Time helpers — all persisted timestamps are naive UTC.
"""
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def unix_seconds(moment: datetime | None = None) -> int:
    moment = moment or utcnow()
    return int(moment.replace(tzinfo=timezone.utc).timestamp())
