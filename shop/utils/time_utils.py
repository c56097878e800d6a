from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime | None) -> datetime | None:
    # SQLite hands DateTime(timezone=True) columns back naive
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
