"""UTC time helpers. Every engine function takes an explicit `now` so day boundaries are testable."""
from datetime import datetime, timedelta, timezone

DAY = timedelta(days=1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Naive datetimes (SQLite) are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: str | None) -> datetime | None:
    """ISO-8601 from the auth provider ('Z' suffix allowed) -> aware UTC datetime."""
    if not value:
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(raw))


def days_since(ts: datetime | None, now: datetime) -> int | None:
    """Whole days elapsed: floor((now - ts) / 24h). 23h59m -> 0. None when ts is None."""
    if ts is None:
        return None
    return (now - as_utc(ts)) // DAY
