from datetime import datetime, timedelta, timezone

UTC = timezone.utc

def now_utc() -> datetime:
    return datetime.now(tz=UTC)

def ensure_utc(dt: datetime | None) -> datetime | None:
    """Naive values are treated as UTC (sqlite drops tzinfo)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)

def add_minutes(dt: datetime, minutes: int) -> datetime:
    return dt + timedelta(minutes=minutes)

def add_days(dt: datetime, days: int) -> datetime:
    return dt + timedelta(days=days)
