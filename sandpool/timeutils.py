"""Time helpers shared by the orchestrator, stores and monitor."""

from datetime import UTC, datetime, timedelta


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def calculate_ttl_in_epoch_seconds(days: int, now: datetime | None = None) -> int:
    """Epoch second at which a terminal record may be purged."""
    now = now or utc_now()
    return int((now + timedelta(days=days)).timestamp())


def hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600
