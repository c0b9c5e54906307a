"""Clock abstraction so retry scheduling and archive dating can be tested
against a fixed point in time."""

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Clock:
    def now(self) -> datetime:
        raise NotImplementedError


class SystemClock(Clock):
    def now(self) -> datetime:
        return utcnow()


class FixedClock(Clock):
    """Clock frozen at a given instant until moved with advance()."""

    def __init__(self, fixed_time: datetime | None = None):
        self._now = as_utc(fixed_time) if fixed_time else utcnow()

    def now(self) -> datetime:
        return self._now

    def set_time(self, value: datetime) -> None:
        self._now = as_utc(value)

    def advance(self, **kwargs) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now
