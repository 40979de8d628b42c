# shadowchat/core/message_logic.py

from datetime import datetime, timedelta, timezone


_EPOCH = datetime(1970, 1, 1)


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_millis(moment: datetime | None) -> int | None:
    if moment is None:
        return None
    # Integer arithmetic keeps deadlines exact to the millisecond
    return (moment.replace(tzinfo=None) - _EPOCH) // timedelta(milliseconds=1)


def from_millis(millis: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=millis)


def burn_deadline(read_at: datetime, burn_time_ms: int | None) -> datetime | None:
    """When a message read at `read_at` must be gone, or None if burning is off"""
    if burn_time_ms is None:
        return None
    return read_at + timedelta(milliseconds=burn_time_ms)


def is_burn_expired(burn_at: datetime | None, now: datetime | None = None) -> bool:
    # Eligible from the deadline itself onwards
    if burn_at is None:
        return False
    return (now or utcnow()) >= burn_at
