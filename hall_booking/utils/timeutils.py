from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Naive UTC now, matching how the columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def window_end(start_time: datetime, duration_hours: int) -> datetime:
    return start_time + timedelta(hours=duration_hours)


def is_slot_aligned(start_time: datetime, slot_minutes: int) -> bool:
    return (
        start_time.second == 0
        and start_time.microsecond == 0
        and (start_time.hour * 60 + start_time.minute) % slot_minutes == 0
    )


def within_operating_hours(hall, start_time: datetime, end_time: datetime) -> bool:
    if hall.opening_time is None or hall.closing_time is None:
        return True

    # A session opens on day D; closing <= opening means it ends on D+1.
    # The window may belong to the session opened the day before (after midnight).
    for offset in (0, -1):
        day = start_time.date() + timedelta(days=offset)
        opens = datetime.combine(day, hall.opening_time)
        closes = datetime.combine(day, hall.closing_time)
        if closes <= opens:
            closes += timedelta(days=1)
        if opens <= start_time and end_time <= closes:
            return True
    return False
