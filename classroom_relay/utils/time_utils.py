import calendar
from datetime import date, datetime, timezone


def to_naive_utc(dt: datetime) -> datetime:
    """Aware datetimes are converted to UTC; naive ones are assumed to already be UTC."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_calendar_datetime(value: str) -> datetime:
    # Teamup sends e.g. "2026-02-20T17:00:00-05:00"
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def wall_clock(value: str) -> str:
    """The "HH:MM" part of an ISO timestamp, as written (local to the calendar)."""
    return value[11:16]


def format_time_12h(hhmm: str) -> str:
    hour, minute = (int(p) for p in hhmm.split(":")[:2])
    period = "PM" if hour >= 12 else "AM"
    hour12 = 12 if hour == 0 else hour - 12 if hour > 12 else hour
    return f"{hour12}:{minute:02d} {period}"


def add_months(d: date, months: int) -> date:
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return d.replace(year=year, month=month, day=day)
