"""General utility helpers shared across modules."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Tuple


def to_utc_aware(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (naive values are assumed UTC)."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat_utc(value: datetime) -> str:
    """ISO-8601 with a ``Z`` suffix and millisecond precision."""

    text = to_utc_aware(value).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def parse_iso_datetime(raw: str | None) -> datetime | None:
    """Parse Strava/JS style ISO strings (``...Z``) into aware datetimes."""

    if not raw or not isinstance(raw, str):
        return None
    try:
        parsed = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    return to_utc_aware(parsed)


def parse_date(value: str | date | datetime) -> date:
    """Coerce ``YYYY-MM-DD`` strings, dates or datetimes to a UTC calendar date."""

    if isinstance(value, datetime):
        return to_utc_aware(value).date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip())


def day_start_epoch(day: date) -> int:
    """Epoch seconds of UTC midnight at the start of ``day``."""

    return int(datetime.combine(day, time.min, tzinfo=timezone.utc).timestamp())


def window_epoch_bounds(
    start: str | date | datetime, end: str | date | datetime
) -> Tuple[int, int]:
    """Return ``(after, before)`` epoch bounds covering the inclusive day range.

    ``after`` is UTC midnight of the first day and ``before`` is UTC midnight
    of the day following the last day, so the whole end day is counted.
    """

    start_day = parse_date(start)
    end_day = parse_date(end)
    if end_day < start_day:
        raise ValueError(f"Tracking window ends ({end_day}) before it starts ({start_day})")
    return day_start_epoch(start_day), day_start_epoch(end_day + timedelta(days=1))


def mask_token(token: str | None, visible: int = 4) -> str:
    """Return ``token`` with all but the trailing ``visible`` chars masked."""

    if not token:
        return ""
    visible = max(0, visible)
    if visible == 0:
        return "*" * len(token)
    hidden_length = max(len(token) - visible, 0)
    if hidden_length == 0:
        return token
    return ("*" * hidden_length) + token[-visible:]
