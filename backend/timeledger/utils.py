from __future__ import annotations

import datetime as dt
import logging
import re
from typing import Optional, Union

from .errors import InvalidData
from .schemas import UTC

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_CLOCK_TIME = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")


def configure_logging(level: Union[int, str] = logging.WARNING) -> None:
    if isinstance(level, str):
        level = level.upper()
    logging.basicConfig(level=level, format=LOG_FORMAT)


def ensure_utc(value: dt.datetime, tz: dt.tzinfo = UTC) -> dt.datetime:
    """Interpret naive values as wall-clock time in ``tz`` and convert to UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=tz)
    return value.astimezone(UTC)


def parse_timestamp(text: str, tz: dt.tzinfo = UTC, now: Optional[dt.datetime] = None) -> dt.datetime:
    """Parse a user supplied timestamp.

    Accepts RFC 3339 / ISO 8601 timestamps (``2024-01-15T09:00:00+01:00``),
    a bare date-time without offset, or a clock time (``HH:MM`` or
    ``HH:MM:SS``) which refers to today. Values without offset are local to
    ``tz``.
    """
    text = text.strip()
    clock = _CLOCK_TIME.match(text)
    if clock:
        hour, minute, second = (int(part) if part else 0 for part in clock.groups())
        today = (now or dt.datetime.now(UTC)).astimezone(tz).date()
        try:
            value = dt.datetime.combine(today, dt.time(hour, minute, second))
        except ValueError as exc:
            raise InvalidData(f"invalid clock time {text!r}") from exc
        return ensure_utc(value, tz)
    try:
        value = dt.datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError as exc:
        raise InvalidData(f"invalid timestamp {text!r}, expected e.g. 2020-04-19T08:00:00+02:00") from exc
    return ensure_utc(value, tz)


def parse_day(text: str) -> dt.date:
    try:
        return dt.date.fromisoformat(text.strip())
    except ValueError as exc:
        raise InvalidData(f"invalid day {text!r}, expected YYYY-MM-DD") from exc


def format_duration(value: dt.timedelta, precision: dt.timedelta = dt.timedelta(seconds=1)) -> str:
    """Render ``value`` as e.g. ``1h30m0s``, cut off at ``precision``."""
    total = int(value.total_seconds())
    sign = "-" if total < 0 else ""
    total = abs(total)
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    if precision >= dt.timedelta(hours=1):
        return f"{sign}{hours}h"
    if precision >= dt.timedelta(minutes=1):
        return f"{sign}{hours}h{minutes}m"
    return f"{sign}{hours}h{minutes}m{seconds}s"
