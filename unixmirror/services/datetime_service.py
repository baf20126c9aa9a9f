"""Datetime parsing: lax input -> epoch seconds."""

from __future__ import annotations

import math
from datetime import date, datetime

import pendulum

from unixmirror.exceptions import UnparseableTemporal


def parse_datetime(value: str | date | datetime, default_tz: str = "UTC") -> datetime:
    """Parse a lax temporal value into a timezone-aware datetime.

    Accepts datetime and date objects as well as strings such as:
    - 2024-01-15T10:00:00Z
    - 2024-01-15 10:00:00.975359+00
    - 2024-01-15 10:00
    - 2024-01-15

    Missing timezone defaults to default_tz.
    Missing time components default to zeros.
    Time-of-day values are not moments and raise ``UnparseableTemporal``.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            tz = pendulum.timezone(default_tz)
            value = value.replace(tzinfo=tz)  # type: ignore[arg-type]
        return value
    if isinstance(value, date):
        return pendulum.datetime(value.year, value.month, value.day, tz=default_tz)
    if not isinstance(value, str):
        raise UnparseableTemporal(value)

    value_str = value.strip()
    if not value_str:
        raise UnparseableTemporal(value)

    try:
        parsed = pendulum.parse(value_str, tz=default_tz, strict=False, exact=True)
    except (ValueError, OverflowError) as exc:
        # pendulum's ParserError subclasses ValueError
        raise UnparseableTemporal(value) from exc

    if isinstance(parsed, pendulum.DateTime):
        return parsed
    if isinstance(parsed, pendulum.Date):
        # pendulum.parse returns Date for date-only strings
        return pendulum.datetime(parsed.year, parsed.month, parsed.day, tz=default_tz)
    # Time or Duration
    raise UnparseableTemporal(value)


def to_epoch_seconds(value: object, default_tz: str = "UTC") -> int | None:
    """Convert a temporal value to integer seconds since the Unix epoch.

    ``None`` stays ``None`` and integers are taken to be epoch seconds already.
    Fractional seconds are floored.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise UnparseableTemporal(value)
    if isinstance(value, int):
        return value
    if not isinstance(value, (str, date)):
        raise UnparseableTemporal(value)
    return _floor_seconds(parse_datetime(value, default_tz))


def _floor_seconds(moment: datetime) -> int:
    return math.floor(moment.timestamp())


def day_bounds(value: object, default_tz: str = "UTC") -> tuple[int, int]:
    """Return the half-open epoch range [start, end) of the value's calendar day."""
    if isinstance(value, bool):
        raise UnparseableTemporal(value)
    if isinstance(value, int):
        moment = pendulum.from_timestamp(value, tz=default_tz)
    elif isinstance(value, (str, date)):
        moment = pendulum.instance(parse_datetime(value, default_tz))
    else:
        raise UnparseableTemporal(value)
    start = moment.start_of("day")
    return _floor_seconds(start), _floor_seconds(start.add(days=1))


def year_bounds(year: int | str, default_tz: str = "UTC") -> tuple[int, int]:
    """Return the half-open epoch range [start, end) of a calendar year."""
    try:
        start = pendulum.datetime(int(year), 1, 1, tz=default_tz)
    except (TypeError, ValueError) as exc:
        raise UnparseableTemporal(year) from exc
    return _floor_seconds(start), _floor_seconds(start.add(years=1))
