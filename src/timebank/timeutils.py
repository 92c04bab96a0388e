"""Utilities for working with millisecond durations and calendar weeks."""

from __future__ import annotations

import math
from datetime import date, datetime, time, timedelta
from typing import Tuple, Union

MILLIS_PER_SECOND = 1000
MILLIS_PER_MINUTE = 60 * MILLIS_PER_SECOND
MILLIS_PER_HOUR = 60 * MILLIS_PER_MINUTE
MILLIS_PER_DAY = 24 * MILLIS_PER_HOUR

MillisLike = Union[int, float, str, None]


def to_millis(moment: datetime) -> int:
    """Return ``moment`` as integer milliseconds since the Unix epoch.

    Naive datetimes are interpreted in local time, matching how the day window
    is computed in :func:`day_window`.
    """

    return int(round(moment.timestamp() * MILLIS_PER_SECOND))


def from_millis(value: int) -> datetime:
    """Convert epoch milliseconds to a naive local :class:`~datetime.datetime`."""

    return datetime.fromtimestamp(value / MILLIS_PER_SECOND)


def coerce_millis(value: MillisLike, *, default: int = 0) -> int:
    """Return ``value`` as an integer number of milliseconds.

    Missing, non-numeric and non-finite values collapse to ``default`` so a
    malformed field never poisons an aggregate.
    """

    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return default
    if isinstance(value, float):
        if not math.isfinite(value):
            return default
        return int(value)
    return default


def is_valid_millis(value: object) -> bool:
    """True when ``value`` is a finite number usable as a duration."""

    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and math.isfinite(value)


def format_duration(milliseconds: MillisLike) -> str:
    """Return ``milliseconds`` formatted as ``HH:MM:SS`` (e.g. ``01:02:03``)."""

    total_seconds = max(coerce_millis(milliseconds), 0) // MILLIS_PER_SECOND
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def format_hours_minutes(milliseconds: MillisLike) -> str:
    """Return a compact ``"1h 5m"`` rendering used for wallet totals."""

    value = max(coerce_millis(milliseconds), 0)
    hours, remainder = divmod(value, MILLIS_PER_HOUR)
    return f"{hours}h {remainder // MILLIS_PER_MINUTE}m"


def week_number(moment: Union[date, datetime]) -> int:
    """Return the ISO-8601 week number (1-53) for ``moment``."""

    return moment.isocalendar()[1]


def is_weekend(moment: Union[date, datetime]) -> bool:
    """True for Saturdays and Sundays."""

    return moment.weekday() >= 5


def start_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.min)


def end_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.max)


def day_window(moment: datetime) -> Tuple[int, int]:
    """Return ``(start, end)`` epoch milliseconds for the local day of ``moment``.

    ``start`` is inclusive (local midnight) and ``end`` exclusive (next local
    midnight).
    """

    start = start_of_day(moment)
    return to_millis(start), to_millis(start + timedelta(days=1))


def weekend_end(moment: Union[date, datetime]) -> datetime:
    """Return Sunday 23:59:59.999999 of the ISO week containing ``moment``."""

    day = moment.date() if isinstance(moment, datetime) else moment
    sunday = day + timedelta(days=6 - day.weekday())
    return datetime.combine(sunday, time.max)


__all__ = [
    "MILLIS_PER_SECOND",
    "MILLIS_PER_MINUTE",
    "MILLIS_PER_HOUR",
    "MILLIS_PER_DAY",
    "MillisLike",
    "coerce_millis",
    "day_window",
    "end_of_day",
    "format_duration",
    "format_hours_minutes",
    "from_millis",
    "is_valid_millis",
    "is_weekend",
    "start_of_day",
    "to_millis",
    "week_number",
    "weekend_end",
]
