from __future__ import annotations

import calendar
import re
from datetime import datetime, timedelta

from loguru import logger

from histfill.common.constants import DAY_MS, SECONDS_DURATION_MAX_MS
from histfill.common.datetime_utils import datetime_to_ms, ms_to_datetime, parse_ib_timestamp
from histfill.common.errors import InvalidDuration
from histfill.history.types import Window

_DURATION_RE = re.compile(r"^(\d+)\s*([A-Za-z]*)$")

_UNITS = {
    "s": "seconds",
    "sec": "seconds",
    "secs": "seconds",
    "second": "seconds",
    "seconds": "seconds",
    "d": "days",
    "day": "days",
    "days": "days",
    "w": "weeks",
    "week": "weeks",
    "weeks": "weeks",
    "m": "months",
    "mo": "months",
    "month": "months",
    "months": "months",
    "y": "years",
    "yr": "years",
    "year": "years",
    "years": "years",
}


def parse_duration(expr: str) -> tuple[int, str]:
    """
    Split "<integer> <unit>" into (n, canonical unit).

    Unknown units map to "days" (logged, not an error).
    """
    m = _DURATION_RE.match(expr.strip())
    if not m:
        raise InvalidDuration(f"Invalid duration expression {expr!r} (expected e.g. '1 D', '3600 S')")

    n = int(m.group(1))
    raw_unit = m.group(2).lower()
    unit = _UNITS.get(raw_unit)
    if unit is None:
        logger.warning("Unknown duration unit {!r} in {!r} - treating as days", raw_unit, expr)
        unit = "days"
    return n, unit


_UNIT_LETTER = {"seconds": "S", "days": "D", "weeks": "W", "months": "M", "years": "Y"}


def canonical_duration(expr: str) -> str:
    """'1 d', '1day', '1 DAYS' -> '1 D'. Unknown units resolve to days, as in parse_duration."""
    n, unit = parse_duration(expr)
    return f"{n} {_UNIT_LETTER[unit]}"


def _minus_months(dt: datetime, months: int) -> datetime:
    idx = dt.year * 12 + (dt.month - 1) - months
    year, month0 = divmod(idx, 12)
    month = month0 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def window_ending_at(end_ms: int, duration_expr: str) -> Window:
    n, unit = parse_duration(duration_expr)
    end_dt = ms_to_datetime(end_ms)

    if unit == "seconds":
        start_dt = end_dt - timedelta(seconds=n)
    elif unit == "weeks":
        start_dt = end_dt - timedelta(weeks=n)
    elif unit == "months":
        start_dt = _minus_months(end_dt, n)
    elif unit == "years":
        start_dt = _minus_months(end_dt, 12 * n)
    else:
        start_dt = end_dt - timedelta(days=n)

    return Window(start_ms=datetime_to_ms(start_dt), end_ms=int(end_ms))


def resolve_window(anchor_end: str, duration_expr: str) -> Window:
    """Anchor 'YYYYMMDD-HH:MM:SS' (UTC) + '<n> <unit>' -> [start, end)."""
    return window_ending_at(parse_ib_timestamp(anchor_end), duration_expr)


def duration_for(start_ms: int, end_ms: int) -> str:
    """
    Coarsest upstream duration string covering end - start.

    Spans up to one hour are expressed in whole seconds, longer ones in whole days;
    both round up so the resulting fetch never under-covers.
    """
    span = max(0, int(end_ms) - int(start_ms))
    if span <= SECONDS_DURATION_MAX_MS:
        seconds = max(1, -(-span // 1000))
        return f"{seconds} S"
    days = -(-span // DAY_MS)
    return f"{days} D"
