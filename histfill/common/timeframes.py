from __future__ import annotations

import re

from loguru import logger

_BAR_SIZE_RE = re.compile(r"^(\d+)\s*([A-Za-z]+)$")

_UNIT_MS = {
    "sec": 1_000,
    "secs": 1_000,
    "min": 60_000,
    "mins": 60_000,
    "hour": 3_600_000,
    "hours": 3_600_000,
    "day": 86_400_000,
    "days": 86_400_000,
    "week": 604_800_000,
    "weeks": 604_800_000,
}

# Unknown bar-size units are treated as one minute rather than rejected.
FALLBACK_STEP_MS: int = 60_000


def bar_size_to_ms(bar_size: str) -> int:
    """
    Cadence step for a broker bar size such as '1 min', '5 mins', '1 hour', '30 secs'.

    Unrecognized shapes or units fall back to FALLBACK_STEP_MS with a warning.
    """
    m = _BAR_SIZE_RE.match(bar_size.strip())
    if not m:
        logger.warning("Unparsable bar size {!r} - assuming 1 minute cadence", bar_size)
        return FALLBACK_STEP_MS

    n = int(m.group(1))
    unit = m.group(2).lower()

    mult = _UNIT_MS.get(unit)
    if mult is None:
        logger.warning("Unknown bar size unit {!r} in {!r} - assuming 1 minute cadence", unit, bar_size)
        return FALLBACK_STEP_MS
    if n <= 0:
        logger.warning("Non-positive bar size {!r} - assuming 1 minute cadence", bar_size)
        return FALLBACK_STEP_MS
    return n * mult


def floor_ts_to_step(ts_ms: int, step_ms: int) -> int:
    return (ts_ms // step_ms) * step_ms


def ceil_ts_to_step(ts_ms: int, step_ms: int) -> int:
    if ts_ms % step_ms == 0:
        return ts_ms
    return ((ts_ms // step_ms) + 1) * step_ms


_CANONICAL_UNIT = {
    "sec": ("secs", "secs"),
    "secs": ("secs", "secs"),
    "min": ("min", "mins"),
    "mins": ("min", "mins"),
    "hour": ("hour", "hours"),
    "hours": ("hour", "hours"),
    "day": ("day", "days"),
    "days": ("day", "days"),
    "week": ("week", "weeks"),
    "weeks": ("week", "weeks"),
}


def canonical_bar_size(bar_size: str) -> str:
    """
    Broker spelling of a bar size: '1 MIN' -> '1 min', '5 min' -> '5 mins', '30 sec' -> '30 secs'.

    Shapes bar_size_to_ms does not recognize are only whitespace-collapsed and lower-cased.
    """
    collapsed = " ".join(bar_size.split()).lower()
    m = _BAR_SIZE_RE.match(collapsed)
    if not m:
        return collapsed
    n = int(m.group(1))
    forms = _CANONICAL_UNIT.get(m.group(2))
    if forms is None:
        return f"{n} {m.group(2)}"
    return f"{n} {forms[0] if n == 1 else forms[1]}"
