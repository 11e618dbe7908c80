from __future__ import annotations

import pytest

from histfill.common.timeframes import (
    FALLBACK_STEP_MS,
    bar_size_to_ms,
    canonical_bar_size,
    ceil_ts_to_step,
    floor_ts_to_step,
)


@pytest.mark.parametrize(
    "bar_size,expected",
    [
        ("1 secs", 1_000),
        ("30 secs", 30_000),
        ("1 min", 60_000),
        ("5 mins", 300_000),
        ("1 hour", 3_600_000),
        ("4 hours", 14_400_000),
        ("1 day", 86_400_000),
        ("1 week", 604_800_000),
        ("15MINS", 900_000),
    ],
)
def test_bar_size_to_ms(bar_size, expected):
    assert bar_size_to_ms(bar_size) == expected


def test_unknown_bar_size_unit_silently_becomes_one_minute():
    # Lenient on purpose; pinned here because a typo'd cadence yields a wrong grid.
    assert bar_size_to_ms("1 month") == FALLBACK_STEP_MS
    assert bar_size_to_ms("2 fortnights") == FALLBACK_STEP_MS
    assert bar_size_to_ms("garbage") == FALLBACK_STEP_MS
    assert bar_size_to_ms("0 mins") == FALLBACK_STEP_MS


def test_grid_alignment():
    assert floor_ts_to_step(125_000, 60_000) == 120_000
    assert ceil_ts_to_step(125_000, 60_000) == 180_000
    assert ceil_ts_to_step(120_000, 60_000) == 120_000


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("1 MIN", "1 min"),
        ("1 mins", "1 min"),
        ("5 min", "5 mins"),
        (" 30  SEC ", "30 secs"),
        ("1 Hours", "1 hour"),
        ("1day", "1 day"),
        ("2 Weeks", "2 weeks"),
        ("1 Month", "1 month"),
        ("garbage", "garbage"),
    ],
)
def test_canonical_bar_size(raw, expected):
    assert canonical_bar_size(raw) == expected
