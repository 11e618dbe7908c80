from __future__ import annotations

import pytest

from histfill.common.datetime_utils import parse_ib_timestamp
from histfill.common.errors import InvalidDuration, InvalidTimestamp
from histfill.history.types import Window
from histfill.history.windows import canonical_duration, duration_for, parse_duration, resolve_window, window_ending_at

MIN = 60_000
HOUR = 60 * MIN
DAY = 24 * HOUR


def test_duration_inverse_short_span_in_seconds():
    assert duration_for(0, 45 * MIN) == "2700 S"
    assert duration_for(0, HOUR) == "3600 S"
    assert duration_for(0, 1_500) == "2 S"


def test_duration_inverse_long_span_rounds_days_up():
    assert duration_for(0, 3 * DAY + 2 * HOUR) == "4 D"
    assert duration_for(0, HOUR + 1) == "1 D"
    assert duration_for(0, 2 * DAY) == "2 D"


def test_duration_inverse_never_below_one_second():
    assert duration_for(5_000, 5_000) == "1 S"


def test_resolve_window_days_and_seconds():
    end = parse_ib_timestamp("20230630-16:00:00")
    assert resolve_window("20230630-16:00:00", "1 D") == Window(start_ms=end - DAY, end_ms=end)
    assert resolve_window("20230630-16:00:00", "3600 S") == Window(start_ms=end - HOUR, end_ms=end)
    assert resolve_window("20230630-16:00:00", "2 W") == Window(start_ms=end - 14 * DAY, end_ms=end)


def test_units_are_case_insensitive_and_accept_long_forms():
    for expr in ("2 d", "2 D", "2 days", "2 Day", "2DAYS"):
        assert parse_duration(expr) == (2, "days")
    assert parse_duration("10 seconds") == (10, "seconds")
    assert parse_duration("1 month") == (1, "months")
    assert parse_duration("3 Years") == (3, "years")


def test_months_and_years_clamp_day_of_month():
    end = parse_ib_timestamp("20230331-12:00:00")
    w = window_ending_at(end, "1 M")
    assert w.start_ms == parse_ib_timestamp("20230228-12:00:00")

    leap = parse_ib_timestamp("20240229-00:00:00")
    assert window_ending_at(leap, "1 Y").start_ms == parse_ib_timestamp("20230228-00:00:00")


def test_unknown_unit_falls_back_to_days():
    end = parse_ib_timestamp("20230630-16:00:00")
    assert window_ending_at(end, "3 fortnights").start_ms == end - 3 * DAY
    # "min" is a bar-size unit, not a duration unit
    assert window_ending_at(end, "30 min").start_ms == end - 30 * DAY


def test_malformed_inputs_raise():
    with pytest.raises(InvalidTimestamp):
        resolve_window("2023-06-30 16:00:00", "1 D")
    with pytest.raises(InvalidTimestamp):
        resolve_window("20230630", "1 D")
    with pytest.raises(InvalidDuration):
        resolve_window("20230630-16:00:00", "one day")


def test_canonical_duration_uses_unit_letters():
    assert canonical_duration("1 d") == "1 D"
    assert canonical_duration("3600 seconds") == "3600 S"
    assert canonical_duration("2weeks") == "2 W"
    assert canonical_duration("1 Month") == "1 M"
    assert canonical_duration("1 YEARS") == "1 Y"
    assert canonical_duration("4 fortnights") == "4 D"
    with pytest.raises(InvalidDuration):
        canonical_duration("one day")
