from __future__ import annotations

import pytest

from histfill.common.config import RequestDefaults
from histfill.common.datetime_utils import parse_ib_timestamp
from histfill.common.errors import InvalidRequest, InvalidTimestamp
from histfill.history.normalize import fingerprint, normalize_bar_request, normalize_tick_request
from histfill.history.types import DataShape, Window

MIN = 60_000
DAY = 24 * 60 * MIN
NOW = parse_ib_timestamp("20230630-16:00:00") + 17_250  # 16:00:17.250


def test_fingerprint_ignores_key_order():
    assert fingerprint({"a": 1, "b": 2}) == fingerprint({"b": 2, "a": 1})
    assert fingerprint({"a": 1, "b": 2}) != fingerprint({"a": 1, "b": 3})
    assert len(fingerprint({})) == 64


def test_bar_defaults_are_applied():
    q = normalize_bar_request({"symbol": " aapl "}, now=NOW)

    assert q.shape == DataShape.BARS
    assert q.symbol == "AAPL"
    assert q.sec_type == "STK"
    assert q.what_to_show == "TRADES"
    assert q.use_rth is True
    assert q.bar_size == "1 min"
    assert q.duration == "1 D"
    # anchor truncated to the second, window aligned to the 1 minute grid
    assert q.anchor_end_ms == NOW - 250
    end = parse_ib_timestamp("20230630-16:00:00")
    assert q.window == Window(start_ms=end - DAY + MIN, end_ms=end)


def test_absent_and_explicit_defaults_share_a_fingerprint():
    implicit = normalize_bar_request({"symbol": "MSFT", "endDateTime": "20230630-16:00:00"})
    explicit = normalize_bar_request(
        {
            "useRTH": True,
            "whatToShow": "TRADES",
            "barSize": "1 min",
            "duration": "1 D",
            "secType": "STK",
            "endDateTime": "20230630-16:00:00",
            "symbol": "msft",
        }
    )
    assert implicit.fingerprint == explicit.fingerprint
    assert implicit == explicit


def test_snake_case_names_are_accepted():
    q = normalize_bar_request(
        {"symbol": "MSFT", "end_date_time": "20230630-16:00:00", "bar_size": "5  mins", "use_rth": False}
    )
    assert q.bar_size == "5 mins"
    assert q.use_rth is False
    assert q.window.end_ms == parse_ib_timestamp("20230630-16:00:00")


def test_different_cadence_changes_fingerprint():
    a = normalize_bar_request({"symbol": "AAPL", "endDateTime": "20230630-16:00:00", "barSize": "1 min"})
    b = normalize_bar_request({"symbol": "AAPL", "endDateTime": "20230630-16:00:00", "barSize": "5 mins"})
    assert a.fingerprint != b.fingerprint


def test_configured_defaults_override_builtins():
    d = RequestDefaults(bar_size="5 mins", duration="2 D", use_rth=False, what_to_show="midpoint")
    q = normalize_bar_request({"symbol": "AAPL", "endDateTime": "20230630-16:00:00"}, defaults=d)
    assert (q.bar_size, q.duration, q.use_rth, q.what_to_show) == ("5 mins", "2 D", False, "MIDPOINT")


def test_bar_request_errors():
    with pytest.raises(InvalidRequest):
        normalize_bar_request({})
    with pytest.raises(InvalidRequest):
        normalize_bar_request({"symbol": "   "})
    with pytest.raises(InvalidTimestamp):
        normalize_bar_request({"symbol": "AAPL", "endDateTime": "2023-06-30T16:00:00Z"})


def test_tick_defaults_cover_one_month_back():
    q = normalize_tick_request({"symbol": "aapl", "endDate": "20230630-16:00:00"})

    assert q.shape == DataShape.TICKS
    assert q.target_count == 1000
    assert q.window == Window(
        start_ms=parse_ib_timestamp("20230530-16:00:00"),
        end_ms=parse_ib_timestamp("20230630-16:00:00"),
    )


def test_tick_explicit_window_and_count():
    q = normalize_tick_request(
        {
            "symbol": "AAPL",
            "startDate": "20230101-00:00:00",
            "endDate": "20230131-23:59:59",
            "numberOfTicks": 500,
            "useRTH": False,
        }
    )
    assert q.target_count == 500
    assert q.use_rth is False
    assert q.window.start_ms == parse_ib_timestamp("20230101-00:00:00")


def test_tick_count_must_be_positive():
    with pytest.raises(InvalidRequest):
        normalize_tick_request({"symbol": "AAPL", "numberOfTicks": 0}, now=NOW)


def test_bar_size_and_duration_spelling_share_a_fingerprint():
    a = normalize_bar_request({"symbol": "AAPL", "endDateTime": "20230630-16:00:00", "duration": "1 D", "barSize": "1 min"})
    b = normalize_bar_request({"symbol": "aapl", "endDateTime": "20230630-16:00:00", "duration": "1 d", "barSize": "1 MIN"})
    c = normalize_bar_request({"symbol": "AAPL", "endDateTime": "20230630-16:00:00", "duration": "1days", "barSize": "1  Mins"})

    assert a.window == b.window == c.window
    assert (b.bar_size, b.duration) == ("1 min", "1 D")
    assert a.fingerprint == b.fingerprint == c.fingerprint
    assert a == b == c


def test_bar_size_plural_follows_count():
    q = normalize_bar_request({"symbol": "AAPL", "endDateTime": "20230630-16:00:00", "barSize": "5 MIN", "duration": "3600 s"})
    assert q.bar_size == "5 mins"
    assert q.duration == "3600 S"
