from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping, Optional, Union

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from histfill.common.config import RequestDefaults
from histfill.common.datetime_utils import now_ms, parse_ib_timestamp
from histfill.common.errors import InvalidRequest
from histfill.common.timeframes import bar_size_to_ms, canonical_bar_size, ceil_ts_to_step, floor_ts_to_step
from histfill.history.types import BarQuery, DataShape, TickQuery, Window
from histfill.history.windows import canonical_duration, window_ending_at


def normalize_symbol(symbol: str) -> str:
    s = symbol.strip().upper()
    if not s:
        raise ValueError("symbol is required")
    return s


def _blank_to_none(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v2 = v.strip()
    return v2 or None


class BarRequest(BaseModel):
    """Inbound bar request; accepts wire names (secType, endDateTime, ...) and snake_case."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    symbol: str
    sec_type: Optional[str] = Field(default=None, alias="secType")
    end_date_time: Optional[str] = Field(default=None, alias="endDateTime")
    duration: Optional[str] = None
    bar_size: Optional[str] = Field(default=None, alias="barSize")
    what_to_show: Optional[str] = Field(default=None, alias="whatToShow")
    use_rth: Optional[bool] = Field(default=None, alias="useRTH")

    @field_validator("symbol")
    @classmethod
    def _validate_symbol(cls, v: str) -> str:
        return normalize_symbol(v)

    @field_validator("sec_type", "end_date_time", "duration", "bar_size", "what_to_show")
    @classmethod
    def _strip_optional(cls, v: Optional[str]) -> Optional[str]:
        return _blank_to_none(v)


class TickRequest(BaseModel):
    """Inbound tick request; accepts wire names (startDate, numberOfTicks, ...) and snake_case."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    symbol: str
    sec_type: Optional[str] = Field(default=None, alias="secType")
    start_date: Optional[str] = Field(default=None, alias="startDate")
    end_date: Optional[str] = Field(default=None, alias="endDate")
    number_of_ticks: Optional[int] = Field(default=None, alias="numberOfTicks", gt=0)
    what_to_show: Optional[str] = Field(default=None, alias="whatToShow")
    use_rth: Optional[bool] = Field(default=None, alias="useRTH")

    @field_validator("symbol")
    @classmethod
    def _validate_symbol(cls, v: str) -> str:
        return normalize_symbol(v)

    @field_validator("sec_type", "start_date", "end_date", "what_to_show")
    @classmethod
    def _strip_optional(cls, v: Optional[str]) -> Optional[str]:
        return _blank_to_none(v)


def fingerprint(fields: Mapping[str, Any]) -> str:
    """SHA-256 hex digest of the key-sorted JSON serialization of fields."""
    payload = json.dumps(dict(fields), sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _validate(model: type[BaseModel], raw: Union[Mapping[str, Any], BaseModel]) -> Any:
    if isinstance(raw, model):
        return raw
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise InvalidRequest(str(e)) from e


def _anchor_ms(value: Optional[str], now: Optional[int]) -> int:
    if value is not None:
        return parse_ib_timestamp(value)
    t = now_ms() if now is None else int(now)
    # the wire format is second-granular
    return t - (t % 1000)


def normalize_bar_request(
    raw: Union[Mapping[str, Any], BarRequest],
    *,
    defaults: Optional[RequestDefaults] = None,
    now: Optional[int] = None,
) -> BarQuery:
    d = defaults or RequestDefaults()
    req: BarRequest = _validate(BarRequest, raw)

    sec_type = (req.sec_type or d.sec_type).upper()
    what_to_show = (req.what_to_show or d.what_to_show).upper()
    use_rth = d.use_rth if req.use_rth is None else req.use_rth
    duration = canonical_duration(req.duration or d.duration)
    bar_size = canonical_bar_size(req.bar_size or d.bar_size)

    anchor = _anchor_ms(req.end_date_time, now)
    raw_window = window_ending_at(anchor, duration)

    # only whole grid slots are requested
    step = bar_size_to_ms(bar_size)
    window = Window(
        start_ms=ceil_ts_to_step(raw_window.start_ms, step),
        end_ms=floor_ts_to_step(raw_window.end_ms, step),
    )

    fields = {
        "shape": DataShape.BARS.value,
        "symbol": req.symbol,
        "sec_type": sec_type,
        "anchor_end_ms": anchor,
        "start_ms": window.start_ms,
        "end_ms": window.end_ms,
        "duration": duration,
        "bar_size": bar_size,
        "what_to_show": what_to_show,
        "use_rth": use_rth,
    }
    fp = fingerprint(fields)

    logger.debug(
        "Normalized bar request symbol={} bar_size={} window=[{}..{}) fingerprint={}",
        req.symbol,
        bar_size,
        window.start_ms,
        window.end_ms,
        fp[:12],
    )

    return BarQuery(
        symbol=req.symbol,
        sec_type=sec_type,
        anchor_end_ms=anchor,
        window=window,
        duration=duration,
        bar_size=bar_size,
        what_to_show=what_to_show,
        use_rth=use_rth,
        fingerprint=fp,
    )


def normalize_tick_request(
    raw: Union[Mapping[str, Any], TickRequest],
    *,
    defaults: Optional[RequestDefaults] = None,
    now: Optional[int] = None,
) -> TickQuery:
    d = defaults or RequestDefaults()
    req: TickRequest = _validate(TickRequest, raw)

    sec_type = (req.sec_type or d.sec_type).upper()
    what_to_show = (req.what_to_show or d.what_to_show).upper()
    use_rth = d.use_rth if req.use_rth is None else req.use_rth
    target_count = req.number_of_ticks if req.number_of_ticks is not None else d.number_of_ticks

    anchor = _anchor_ms(req.end_date, now)
    if req.start_date is not None:
        start = parse_ib_timestamp(req.start_date)
    else:
        start = window_ending_at(anchor, d.tick_lookback).start_ms
    window = Window(start_ms=start, end_ms=anchor)

    fields = {
        "shape": DataShape.TICKS.value,
        "symbol": req.symbol,
        "sec_type": sec_type,
        "anchor_end_ms": anchor,
        "start_ms": window.start_ms,
        "end_ms": window.end_ms,
        "target_count": target_count,
        "what_to_show": what_to_show,
        "use_rth": use_rth,
    }
    fp = fingerprint(fields)

    logger.debug(
        "Normalized tick request symbol={} target={} window=[{}..{}) fingerprint={}",
        req.symbol,
        target_count,
        window.start_ms,
        window.end_ms,
        fp[:12],
    )

    return TickQuery(
        symbol=req.symbol,
        sec_type=sec_type,
        anchor_end_ms=anchor,
        window=window,
        target_count=target_count,
        what_to_show=what_to_show,
        use_rth=use_rth,
        fingerprint=fp,
    )
