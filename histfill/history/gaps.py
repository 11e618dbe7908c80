from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Union

from histfill.common.errors import EmptyWindow
from histfill.history.types import Gap, Window


@dataclass(frozen=True)
class BarGrid:
    """Bars are expected once every step_ms starting at the window start."""
    step_ms: int


@dataclass(frozen=True)
class TickCount:
    """Ticks have no cadence; the window is satisfied once it holds target_count prints."""
    target_count: int


CadenceModel = Union[BarGrid, TickCount]


def _check_window(window: Window) -> None:
    if window.start_ms >= window.end_ms:
        raise EmptyWindow(window.start_ms, window.end_ms)


def find_bar_gaps(window: Window, existing_ts: Iterable[int], step_ms: int) -> list[Gap]:
    """
    Walk existing bar timestamps against the expected grid and return the missing ranges,
    ascending and non-overlapping.

    Interior and leading gaps are [first_missing, last_missing]; a trailing gap runs to
    window.end_ms. A bar sitting exactly on end - step closes the window.
    """
    _check_window(window)
    if step_ms <= 0:
        raise ValueError(f"step_ms must be > 0 (got {step_ms})")

    ts = sorted({int(t) for t in existing_ts if window.contains(int(t))})
    if not ts:
        return [Gap(start_ms=window.start_ms, end_ms=window.end_ms)]

    gaps: list[Gap] = []

    def _emit(start: int, end: int) -> None:
        # off-grid records can produce inverted ranges; those hold nothing to fetch
        if end >= start:
            gaps.append(Gap(start_ms=start, end_ms=end))

    first = ts[0]
    if first > window.start_ms:
        _emit(window.start_ms, first - step_ms)

    for prev, curr in zip(ts, ts[1:]):
        if curr - prev > step_ms:
            _emit(prev + step_ms, curr - step_ms)

    last = ts[-1]
    if last < window.end_ms - step_ms:
        _emit(last + step_ms, window.end_ms)

    return gaps


def find_tick_gap(window: Window, existing_count: int, target_count: int) -> list[Gap]:
    """
    Count deficit, not range deficit: at most one synthetic gap spanning the whole window.
    """
    _check_window(window)
    deficit = int(target_count) - int(existing_count)
    if deficit <= 0:
        return []
    return [Gap(start_ms=window.start_ms, end_ms=window.end_ms, count=deficit)]


def find_gaps(window: Window, existing_ts: Iterable[int], model: CadenceModel) -> list[Gap]:
    if isinstance(model, BarGrid):
        return find_bar_gaps(window, existing_ts, model.step_ms)
    if isinstance(model, TickCount):
        existing_count = sum(1 for t in existing_ts if window.contains(int(t)))
        return find_tick_gap(window, existing_count, model.target_count)
    raise TypeError(f"Unsupported cadence model: {model!r}")
