from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Protocol, Sequence, Union


class DataShape(str, Enum):
    BARS = "BARS"
    TICKS = "TICKS"


@dataclass(frozen=True)
class Bar:
    ts_ms: int  # bar open time
    open: float
    high: float
    low: float
    close: float
    volume: float
    trade_count: Optional[int] = None
    wap: Optional[float] = None
    has_gaps: Optional[bool] = None


@dataclass(frozen=True)
class Tick:
    ts_ms: int
    price: float
    size: float
    exchange_code: Optional[str] = None
    special_conditions: Optional[str] = None


Record = Union[Bar, Tick]


@dataclass(frozen=True)
class Window:
    start_ms: int  # inclusive
    end_ms: int    # exclusive

    @property
    def span_ms(self) -> int:
        return self.end_ms - self.start_ms

    def contains(self, ts_ms: int) -> bool:
        return self.start_ms <= ts_ms < self.end_ms


@dataclass(frozen=True)
class Gap:
    """
    Missing sub-range of a query window.

    Bar gaps: start_ms is the first missing slot, end_ms the last missing slot,
    or the window end for a trailing gap. count is None.
    Tick gaps: the whole window, with count = number of ticks still needed.
    """
    start_ms: int
    end_ms: int
    count: Optional[int] = None


@dataclass(frozen=True)
class BarQuery:
    symbol: str
    sec_type: str
    anchor_end_ms: int
    window: Window
    duration: str
    bar_size: str
    what_to_show: str
    use_rth: bool
    fingerprint: str

    @property
    def shape(self) -> DataShape:
        return DataShape.BARS


@dataclass(frozen=True)
class TickQuery:
    symbol: str
    sec_type: str
    anchor_end_ms: int
    window: Window
    target_count: int
    what_to_show: str
    use_rth: bool
    fingerprint: str

    @property
    def shape(self) -> DataShape:
        return DataShape.TICKS


Query = Union[BarQuery, TickQuery]


@dataclass(frozen=True)
class ContractHandle:
    symbol: str
    sec_type: str
    con_id: int = 0
    exchange: str = ""
    currency: str = ""
    raw: Any = None  # provider-native contract object


class HistoryStore(Protocol):
    """Persistence collaborator. Reads are window-filtered and ascending; writes ignore known identities."""

    async def read_bars(
        self,
        symbol: str,
        bar_size: str,
        start_ms: int,
        end_ms: int,
        sec_type: str,
        what_to_show: str,
        use_rth: bool,
    ) -> list[Bar]:
        ...

    async def write_bars(self, symbol: str, query: BarQuery, bars: Sequence[Bar]) -> int:
        ...

    async def read_ticks(self, symbol: str, start_ms: int, end_ms: int, sec_type: str) -> list[Tick]:
        ...

    async def write_ticks(self, symbol: str, query: TickQuery, ticks: Sequence[Tick]) -> int:
        ...


class HistoryProvider(Protocol):
    """Upstream broker collaborator. Lifecycle (connect/close) is owned by the caller."""

    async def resolve_contract(self, symbol: str, sec_type: str) -> Optional[ContractHandle]:
        ...

    async def fetch_bars(
        self,
        contract: ContractHandle,
        end_ms: int,
        duration: str,
        bar_size: str,
        what_to_show: str,
        use_rth: bool,
    ) -> list[Bar]:
        ...

    async def fetch_ticks(
        self,
        contract: ContractHandle,
        start_ms: int,
        end_ms: int,
        count: int,
        use_rth: bool,
    ) -> list[Tick]:
        ...
