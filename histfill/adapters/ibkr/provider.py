from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Awaitable, Callable, List, Optional, TypeVar

from ib_insync import IB, Contract, RequestError
from loguru import logger

from histfill.common.datetime_utils import datetime_to_ms, format_ib_timestamp
from histfill.common.errors import UpstreamFetchFailed
from histfill.history.merge import merge_records, tail
from histfill.history.types import Bar, ContractHandle, Tick

T = TypeVar("T")

# IB caps historical tick requests at 1000 prints per call.
IB_MAX_TICKS_PER_REQUEST = 1000

# "No security definition has been found for the request"
IB_NO_SECURITY_DEFINITION = 200


def _bar_time_to_ms(d) -> int:
    if isinstance(d, datetime):
        return datetime_to_ms(d)
    if isinstance(d, date):
        return datetime_to_ms(datetime(d.year, d.month, d.day, tzinfo=timezone.utc))
    raise ValueError(f"Unsupported bar date {d!r}")


def bar_from_ib(b) -> Bar:
    count = getattr(b, "barCount", None)
    wap = getattr(b, "average", None)
    return Bar(
        ts_ms=_bar_time_to_ms(b.date),
        open=float(b.open),
        high=float(b.high),
        low=float(b.low),
        close=float(b.close),
        volume=float(b.volume),
        trade_count=None if count is None or count < 0 else int(count),
        wap=None if wap is None or wap < 0 else float(wap),
    )


def tick_from_ib(t) -> Tick:
    return Tick(
        ts_ms=datetime_to_ms(t.time),
        price=float(t.price),
        size=float(t.size),
        exchange_code=getattr(t, "exchange", None) or None,
        special_conditions=getattr(t, "specialConditions", None) or None,
    )


@dataclass
class IBKRProvider:
    """
    Historical data provider backed by TWS / IB Gateway.

    The caller owns the connection: await connect() before use, close() after.
    Each call retries transient failures with capped exponential backoff.
    """
    host: str = "127.0.0.1"
    port: int = 7497
    client_id: int = 1
    exchange: str = "SMART"
    currency: str = "USD"
    timeout_s: float = 60.0
    max_retries: int = 3
    max_ticks_per_request: int = IB_MAX_TICKS_PER_REQUEST
    ib: IB = field(default_factory=IB)

    def __post_init__(self) -> None:
        # otherwise ib_insync logs request errors and hands back an empty result
        self.ib.RaiseRequestErrors = True

    async def connect(self) -> None:
        try:
            await self.ib.connectAsync(self.host, self.port, clientId=self.client_id, timeout=self.timeout_s)
        except (OSError, asyncio.TimeoutError) as e:
            raise UpstreamFetchFailed(f"IBKR connect to {self.host}:{self.port} failed: {e!r}") from e
        logger.info("IBKR connected {}:{} client_id={}", self.host, self.port, self.client_id)

    async def close(self) -> None:
        if self.ib.isConnected():
            self.ib.disconnect()
        logger.info("IBKR disconnected")

    async def _with_retries(self, what: str, call: Callable[[], Awaitable[T]]) -> T:
        last_err: Optional[BaseException] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                return await call()
            except Exception as e:
                last_err = e
                logger.warning("IBKR {} attempt {}/{} failed: {}", what, attempt, self.max_retries, e)
                if attempt < self.max_retries:
                    base = min(2 ** (attempt - 1), 10)
                    await asyncio.sleep(base + random.uniform(0, 0.25))

        raise UpstreamFetchFailed(f"IBKR {what} failed after {self.max_retries} attempts") from last_err

    async def resolve_contract(self, symbol: str, sec_type: str) -> Optional[ContractHandle]:
        query = Contract(symbol=symbol, secType=sec_type, exchange=self.exchange, currency=self.currency)

        async def _lookup() -> list:
            try:
                return await asyncio.wait_for(self.ib.reqContractDetailsAsync(query), self.timeout_s)
            except RequestError as e:
                if e.code == IB_NO_SECURITY_DEFINITION:
                    return []
                raise

        details = await self._with_retries("reqContractDetails", _lookup)
        if not details:
            logger.warning("IBKR has no contract for symbol={} sec_type={}", symbol, sec_type)
            return None

        c = details[0].contract
        return ContractHandle(
            symbol=c.symbol or symbol,
            sec_type=c.secType or sec_type,
            con_id=int(c.conId or 0),
            exchange=c.exchange or self.exchange,
            currency=c.currency or self.currency,
            raw=c,
        )

    async def fetch_bars(
        self,
        contract: ContractHandle,
        end_ms: int,
        duration: str,
        bar_size: str,
        what_to_show: str,
        use_rth: bool,
    ) -> List[Bar]:
        end = format_ib_timestamp(end_ms)
        rows = await self._with_retries(
            "reqHistoricalData",
            # ib_insync turns its own timeout into an empty result; the deadline lives here instead
            lambda: asyncio.wait_for(
                self.ib.reqHistoricalDataAsync(
                    contract.raw,
                    endDateTime=end,
                    durationStr=duration,
                    barSizeSetting=bar_size,
                    whatToShow=what_to_show,
                    useRTH=use_rth,
                    formatDate=2,
                    timeout=0,
                ),
                self.timeout_s,
            ),
        )
        bars = merge_records([[bar_from_ib(b) for b in rows or []]])
        logger.debug(
            "IBKR bars symbol={} end={} duration={} bar_size={} rows={}",
            contract.symbol,
            end,
            duration,
            bar_size,
            len(bars),
        )
        return bars

    async def fetch_ticks(
        self,
        contract: ContractHandle,
        start_ms: int,
        end_ms: int,
        count: int,
        use_rth: bool,
    ) -> List[Tick]:
        """
        Most recent `count` trade prints in [start_ms, end_ms), paging backwards from end_ms.
        """
        collected: List[Tick] = []
        cursor = int(end_ms)
        pages = 0

        while len(collected) < count:
            n = min(count - len(collected), self.max_ticks_per_request)
            cursor_str = format_ib_timestamp(cursor)
            rows = await self._with_retries(
                "reqHistoricalTicks",
                lambda: asyncio.wait_for(
                    self.ib.reqHistoricalTicksAsync(
                        contract.raw,
                        startDateTime="",
                        endDateTime=cursor_str,
                        numberOfTicks=n,
                        whatToShow="TRADES",
                        useRth=use_rth,
                    ),
                    self.timeout_s,
                ),
            )
            pages += 1
            page = [tick_from_ib(t) for t in rows or []]
            if not page:
                break

            collected = merge_records([collected, [t for t in page if start_ms <= t.ts_ms < end_ms]])

            earliest = min(t.ts_ms for t in page)
            if earliest < start_ms:
                break

            next_cursor = earliest - (earliest % 1000)
            if next_cursor >= cursor:
                logger.warning("IBKR tick cursor did not advance (cursor={} earliest={}) - stopping", cursor, earliest)
                break
            cursor = next_cursor

        logger.debug("IBKR ticks symbol={} pages={} collected={} requested={}", contract.symbol, pages, len(collected), count)
        return tail(collected, count)
