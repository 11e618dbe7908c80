from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Sequence

import aiohttp
from loguru import logger

from histfill.common.datetime_utils import ms_to_datetime, parse_iso8601_to_ms
from histfill.common.errors import StoreUnavailable
from histfill.history.merge import merge_records
from histfill.history.types import Bar, BarQuery, Tick, TickQuery


# =========================
# rendering helpers
# =========================

def sql_str(v: str) -> str:
    return "'" + v.replace("'", "''") + "'"


def sql_ts(ts_ms: int) -> str:
    return "'" + ms_to_datetime(ts_ms).strftime("%Y-%m-%dT%H:%M:%S.%fZ") + "'"


def ilp_tag(v: str) -> str:
    return v.replace("\\", "\\\\").replace(" ", "\\ ").replace(",", "\\,").replace("=", "\\=")


def ilp_str(v: str) -> str:
    return '"' + v.replace("\\", "\\\\").replace('"', '\\"') + '"'


def ilp_bool(v: bool) -> str:
    return "t" if v else "f"


def build_bars_select(
    table: str,
    *,
    symbol: str,
    bar_size: str,
    start_ms: int,
    end_ms: int,
    sec_type: str,
    what_to_show: str,
    use_rth: bool,
) -> str:
    return (
        "SELECT timestamp, open, high, low, close, volume, count, wap, has_gaps "
        f"FROM {table} "
        f"WHERE symbol = {sql_str(symbol.upper())} "
        f"AND bar_size = {sql_str(bar_size)} "
        f"AND sec_type = {sql_str(sec_type)} "
        f"AND what_to_show = {sql_str(what_to_show)} "
        f"AND use_rth = {'true' if use_rth else 'false'} "
        f"AND timestamp >= {sql_ts(start_ms)} AND timestamp < {sql_ts(end_ms)} "
        "ORDER BY timestamp ASC"
    )


def build_ticks_select(table: str, *, symbol: str, start_ms: int, end_ms: int, sec_type: str) -> str:
    return (
        "SELECT timestamp, price, size, exchange_code, special_conditions "
        f"FROM {table} "
        f"WHERE symbol = {sql_str(symbol.upper())} "
        f"AND sec_type = {sql_str(sec_type)} "
        f"AND timestamp >= {sql_ts(start_ms)} AND timestamp < {sql_ts(end_ms)} "
        "ORDER BY timestamp ASC"
    )


def bar_to_line(table: str, symbol: str, query: BarQuery, bar: Bar) -> str:
    tags = ",".join(
        [
            f"{table}",
            f"symbol={ilp_tag(symbol.upper())}",
            f"sec_type={ilp_tag(query.sec_type)}",
            f"bar_size={ilp_tag(query.bar_size)}",
            f"what_to_show={ilp_tag(query.what_to_show)}",
        ]
    )
    fields = [
        f"use_rth={ilp_bool(query.use_rth)}",
        f"open={float(bar.open)!r}",
        f"high={float(bar.high)!r}",
        f"low={float(bar.low)!r}",
        f"close={float(bar.close)!r}",
        f"volume={float(bar.volume)!r}",
    ]
    if bar.trade_count is not None:
        fields.append(f"count={int(bar.trade_count)}i")
    if bar.wap is not None:
        fields.append(f"wap={float(bar.wap)!r}")
    if bar.has_gaps is not None:
        fields.append(f"has_gaps={ilp_bool(bar.has_gaps)}")
    return f"{tags} {','.join(fields)} {int(bar.ts_ms) * 1_000_000}"


def tick_to_line(table: str, symbol: str, query: TickQuery, tick: Tick) -> str:
    tags = [f"{table}", f"symbol={ilp_tag(symbol.upper())}", f"sec_type={ilp_tag(query.sec_type)}"]
    if tick.exchange_code:
        tags.append(f"exchange_code={ilp_tag(tick.exchange_code)}")
    fields = [f"price={float(tick.price)!r}", f"size={float(tick.size)!r}"]
    if tick.special_conditions:
        fields.append(f"special_conditions={ilp_str(tick.special_conditions)}")
    return f"{','.join(tags)} {','.join(fields)} {int(tick.ts_ms) * 1_000_000}"


def _opt(v: Any, conv):
    return None if v is None else conv(v)


# =========================
# store
# =========================

@dataclass
class QuestDBHistoryStore:
    """
    QuestDB-backed store: SQL reads over GET /exec, ILP-over-HTTP writes to POST /write.

    ILP cannot express "insert if absent", so writes first read back the identities already
    present in the batch's range and send only the new ones.
    """
    http_url: str = "http://localhost:9000"
    request_timeout_s: int = 15
    bars_table: str = "market_data"
    ticks_table: str = "tick_data"

    async def _query(self, sql: str) -> List[list]:
        timeout = aiohttp.ClientTimeout(total=self.request_timeout_s)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as sess:
                async with sess.get(f"{self.http_url}/exec", params={"query": sql}) as resp:
                    text = await resp.text()
                    if resp.status != 200:
                        if resp.status == 400 and "does not exist" in text:
                            return []
                        raise StoreUnavailable(f"QuestDB /exec HTTP {resp.status}: {text[:200]}")
                    data = await resp.json(content_type=None)
        except aiohttp.ClientError as e:
            raise StoreUnavailable(f"QuestDB /exec failed: {e}") from e

        dataset = data.get("dataset") if isinstance(data, dict) else None
        return list(dataset or [])

    async def _write(self, lines: Sequence[str]) -> None:
        body = "\n".join(lines) + "\n"
        timeout = aiohttp.ClientTimeout(total=self.request_timeout_s)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as sess:
                async with sess.post(f"{self.http_url}/write", params={"precision": "n"}, data=body.encode("utf-8")) as resp:
                    if resp.status not in (200, 204):
                        text = await resp.text()
                        raise StoreUnavailable(f"QuestDB /write HTTP {resp.status}: {text[:200]}")
        except aiohttp.ClientError as e:
            raise StoreUnavailable(f"QuestDB /write failed: {e}") from e

    async def read_bars(
        self,
        symbol: str,
        bar_size: str,
        start_ms: int,
        end_ms: int,
        sec_type: str,
        what_to_show: str,
        use_rth: bool,
    ) -> List[Bar]:
        sql = build_bars_select(
            self.bars_table,
            symbol=symbol,
            bar_size=bar_size,
            start_ms=start_ms,
            end_ms=end_ms,
            sec_type=sec_type,
            what_to_show=what_to_show,
            use_rth=use_rth,
        )
        rows = await self._query(sql)
        bars = [
            Bar(
                ts_ms=parse_iso8601_to_ms(r[0]),
                open=float(r[1]),
                high=float(r[2]),
                low=float(r[3]),
                close=float(r[4]),
                volume=float(r[5]),
                trade_count=_opt(r[6], int),
                wap=_opt(r[7], float),
                has_gaps=_opt(r[8], bool),
            )
            for r in rows
        ]
        return merge_records([bars])

    async def write_bars(self, symbol: str, query: BarQuery, bars: Sequence[Bar]) -> int:
        batch = merge_records([bars])
        if not batch:
            return 0
        present = await self.read_bars(
            symbol,
            query.bar_size,
            batch[0].ts_ms,
            batch[-1].ts_ms + 1,
            query.sec_type,
            query.what_to_show,
            query.use_rth,
        )
        seen = {b.ts_ms for b in present}
        fresh = [b for b in batch if b.ts_ms not in seen]
        if fresh:
            await self._write([bar_to_line(self.bars_table, symbol, query, b) for b in fresh])
        logger.info("QuestDB stored bars symbol={} new={} skipped={}", symbol.upper(), len(fresh), len(batch) - len(fresh))
        return len(fresh)

    async def read_ticks(self, symbol: str, start_ms: int, end_ms: int, sec_type: str) -> List[Tick]:
        sql = build_ticks_select(self.ticks_table, symbol=symbol, start_ms=start_ms, end_ms=end_ms, sec_type=sec_type)
        rows = await self._query(sql)
        ticks = [
            Tick(
                ts_ms=parse_iso8601_to_ms(r[0]),
                price=float(r[1]),
                size=float(r[2]),
                exchange_code=r[3] or None,
                special_conditions=r[4] or None,
            )
            for r in rows
        ]
        return merge_records([ticks])

    async def write_ticks(self, symbol: str, query: TickQuery, ticks: Sequence[Tick]) -> int:
        batch = merge_records([ticks])
        if not batch:
            return 0
        present = await self.read_ticks(symbol, batch[0].ts_ms, batch[-1].ts_ms + 1, query.sec_type)
        seen = {t.ts_ms for t in present}
        fresh = [t for t in batch if t.ts_ms not in seen]
        if fresh:
            await self._write([tick_to_line(self.ticks_table, symbol, query, t) for t in fresh])
        logger.info("QuestDB stored ticks symbol={} new={} skipped={}", symbol.upper(), len(fresh), len(batch) - len(fresh))
        return len(fresh)
