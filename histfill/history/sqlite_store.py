from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Sequence

import aiosqlite
from loguru import logger

from histfill.history.types import Bar, BarQuery, Tick, TickQuery


SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;
PRAGMA temp_store=MEMORY;

CREATE TABLE IF NOT EXISTS bars (
  symbol TEXT NOT NULL,
  sec_type TEXT NOT NULL,
  bar_size TEXT NOT NULL,
  what_to_show TEXT NOT NULL,
  use_rth INTEGER NOT NULL,
  ts_ms INTEGER NOT NULL,              -- bar open time
  open REAL NOT NULL,
  high REAL NOT NULL,
  low REAL NOT NULL,
  close REAL NOT NULL,
  volume REAL NOT NULL,
  trade_count INTEGER,
  wap REAL,
  has_gaps INTEGER,
  PRIMARY KEY (symbol, sec_type, bar_size, what_to_show, use_rth, ts_ms)
);

CREATE TABLE IF NOT EXISTS ticks (
  symbol TEXT NOT NULL,
  sec_type TEXT NOT NULL,
  ts_ms INTEGER NOT NULL,
  price REAL NOT NULL,
  size REAL NOT NULL,
  exchange_code TEXT,
  special_conditions TEXT,
  PRIMARY KEY (symbol, sec_type, ts_ms)
);
"""


def _opt_bool(v) -> bool | None:
    return None if v is None else bool(v)


@dataclass
class SQLiteHistoryStore:
    """
    Local bar/tick store. Persisted rows are immutable: a second write for the same
    identity is ignored, never applied as an update.
    """
    db_path: Path
    conn: aiosqlite.Connection
    _write_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @classmethod
    async def open(cls, db_path: Path) -> "SQLiteHistoryStore":
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = await aiosqlite.connect(str(db_path))
        await conn.executescript(SCHEMA_SQL)
        await conn.commit()
        logger.info("SQLiteHistoryStore ready: {}", db_path)
        return cls(db_path=db_path, conn=conn)

    async def close(self) -> None:
        await self.conn.close()
        logger.info("SQLiteHistoryStore closed")

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
        async with self.conn.execute(
            """
            SELECT ts_ms, open, high, low, close, volume, trade_count, wap, has_gaps
            FROM bars
            WHERE symbol=? AND sec_type=? AND bar_size=? AND what_to_show=? AND use_rth=?
              AND ts_ms >= ? AND ts_ms < ?
            ORDER BY ts_ms ASC
            """,
            (symbol.upper(), sec_type, bar_size, what_to_show, int(use_rth), int(start_ms), int(end_ms)),
        ) as cur:
            rows = await cur.fetchall()

        return [
            Bar(
                ts_ms=int(r[0]),
                open=float(r[1]),
                high=float(r[2]),
                low=float(r[3]),
                close=float(r[4]),
                volume=float(r[5]),
                trade_count=None if r[6] is None else int(r[6]),
                wap=None if r[7] is None else float(r[7]),
                has_gaps=_opt_bool(r[8]),
            )
            for r in rows
        ]

    async def write_bars(self, symbol: str, query: BarQuery, bars: Sequence[Bar]) -> int:
        if not bars:
            return 0
        rows = [
            (
                symbol.upper(),
                query.sec_type,
                query.bar_size,
                query.what_to_show,
                int(query.use_rth),
                int(b.ts_ms),
                float(b.open),
                float(b.high),
                float(b.low),
                float(b.close),
                float(b.volume),
                b.trade_count,
                b.wap,
                None if b.has_gaps is None else int(b.has_gaps),
            )
            for b in bars
        ]
        async with self._write_lock:
            before = self.conn.total_changes
            await self.conn.executemany(
                """
                INSERT OR IGNORE INTO bars
                  (symbol, sec_type, bar_size, what_to_show, use_rth, ts_ms,
                   open, high, low, close, volume, trade_count, wap, has_gaps)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
            await self.conn.commit()
            return self.conn.total_changes - before

    async def read_ticks(self, symbol: str, start_ms: int, end_ms: int, sec_type: str) -> List[Tick]:
        async with self.conn.execute(
            """
            SELECT ts_ms, price, size, exchange_code, special_conditions
            FROM ticks
            WHERE symbol=? AND sec_type=? AND ts_ms >= ? AND ts_ms < ?
            ORDER BY ts_ms ASC
            """,
            (symbol.upper(), sec_type, int(start_ms), int(end_ms)),
        ) as cur:
            rows = await cur.fetchall()

        return [
            Tick(
                ts_ms=int(r[0]),
                price=float(r[1]),
                size=float(r[2]),
                exchange_code=r[3],
                special_conditions=r[4],
            )
            for r in rows
        ]

    async def write_ticks(self, symbol: str, query: TickQuery, ticks: Sequence[Tick]) -> int:
        if not ticks:
            return 0
        rows = [
            (
                symbol.upper(),
                query.sec_type,
                int(t.ts_ms),
                float(t.price),
                float(t.size),
                t.exchange_code,
                t.special_conditions,
            )
            for t in ticks
        ]
        async with self._write_lock:
            before = self.conn.total_changes
            await self.conn.executemany(
                """
                INSERT OR IGNORE INTO ticks
                  (symbol, sec_type, ts_ms, price, size, exchange_code, special_conditions)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
            await self.conn.commit()
            return self.conn.total_changes - before
