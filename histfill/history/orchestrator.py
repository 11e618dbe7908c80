from __future__ import annotations

from typing import Awaitable, Optional, Sequence, TypeVar

from loguru import logger

from histfill.common.errors import (
    ContractNotFound,
    EmptyWindow,
    HistFillError,
    StoreUnavailable,
    UpstreamFetchFailed,
)
from histfill.common.timeframes import bar_size_to_ms
from histfill.history.gaps import BarGrid, find_gaps, find_tick_gap
from histfill.history.merge import merge_records, tail
from histfill.history.types import (
    Bar,
    BarQuery,
    ContractHandle,
    Gap,
    HistoryProvider,
    HistoryStore,
    Query,
    Record,
    Tick,
    TickQuery,
)
from histfill.history.windows import duration_for

T = TypeVar("T")


async def _store_call(what: str, aw: Awaitable[T]) -> T:
    try:
        return await aw
    except HistFillError:
        raise
    except Exception as e:
        raise StoreUnavailable(f"Store {what} failed: {e}") from e


async def _provider_call(what: str, aw: Awaitable[T]) -> T:
    try:
        return await aw
    except HistFillError:
        raise
    except Exception as e:
        raise UpstreamFetchFailed(f"Provider {what} failed: {e}") from e


class BackfillOrchestrator:
    """
    Reconciles a query window against the local store and the upstream provider.

    - reads what is persisted for the window
    - detects missing ranges (grid for bars, count deficit for ticks)
    - fetches and persists each gap sequentially, ascending
    - returns a merged, deduplicated, ascending result

    No upstream call (contract lookup included) happens when the store already
    satisfies the query. Any collaborator failure aborts the remaining gaps;
    whatever was persisted before the failure stays.
    """

    def __init__(self, store: HistoryStore, provider: HistoryProvider):
        self._store = store
        self._provider = provider

    async def resolve(self, query: Query) -> list[Record]:
        if isinstance(query, BarQuery):
            return list(await self.resolve_bars(query))
        if isinstance(query, TickQuery):
            return list(await self.resolve_ticks(query))
        raise TypeError(f"Unsupported query type: {type(query).__name__}")

    async def _contract(self, symbol: str, sec_type: str) -> ContractHandle:
        contract = await _provider_call(
            "resolve_contract",
            self._provider.resolve_contract(symbol, sec_type),
        )
        if contract is None:
            raise ContractNotFound(symbol, sec_type)
        return contract

    # =========================
    # bars
    # =========================

    async def resolve_bars(self, q: BarQuery) -> list[Bar]:
        w = q.window
        step_ms = bar_size_to_ms(q.bar_size)

        existing = await _store_call(
            "read_bars",
            self._store.read_bars(q.symbol, q.bar_size, w.start_ms, w.end_ms, q.sec_type, q.what_to_show, q.use_rth),
        )

        try:
            gaps = find_gaps(w, (b.ts_ms for b in existing), BarGrid(step_ms=step_ms))
        except EmptyWindow:
            logger.info("Empty bar window symbol={} [{}..{}) - nothing to fetch", q.symbol, w.start_ms, w.end_ms)
            gaps = []

        if not gaps:
            logger.info(
                "Store satisfies bars symbol={} bar_size={} [{}..{}) rows={}",
                q.symbol,
                q.bar_size,
                w.start_ms,
                w.end_ms,
                len(existing),
            )
            return [b for b in merge_records([existing]) if w.contains(b.ts_ms)]

        logger.info(
            "Bar gaps symbol={} bar_size={} [{}..{}) existing={} gaps={}",
            q.symbol,
            q.bar_size,
            w.start_ms,
            w.end_ms,
            len(existing),
            len(gaps),
        )

        contract = await self._contract(q.symbol, q.sec_type)

        batches: list[Sequence[Bar]] = [existing]
        for i, gap in enumerate(gaps, start=1):
            fetched = await self._fetch_bar_gap(q, contract, gap, step_ms)
            logger.info(
                "Gap {}/{} symbol={} [{}..{}] fetched={}",
                i,
                len(gaps),
                q.symbol,
                gap.start_ms,
                gap.end_ms,
                len(fetched),
            )
            if fetched:
                wrote = await _store_call("write_bars", self._store.write_bars(contract.symbol, q, fetched))
                logger.debug("Persisted bars symbol={} written={}", contract.symbol, wrote)
                batches.append(fetched)

        merged = merge_records(batches)
        return [b for b in merged if w.contains(b.ts_ms)]

    async def _fetch_bar_gap(self, q: BarQuery, contract: ContractHandle, gap: Gap, step_ms: int) -> list[Bar]:
        # Leading/interior gaps end on the last missing slot; the provider's end is exclusive,
        # so push one step past it. Trailing gaps already end on the window end.
        if gap.end_ms < q.window.end_ms:
            fetch_end = min(gap.end_ms + step_ms, q.window.end_ms)
        else:
            fetch_end = gap.end_ms
        duration = duration_for(gap.start_ms, fetch_end)

        return await _provider_call(
            "fetch_bars",
            self._provider.fetch_bars(contract, fetch_end, duration, q.bar_size, q.what_to_show, q.use_rth),
        )

    # =========================
    # ticks
    # =========================

    async def resolve_ticks(self, q: TickQuery) -> list[Tick]:
        w = q.window

        existing = await _store_call(
            "read_ticks",
            self._store.read_ticks(q.symbol, w.start_ms, w.end_ms, q.sec_type),
        )
        existing = merge_records([existing])

        try:
            gaps = find_tick_gap(w, len(existing), q.target_count)
        except EmptyWindow:
            logger.info("Empty tick window symbol={} [{}..{}) - nothing to fetch", q.symbol, w.start_ms, w.end_ms)
            gaps = []

        if not gaps:
            logger.info(
                "Tick cache hit symbol={} existing={} target={}",
                q.symbol,
                len(existing),
                q.target_count,
            )
            return tail(existing, q.target_count)

        gap = gaps[0]
        deficit: Optional[int] = gap.count
        logger.info(
            "Tick deficit symbol={} existing={} target={} deficit={}",
            q.symbol,
            len(existing),
            q.target_count,
            deficit,
        )

        contract = await self._contract(q.symbol, q.sec_type)

        fetched = await _provider_call(
            "fetch_ticks",
            self._provider.fetch_ticks(contract, gap.start_ms, gap.end_ms, int(deficit or 0), q.use_rth),
        )
        if fetched:
            wrote = await _store_call("write_ticks", self._store.write_ticks(contract.symbol, q, fetched))
            logger.debug("Persisted ticks symbol={} written={}", contract.symbol, wrote)

        merged = [t for t in merge_records([existing, fetched]) if w.contains(t.ts_ms)]
        logger.info("Ticks resolved symbol={} merged={} returned={}", q.symbol, len(merged), min(len(merged), q.target_count))
        return tail(merged, q.target_count)
