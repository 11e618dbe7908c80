from __future__ import annotations

from typing import Any, List, Mapping, Optional

from loguru import logger

from histfill.common.config import RequestDefaults
from histfill.history.normalize import normalize_bar_request, normalize_tick_request
from histfill.history.orchestrator import BackfillOrchestrator
from histfill.history.types import Bar, HistoryProvider, HistoryStore, Query, Record, Tick
from histfill.market_data.cache import ResponseCache


class HistoricalDataService:
    """
    Entry point for inbound requests:
      raw request -> normalized query -> (response cache) -> reconciliation -> records
    """

    def __init__(
        self,
        *,
        store: HistoryStore,
        provider: HistoryProvider,
        defaults: Optional[RequestDefaults] = None,
        cache: Optional[ResponseCache] = None,
    ):
        self.defaults = defaults or RequestDefaults()
        self._orchestrator = BackfillOrchestrator(store, provider)
        self._cache = cache

    async def _run(self, query: Query) -> List[Record]:
        if self._cache is not None:
            hit = self._cache.get(query)
            if hit is not None:
                return hit

        records = await self._orchestrator.resolve(query)

        if self._cache is not None:
            self._cache.set(query, records)
        return records

    async def get_historical_bars(self, raw: Mapping[str, Any], *, now: Optional[int] = None) -> List[Bar]:
        query = normalize_bar_request(raw, defaults=self.defaults, now=now)
        logger.info(
            "Historical bars symbol={} sec_type={} bar_size={} duration={} fingerprint={}",
            query.symbol,
            query.sec_type,
            query.bar_size,
            query.duration,
            query.fingerprint[:12],
        )
        return await self._run(query)

    async def get_historical_ticks(self, raw: Mapping[str, Any], *, now: Optional[int] = None) -> List[Tick]:
        query = normalize_tick_request(raw, defaults=self.defaults, now=now)
        logger.info(
            "Historical ticks symbol={} sec_type={} target={} fingerprint={}",
            query.symbol,
            query.sec_type,
            query.target_count,
            query.fingerprint[:12],
        )
        return await self._run(query)
