# apps/fetch_history/main.py

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict

from loguru import logger

from histfill.adapters.ibkr.provider import IBKRProvider
from histfill.common.config import HistFillConfig, load_histfill_config
from histfill.common.errors import ContractNotFound, HistFillError
from histfill.history.questdb_store import QuestDBHistoryStore
from histfill.history.sqlite_store import SQLiteHistoryStore
from histfill.market_data.cache import ResponseCache, record_to_dict
from histfill.market_data.service import HistoricalDataService


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Fetch historical bars/ticks, backfilling only what the local store lacks.")
    p.add_argument("--config", default="config/histfill.yaml", help="Config yaml path")
    p.add_argument("--db-path", default=None, help="SQLite path override")
    p.add_argument("--log-level", default="INFO", help="Log level for stderr sink")

    sub = p.add_subparsers(dest="kind", required=True)

    bars = sub.add_parser("bars", help="Historical OHLCV bars")
    bars.add_argument("--symbol", required=True)
    bars.add_argument("--sec-type", default=None)
    bars.add_argument("--end", default=None, help="End time 'YYYYMMDD-HH:MM:SS' (UTC), default now")
    bars.add_argument("--duration", default=None, help="e.g. '1 D', '2 W', '3600 S'")
    bars.add_argument("--bar-size", default=None, help="e.g. '1 min', '5 mins', '1 hour'")
    bars.add_argument("--what-to-show", default=None)
    bars.add_argument("--rth", dest="use_rth", action="store_true", default=None)
    bars.add_argument("--no-rth", dest="use_rth", action="store_false")

    ticks = sub.add_parser("ticks", help="Historical trade ticks")
    ticks.add_argument("--symbol", required=True)
    ticks.add_argument("--sec-type", default=None)
    ticks.add_argument("--start", default=None, help="Start time 'YYYYMMDD-HH:MM:SS' (UTC), default end - 1 month")
    ticks.add_argument("--end", default=None, help="End time 'YYYYMMDD-HH:MM:SS' (UTC), default now")
    ticks.add_argument("--ticks", dest="number_of_ticks", type=int, default=None)
    ticks.add_argument("--rth", dest="use_rth", action="store_true", default=None)
    ticks.add_argument("--no-rth", dest="use_rth", action="store_false")

    return p.parse_args(argv)


def build_request(args: argparse.Namespace) -> Dict[str, Any]:
    if args.kind == "bars":
        raw = {
            "symbol": args.symbol,
            "secType": args.sec_type,
            "endDateTime": args.end,
            "duration": args.duration,
            "barSize": args.bar_size,
            "whatToShow": args.what_to_show,
            "useRTH": args.use_rth,
        }
    else:
        raw = {
            "symbol": args.symbol,
            "secType": args.sec_type,
            "startDate": args.start,
            "endDate": args.end,
            "numberOfTicks": args.number_of_ticks,
            "useRTH": args.use_rth,
        }
    return {k: v for k, v in raw.items() if v is not None}


async def _open_store(cfg: HistFillConfig, db_path_override: str | None):
    if cfg.data.backend == "questdb":
        return QuestDBHistoryStore(http_url=cfg.data.questdb_http_url, request_timeout_s=cfg.data.request_timeout_s)
    return await SQLiteHistoryStore.open(Path(db_path_override or cfg.data.db_path))


async def main_async(args: argparse.Namespace) -> int:
    cfg = load_histfill_config(Path(args.config))

    provider = IBKRProvider(
        host=cfg.ibkr.host,
        port=cfg.ibkr.port,
        client_id=cfg.ibkr.client_id,
        exchange=cfg.ibkr.exchange,
        currency=cfg.ibkr.currency,
        timeout_s=cfg.ibkr.timeout_s,
        max_retries=cfg.ibkr.max_retries,
        max_ticks_per_request=cfg.ibkr.max_ticks_per_request,
    )
    store = await _open_store(cfg, args.db_path)
    cache = ResponseCache(Path(cfg.cache.dir)) if cfg.cache.enabled else None

    service = HistoricalDataService(store=store, provider=provider, defaults=cfg.defaults, cache=cache)
    raw = build_request(args)

    try:
        await provider.connect()
        if args.kind == "bars":
            records = await service.get_historical_bars(raw)
        else:
            records = await service.get_historical_ticks(raw)
    except ContractNotFound as e:
        logger.error("{}", e)
        return 2
    except HistFillError as e:
        logger.error("Request failed: {}", e)
        return 1
    finally:
        await provider.close()
        if isinstance(store, SQLiteHistoryStore):
            await store.close()

    json.dump([record_to_dict(r) for r in records], sys.stdout, indent=2)
    sys.stdout.write("\n")
    logger.info("Returned {} {} for {}", len(records), args.kind, raw["symbol"])
    return 0


def main() -> None:
    args = _parse_args()
    logger.remove()
    logger.add(sys.stderr, level=args.log_level.upper())
    try:
        code = asyncio.run(main_async(args))
    except KeyboardInterrupt:
        logger.info("Interrupted.")
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
