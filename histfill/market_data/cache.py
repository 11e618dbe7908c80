from __future__ import annotations

import json
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger

from histfill.common.datetime_utils import ms_to_iso8601_z, parse_iso8601_to_ms
from histfill.history.types import Bar, DataShape, Query, Record, Tick


def record_to_dict(r: Record) -> Dict[str, Any]:
    """Response shape: ISO-8601 `timestamp` instead of ts_ms."""
    d = asdict(r)
    ts = d.pop("ts_ms")
    return {"timestamp": ms_to_iso8601_z(ts), **d}


def record_from_dict(shape: DataShape, d: Dict[str, Any]) -> Record:
    data = dict(d)
    data["ts_ms"] = parse_iso8601_to_ms(data.pop("timestamp"))
    if shape == DataShape.BARS:
        return Bar(**data)
    return Tick(**data)


def _query_dict(query: Query) -> Dict[str, Any]:
    d = asdict(query)
    d["shape"] = query.shape.value
    return d


class ResponseCache:
    """
    One JSON file per query fingerprint under cache_dir. Entries never expire;
    clear() drops them all.
    """

    def __init__(self, cache_dir: Path):
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, fingerprint: str) -> Path:
        return self.cache_dir / f"{fingerprint}.json"

    def get(self, query: Query) -> Optional[List[Record]]:
        path = self._path(query.fingerprint)
        if not path.exists():
            logger.debug("Cache MISS fingerprint={}", query.fingerprint)
            return None
        try:
            entry = json.loads(path.read_text())
            records = [record_from_dict(query.shape, d) for d in entry["data"]]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Cache entry unreadable fingerprint={} err={} - treating as miss", query.fingerprint, e)
            return None
        logger.info("Cache HIT fingerprint={} rows={}", query.fingerprint, len(records))
        return records

    def set(self, query: Query, records: Sequence[Record]) -> None:
        entry = {
            "timestamp": datetime.now(tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "request": _query_dict(query),
            "data": [record_to_dict(r) for r in records],
        }
        try:
            self._path(query.fingerprint).write_text(json.dumps(entry, indent=2))
        except OSError as e:
            logger.warning("Cache write failed fingerprint={} err={} - response not cached", query.fingerprint, e)
            return
        logger.info("Cached response fingerprint={} rows={}", query.fingerprint, len(records))

    def clear(self) -> int:
        removed = 0
        for p in self.cache_dir.glob("*.json"):
            p.unlink()
            removed += 1
        logger.info("Cache cleared removed={}", removed)
        return removed
