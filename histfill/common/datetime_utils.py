from __future__ import annotations

from datetime import datetime, timezone

from histfill.common.constants import IB_TIMESTAMP_FORMAT
from histfill.common.errors import InvalidTimestamp


def parse_ib_timestamp(s: str) -> int:
    """
    Parse an anchor time in the fixed UTC form ``YYYYMMDD-HH:MM:SS``.
    Returns epoch ms. Anything else raises InvalidTimestamp.
    """
    if not isinstance(s, str):
        raise InvalidTimestamp(f"Expected 'YYYYMMDD-HH:MM:SS', got {s!r}")
    ss = s.strip()
    try:
        dt = datetime.strptime(ss, IB_TIMESTAMP_FORMAT)
    except ValueError as e:
        raise InvalidTimestamp(f"Expected 'YYYYMMDD-HH:MM:SS', got {s!r}") from e
    return int(dt.replace(tzinfo=timezone.utc).timestamp() * 1000)


def format_ib_timestamp(ts_ms: int) -> str:
    """
    Epoch ms -> "YYYYMMDD-HH:MM:SS" (UTC), e.g. 1688140800000 -> "20230630-16:00:00"
    """
    return ms_to_datetime(ts_ms).strftime(IB_TIMESTAMP_FORMAT)


def parse_iso8601_to_ms(s: str) -> int:
    """
    Accepts ISO8601 strings like:
      - 2023-06-30T16:00:00Z
      - 2023-06-30T16:00:00.000000Z
      - 2023-06-30T16:00:00+00:00
      - 2023-06-30T16:00:00 (assumed UTC)
    Returns epoch ms.
    """
    ss = s.strip()
    if ss.endswith("Z"):
        ss = ss[:-1] + "+00:00"

    dt = datetime.fromisoformat(ss)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    else:
        dt = dt.astimezone(timezone.utc)

    return int(dt.timestamp() * 1000)


def ms_to_iso8601_z(ts_ms: int) -> str:
    """
    Epoch ms -> ISO8601 Zulu string, e.g. 1700000000000 -> "2023-11-14T22:13:20Z"
    """
    return ms_to_datetime(ts_ms).isoformat().replace("+00:00", "Z")


def ms_to_datetime(ts_ms: int) -> datetime:
    return datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc)


def datetime_to_ms(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def now_ms() -> int:
    return int(datetime.now(tz=timezone.utc).timestamp() * 1000)
