from __future__ import annotations

# Wire format for anchor times, always UTC: "20230630-16:00:00"
IB_TIMESTAMP_FORMAT: str = "%Y%m%d-%H:%M:%S"

DEFAULT_SEC_TYPE: str = "STK"
DEFAULT_WHAT_TO_SHOW: str = "TRADES"
DEFAULT_USE_RTH: bool = True

DEFAULT_BAR_SIZE: str = "1 min"
DEFAULT_DURATION: str = "1 D"

DEFAULT_NUMBER_OF_TICKS: int = 1000
DEFAULT_TICK_LOOKBACK: str = "1 M"

# Short spans are expressed in seconds, everything longer in whole days.
SECONDS_DURATION_MAX_MS: int = 3_600_000
DAY_MS: int = 86_400_000
