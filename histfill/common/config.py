from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator

from histfill.common.constants import (
    DEFAULT_BAR_SIZE,
    DEFAULT_DURATION,
    DEFAULT_NUMBER_OF_TICKS,
    DEFAULT_SEC_TYPE,
    DEFAULT_TICK_LOOKBACK,
    DEFAULT_USE_RTH,
    DEFAULT_WHAT_TO_SHOW,
)


class DataConfig(BaseModel):
    backend: Literal["sqlite", "questdb"] = "sqlite"
    db_path: str = "data/histfill.sqlite"
    questdb_http_url: str = "http://localhost:9000"
    request_timeout_s: int = 15


class IBKRConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 7497
    client_id: int = 1
    exchange: str = "SMART"
    currency: str = "USD"
    timeout_s: float = 60.0
    max_retries: int = 3
    max_ticks_per_request: int = Field(default=1000, gt=0, le=1000)


class RequestDefaults(BaseModel):
    sec_type: str = DEFAULT_SEC_TYPE
    what_to_show: str = DEFAULT_WHAT_TO_SHOW
    use_rth: bool = DEFAULT_USE_RTH
    bar_size: str = DEFAULT_BAR_SIZE
    duration: str = DEFAULT_DURATION
    number_of_ticks: int = Field(default=DEFAULT_NUMBER_OF_TICKS, gt=0)
    tick_lookback: str = DEFAULT_TICK_LOOKBACK

    @field_validator("sec_type", "what_to_show")
    @classmethod
    def _upper(cls, v: str) -> str:
        v2 = v.strip().upper()
        if not v2:
            raise ValueError("must be non-empty")
        return v2


class CacheConfig(BaseModel):
    enabled: bool = False
    dir: str = "responses"


class HistFillConfig(BaseModel):
    data: DataConfig = Field(default_factory=DataConfig)
    ibkr: IBKRConfig = Field(default_factory=IBKRConfig)
    defaults: RequestDefaults = Field(default_factory=RequestDefaults)
    cache: CacheConfig = Field(default_factory=CacheConfig)


def _maybe_load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text())
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML structure in {path}")
    return data


def load_histfill_config(path: Path = Path("config/histfill.yaml")) -> HistFillConfig:
    raw = _maybe_load_yaml(path)
    return HistFillConfig.model_validate(raw) if raw else HistFillConfig()
