from __future__ import annotations

import asyncio
from pathlib import Path

from ib_insync import IB

from apps.fetch_history.main import _parse_args, build_request, main_async


def _write_config(tmp_path: Path) -> Path:
    cfg = tmp_path / "histfill.yaml"
    cfg.write_text(
        "data:\n"
        f"  db_path: {tmp_path / 'h.sqlite'}\n"
        "ibkr:\n"
        "  port: 4002\n"
        "  timeout_s: 1\n"
        "cache:\n"
        "  enabled: false\n"
    )
    return cfg


def test_build_request_drops_unset_options():
    args = _parse_args(["bars", "--symbol", "AAPL", "--bar-size", "5 mins", "--no-rth"])
    assert build_request(args) == {"symbol": "AAPL", "barSize": "5 mins", "useRTH": False}

    args = _parse_args(["ticks", "--symbol", "MSFT", "--ticks", "250"])
    assert build_request(args) == {"symbol": "MSFT", "numberOfTicks": 250}


def test_refused_gateway_connection_exits_with_code_1(tmp_path: Path, monkeypatch):
    async def _refuse(self, host, port, clientId=1, timeout=4, **kwargs):
        raise ConnectionRefusedError(111, f"Connect call failed ('{host}', {port})")

    monkeypatch.setattr(IB, "connectAsync", _refuse)
    args = _parse_args(["--config", str(_write_config(tmp_path)), "bars", "--symbol", "AAPL"])

    assert asyncio.run(main_async(args)) == 1
