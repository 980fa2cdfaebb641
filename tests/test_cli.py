from __future__ import annotations

import signal
import threading
from decimal import Decimal

import pandas as pd
import pytest
from loguru import logger

from conftest import make_bars
from tradeflex.cli.run import build_parser, cancel_on_interrupt, main, parse_params


@pytest.fixture(autouse=True)
def quiet_workspace(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("TRADEFLEX_DISABLE_CONSOLE_LOG", "1")
    monkeypatch.delenv("TRADEFLEX_LOG_LEVEL", raising=False)
    yield
    logger.remove()


def _write_csv(path, closes) -> None:
    rows = [
        {
            "timestamp": b.timestamp.isoformat(),
            "open": str(b.open),
            "high": str(b.high),
            "low": str(b.low),
            "close": str(b.close),
            "volume": str(b.volume),
        }
        for b in make_bars(closes)
    ]
    pd.DataFrame(rows).to_csv(path, index=False)


def test_parse_params() -> None:
    assert parse_params(["fast-period=5", "allocation=0.5", "mode=fast"]) == {
        "fast_period": 5,
        "allocation": Decimal("0.5"),
        "mode": "fast",
    }


def test_parser_maps_window_flags() -> None:
    args = build_parser().parse_args(["optimize", "--algo", "sma", "--from", "2024-01-01", "--to", "2024-01-02T12:00:00"])
    assert args.start.tzinfo is not None
    assert args.end > args.start


def test_backtest_writes_reports(tmp_path) -> None:
    data = tmp_path / "bars.csv"
    _write_csv(data, [10, 10, 10, 9, 12, 14, 10, 6])
    out = tmp_path / "reports"

    code = main(
        [
            "backtest",
            "--algo", "sma",
            "--param", "fast_period=2",
            "--param", "slow_period=3",
            "--data", str(data),
            "--cash", "10000",
            "--fee", "0",
            "--output", str(out),
        ]
    )

    assert code == 0
    equity = pd.read_csv(out / "equity_curve.csv")
    assert len(equity) == 9
    assert equity["equity"].iloc[0] == 10000
    trades = pd.read_csv(out / "trades.csv")
    assert list(trades["side"]) == ["buy", "sell"]
    assert (tmp_path / "logs" / "tradeflex.log").exists()


def test_optimize_with_config_grid(tmp_path) -> None:
    cfg = tmp_path / "cfg.yaml"
    cfg.write_text(
        "data:\n"
        "  bars: 300\n"
        "  volatility: 0.01\n"
        "optimizer:\n"
        "  top_n: 3\n"
        "  max_workers: 2\n"
        "  grids:\n"
        "    sma:\n"
        "      fast_period: [3, 5]\n"
        "      slow_period: [5, 20]\n",
        encoding="utf-8",
    )
    assert main(["--config", str(cfg), "optimize", "--algo", "sma"]) == 0


def test_strategies_listing() -> None:
    assert main(["strategies"]) == 0


def test_unknown_strategy_fails() -> None:
    with pytest.raises(KeyError):
        main(["backtest", "--algo", "nope"])


def test_interrupt_sets_cancel_event_and_restores_handler() -> None:
    before = signal.getsignal(signal.SIGINT)
    cancel = threading.Event()
    with cancel_on_interrupt(cancel):
        signal.getsignal(signal.SIGINT)(signal.SIGINT, None)
        assert cancel.is_set()
    assert signal.getsignal(signal.SIGINT) is before


def test_backtest_with_naive_config_window(tmp_path) -> None:
    data = tmp_path / "bars.csv"
    _write_csv(data, [10, 11, 12, 13, 14])
    cfg = tmp_path / "cfg.yaml"
    cfg.write_text("general:\n  start: \"2024-01-01 00:01:00\"\n  end: \"2024-01-01 00:03:00\"\n", encoding="utf-8")
    out = tmp_path / "out"
    assert main(["--config", str(cfg), "backtest", "--algo", "sma", "--data", str(data), "--output", str(out)]) == 0
    # snapshot zero plus the three bars inside the window
    assert len(pd.read_csv(out / "equity_curve.csv")) == 4
