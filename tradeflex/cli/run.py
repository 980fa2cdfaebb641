from __future__ import annotations

import argparse
import signal
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from tradeflex.backtest.engine import BacktestEngine
from tradeflex.backtest.optimizer import OptimizationReport, StrategyOptimizer, merge_reports
from tradeflex.cli.display import console, render_backtest, render_optimization
from tradeflex.core.clock import SimulationClock
from tradeflex.core.config import AppConfig
from tradeflex.core.env import load_local_environment
from tradeflex.core.logging import get_logger, setup_logging
from tradeflex.core.types import Bar
from tradeflex.data.loader import load_bars
from tradeflex.data.random_walk import RandomWalkParams, random_walk_bars, timeframe_delta
from tradeflex.strategy.registry import available_strategies, create_strategy, default_grid, strategy_factory


def _parse_time(value: str) -> datetime:
    dt = datetime.fromisoformat(value)
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def _parse_value(raw: str) -> Any:
    try:
        return int(raw)
    except ValueError:
        pass
    try:
        return Decimal(raw)
    except InvalidOperation:
        return raw


def parse_params(pairs: Sequence[str]) -> Dict[str, Any]:
    params: Dict[str, Any] = {}
    for pair in pairs or []:
        if "=" not in pair:
            raise argparse.ArgumentTypeError(f"expected key=value, got '{pair}'")
        key, raw = pair.split("=", 1)
        params[key.strip().replace("-", "_")] = _parse_value(raw.strip())
    return params


def _apply_overrides(cfg: AppConfig, args: argparse.Namespace) -> AppConfig:
    general = cfg.general.model_copy(
        update={
            k: v
            for k, v in {
                "symbol": args.symbol,
                "capital": args.cash,
                "start": args.start,
                "end": args.end,
            }.items()
            if v is not None
        }
    )
    data = cfg.data
    if args.data:
        data = data.model_copy(update={"provider": "file", "path": args.data})
    broker = cfg.broker if args.fee is None else cfg.broker.model_copy(update={"fee_rate": args.fee})
    # Re-validate so CLI values go through the same checks as YAML values
    return AppConfig.model_validate(
        {**cfg.model_dump(), "general": general.model_dump(), "data": data.model_dump(), "broker": broker.model_dump()}
    )


def load_input_bars(cfg: AppConfig) -> List[Bar]:
    if cfg.data.provider == "file":
        if not cfg.data.path:
            raise ValueError("data.provider is 'file' but no data path was given")
        return load_bars(cfg.data.path, cfg.general.symbol)
    params = RandomWalkParams(
        seed=cfg.general.seed,
        start=cfg.general.start or RandomWalkParams.start,
        bars=cfg.data.bars,
        timeframe=cfg.general.timeframe,
        steps_per_bar=cfg.data.steps_per_bar,
        drift=cfg.data.drift,
        volatility=cfg.data.volatility,
    )
    return list(random_walk_bars(cfg.general.symbol, params, start_price=cfg.data.start_price))


def _clock_for(cfg: AppConfig, bars: Sequence[Bar]) -> SimulationClock:
    start = cfg.general.start or (bars[0].timestamp if bars else RandomWalkParams.start)
    return SimulationClock(start=start, step=timeframe_delta(cfg.general.timeframe))


@contextmanager
def cancel_on_interrupt(cancel: threading.Event) -> Iterator[threading.Event]:
    """Turn Ctrl-C into a cancellation request so running searches return what they finished."""

    def handler(signum, frame) -> None:
        cancel.set()

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield cancel
    finally:
        signal.signal(signal.SIGINT, previous)


def cmd_backtest(cfg: AppConfig, args: argparse.Namespace) -> int:
    log = get_logger()
    name = args.algo or cfg.strategy.name
    params = {**cfg.strategy.params, **parse_params(args.param)}
    strategy = create_strategy(name, **params)
    bars = load_input_bars(cfg)

    engine = BacktestEngine(
        clock=_clock_for(cfg, bars),
        starting_cash=cfg.general.capital,
        fee_rate=cfg.broker.fee_rate,
        verbose=cfg.broker.verbose,
    )
    result = engine.run(strategy, bars, start=cfg.general.start, end=cfg.general.end)
    render_backtest(result)

    outdir = Path(args.output or cfg.backtest.report.output_dir)
    outdir.mkdir(parents=True, exist_ok=True)
    out_csv = outdir / "equity_curve.csv"
    result.equity_frame().to_csv(out_csv, index=False)
    result.trades_frame().to_csv(outdir / "trades.csv", index=False)
    log.info(f"Saved equity curve to {out_csv}")
    return 0


def cmd_optimize(cfg: AppConfig, args: argparse.Namespace) -> int:
    log = get_logger()
    names = available_strategies() if str(args.algo).lower() == "all" else [args.algo]
    rank_by = args.rank_by or cfg.optimizer.rank_by
    top_n = args.top or cfg.optimizer.top_n
    workers = args.workers or cfg.optimizer.max_workers
    bars = load_input_bars(cfg)
    step = timeframe_delta(cfg.general.timeframe)
    clock_start = cfg.general.start or (bars[0].timestamp if bars else RandomWalkParams.start)
    cancel = threading.Event()

    def progress(done: int, total: int, params: Dict[str, Any]) -> None:
        log.info(f"{name.upper()}: tested {params} ({done}/{total})")

    reports: List[OptimizationReport] = []
    with cancel_on_interrupt(cancel):
        for name in names:
            if cancel.is_set():
                break
            optimizer = StrategyOptimizer(
                strategy_factory(name),
                bars,
                algorithm=name.upper(),
                starting_cash=cfg.general.capital,
                fee_rate=cfg.broker.fee_rate,
                clock_start=clock_start,
                clock_step=step,
                start=cfg.general.start,
                end=cfg.general.end,
                rank_by=rank_by,
                max_workers=workers,
            )
            grid = default_grid(name, cfg.optimizer.grids.get(name))
            reports.append(optimizer.optimize(grid, top_n=None, progress=progress, cancel_event=cancel))
    if cancel.is_set():
        console.print("[yellow]Interrupted; ranking completed combinations only.[/yellow]")

    merged = merge_reports(reports, rank_by=rank_by, top_n=top_n)
    render_optimization(merged.results, merged.failures, rank_by=rank_by)
    return 0


def cmd_strategies(cfg: AppConfig, args: argparse.Namespace) -> int:
    for name in available_strategies():
        grid = default_grid(name)
        console.print(f"{name}: {', '.join(grid.axes)} ({len(grid)} default combinations)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tradeflex", description="TradeFlex backtesting and parameter optimization")
    parser.add_argument("--config", type=str, default=None, help="Path to YAML config")
    parser.add_argument("--log-level", type=str, default="INFO", help="Log level (env TRADEFLEX_LOG_LEVEL wins)")
    sub = parser.add_subparsers(dest="command", required=True)

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--data", type=str, default=None, help="CSV/Parquet bar file (default: random walk)")
        p.add_argument("--symbol", type=str, default=None, help="Symbol to trade")
        p.add_argument("--from", dest="start", type=_parse_time, default=None, help="Start timestamp (UTC)")
        p.add_argument("--to", dest="end", type=_parse_time, default=None, help="End timestamp (UTC)")
        p.add_argument("--cash", type=Decimal, default=None, help="Starting cash")
        p.add_argument("--fee", type=Decimal, default=None, help="Proportional fee rate, e.g. 0.005")

    bt = sub.add_parser("backtest", help="Run a historical back-test")
    bt.add_argument("--algo", type=str, default=None, help=f"Strategy: {', '.join(available_strategies())}")
    bt.add_argument("--param", action="append", default=[], help="Strategy parameter key=value (repeatable)")
    bt.add_argument("--output", type=str, default=None, help="Report directory")
    add_common(bt)
    bt.set_defaults(handler=cmd_backtest)

    opt = sub.add_parser("optimize", help="Grid-search strategy parameters")
    opt.add_argument("--algo", type=str, required=True, help="Strategy name or 'all'")
    opt.add_argument("--top", type=int, default=None, help="Number of results to show")
    opt.add_argument("--workers", type=int, default=None, help="Worker threads")
    opt.add_argument("--rank-by", type=str, default=None, help="Ranking metric (default total_return_pct)")
    add_common(opt)
    opt.set_defaults(handler=cmd_optimize)

    ls = sub.add_parser("strategies", help="List available strategies")
    ls.set_defaults(handler=cmd_strategies)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    load_local_environment()
    setup_logging(level=args.log_level)
    cfg = AppConfig.load(args.config) if args.config else AppConfig()
    if hasattr(args, "start"):
        cfg = _apply_overrides(cfg, args)
    return int(args.handler(cfg, args))


if __name__ == "__main__":
    raise SystemExit(main())
