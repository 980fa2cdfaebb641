from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from tradeflex.backtest.optimizer import OptimizationFailure, OptimizationResult
from tradeflex.backtest.result import BacktestResult


console = Console()


def _pct(value: Optional[Decimal]) -> str:
    return "N/A" if value is None else f"{value:,.2f}%"


def _money(value: Decimal) -> str:
    return f"${value:,.2f}"


def format_params(params: Dict[str, Any]) -> str:
    parts = []
    for k, v in params.items():
        if v is None:
            continue
        if isinstance(v, Decimal) and v < 1:
            parts.append(f"{k}={v:.0%}")
        else:
            parts.append(f"{k}={v}")
    return ", ".join(parts)


def render_backtest(result: BacktestResult) -> None:
    m = result.metrics
    table = Table(title=f"Backtest Results: {result.strategy} on {result.symbol or '-'}")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Parameters", format_params(result.params) or "-")
    table.add_row("Bars Processed", str(result.bars_processed))
    table.add_row("Initial Cash", _money(result.initial_cash))
    table.add_row("Final Equity", _money(m.final_equity))
    table.add_row("Final Cash", _money(result.final_cash))
    table.add_row("Total Return", _pct(m.total_return_pct))
    table.add_row("Buy & Hold", _pct(m.buy_and_hold_pct))
    table.add_row("Max Drawdown", _pct(m.max_drawdown_pct))
    table.add_row("Total Trades", str(m.total_trades))
    table.add_row("Round Trips", str(m.round_trips))
    table.add_row("Win Rate", _pct(m.win_rate_pct))
    table.add_row("Profit Factor", "N/A" if m.profit_factor is None else f"{m.profit_factor:,.2f}")
    table.add_row("Sharpe (naive)", f"{result.sharpe_ratio():.2f}")
    table.add_row("Rejected Orders", str(result.rejected_orders))
    console.print(table)


def render_optimization(
    results: List[OptimizationResult],
    failures: Optional[List[OptimizationFailure]] = None,
    *,
    rank_by: str = "total_return_pct",
) -> None:
    if not results:
        console.print(Panel("No parameter combination produced a result", title="Optimization"))
    else:
        table = Table(title=f"Optimization Results (ranked by {rank_by})")
        table.add_column("#", justify="right")
        table.add_column("Algorithm")
        table.add_column("Parameters")
        table.add_column("Return", justify="right")
        table.add_column("vs B&H", justify="right")
        table.add_column("Drawdown", justify="right")
        table.add_column("Trades", justify="right")
        table.add_column("Win %", justify="right")
        table.add_column("PF", justify="right")
        for rank, r in enumerate(results, start=1):
            m = r.metrics
            beats = "[green]✓[/green]" if m.total_return_pct > m.buy_and_hold_pct else ""
            table.add_row(
                str(rank),
                r.algorithm,
                format_params(r.params),
                _pct(m.total_return_pct),
                beats,
                _pct(m.max_drawdown_pct),
                str(m.total_trades),
                _pct(m.win_rate_pct),
                "N/A" if m.profit_factor is None else f"{m.profit_factor:.2f}",
            )
        console.print(table)
        best = results[0]
        console.print(
            Panel(
                f"{best.algorithm}: {format_params(best.params)}\n"
                f"Return {_pct(best.metrics.total_return_pct)} | Buy & Hold {_pct(best.metrics.buy_and_hold_pct)} | "
                f"Outperformance {_pct(best.metrics.outperformance_pct)}",
                title="Best Configuration",
            )
        )

    if failures:
        ft = Table(title="Rejected Combinations")
        ft.add_column("Algorithm")
        ft.add_column("Parameters")
        ft.add_column("Reason")
        for f in failures:
            ft.add_row(f.algorithm, format_params(f.params), f.reason)
        console.print(ft)

    console.print(
        "[yellow]Optimized parameters are fitted to this dataset; validate on out-of-sample data.[/yellow]"
    )
