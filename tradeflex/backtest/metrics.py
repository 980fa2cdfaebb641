from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from decimal import Decimal
from typing import Deque, List, Optional, Sequence

from tradeflex.core.types import ZERO, Side, Trade

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class PerformanceMetrics:
    """Run statistics. Percentages are decimal-scaled (12.34 means 12.34%)."""

    final_equity: Decimal
    total_return_pct: Decimal
    max_drawdown_pct: Decimal
    win_rate_pct: Decimal
    profit_factor: Optional[Decimal]
    buy_and_hold_pct: Decimal
    total_trades: int
    round_trips: int
    gross_profit: Decimal
    gross_loss: Decimal

    @property
    def outperformance_pct(self) -> Decimal:
        return self.total_return_pct - self.buy_and_hold_pct


def max_drawdown_pct(equity_curve: Sequence[Decimal]) -> Decimal:
    if not equity_curve:
        return ZERO
    peak = equity_curve[0]
    worst = ZERO
    for equity in equity_curve:
        if equity > peak:
            peak = equity
        if peak > 0:
            drawdown = (peak - equity) / peak * HUNDRED
            if drawdown > worst:
                worst = drawdown
    return worst


def round_trip_pnls(trades: Sequence[Trade]) -> List[Decimal]:
    """FIFO-match sells against earlier buys.

    Each sell consumes exactly one queued buy; quantity beyond the matched buy
    is not carried forward, and a sell with no queued buy is ignored.
    """
    buys: Deque[Trade] = deque()
    pnls: List[Decimal] = []
    for trade in trades:
        if trade.side is Side.BUY:
            buys.append(trade)
        elif buys:
            buy = buys.popleft()
            pnls.append((trade.price - buy.price) * min(trade.quantity, buy.quantity))
    return pnls


def compute_metrics(
    trades: Sequence[Trade],
    equity_curve: Sequence[Decimal],
    first_price: Decimal,
    last_price: Decimal,
    initial_cash: Decimal,
) -> PerformanceMetrics:
    final_equity = equity_curve[-1] if equity_curve else initial_cash
    total_return = (final_equity - initial_cash) / initial_cash * HUNDRED if initial_cash != 0 else ZERO

    pnls = round_trip_pnls(trades)
    wins = [p for p in pnls if p > 0]
    gross_profit = sum(wins, ZERO)
    gross_loss = abs(sum((p for p in pnls if p < 0), ZERO))
    win_rate = Decimal(len(wins)) / Decimal(len(pnls)) * HUNDRED if pnls else ZERO
    profit_factor = gross_profit / gross_loss if pnls and gross_loss > 0 else None

    buy_and_hold = (last_price - first_price) / first_price * HUNDRED if first_price > 0 else ZERO

    return PerformanceMetrics(
        final_equity=final_equity,
        total_return_pct=total_return,
        max_drawdown_pct=max_drawdown_pct(equity_curve),
        win_rate_pct=win_rate,
        profit_factor=profit_factor,
        buy_and_hold_pct=buy_and_hold,
        total_trades=len(trades),
        round_trips=len(pnls),
        gross_profit=gross_profit,
        gross_loss=gross_loss,
    )
