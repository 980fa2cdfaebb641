from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

import pandas as pd

from tradeflex.backtest.metrics import PerformanceMetrics
from tradeflex.core.types import Trade


@dataclass(frozen=True)
class BacktestResult:
    symbol: str
    strategy: str
    params: Dict[str, Any]
    trades: Tuple[Trade, ...]
    # equity_curve[0] is the starting cash; one snapshot per processed bar after that
    equity_curve: Tuple[Decimal, ...]
    timestamps: Tuple[Optional[datetime], ...]
    initial_cash: Decimal
    final_cash: Decimal
    first_price: Decimal
    last_price: Decimal
    bars_processed: int
    rejected_orders: int
    metrics: PerformanceMetrics
    positions: Dict[str, Decimal] = field(default_factory=dict)

    @property
    def final_equity(self) -> Decimal:
        return self.metrics.final_equity

    def equity_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "timestamp": list(self.timestamps),
                "equity": [float(e) for e in self.equity_curve],
            }
        )

    def trades_frame(self) -> pd.DataFrame:
        rows = [
            {
                "timestamp": t.timestamp,
                "symbol": t.symbol,
                "side": t.side.value,
                "quantity": float(t.quantity),
                "price": float(t.price),
                "fee": float(t.fee),
            }
            for t in self.trades
        ]
        return pd.DataFrame(rows, columns=["timestamp", "symbol", "side", "quantity", "price", "fee"])

    def sharpe_ratio(self, periods_per_year: int = 252) -> float:
        """Naive annualized Sharpe on per-bar equity returns (risk-free rate 0)."""
        eq = self.equity_frame()["equity"]
        if len(eq) < 2:
            return 0.0
        ret = eq.pct_change().fillna(0.0)
        return float((ret.mean() / (ret.std() + 1e-12)) * (periods_per_year ** 0.5))
