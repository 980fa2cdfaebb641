from __future__ import annotations

from collections import deque
from decimal import Decimal
from typing import Any, Deque, Dict, Optional

from tradeflex.core.types import Bar, Number, to_decimal
from tradeflex.strategy.base import AlgorithmContext, BaseStrategy
from tradeflex.strategy.risk import PositionLimitMixin
from tradeflex.strategy.sizing import quantity_for_cash

HUNDRED = Decimal("100")


class RsiMeanReversionStrategy(PositionLimitMixin, BaseStrategy):
    """
    Mean reversion on a simple (non-smoothed) RSI.
    Buys a slice of cash while oversold, exits the whole position once overbought.
    """

    name = "rsi"

    def __init__(
        self,
        period: int = 14,
        oversold: Number = 30,
        overbought: Number = 70,
        cash_fraction: Number = Decimal("0.10"),
        max_position: Optional[Number] = None,
    ) -> None:
        super().__init__()
        period = int(period)
        oversold = to_decimal(oversold)
        overbought = to_decimal(overbought)
        cash_fraction = to_decimal(cash_fraction)
        if period < 1:
            raise ValueError(f"RSI period must be >= 1, got {period}")
        if not (Decimal("0") <= oversold < overbought <= HUNDRED):
            raise ValueError(f"need 0 <= oversold < overbought <= 100, got {oversold}/{overbought}")
        if not (Decimal("0") < cash_fraction <= Decimal("1")):
            raise ValueError(f"cash_fraction must be in (0, 1], got {cash_fraction}")
        self.period = period
        self.oversold = oversold
        self.overbought = overbought
        self.cash_fraction = cash_fraction
        self.set_position_limit(max_position)
        self._reset()

    def _reset(self) -> None:
        self._changes: Deque[Decimal] = deque(maxlen=self.period)
        self._prev_close: Optional[Decimal] = None

    def initialize(self, context: AlgorithmContext) -> None:
        self._reset()

    def params(self) -> Dict[str, Any]:
        return {
            "period": self.period,
            "oversold": self.oversold,
            "overbought": self.overbought,
            "cash_fraction": self.cash_fraction,
            "max_position": self.max_position,
        }

    def rsi(self) -> Decimal:
        gain = sum((c for c in self._changes if c > 0), Decimal("0"))
        loss = sum((-c for c in self._changes if c < 0), Decimal("0"))
        if loss == 0:
            return HUNDRED
        if gain == 0:
            return Decimal("0")
        rs = (gain / self.period) / (loss / self.period)
        return HUNDRED - HUNDRED / (1 + rs)

    def on_bar(self, bar: Bar) -> None:
        if self._prev_close is None:
            self._prev_close = bar.close
            return
        self._changes.append(bar.close - self._prev_close)
        self._prev_close = bar.close
        if len(self._changes) < self.period:
            return

        rsi = self.rsi()
        if rsi < self.oversold:
            qty = quantity_for_cash(self.broker.cash(), self.cash_fraction, bar.close)
            if qty > 0:
                self.buy(bar.symbol, qty)
        elif rsi > self.overbought:
            position = self.broker.position(bar.symbol)
            if position > 0:
                self.sell(bar.symbol, position)
