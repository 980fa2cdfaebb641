from __future__ import annotations

from collections import deque
from decimal import Decimal
from typing import Any, Deque, Dict, Optional

from tradeflex.core.types import Bar, Number, to_decimal
from tradeflex.strategy.base import AlgorithmContext, BaseStrategy
from tradeflex.strategy.risk import PositionLimitMixin
from tradeflex.strategy.sizing import quantity_for_cash


def _mean(window: Deque[Decimal]) -> Decimal:
    return sum(window, Decimal("0")) / len(window)


class SmaCrossoverStrategy(PositionLimitMixin, BaseStrategy):
    """Goes long when the fast SMA crosses above the slow SMA; flattens on the reverse cross."""

    name = "sma"

    def __init__(
        self,
        fast_period: int = 10,
        slow_period: int = 30,
        allocation: Number = Decimal("0.95"),
        max_position: Optional[Number] = None,
    ) -> None:
        super().__init__()
        fast_period = int(fast_period)
        slow_period = int(slow_period)
        allocation = to_decimal(allocation)
        if fast_period < 1 or slow_period < 1:
            raise ValueError("SMA periods must be >= 1")
        if fast_period >= slow_period:
            raise ValueError(f"fast_period ({fast_period}) must be < slow_period ({slow_period})")
        if not (Decimal("0") < allocation <= Decimal("1")):
            raise ValueError(f"allocation must be in (0, 1], got {allocation}")
        self.fast_period = fast_period
        self.slow_period = slow_period
        self.allocation = allocation
        self.set_position_limit(max_position)
        self._reset()

    def _reset(self) -> None:
        self._fast: Deque[Decimal] = deque(maxlen=self.fast_period)
        self._slow: Deque[Decimal] = deque(maxlen=self.slow_period)
        self._prev_fast: Optional[Decimal] = None
        self._prev_slow: Optional[Decimal] = None

    def initialize(self, context: AlgorithmContext) -> None:
        self._reset()

    def params(self) -> Dict[str, Any]:
        return {
            "fast_period": self.fast_period,
            "slow_period": self.slow_period,
            "allocation": self.allocation,
            "max_position": self.max_position,
        }

    def on_bar(self, bar: Bar) -> None:
        self._fast.append(bar.close)
        self._slow.append(bar.close)
        if len(self._slow) < self.slow_period:
            return

        fast = _mean(self._fast)
        slow = _mean(self._slow)
        prev_fast, prev_slow = self._prev_fast, self._prev_slow
        self._prev_fast, self._prev_slow = fast, slow
        if prev_fast is None or prev_slow is None:
            return

        position = self.broker.position(bar.symbol)
        if prev_fast <= prev_slow and fast > slow and position <= 0:
            qty = quantity_for_cash(self.broker.cash(), self.allocation, bar.close)
            if qty > 0:
                self.buy(bar.symbol, qty)
        elif prev_fast >= prev_slow and fast < slow and position > 0:
            self.sell(bar.symbol, position)
