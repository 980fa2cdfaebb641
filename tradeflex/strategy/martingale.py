from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict

from loguru import logger

from tradeflex.core.types import Bar, Number, to_decimal
from tradeflex.strategy.base import AlgorithmContext, BaseStrategy
from tradeflex.strategy.sizing import quantity_for_cash

log = logger.bind(component="strategy")

MAX_MULTIPLIER = 8
MAX_POSITION_FRACTION = Decimal("0.40")


class MartingaleStrategy(BaseStrategy):
    """
    Doubles the entry size after every stop-loss, resets after a take-profit.

    Multiplier is capped at 8x and a single entry never uses more than 40% of cash.
    High risk of ruin; kept as an optimizer target and a stress case for the ledger.
    """

    name = "martingale"

    def __init__(
        self,
        lookback: int = 5,
        base_position: Number = Decimal("0.05"),
        take_profit: Number = Decimal("0.02"),
        stop_loss: Number = Decimal("0.01"),
    ) -> None:
        super().__init__()
        lookback = int(lookback)
        base_position = to_decimal(base_position)
        take_profit = to_decimal(take_profit)
        stop_loss = to_decimal(stop_loss)
        if lookback < 0:
            raise ValueError(f"lookback must be >= 0, got {lookback}")
        if not (Decimal("0") < base_position <= Decimal("1")):
            raise ValueError(f"base_position must be in (0, 1], got {base_position}")
        if take_profit <= 0:
            raise ValueError(f"take_profit must be positive, got {take_profit}")
        if not (Decimal("0") < stop_loss < Decimal("1")):
            raise ValueError(f"stop_loss must be in (0, 1), got {stop_loss}")
        self.lookback = lookback
        self.base_position = base_position
        self.take_profit = take_profit
        self.stop_loss = stop_loss
        self._reset()

    def _reset(self) -> None:
        self.entry_price = Decimal("0")
        self.consecutive_losses = 0
        self.bars_since_entry = 0
        self.in_position = False

    def initialize(self, context: AlgorithmContext) -> None:
        self._reset()

    def params(self) -> Dict[str, Any]:
        return {
            "lookback": self.lookback,
            "base_position": self.base_position,
            "take_profit": self.take_profit,
            "stop_loss": self.stop_loss,
        }

    def _exit(self, bar: Bar, position: Decimal, won: bool) -> None:
        self.sell(bar.symbol, position)
        self.in_position = False
        self.bars_since_entry = 0
        self.consecutive_losses = 0 if won else self.consecutive_losses + 1

    def on_bar(self, bar: Bar) -> None:
        position = self.broker.position(bar.symbol)
        if self.in_position and position <= 0:
            # position closed outside this strategy's exits
            self.in_position = False

        if self.in_position:
            self.bars_since_entry += 1
            pnl = (bar.close - self.entry_price) / self.entry_price
            if pnl >= self.take_profit:
                self._exit(bar, position, won=True)
            elif pnl <= -self.stop_loss:
                self._exit(bar, position, won=False)
            return

        if not self.in_position and self.bars_since_entry >= self.lookback:
            multiplier = min(2 ** self.consecutive_losses, MAX_MULTIPLIER)
            fraction = min(self.base_position * multiplier, MAX_POSITION_FRACTION)
            qty = quantity_for_cash(self.broker.cash(), fraction, bar.close)
            if qty > 0 and self.buy(bar.symbol, qty) is not None:
                self.entry_price = bar.close
                self.in_position = True
                self.bars_since_entry = 0
                log.debug(f"Martingale entry x{multiplier} qty={qty} @ {bar.close}")
            return

        self.bars_since_entry += 1
