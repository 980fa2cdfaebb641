from __future__ import annotations

from decimal import Decimal
from typing import Optional

from loguru import logger

from tradeflex.core.types import Number, Order, to_decimal

log = logger.bind(component="strategy")


class PositionLimitMixin:
    """on_risk_check override capping the absolute position a strategy may hold.

    Mix in before BaseStrategy: ``class MyStrategy(PositionLimitMixin, BaseStrategy)``.
    """

    max_position: Optional[Decimal] = None

    def set_position_limit(self, max_position: Optional[Number]) -> None:
        if max_position is None:
            self.max_position = None
            return
        limit = to_decimal(max_position)
        if limit <= 0:
            raise ValueError(f"max_position must be positive, got {limit}")
        self.max_position = limit

    def on_risk_check(self, order: Order) -> bool:
        if self.max_position is None:
            return True
        projected = self.broker.position(order.symbol) + order.quantity
        if abs(projected) > self.max_position:
            log.debug(f"Position limit: {order.symbol} projected {projected} exceeds {self.max_position}")
            return False
        return True
