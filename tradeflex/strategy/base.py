from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from loguru import logger

from tradeflex.broker.base import Broker
from tradeflex.core.clock import SimulationClock
from tradeflex.core.errors import StrategyLifecycleError
from tradeflex.core.types import ZERO, Bar, Number, Order, Trade, to_decimal

log = logger.bind(component="strategy")


@dataclass(frozen=True)
class AlgorithmContext:
    """Capabilities handed to a strategy at initialization."""

    broker: Broker
    clock: Optional[SimulationClock] = None


class StrategyState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    RUNNING = "running"
    EXITED = "exited"


class BaseStrategy(ABC):
    """
    Base class for all trading strategies.

    Subclasses implement :meth:`on_bar` and may override :meth:`initialize`,
    :meth:`on_exit` and :meth:`on_risk_check`. The engine drives a strategy
    through :meth:`start`, :meth:`process_bar` and :meth:`stop`, which enforce
    the lifecycle uninitialized -> initialized -> running -> exited.
    """

    name: str = "base"

    def __init__(self) -> None:
        self.state = StrategyState.UNINITIALIZED
        self.context: Optional[AlgorithmContext] = None

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------
    def initialize(self, context: AlgorithmContext) -> None:
        """Called once before the first bar; reset per-run state here."""

    @abstractmethod
    def on_bar(self, bar: Bar) -> None:
        pass

    def on_exit(self) -> None:
        pass

    def on_risk_check(self, order: Order) -> bool:
        return True

    def params(self) -> Dict[str, Any]:
        return {}

    # ------------------------------------------------------------------
    # Lifecycle drivers (called by the engine)
    # ------------------------------------------------------------------
    def start(self, context: AlgorithmContext) -> None:
        if self.state is not StrategyState.UNINITIALIZED:
            raise StrategyLifecycleError(f"{type(self).__name__} cannot initialize from state {self.state.value}")
        self.context = context
        self.initialize(context)
        self.state = StrategyState.INITIALIZED

    def process_bar(self, bar: Bar) -> None:
        if self.state not in (StrategyState.INITIALIZED, StrategyState.RUNNING):
            raise StrategyLifecycleError(f"{type(self).__name__} cannot receive bars in state {self.state.value}")
        self.state = StrategyState.RUNNING
        self.on_bar(bar)

    def stop(self) -> None:
        if self.state in (StrategyState.UNINITIALIZED, StrategyState.EXITED):
            raise StrategyLifecycleError(f"{type(self).__name__} cannot exit from state {self.state.value}")
        self.on_exit()
        self.state = StrategyState.EXITED

    # ------------------------------------------------------------------
    # Order helpers
    # ------------------------------------------------------------------
    @property
    def broker(self) -> Broker:
        if self.context is None:
            raise StrategyLifecycleError(f"{type(self).__name__} has no context; call start() first")
        return self.context.broker

    def buy(self, symbol: str, quantity: Number) -> Optional[Trade]:
        return self._submit(symbol, _positive(quantity))

    def sell(self, symbol: str, quantity: Number) -> Optional[Trade]:
        return self._submit(symbol, -_positive(quantity))

    def _submit(self, symbol: str, signed_qty: Decimal) -> Optional[Trade]:
        order = Order(symbol=symbol, quantity=signed_qty, price=ZERO)
        if not self.on_risk_check(order):
            log.debug(f"{type(self).__name__}: risk check rejected {symbol} qty={signed_qty}")
            return None
        return self.broker.submit_order(order)

    def __repr__(self) -> str:
        params = ", ".join(f"{k}={v}" for k, v in self.params().items())
        return f"{type(self).__name__}({params})"


def _positive(quantity: Number) -> Decimal:
    qty = to_decimal(quantity)
    if qty <= 0:
        raise ValueError(f"order quantity must be positive, got {qty}")
    return qty
