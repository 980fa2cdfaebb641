from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from loguru import logger

from tradeflex.broker.base import Broker
from tradeflex.core.clock import SimulationClock
from tradeflex.core.types import ZERO, Number, Order, Trade, to_decimal

log = logger.bind(component="broker")


class RejectReason(str, Enum):
    NO_MARKET_PRICE = "no_market_price"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    INVALID_PRICE = "invalid_price"
    INVALID_QUANTITY = "invalid_quantity"


@dataclass(frozen=True)
class Rejection:
    order: Order
    reason: RejectReason
    detail: str = ""


class PaperBroker(Broker):
    """Simulated exchange owning one account's cash, positions and trade log for one run.

    Rejected orders never raise: they leave state untouched, produce no Trade,
    are appended to :attr:`rejections` and forwarded to ``on_reject``.
    """

    def __init__(
        self,
        starting_cash: Number = Decimal("100000"),
        fee_rate: Number = Decimal("0.005"),
        *,
        verbose: bool = True,
        clock: Optional[SimulationClock] = None,
        on_reject: Optional[Callable[[Rejection], None]] = None,
    ) -> None:
        starting_cash = to_decimal(starting_cash)
        fee_rate = to_decimal(fee_rate)
        if starting_cash < 0:
            raise ValueError(f"starting cash must be non-negative, got {starting_cash}")
        if not (ZERO <= fee_rate < 1):
            raise ValueError(f"fee rate must be in [0, 1), got {fee_rate}")

        self.initial_cash = starting_cash
        self.fee_rate = fee_rate
        self.verbose = verbose
        self.clock = clock
        self.on_reject = on_reject
        self._cash = starting_cash
        self._positions: Dict[str, Decimal] = {}
        self._last_prices: Dict[str, Decimal] = {}
        self._trades: List[Trade] = []
        self.rejections: List[Rejection] = []

    @property
    def trades(self) -> Tuple[Trade, ...]:
        return tuple(self._trades)

    def update_price(self, symbol: str, price: Number) -> None:
        price = to_decimal(price)
        if price < 0:
            raise ValueError(f"negative price {price} for {symbol}")
        self._last_prices[symbol] = price

    def last_price(self, symbol: str) -> Optional[Decimal]:
        return self._last_prices.get(symbol)

    def _reject(self, order: Order, reason: RejectReason, detail: str) -> None:
        rejection = Rejection(order=order, reason=reason, detail=detail)
        self.rejections.append(rejection)
        if self.verbose:
            log.warning(f"PaperBroker: rejected {order.symbol} qty={order.quantity} ({reason.value}): {detail}")
        if self.on_reject is not None:
            self.on_reject(rejection)

    def submit_order(self, order: Order) -> Optional[Trade]:
        quantity = to_decimal(order.quantity)
        if quantity == 0:
            self._reject(order, RejectReason.INVALID_QUANTITY, "zero quantity")
            return None

        fill_price = to_decimal(order.price)
        if fill_price < 0:
            self._reject(order, RejectReason.INVALID_PRICE, f"price {fill_price}")
            return None
        if order.is_market:
            # Market order: fill at the last known price
            market = self._last_prices.get(order.symbol)
            if market is None:
                self._reject(order, RejectReason.NO_MARKET_PRICE, f"no market price for {order.symbol}")
                return None
            fill_price = market

        notional = fill_price * abs(quantity)
        fee = notional * self.fee_rate
        total_cost = notional + fee

        if quantity > 0 and self._cash < total_cost:
            self._reject(order, RejectReason.INSUFFICIENT_FUNDS, f"need {total_cost:.2f}, have {self._cash:.2f}")
            return None

        # Both sides pay the fee
        if quantity > 0:
            self._cash -= total_cost
        else:
            self._cash += notional - fee

        self._positions[order.symbol] = self._positions.get(order.symbol, ZERO) + quantity

        side = order.side
        trade = Trade(
            symbol=order.symbol,
            quantity=abs(quantity),
            price=fill_price,
            side=side,
            fee=fee,
            timestamp=self.clock.now() if self.clock is not None else None,
        )
        self._trades.append(trade)

        if self.verbose:
            log.info(
                f"PaperBroker: filled {side.value} {abs(quantity):.8f} {order.symbol} @ {fill_price:.2f}. "
                f"Fee: {fee:.2f}. Cash: {self._cash:.2f}"
            )
        return trade

    def position(self, symbol: str) -> Decimal:
        return self._positions.get(symbol, ZERO)

    def cash(self) -> Decimal:
        return self._cash

    def open_positions(self) -> Dict[str, Decimal]:
        return dict(self._positions)

    def equity(self, prices: Optional[Mapping[str, Decimal]] = None) -> Decimal:
        """Cash plus positions marked at ``prices`` (defaults to last known prices)."""
        marks = self._last_prices if prices is None else prices
        value = self._cash
        # Symbols are visited in sorted order so the Decimal sum is reproducible
        for symbol in sorted(self._positions):
            qty = self._positions[symbol]
            mark = marks.get(symbol)
            if mark is None:
                continue
            value += qty * mark
        return value
