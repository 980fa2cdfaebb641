from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, Optional

from tradeflex.core.types import Order, Trade


class Broker(ABC):
    """
    Execution surface shared by simulated and real brokers.
    Only the paper broker is synchronous and deterministic; the engine's
    guarantees (determinism, FIFO round-trip matching) hold only for it.
    """

    @abstractmethod
    def submit_order(self, order: Order) -> Optional[Trade]:
        """Execute an order. Returns the Trade, or None when the order was rejected."""

    @abstractmethod
    def position(self, symbol: str) -> Decimal:
        """Signed position for a symbol (0 when flat or unknown)."""

    @abstractmethod
    def cash(self) -> Decimal:
        pass

    @abstractmethod
    def open_positions(self) -> Dict[str, Decimal]:
        """Snapshot copy of all positions."""
