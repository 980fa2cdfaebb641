from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Mapping, Optional


class TradeFlexError(Exception):
    pass


class StrategyLifecycleError(TradeFlexError):
    """Raised on an illegal strategy state transition (e.g. a bar after exit)."""


class StrategyError(TradeFlexError):
    """A strategy hook raised; the run is aborted.

    Carries enough context to reproduce the failure with the same inputs.
    """

    def __init__(
        self,
        hook: str,
        strategy: str,
        state: str,
        params: Optional[Mapping[str, Any]] = None,
        bar_index: Optional[int] = None,
        timestamp: Optional[datetime] = None,
    ) -> None:
        self.hook = hook
        self.strategy = strategy
        self.state = state
        self.params: Dict[str, Any] = dict(params or {})
        self.bar_index = bar_index
        self.timestamp = timestamp
        where = ""
        if bar_index is not None:
            ts = timestamp.isoformat() if timestamp is not None else "?"
            where = f" at bar #{bar_index} ({ts})"
        super().__init__(f"{strategy}.{hook} failed{where} [state={state}, params={self.params}]")


class EngineError(TradeFlexError):
    """The engine could not process a bar (e.g. a negative close)."""

    def __init__(
        self,
        message: str,
        params: Optional[Mapping[str, Any]] = None,
        bar_index: Optional[int] = None,
        timestamp: Optional[datetime] = None,
    ) -> None:
        self.params: Dict[str, Any] = dict(params or {})
        self.bar_index = bar_index
        self.timestamp = timestamp
        ts = timestamp.isoformat() if timestamp is not None else "?"
        super().__init__(f"{message} at bar #{bar_index} ({ts}) [params={self.params}]")


class OptimizationError(TradeFlexError):
    """A parameter combination failed while running (not at construction)."""

    def __init__(self, params: Mapping[str, Any], message: str) -> None:
        self.params: Dict[str, Any] = dict(params)
        super().__init__(f"combination {self.params} failed: {message}")
