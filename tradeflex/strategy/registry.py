from __future__ import annotations

from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Type

from tradeflex.strategy.base import BaseStrategy
from tradeflex.strategy.martingale import MartingaleStrategy
from tradeflex.strategy.rsi_mean_reversion import RsiMeanReversionStrategy
from tradeflex.strategy.sma_crossover import SmaCrossoverStrategy


STRATEGIES: Dict[str, Type[BaseStrategy]] = {
    SmaCrossoverStrategy.name: SmaCrossoverStrategy,
    RsiMeanReversionStrategy.name: RsiMeanReversionStrategy,
    MartingaleStrategy.name: MartingaleStrategy,
}


def _fast_below_slow(p: Mapping[str, Any]) -> bool:
    return p["fast_period"] < p["slow_period"]


def _oversold_below_overbought(p: Mapping[str, Any]) -> bool:
    return p["oversold"] < p["overbought"]


def _d(*values: str) -> List[Decimal]:
    return [Decimal(v) for v in values]


# Default search spaces: (axes, validity predicate)
DEFAULT_GRIDS: Dict[str, tuple] = {
    "sma": (
        {"fast_period": [3, 5, 7, 10, 15], "slow_period": [10, 15, 20, 30, 50, 100]},
        _fast_below_slow,
    ),
    "rsi": (
        {
            "period": [7, 10, 14, 21, 28],
            "oversold": [20, 25, 30, 35, 40, 45],
            "overbought": [55, 60, 65, 70, 75, 80, 85, 90],
        },
        _oversold_below_overbought,
    ),
    "martingale": (
        {
            "base_position": _d("0.05", "0.10", "0.15", "0.20"),
            "take_profit": _d("0.02", "0.03", "0.05", "0.08", "0.10"),
            "stop_loss": _d("0.01", "0.02", "0.03", "0.05"),
        },
        None,
    ),
}


def resolve_name(name: str) -> str:
    key = str(name or "").strip().lower()
    if key not in STRATEGIES:
        raise KeyError(f"Unknown strategy: {name}. Available: {', '.join(available_strategies())}")
    return key


def available_strategies() -> List[str]:
    return sorted(STRATEGIES)


def strategy_class(name: str) -> Type[BaseStrategy]:
    return STRATEGIES[resolve_name(name)]


def create_strategy(name: str, **params: Any) -> BaseStrategy:
    return strategy_class(name)(**params)


def strategy_factory(name: str, **fixed: Any) -> Callable[..., BaseStrategy]:
    """Factory building ``name`` with ``fixed`` params merged under per-call params."""
    cls = strategy_class(name)

    def build(**params: Any) -> BaseStrategy:
        return cls(**{**fixed, **params})

    build.__name__ = f"build_{cls.name}"
    return build


def default_grid(name: str, overrides: Optional[Mapping[str, Sequence[Any]]] = None):
    from tradeflex.backtest.optimizer import ParameterGrid

    axes, constraint = DEFAULT_GRIDS[resolve_name(name)]
    merged = {**axes, **{k: list(v) for k, v in (overrides or {}).items()}}
    return ParameterGrid(merged, constraint=constraint)
