from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterator

import numpy as np

from tradeflex.core.types import Bar, Number, to_decimal


_TIMEFRAME_TO_MIN = {
    "1m": 1,
    "5m": 5,
    "15m": 15,
    "1h": 60,
    "1d": 1440,
}

PRICE_STEP = Decimal("0.01")


def timeframe_delta(timeframe: str) -> timedelta:
    if timeframe not in _TIMEFRAME_TO_MIN:
        raise ValueError(f"unsupported timeframe '{timeframe}'. Use one of: {', '.join(_TIMEFRAME_TO_MIN)}")
    return timedelta(minutes=_TIMEFRAME_TO_MIN[timeframe])


@dataclass
class RandomWalkParams:
    seed: int = 42
    start: datetime = datetime(2024, 1, 1, tzinfo=timezone.utc)
    bars: int = 1000
    timeframe: str = "1m"
    steps_per_bar: int = 20
    drift: float = 0.0
    volatility: float = 0.02


def _price(value: float) -> Decimal:
    return to_decimal(round(value, 2)).quantize(PRICE_STEP)


def random_walk_bars(symbol: str, p: RandomWalkParams, start_price: Number = 30000) -> Iterator[Bar]:
    """Seeded geometric random walk; identical params always yield identical bars."""
    rng = np.random.default_rng(p.seed)
    bar_delta = timeframe_delta(p.timeframe)

    cur_time = p.start
    price = float(to_decimal(start_price))

    for _ in range(p.bars):
        # simulate fine-grained steps within bar
        prices = [price]
        for _ in range(p.steps_per_bar):
            shock = rng.normal(loc=p.drift / p.steps_per_bar, scale=p.volatility / math.sqrt(p.steps_per_bar))
            price = max(0.01, price * (1.0 + shock))
            prices.append(price)

        volume = float(abs(rng.normal(loc=10.0, scale=3.0)))
        yield Bar(
            symbol=symbol,
            timestamp=cur_time,
            open=_price(prices[0]),
            high=_price(max(prices)),
            low=_price(min(prices)),
            close=_price(prices[-1]),
            volume=to_decimal(round(volume, 4)),
        )
        cur_time += bar_delta
