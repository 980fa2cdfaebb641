from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Sequence

import pytest

from tradeflex.core.types import Bar

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_bars(closes: Sequence, symbol: str = "TEST", start: datetime = T0, step: timedelta = timedelta(minutes=1)) -> List[Bar]:
    bars = []
    for i, c in enumerate(closes):
        price = Decimal(str(c))
        bars.append(
            Bar(
                symbol=symbol,
                timestamp=start + i * step,
                open=price,
                high=price,
                low=price,
                close=price,
                volume=Decimal("1"),
            )
        )
    return bars


@pytest.fixture
def bars_from_closes():
    return make_bars
