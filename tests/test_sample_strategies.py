from __future__ import annotations

from decimal import Decimal

import pytest

from conftest import make_bars
from tradeflex.backtest.engine import BacktestEngine
from tradeflex.core.types import Side
from tradeflex.strategy.martingale import MartingaleStrategy
from tradeflex.strategy.registry import available_strategies, create_strategy, default_grid
from tradeflex.strategy.rsi_mean_reversion import RsiMeanReversionStrategy
from tradeflex.strategy.sma_crossover import SmaCrossoverStrategy

D = Decimal


def _run(strategy, closes, cash="10000"):
    engine = BacktestEngine(starting_cash=D(cash), fee_rate=D("0"))
    return engine.run(strategy, make_bars(closes))


def test_sma_crossover_enters_and_exits_on_crosses() -> None:
    strat = SmaCrossoverStrategy(fast_period=2, slow_period=3, allocation=D("0.5"))
    result = _run(strat, [10, 10, 10, 9, 12, 14, 10, 6])

    assert [t.side for t in result.trades] == [Side.BUY, Side.SELL]
    assert [t.price for t in result.trades] == [D("12"), D("6")]
    assert result.trades[0].quantity == result.trades[1].quantity
    assert result.positions["TEST"] == D("0")


def test_rsi_buys_oversold_and_sells_overbought() -> None:
    strat = RsiMeanReversionStrategy(period=2, oversold=30, overbought=70)
    result = _run(strat, [100, 90, 80, 90, 100])

    buy, sell = result.trades
    assert (buy.side, buy.price) == (Side.BUY, D("80"))
    # 10% of 10000 at 80
    assert buy.quantity == D("12.5")
    assert (sell.side, sell.price, sell.quantity) == (Side.SELL, D("100"), D("12.5"))


def test_rsi_edge_values() -> None:
    strat = RsiMeanReversionStrategy(period=2)
    strat._changes.extend([D("1"), D("1")])
    assert strat.rsi() == D("100")
    strat._changes.extend([D("-1"), D("-1")])
    assert strat.rsi() == D("0")
    strat._changes.extend([D("1"), D("-1")])
    assert strat.rsi() == D("50")


def test_martingale_doubles_after_loss() -> None:
    strat = MartingaleStrategy(lookback=0, base_position=D("0.1"), take_profit=D("0.02"), stop_loss=D("0.01"))
    result = _run(strat, [100, 103, 100, 98, 100])

    sides = [t.side for t in result.trades]
    assert sides == [Side.BUY, Side.SELL, Side.BUY, Side.SELL, Side.BUY]
    assert strat.consecutive_losses == 1
    assert result.trades[4].quantity > result.trades[2].quantity * D("1.9")


@pytest.mark.parametrize(
    "factory",
    [
        lambda: SmaCrossoverStrategy(fast_period=10, slow_period=10),
        lambda: SmaCrossoverStrategy(fast_period=0, slow_period=10),
        lambda: SmaCrossoverStrategy(allocation=D("1.5")),
        lambda: RsiMeanReversionStrategy(period=0),
        lambda: RsiMeanReversionStrategy(oversold=70, overbought=30),
        lambda: MartingaleStrategy(base_position=D("0")),
        lambda: MartingaleStrategy(stop_loss=D("1")),
        lambda: MartingaleStrategy(lookback=-1),
    ],
)
def test_invalid_parameters_rejected(factory) -> None:
    with pytest.raises(ValueError):
        factory()


def test_registry() -> None:
    assert available_strategies() == ["martingale", "rsi", "sma"]
    strat = create_strategy("SMA", fast_period=5, slow_period=20)
    assert isinstance(strat, SmaCrossoverStrategy)
    assert strat.params()["slow_period"] == 20
    with pytest.raises(KeyError):
        create_strategy("unknown")


def test_default_grids_skip_invalid_combinations() -> None:
    sma = default_grid("sma")
    assert len(sma.candidates()) == 30
    assert len(sma.combinations()) == 27
    assert all(c["fast_period"] < c["slow_period"] for c in sma.combinations())

    rsi = default_grid("rsi", {"period": [14]})
    assert len(rsi.candidates()) == 48
    assert len(rsi.combinations()) == 48

    assert len(default_grid("martingale")) == 80


def test_strategy_state_resets_on_initialize() -> None:
    strat = SmaCrossoverStrategy(fast_period=2, slow_period=3)
    strat._fast.extend([D("1"), D("2")])
    _run(strat, [1])
    assert list(strat._fast) == [D("1")]


def test_params_cover_every_constructor_argument() -> None:
    sma = SmaCrossoverStrategy(fast_period=3, slow_period=8, allocation=D("0.5"), max_position=D("2"))
    assert create_strategy("sma", **sma.params()).params() == sma.params()
    assert sma.params()["max_position"] == D("2")

    rsi = RsiMeanReversionStrategy(period=7, cash_fraction=D("0.25"), max_position=D("4"))
    assert rsi.params()["cash_fraction"] == D("0.25")
    assert create_strategy("rsi", **rsi.params()).params() == rsi.params()

    martingale = MartingaleStrategy(lookback=2)
    assert create_strategy("martingale", **martingale.params()).params() == martingale.params()
