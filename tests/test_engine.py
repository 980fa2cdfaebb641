from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import T0, make_bars
from tradeflex.backtest.engine import BacktestEngine
from tradeflex.core.clock import SimulationClock
from tradeflex.core.errors import EngineError, StrategyError, StrategyLifecycleError
from tradeflex.data.random_walk import RandomWalkParams, random_walk_bars
from tradeflex.strategy.base import BaseStrategy
from tradeflex.strategy.sma_crossover import SmaCrossoverStrategy

D = Decimal


class Counting(BaseStrategy):
    def __init__(self) -> None:
        super().__init__()
        self.count = 0
        self.exits = 0

    def on_bar(self, bar) -> None:
        self.count += 1

    def on_exit(self) -> None:
        self.exits += 1


class BuyFirstBar(BaseStrategy):
    def __init__(self, qty="10") -> None:
        super().__init__()
        self.qty = D(qty)
        self.done = False

    def on_bar(self, bar) -> None:
        if not self.done:
            self.buy(bar.symbol, self.qty)
            self.done = True


class ExplodesAt(BaseStrategy):
    def __init__(self, n: int) -> None:
        super().__init__()
        self.n = n
        self.seen = 0

    def params(self):
        return {"n": self.n}

    def on_bar(self, bar) -> None:
        if self.seen == self.n:
            raise RuntimeError("boom")
        self.seen += 1


class BadInit(BaseStrategy):
    def initialize(self, context) -> None:
        raise KeyError("missing")

    def on_bar(self, bar) -> None:
        pass


def test_runs_through_all_bars() -> None:
    strat = Counting()
    result = BacktestEngine().run(strat, make_bars([1, 1]))
    assert strat.count == 2
    assert strat.exits == 1
    assert result.trades == ()
    assert len(result.equity_curve) == 3
    assert result.bars_processed == 2


def test_equity_curve_marks_position_to_close() -> None:
    engine = BacktestEngine(starting_cash=D("10000"), fee_rate=D("0"))
    result = engine.run(BuyFirstBar(), make_bars([100, 110, 120]))

    assert result.equity_curve == (D("10000"), D("10000"), D("10100"), D("10200"))
    assert result.final_cash == D("9000")
    assert (result.first_price, result.last_price) == (D("100"), D("120"))
    assert result.metrics.buy_and_hold_pct == D("20")
    assert result.metrics.total_return_pct == D("2")
    assert result.metrics.max_drawdown_pct == D("0")


def test_clock_advances_once_per_processed_bar() -> None:
    clock = SimulationClock(T0, timedelta(minutes=1))
    engine = BacktestEngine(clock=clock, fee_rate=D("0"))
    result = engine.run(BuyFirstBar(qty="1"), make_bars([10, 11, 12, 13]))
    assert engine.clock.now() == T0 + timedelta(minutes=4)
    # The clock passed in only sets start and step
    assert clock.now() == T0
    assert result.trades[0].timestamp == T0 + timedelta(minutes=1)


def test_same_engine_replays_identically() -> None:
    engine = BacktestEngine(clock=SimulationClock(T0, timedelta(minutes=1)), fee_rate=D("0"))
    bars = make_bars([10, 11, 12])
    first = engine.run(BuyFirstBar(qty="1"), bars)
    second = engine.run(BuyFirstBar(qty="1"), bars)
    assert first.trades == second.trades
    assert second.trades[0].timestamp == T0 + timedelta(minutes=1)
    assert first.equity_curve == second.equity_curve


def test_window_skips_before_start_and_stops_after_end() -> None:
    bars = make_bars(range(1, 11))
    consumed = []

    def feed():
        for bar in bars:
            consumed.append(bar)
            yield bar

    strat = Counting()
    start = bars[2].timestamp
    end = bars[5].timestamp
    result = BacktestEngine().run(strat, feed(), start=start, end=end)

    assert strat.count == 4
    assert strat.exits == 1
    assert result.bars_processed == 4
    assert len(result.equity_curve) == 5
    assert result.first_price == D("3")
    assert result.last_price == D("6")
    # Stops pulling from the feed at the first bar past the window
    assert len(consumed) == 7


def test_empty_feed() -> None:
    result = BacktestEngine(starting_cash=D("500")).run(Counting(), [])
    assert result.equity_curve == (D("500"),)
    assert result.metrics.total_return_pct == D("0")
    assert result.first_price == D("0")


def test_strategy_failure_is_fatal_with_bar_context() -> None:
    bars = make_bars([1, 2, 3, 4, 5])
    with pytest.raises(StrategyError) as info:
        BacktestEngine().run(ExplodesAt(2), bars)

    err = info.value
    assert err.hook == "on_bar"
    assert err.bar_index == 2
    assert err.timestamp == bars[2].timestamp
    assert err.params == {"n": 2}
    assert err.state == "running"
    assert isinstance(err.__cause__, RuntimeError)


def test_unmarkable_bar_aborts_with_bar_context() -> None:
    bars = make_bars([10, -1, 12])
    with pytest.raises(EngineError) as info:
        BacktestEngine().run(BuyFirstBar(), bars)

    err = info.value
    assert err.bar_index == 1
    assert err.timestamp == bars[1].timestamp
    assert isinstance(err.__cause__, ValueError)


def test_initialize_failure_is_fatal() -> None:
    with pytest.raises(StrategyError) as info:
        BacktestEngine().run(BadInit(), make_bars([1]))
    assert info.value.hook == "initialize"
    assert info.value.bar_index is None


def test_strategy_instance_cannot_be_reused() -> None:
    strat = Counting()
    BacktestEngine().run(strat, make_bars([1]))
    with pytest.raises(StrategyError) as info:
        BacktestEngine().run(strat, make_bars([1]))
    assert isinstance(info.value.__cause__, StrategyLifecycleError)


def test_invalid_engine_configuration() -> None:
    with pytest.raises(ValueError):
        BacktestEngine(starting_cash=D("-1"))
    with pytest.raises(ValueError):
        BacktestEngine(fee_rate=D("2"))


def test_identical_inputs_give_identical_runs() -> None:
    bars = list(random_walk_bars("BTC/USD", RandomWalkParams(seed=7, bars=400, volatility=0.01), start_price=100))

    def once():
        clock = SimulationClock(T0, timedelta(minutes=1))
        engine = BacktestEngine(clock=clock, starting_cash=D("10000"), fee_rate=D("0.001"))
        return engine.run(SmaCrossoverStrategy(fast_period=5, slow_period=20), bars)

    a, b = once(), once()
    assert a.trades == b.trades
    assert a.equity_curve == b.equity_curve
    assert a.metrics == b.metrics
    assert len(a.trades) > 0


def test_result_frames() -> None:
    engine = BacktestEngine(starting_cash=D("10000"), fee_rate=D("0"))
    result = engine.run(BuyFirstBar(), make_bars([100, 101, 102]))
    eq = result.equity_frame()
    assert list(eq.columns) == ["timestamp", "equity"]
    assert len(eq) == 4
    trades = result.trades_frame()
    assert trades.iloc[0]["side"] == "buy"
    assert isinstance(result.sharpe_ratio(), float)
