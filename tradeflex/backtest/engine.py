from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

from loguru import logger

from tradeflex.backtest.metrics import compute_metrics
from tradeflex.backtest.result import BacktestResult
from tradeflex.broker.paper import PaperBroker
from tradeflex.core.clock import SimulationClock
from tradeflex.core.errors import EngineError, StrategyError
from tradeflex.core.types import ZERO, Bar, Number, to_decimal
from tradeflex.strategy.base import AlgorithmContext, BaseStrategy

log = logger.bind(component="engine")


class BacktestEngine:
    """Replays an ordered bar sequence through one strategy against a fresh paper broker.

    Every run starts its own clock from the configured start and step, so
    repeated runs on the same inputs produce identical trade logs.
    """

    def __init__(
        self,
        clock: Optional[SimulationClock] = None,
        starting_cash: Number = Decimal("100000"),
        fee_rate: Number = Decimal("0.005"),
        verbose: bool = False,
    ) -> None:
        template = clock or SimulationClock()
        self.clock_start = template.now()
        self.clock_step = template.step
        # Clock of the most recent run
        self.clock = template
        self.starting_cash = to_decimal(starting_cash)
        self.fee_rate = to_decimal(fee_rate)
        self.verbose = verbose
        # Validate cash/fee up front rather than at run time
        PaperBroker(self.starting_cash, self.fee_rate, verbose=False)

    def _fail(self, strategy: BaseStrategy, hook: str, exc: BaseException, index=None, bar=None) -> StrategyError:
        err = StrategyError(
            hook=hook,
            strategy=type(strategy).__name__,
            state=strategy.state.value,
            params=strategy.params(),
            bar_index=index,
            timestamp=bar.timestamp if bar is not None else None,
        )
        log.error(f"{err}: {exc!r}")
        return err

    def run(
        self,
        strategy: BaseStrategy,
        bars: Iterable[Bar],
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> BacktestResult:
        self.clock = SimulationClock(self.clock_start, self.clock_step)
        broker = PaperBroker(self.starting_cash, self.fee_rate, verbose=self.verbose, clock=self.clock)
        context = AlgorithmContext(broker=broker, clock=self.clock)
        equity_curve: List[Decimal] = [self.starting_cash]
        timestamps: List[Optional[datetime]] = [None]
        first_price: Optional[Decimal] = None
        last_price = ZERO
        symbol = ""

        try:
            strategy.start(context)
        except Exception as exc:
            raise self._fail(strategy, "initialize", exc) from exc

        processed = 0
        for bar in bars:
            if start is not None and bar.timestamp < start:
                continue
            if end is not None and bar.timestamp > end:
                # Bars are time-ordered: nothing later can fall inside the window
                break

            self.clock.advance()
            try:
                broker.update_price(bar.symbol, bar.close)
            except ValueError as exc:
                err = EngineError(
                    f"cannot mark {bar.symbol}: {exc}",
                    params=strategy.params(),
                    bar_index=processed,
                    timestamp=bar.timestamp,
                )
                log.error(str(err))
                raise err from exc
            try:
                strategy.process_bar(bar)
            except Exception as exc:
                raise self._fail(strategy, "on_bar", exc, index=processed, bar=bar) from exc

            equity_curve.append(broker.cash() + broker.position(bar.symbol) * bar.close)
            timestamps.append(bar.timestamp)
            if first_price is None:
                first_price = bar.close
            last_price = bar.close
            symbol = bar.symbol
            processed += 1

        try:
            strategy.stop()
        except Exception as exc:
            raise self._fail(strategy, "on_exit", exc) from exc

        trades = broker.trades
        first = first_price if first_price is not None else ZERO
        metrics = compute_metrics(trades, equity_curve, first, last_price, self.starting_cash)
        log.debug(
            f"Backtest {type(strategy).__name__} {strategy.params()}: bars={processed} trades={len(trades)} "
            f"return={metrics.total_return_pct:.2f}%"
        )
        return BacktestResult(
            symbol=symbol,
            strategy=getattr(strategy, "name", type(strategy).__name__),
            params=strategy.params(),
            trades=trades,
            equity_curve=tuple(equity_curve),
            timestamps=tuple(timestamps),
            initial_cash=self.starting_cash,
            final_cash=broker.cash(),
            first_price=first,
            last_price=last_price,
            bars_processed=processed,
            rejected_orders=len(broker.rejections),
            metrics=metrics,
            positions=broker.open_positions(),
        )
