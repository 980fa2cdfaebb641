from __future__ import annotations

import itertools
import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from loguru import logger

from tradeflex.backtest.engine import BacktestEngine
from tradeflex.backtest.metrics import PerformanceMetrics
from tradeflex.core.clock import EPOCH, SimulationClock
from tradeflex.core.errors import OptimizationError
from tradeflex.core.types import Bar, Number, to_decimal
from tradeflex.strategy.base import BaseStrategy

log = logger.bind(component="optimizer")

ProgressCallback = Callable[[int, int, Mapping[str, Any]], None]

RANKABLE_METRICS = (
    "total_return_pct",
    "max_drawdown_pct",
    "win_rate_pct",
    "profit_factor",
    "buy_and_hold_pct",
    "outperformance_pct",
    "final_equity",
)


class ParameterGrid:
    """Ordered cross product of parameter axes, filtered by an optional validity predicate.

    Combinations failing the predicate are skipped (a business rule, not a failure).
    """

    def __init__(
        self,
        axes: Mapping[str, Sequence[Any]],
        constraint: Optional[Callable[[Mapping[str, Any]], bool]] = None,
    ) -> None:
        for name, values in axes.items():
            if not list(values):
                raise ValueError(f"parameter axis '{name}' is empty")
        self.axes: Dict[str, List[Any]] = {k: list(v) for k, v in axes.items()}
        self.constraint = constraint
        self._explicit: Optional[List[Dict[str, Any]]] = None

    @classmethod
    def from_list(cls, combinations: Iterable[Mapping[str, Any]]) -> "ParameterGrid":
        grid = cls({})
        grid._explicit = [dict(c) for c in combinations]
        return grid

    def candidates(self) -> List[Dict[str, Any]]:
        if self._explicit is not None:
            return [dict(c) for c in self._explicit]
        names = list(self.axes)
        return [dict(zip(names, values)) for values in itertools.product(*(self.axes[n] for n in names))]

    def combinations(self) -> List[Dict[str, Any]]:
        out = self.candidates()
        if self.constraint is None:
            return out
        return [c for c in out if self.constraint(c)]

    def __len__(self) -> int:
        return len(self.combinations())


@dataclass(frozen=True)
class OptimizationResult:
    algorithm: str
    params: Dict[str, Any]
    metrics: PerformanceMetrics
    # Position in the evaluated grid; secondary ranking key
    index: int


@dataclass(frozen=True)
class OptimizationFailure:
    algorithm: str
    params: Dict[str, Any]
    reason: str
    index: int


@dataclass
class OptimizationReport:
    results: List[OptimizationResult] = field(default_factory=list)
    failures: List[OptimizationFailure] = field(default_factory=list)
    evaluated: int = 0
    skipped: int = 0
    cancelled: bool = False

    @property
    def best(self) -> Optional[OptimizationResult]:
        return self.results[0] if self.results else None


def metric_value(metrics: PerformanceMetrics, rank_by: str) -> Optional[Decimal]:
    if rank_by not in RANKABLE_METRICS:
        raise ValueError(f"cannot rank by '{rank_by}'. Choose one of: {', '.join(RANKABLE_METRICS)}")
    return getattr(metrics, rank_by)


def rank_results(
    results: Iterable[OptimizationResult],
    rank_by: str = "total_return_pct",
    top_n: Optional[int] = None,
) -> List[OptimizationResult]:
    """Descending by ``rank_by``; missing values last; ties keep grid order."""
    ordered = sorted(results, key=lambda r: r.index)

    def key(r: OptimizationResult):
        value = metric_value(r.metrics, rank_by)
        return (value is not None, value if value is not None else Decimal("0"))

    # sorted() is stable under reverse=True, so equal keys stay in grid order
    ranked = sorted(ordered, key=key, reverse=True)
    return ranked if top_n is None else ranked[:top_n]


def merge_reports(
    reports: Iterable[OptimizationReport],
    rank_by: str = "total_return_pct",
    top_n: Optional[int] = None,
) -> OptimizationReport:
    """Rank results from several strategy families together.

    Indices are re-based so ties resolve by (report order, grid order).
    """
    merged = OptimizationReport()
    offset = 0
    pool: List[OptimizationResult] = []
    for report in reports:
        width = max([r.index for r in report.results] + [f.index for f in report.failures], default=-1) + 1
        for r in report.results:
            pool.append(OptimizationResult(r.algorithm, r.params, r.metrics, r.index + offset))
        merged.failures.extend(report.failures)
        merged.evaluated += report.evaluated
        merged.skipped += report.skipped
        merged.cancelled = merged.cancelled or report.cancelled
        offset += width
    merged.results = rank_results(pool, rank_by, top_n)
    return merged


class StrategyOptimizer:
    """Grid search over one strategy family.

    Every combination gets its own strategy instance, clock, engine and
    paper broker, so combinations share no mutable state and run on a
    thread pool. Only the final ranking depends on all of them.
    """

    def __init__(
        self,
        strategy_factory: Callable[..., BaseStrategy],
        bars: Sequence[Bar],
        *,
        algorithm: Optional[str] = None,
        starting_cash: Number = Decimal("100000"),
        fee_rate: Number = Decimal("0.005"),
        clock_start: datetime = EPOCH,
        clock_step: timedelta = timedelta(minutes=1),
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        rank_by: str = "total_return_pct",
        max_workers: Optional[int] = None,
    ) -> None:
        if rank_by not in RANKABLE_METRICS:
            raise ValueError(f"cannot rank by '{rank_by}'. Choose one of: {', '.join(RANKABLE_METRICS)}")
        if max_workers is not None and max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self.strategy_factory = strategy_factory
        self.bars = tuple(bars)
        self.algorithm = algorithm or getattr(strategy_factory, "__name__", "strategy")
        self.starting_cash = to_decimal(starting_cash)
        self.fee_rate = to_decimal(fee_rate)
        self.clock_start = clock_start
        self.clock_step = clock_step
        self.start = start
        self.end = end
        self.rank_by = rank_by
        self.max_workers = max_workers or min(32, os.cpu_count() or 1)
        # Fail fast on bad cash/fee before fanning out
        BacktestEngine(starting_cash=self.starting_cash, fee_rate=self.fee_rate)

    def _evaluate(self, index: int, params: Dict[str, Any], cancel_event: Optional[threading.Event]):
        if cancel_event is not None and cancel_event.is_set():
            return None
        try:
            strategy = self.strategy_factory(**params)
        except Exception as exc:
            return OptimizationFailure(self.algorithm, params, f"rejected parameters: {exc!r}", index)

        engine = BacktestEngine(
            clock=SimulationClock(self.clock_start, self.clock_step),
            starting_cash=self.starting_cash,
            fee_rate=self.fee_rate,
            verbose=False,
        )
        try:
            result = engine.run(strategy, self.bars, start=self.start, end=self.end)
        except Exception as exc:
            raise OptimizationError(params, str(exc)) from exc
        return OptimizationResult(self.algorithm, params, result.metrics, index)

    def optimize(
        self,
        grid: ParameterGrid,
        top_n: Optional[int] = 10,
        progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> OptimizationReport:
        candidates = grid.candidates()
        combos = grid.combinations()
        report = OptimizationReport(skipped=len(candidates) - len(combos))
        total = len(combos)
        log.info(f"Optimizing {self.algorithm}: {total} combinations ({report.skipped} skipped) on {self.max_workers} workers")

        results: List[OptimizationResult] = []
        completed = 0
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {
                pool.submit(self._evaluate, index, params, cancel_event): (index, params)
                for index, params in enumerate(combos)
            }
            try:
                for fut in as_completed(futures):
                    index, params = futures[fut]
                    outcome = fut.result()
                    if outcome is None:
                        report.cancelled = True
                        continue
                    completed += 1
                    if isinstance(outcome, OptimizationFailure):
                        log.warning(f"{self.algorithm} {params}: {outcome.reason}")
                        report.failures.append(outcome)
                    else:
                        log.debug(f"{self.algorithm} {params}: {self.rank_by}={metric_value(outcome.metrics, self.rank_by)}")
                        results.append(outcome)
                    if progress is not None:
                        progress(completed, total, params)
            except BaseException:
                for f in futures:
                    f.cancel()
                raise

        report.evaluated = len(results)
        report.failures.sort(key=lambda f: f.index)
        report.results = rank_results(results, self.rank_by, top_n)
        log.info(
            f"Optimization {self.algorithm} done: {report.evaluated} ranked, {len(report.failures)} failed"
            + (" (cancelled)" if report.cancelled else "")
        )
        return report
