from __future__ import annotations

from datetime import datetime, timedelta, timezone


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class SimulationClock:
    """Deterministic time source for a simulation run.

    The clock never consults wall-clock time: it starts at ``start`` and moves
    forward by ``step`` on every :meth:`advance` call, so two runs built with
    the same arguments see the same timestamp sequence.
    """

    def __init__(self, start: datetime = EPOCH, step: timedelta = timedelta(minutes=1)) -> None:
        if step <= timedelta(0):
            raise ValueError(f"clock step must be positive, got {step}")
        self._current = start
        self._step = step

    @property
    def step(self) -> timedelta:
        return self._step

    def now(self) -> datetime:
        return self._current

    def advance(self) -> datetime:
        self._current = self._current + self._step
        return self._current

    def __repr__(self) -> str:
        return f"SimulationClock(now={self._current.isoformat()}, step={self._step})"
