"""Ordered, deduplicated simulation times with position lookup."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
import numpy as np

from ..exceptions import MissingSimulationTimeError, ValidationError

__all__ = ["SimulationTimeIndex", "TIME_TOLERANCE"]

# two year fractions closer than this denote the same simulation time
TIME_TOLERANCE = 1.0e-10


def _dedupe(times: np.ndarray) -> np.ndarray:
    if times.size == 0:
        return times
    times = np.sort(times)
    keep = np.concatenate([[True], np.diff(times) > TIME_TOLERANCE])
    return times[keep]


class SimulationTimeIndex:
    """Immutable strictly increasing set of simulation times.

    Inserting a time already present (within ``TIME_TOLERANCE``) is a no-op,
    so building the index from overlapping cashflow requirements is
    idempotent. Lookups are binary searches.
    """

    __slots__ = ("_times",)

    def __init__(self, times: Iterable[float] = ()) -> None:
        arr = np.asarray(list(times), dtype=float)
        if arr.ndim != 1:
            raise ValidationError("simulation times must be one-dimensional")
        if not np.all(np.isfinite(arr)):
            raise ValidationError("simulation times must be finite")
        if np.any(arr < 0.0):
            raise ValidationError("simulation times must be non-negative")
        times = _dedupe(arr)
        times.setflags(write=False)
        self._times = times

    @property
    def times(self) -> np.ndarray:
        return self._times

    def __len__(self) -> int:
        return int(self._times.size)

    def __iter__(self) -> Iterator[float]:
        return iter(self._times.tolist())

    def __contains__(self, t: float) -> bool:
        return self.find(t) is not None

    def __repr__(self) -> str:
        return f"SimulationTimeIndex({self._times.tolist()!r})"

    def find(self, t: float) -> int | None:
        """Position of ``t`` or ``None`` when absent."""
        times = self._times
        pos = int(np.searchsorted(times, t - TIME_TOLERANCE, side="left"))
        if pos < times.size and abs(times[pos] - t) <= TIME_TOLERANCE:
            return pos
        return None

    def index(self, t: float) -> int:
        """Position of ``t``; raises :class:`MissingSimulationTimeError` when absent."""
        pos = self.find(t)
        if pos is None:
            raise MissingSimulationTimeError(t)
        return pos

    def indices(self, times: Iterable[float]) -> np.ndarray:
        return np.array([self.index(t) for t in times], dtype=int)

    def union(self, times: Iterable[float]) -> "SimulationTimeIndex":
        """New index holding these times and ``times``."""
        extra = np.asarray(list(times), dtype=float)
        return SimulationTimeIndex(np.concatenate([self._times, extra]))
