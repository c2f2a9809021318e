"""Initial discount curves for the cross-asset model."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
import datetime as dt
import warnings

import numpy as np

from .enums import DayCountConvention
from .exceptions import ValidationError
from .utils import year_fractions


@dataclass(frozen=True, slots=True)
class DiscountCurve:
    """Deterministic discount curve ``P(0, t)`` on a year-fraction grid.

    Discount factors are interpolated linearly in ``ln P`` (piecewise flat
    forwards). Beyond the last pillar the last forward is extended; before
    the first pillar (only possible when the grid does not start at 0) the
    first discount factor is held. ``flat_rate`` marks a curve built by
    :meth:`flat`, which is evaluated in closed form at every ``t``.
    """

    times: np.ndarray
    dfs: np.ndarray
    flat_rate: float | None = None

    def __post_init__(self) -> None:
        t = np.asarray(self.times, dtype=float)
        df = np.asarray(self.dfs, dtype=float)
        if t.ndim != 1 or t.shape != df.shape:
            raise ValidationError("times and dfs must be 1-D arrays of equal length")
        if t.size < 2:
            raise ValidationError("a discount curve needs at least two pillars")
        if t[0] < 0.0 or np.any(np.diff(t) <= 0.0):
            raise ValidationError("curve times must be non-negative and strictly increasing")
        if not np.all(np.isfinite(df)) or np.any(df <= 0.0):
            raise ValidationError("discount factors must be positive and finite")
        if np.any(df > 1.0 + 1e-12):
            warnings.warn("Discount factors > 1 detected (negative rates)", stacklevel=3)
        if self.flat_rate is not None:
            rate = float(self.flat_rate)
            if not np.isfinite(rate) or not np.allclose(df, np.exp(-rate * t), rtol=1e-10):
                raise ValidationError("flat_rate does not reproduce the discount factors")
            object.__setattr__(self, "flat_rate", rate)
        t.setflags(write=False)
        df.setflags(write=False)
        object.__setattr__(self, "times", t)
        object.__setattr__(self, "dfs", df)

    @classmethod
    def flat(cls, rate: float, end_time: float, steps: int = 1) -> "DiscountCurve":
        """Flat continuously-compounded curve on ``[0, end_time]``."""
        if end_time <= 0.0:
            raise ValidationError("end_time must be positive")
        if steps < 1:
            raise ValidationError("steps must be >= 1")
        times = np.linspace(0.0, float(end_time), int(steps) + 1)
        return cls(times=times, dfs=np.exp(-float(rate) * times), flat_rate=float(rate))

    @classmethod
    def from_zero_rates(cls, times: np.ndarray, zero_rates: np.ndarray) -> "DiscountCurve":
        """Curve from continuously-compounded zero rates ``r(t)`` with ``P = exp(-r t)``.

        Parameters
        ==========
        times: np.ndarray
            Pillar year fractions, starting at 0.
        zero_rates: np.ndarray
            Zero rate at each pillar; the rate at ``t = 0`` does not matter.
        """
        times = np.asarray(times, dtype=float)
        zero_rates = np.asarray(zero_rates, dtype=float)
        if times.shape != zero_rates.shape:
            raise ValidationError("times and zero_rates must have the same shape")
        if times.size and not np.isclose(times[0], 0.0):
            raise ValidationError("times must start at 0.0")
        return cls(times=times, dfs=np.exp(-zero_rates * times))

    @classmethod
    def from_dates(
        cls,
        reference_date: dt.date,
        dates: Sequence[dt.date],
        dfs: Sequence[float],
        day_count_convention: DayCountConvention = DayCountConvention.ACT_365F,
    ) -> "DiscountCurve":
        """Curve from dated discount factors; a pillar at ``reference_date`` is added if missing."""
        times = year_fractions(reference_date, dates, day_count_convention)
        dfs = np.asarray(dfs, dtype=float)
        if times.size and times[0] > 0.0:
            times = np.concatenate([[0.0], times])
            dfs = np.concatenate([[1.0], dfs])
        return cls(times=times, dfs=dfs)

    @property
    def end_time(self) -> float:
        return float(self.times[-1])

    def df(self, t: float | np.ndarray) -> np.ndarray:
        """Discount factor ``P(0, t)``."""
        t = np.asarray(t, dtype=float)
        if self.flat_rate is not None:
            return np.exp(-self.flat_rate * t)
        log_df = np.log(self.dfs)
        out = np.interp(t, self.times, log_df)
        right = t > self.times[-1]
        if np.any(right):
            warnings.warn(
                f"Extrapolating discount curve beyond t={self.end_time:.4f} with the last forward",
                stacklevel=2,
            )
            slope = (log_df[-1] - log_df[-2]) / (self.times[-1] - self.times[-2])
            out = np.where(right, log_df[-1] + slope * (t - self.times[-1]), out)
        return np.exp(out)

    def zero_rate(self, t: float | np.ndarray) -> np.ndarray:
        """Continuously-compounded zero rate ``-ln P(0, t) / t`` for ``t > 0``."""
        t = np.asarray(t, dtype=float)
        if np.any(t <= 0.0):
            raise ValidationError("zero_rate requires t > 0")
        return -np.log(self.df(t)) / t

    def simple_forward(self, start: float, end: float) -> float:
        """Simply-compounded forward rate ``(P(0,s)/P(0,e) - 1) / (e - s)``."""
        if end <= start:
            raise ValidationError("simple_forward requires end > start")
        return float((self.df(start) / self.df(end) - 1.0) / (end - start))
