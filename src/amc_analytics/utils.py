"""Helper functions for multi-leg AMC valuation."""

from __future__ import annotations

from contextlib import contextmanager
from collections.abc import Iterable, Iterator
import datetime as dt
import time
import numpy as np

from .enums import DayCountConvention
from .exceptions import ValidationError

__all__ = [
    "log_timing",
    "calculate_year_fraction",
    "year_fractions",
]

SECONDS_IN_DAY = 86400

_ACTUAL_DAYS_PER_YEAR = {
    DayCountConvention.ACT_360: 360.0,
    DayCountConvention.ACT_365F: 365.0,
    DayCountConvention.ACT_365_25: 365.25,
}


@contextmanager
def log_timing(logger, label: str, enabled: bool) -> Iterator[None]:
    """Log timing for a code block when enabled is True."""
    if not enabled:
        yield
        return
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        logger.debug("Timing %s: %.6fs", label, elapsed)


def _day_count_30_360_us(start_date: dt.date, end_date: dt.date) -> float:
    """30/360 (US) day-count fraction between two dates."""
    y1, m1, d1 = start_date.year, start_date.month, start_date.day
    y2, m2, d2 = end_date.year, end_date.month, end_date.day

    if d1 == 31:
        d1 = 30
    if d2 == 31 and d1 in (30, 31):
        d2 = 30

    return (360 * (y2 - y1) + 30 * (m2 - m1) + (d2 - d1)) / 360.0


def calculate_year_fraction(
    start_date: dt.date,
    end_date: dt.date,
    day_count_convention: DayCountConvention = DayCountConvention.ACT_365F,
) -> float:
    """Calculate year fraction between two dates.

    Parameters
    ==========
    start_date: date or datetime
        starting date
    end_date: date or datetime
        ending date (may precede ``start_date``; the result is then negative)
    day_count_convention: DayCountConvention, default DayCountConvention.ACT_365F
        Day-count basis. Supported:
        - DayCountConvention.ACT_365F
        - DayCountConvention.ACT_360
        - DayCountConvention.ACT_365_25
        - DayCountConvention.THIRTY_360_US

    Returns
    =======
    year_fraction: float
        year fraction between start_date and end_date

    Examples
    ========
    >>> from datetime import datetime
    >>> calculate_year_fraction(datetime(2025, 1, 1), datetime(2026, 1, 1))
    1.0
    """
    if type(start_date) is not type(end_date):
        # mixing date and datetime: compare on calendar days
        start_date = _as_datetime(start_date)
        end_date = _as_datetime(end_date)
    if day_count_convention is DayCountConvention.THIRTY_360_US:
        return _day_count_30_360_us(start_date, end_date)
    try:
        days_per_year = _ACTUAL_DAYS_PER_YEAR[day_count_convention]
    except KeyError:
        raise ValidationError(f"Unsupported day_count_convention: {day_count_convention}") from None
    return (end_date - start_date).total_seconds() / SECONDS_IN_DAY / days_per_year


def year_fractions(
    reference_date: dt.date,
    dates: Iterable[dt.date],
    day_count_convention: DayCountConvention = DayCountConvention.ACT_365F,
) -> np.ndarray:
    """Vectorised :func:`calculate_year_fraction` from a common reference date."""
    return np.array(
        [calculate_year_fraction(reference_date, d, day_count_convention) for d in dates],
        dtype=float,
    )


def _as_datetime(d: dt.date) -> dt.datetime:
    if isinstance(d, dt.datetime):
        return d
    return dt.datetime(d.year, d.month, d.day)
