"""Resolved cashflow schedules, legs and exercise schedules of multi-leg instruments.

Cashflows are plain frozen dataclasses, one per known kind. Dates are already
resolved (no calendar or schedule generation happens here); amounts are turned
into simulation formulas by :mod:`amc_analytics.valuation.cashflow_info`.
"""

from __future__ import annotations

from dataclasses import dataclass
import datetime as dt
import numpy as np

from .enums import DayCountConvention, SettlementType
from .exceptions import ConfigurationError, ValidationError
from .utils import calculate_year_fraction

__all__ = [
    "SimpleCashflow",
    "FixedRateCoupon",
    "IborCoupon",
    "CappedFlooredIborCoupon",
    "FxLinkedCashflow",
    "Leg",
    "ExerciseSchedule",
    "MultiLegInstrument",
]


def _finite(value, name: str) -> float:
    try:
        out = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be numeric") from exc
    if not np.isfinite(out):
        raise ValidationError(f"{name} must be finite")
    return out


def _check_date(value, name: str) -> None:
    if not isinstance(value, dt.date):
        raise ConfigurationError(f"{name} must be a date, got {type(value).__name__}")


@dataclass(frozen=True, slots=True)
class SimpleCashflow:
    """Fixed amount paid on ``pay_date`` (notional exchange, fee, premium)."""

    pay_date: dt.date
    amount: float

    def __post_init__(self) -> None:
        _check_date(self.pay_date, "pay_date")
        object.__setattr__(self, "amount", _finite(self.amount, "amount"))


@dataclass(frozen=True, slots=True)
class FixedRateCoupon:
    """``nominal * rate * accrual_fraction`` paid on ``pay_date``."""

    pay_date: dt.date
    nominal: float
    rate: float
    accrual_start: dt.date
    accrual_end: dt.date
    day_count: DayCountConvention = DayCountConvention.ACT_365F

    def __post_init__(self) -> None:
        for name in ("pay_date", "accrual_start", "accrual_end"):
            _check_date(getattr(self, name), name)
        if self.accrual_end <= self.accrual_start:
            raise ValidationError("accrual_end must be after accrual_start")
        if not isinstance(self.day_count, DayCountConvention):
            raise ConfigurationError(
                f"day_count must be DayCountConvention enum, got {type(self.day_count).__name__}"
            )
        object.__setattr__(self, "nominal", _finite(self.nominal, "nominal"))
        object.__setattr__(self, "rate", _finite(self.rate, "rate"))

    @property
    def accrual_fraction(self) -> float:
        return calculate_year_fraction(self.accrual_start, self.accrual_end, self.day_count)

    @property
    def amount(self) -> float:
        return self.nominal * self.rate * self.accrual_fraction


@dataclass(frozen=True, slots=True)
class IborCoupon:
    """Floating coupon ``nominal * (gearing * F + spread) * accrual_fraction``.

    ``F`` is the simply-compounded forward over ``[index_start, index_end]``
    observed on ``fixing_date``. Index dates default to the accrual period and
    the fixing date to the accrual start. Coupons fixed before the valuation
    date use ``past_fixing``; a coupon fixing on the valuation date uses it
    when given and the initial curve forward otherwise.
    """

    pay_date: dt.date
    nominal: float
    accrual_start: dt.date
    accrual_end: dt.date
    fixing_date: dt.date | None = None
    index_start: dt.date | None = None
    index_end: dt.date | None = None
    gearing: float = 1.0
    spread: float = 0.0
    day_count: DayCountConvention = DayCountConvention.ACT_365F
    index_day_count: DayCountConvention | None = None
    past_fixing: float | None = None

    def __post_init__(self) -> None:
        for name in ("pay_date", "accrual_start", "accrual_end"):
            _check_date(getattr(self, name), name)
        if self.accrual_end <= self.accrual_start:
            raise ValidationError("accrual_end must be after accrual_start")
        if self.fixing_date is None:
            object.__setattr__(self, "fixing_date", self.accrual_start)
        if self.index_start is None:
            object.__setattr__(self, "index_start", self.accrual_start)
        if self.index_end is None:
            object.__setattr__(self, "index_end", self.accrual_end)
        if self.index_day_count is None:
            object.__setattr__(self, "index_day_count", self.day_count)
        for name in ("fixing_date", "index_start", "index_end"):
            _check_date(getattr(self, name), name)
        if self.index_end <= self.index_start:
            raise ValidationError("index_end must be after index_start")
        if self.fixing_date > self.index_start:
            raise ValidationError("fixing_date must not be after index_start")
        if self.fixing_date > self.pay_date:
            raise ValidationError("fixing_date must not be after pay_date")
        for name in ("day_count", "index_day_count"):
            if not isinstance(getattr(self, name), DayCountConvention):
                raise ConfigurationError(f"{name} must be DayCountConvention enum")
        object.__setattr__(self, "nominal", _finite(self.nominal, "nominal"))
        object.__setattr__(self, "gearing", _finite(self.gearing, "gearing"))
        object.__setattr__(self, "spread", _finite(self.spread, "spread"))
        if self.past_fixing is not None:
            object.__setattr__(self, "past_fixing", _finite(self.past_fixing, "past_fixing"))

    @property
    def accrual_fraction(self) -> float:
        return calculate_year_fraction(self.accrual_start, self.accrual_end, self.day_count)

    @property
    def index_fraction(self) -> float:
        return calculate_year_fraction(self.index_start, self.index_end, self.index_day_count)


@dataclass(frozen=True, slots=True)
class CappedFlooredIborCoupon(IborCoupon):
    """Ibor coupon whose rate ``gearing * F + spread`` is clipped to ``[floor, cap]``."""

    cap: float | None = None
    floor: float | None = None

    def __post_init__(self) -> None:
        IborCoupon.__post_init__(self)
        if self.cap is None and self.floor is None:
            raise ValidationError("a capped/floored coupon needs a cap or a floor")
        if self.cap is not None:
            object.__setattr__(self, "cap", _finite(self.cap, "cap"))
        if self.floor is not None:
            object.__setattr__(self, "floor", _finite(self.floor, "floor"))
        if self.cap is not None and self.floor is not None and self.floor > self.cap:
            raise ValidationError(f"floor ({self.floor}) must not exceed cap ({self.cap})")


@dataclass(frozen=True, slots=True)
class FxLinkedCashflow:
    """``foreign_amount`` of ``foreign_currency`` converted at the FX fixing on ``fixing_date``.

    The amount is paid in the leg currency. ``past_fixing`` is the FX rate
    (leg currency per unit of foreign currency) for fixings already observed.
    """

    pay_date: dt.date
    fixing_date: dt.date
    foreign_amount: float
    foreign_currency: str
    past_fixing: float | None = None

    def __post_init__(self) -> None:
        _check_date(self.pay_date, "pay_date")
        _check_date(self.fixing_date, "fixing_date")
        if self.fixing_date > self.pay_date:
            raise ValidationError("fixing_date must not be after pay_date")
        if not isinstance(self.foreign_currency, str) or not self.foreign_currency:
            raise ValidationError("foreign_currency must be a non-empty string")
        object.__setattr__(
            self, "foreign_amount", _finite(self.foreign_amount, "foreign_amount")
        )
        if self.past_fixing is not None:
            fixing = _finite(self.past_fixing, "past_fixing")
            if fixing <= 0.0:
                raise ValidationError("FX past_fixing must be positive")
            object.__setattr__(self, "past_fixing", fixing)


@dataclass(frozen=True, slots=True)
class Leg:
    """Ordered cashflows of one currency.

    ``payer=True`` flips the sign of every amount. Flows of a leg with
    ``exercisable=False`` (premiums, fees) are paid whether or not the option
    is exercised.
    """

    cashflows: tuple
    currency: str
    payer: bool = False
    exercisable: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "cashflows", tuple(self.cashflows))
        if not isinstance(self.currency, str) or not self.currency:
            raise ValidationError("leg currency must be a non-empty string")
        if not isinstance(self.payer, bool):
            raise ConfigurationError("payer must be a bool")

    @property
    def payer_sign(self) -> float:
        return -1.0 if self.payer else 1.0


@dataclass(frozen=True, slots=True)
class ExerciseSchedule:
    """Bermudan exercise dates with the settlement style applied on exercise."""

    dates: tuple
    settlement: SettlementType | str = SettlementType.PHYSICAL

    def __post_init__(self) -> None:
        dates = tuple(self.dates)
        for d in dates:
            _check_date(d, "exercise date")
        if any(b <= a for a, b in zip(dates, dates[1:])):
            raise ValidationError("exercise dates must be strictly increasing")
        object.__setattr__(self, "dates", dates)
        if isinstance(self.settlement, str):
            try:
                object.__setattr__(self, "settlement", SettlementType(self.settlement.lower()))
            except ValueError as exc:
                raise ConfigurationError(f"unknown settlement type {self.settlement!r}") from exc
        if not isinstance(self.settlement, SettlementType):
            raise ConfigurationError(
                f"settlement must be SettlementType enum, got {type(self.settlement).__name__}"
            )


@dataclass(frozen=True, slots=True)
class MultiLegInstrument:
    """Legs plus an optional exercise schedule; no schedule means no optionality."""

    trade_id: str
    legs: tuple
    exercise: ExerciseSchedule | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "legs", tuple(self.legs))
        if not self.legs:
            raise ValidationError("an instrument needs at least one leg")
        for leg in self.legs:
            if not isinstance(leg, Leg):
                raise ConfigurationError(f"legs must be Leg instances, got {type(leg).__name__}")
        if self.exercise is not None and not isinstance(self.exercise, ExerciseSchedule):
            raise ConfigurationError("exercise must be an ExerciseSchedule or None")

    @property
    def has_exercise(self) -> bool:
        return self.exercise is not None and len(self.exercise.dates) > 0
