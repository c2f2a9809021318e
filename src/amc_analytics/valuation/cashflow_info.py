"""Flat, time-indexed description of the simulated cashflows of an instrument.

Each known cashflow kind has one builder in ``_CASHFLOW_BUILDERS``. A builder
returns the simulation times and model state components the amount depends
on, the amount formula and the exercise-into time. Dispatch is on the exact
cashflow type; a type without a builder is reported, never skipped.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
import logging
import numpy as np
import pandas as pd

from ..cashflows import (
    CappedFlooredIborCoupon,
    FixedRateCoupon,
    FxLinkedCashflow,
    IborCoupon,
    MultiLegInstrument,
    SimpleCashflow,
)
from ..exceptions import UnsupportedCashflowKindError, ValidationError
from ..stochastic_processes import PathModel
from .time_index import TIME_TOLERANCE

logger = logging.getLogger(__name__)

__all__ = [
    "CashflowInfo",
    "AmountFunction",
    "build_cashflow_infos",
    "cashflow_table",
    "supported_cashflow_kinds",
]

# (n_samples, states at required times) -> amounts in pay currency
AmountFunction = Callable[[int, Sequence[np.ndarray]], np.ndarray]


@dataclass(frozen=True, slots=True)
class CashflowInfo:
    """One simulated cashflow.

    ``states[i]`` passed to ``amount_function`` holds the model state
    components ``state_indices[i]`` at ``required_simulation_times[i]``,
    shape ``(len(state_indices[i]), n_samples)``. Amounts are in the pay
    currency and exclude ``payer_sign``.
    """

    leg_index: int
    cashflow_index: int
    pay_time: float
    exercise_into_time: float | None
    pay_currency_index: int
    payer_sign: float
    required_simulation_times: tuple[float, ...]
    state_indices: tuple[tuple[int, ...], ...]
    amount_function: AmountFunction
    requires_fx_conversion: bool = False
    kind: str = ""

    def __post_init__(self) -> None:
        if self.payer_sign not in (1.0, -1.0):
            raise ValidationError(f"payer_sign must be +1 or -1, got {self.payer_sign}")
        if len(self.required_simulation_times) != len(self.state_indices):
            raise ValidationError("state_indices must have one entry per required simulation time")
        times = self.required_simulation_times
        if any(b <= a for a, b in zip(times, times[1:])):
            raise ValidationError("required_simulation_times must be strictly increasing")
        if times and times[-1] > self.pay_time + TIME_TOLERANCE:
            raise ValidationError(
                f"cashflow ({self.leg_index}, {self.cashflow_index}) requires state at "
                f"{times[-1]:.6f} after its pay time {self.pay_time:.6f}"
            )
        if (
            self.exercise_into_time is not None
            and self.exercise_into_time > self.pay_time + TIME_TOLERANCE
        ):
            raise ValidationError(
                f"cashflow ({self.leg_index}, {self.cashflow_index}) exercise-into time "
                f"{self.exercise_into_time:.6f} is after its pay time {self.pay_time:.6f}"
            )
        if not callable(self.amount_function):
            raise ValidationError("amount_function must be callable")

    def amount(self, states: Sequence[np.ndarray], n_samples: int) -> np.ndarray:
        """Pay-currency amount per sample (without payer sign)."""
        return np.asarray(self.amount_function(n_samples, states), dtype=float)


@dataclass(frozen=True, slots=True)
class _FlowContext:
    model: PathModel
    currency_index: int
    pay_time: float
    leg_label: str


# ── Amount formulas ─────────────────────────────────────────────────


def _constant(value: float) -> AmountFunction:
    def amount(n_samples: int, states: Sequence[np.ndarray]) -> np.ndarray:
        return np.full(n_samples, value)

    return amount


def _simple(cf: SimpleCashflow, ctx: _FlowContext):
    return {}, _constant(cf.amount), ctx.pay_time


def _fixed(cf: FixedRateCoupon, ctx: _FlowContext):
    return {}, _constant(cf.amount), ctx.model.time(cf.accrual_start)


def _ibor_rate(cf: IborCoupon, ctx: _FlowContext, clip: Callable[[np.ndarray], np.ndarray]):
    model = ctx.model
    exercise_into = model.time(cf.accrual_start)
    nominal_accrual = cf.nominal * cf.accrual_fraction
    ccy = ctx.currency_index
    t_fix = model.time(cf.fixing_date)
    t_start = model.time(cf.index_start)
    t_end = model.time(cf.index_end)
    tau = cf.index_fraction
    gearing, spread = cf.gearing, cf.spread

    if t_fix <= TIME_TOLERANCE:
        if cf.past_fixing is not None:
            fixing = cf.past_fixing
        elif t_fix >= -TIME_TOLERANCE:
            # fixing today: the initial curve determines the forward
            z0 = model.initial_state[model.ir_index(ccy)]
            p_start = float(model.discount_bond(ccy, 0.0, t_start, z0))
            p_end = float(model.discount_bond(ccy, 0.0, t_end, z0))
            fixing = (p_start / p_end - 1.0) / tau
        else:
            raise ValidationError(
                f"{ctx.leg_label}: coupon fixed on {cf.fixing_date} has no past_fixing"
            )
        rate = clip(np.asarray(gearing * fixing + spread))
        return {}, _constant(float(nominal_accrual * rate)), exercise_into

    def amount(n_samples: int, states: Sequence[np.ndarray]) -> np.ndarray:
        z = states[0][0]
        p_start = model.discount_bond(ccy, t_fix, t_start, z)
        p_end = model.discount_bond(ccy, t_fix, t_end, z)
        forward = (p_start / p_end - 1.0) / tau
        return nominal_accrual * clip(gearing * forward + spread)

    required = {t_fix: (model.ir_index(ccy),)}
    return required, amount, exercise_into


def _ibor(cf: IborCoupon, ctx: _FlowContext):
    return _ibor_rate(cf, ctx, lambda r: r)


def _capped_floored_ibor(cf: CappedFlooredIborCoupon, ctx: _FlowContext):
    lower = -np.inf if cf.floor is None else cf.floor
    upper = np.inf if cf.cap is None else cf.cap
    return _ibor_rate(cf, ctx, lambda r: np.clip(r, lower, upper))


def _fx_linked(cf: FxLinkedCashflow, ctx: _FlowContext):
    model = ctx.model
    if model.time(cf.fixing_date) <= TIME_TOLERANCE:
        if cf.past_fixing is None:
            raise ValidationError(
                f"{ctx.leg_label}: FX fixing on {cf.fixing_date} has no past_fixing"
            )
        return {}, _constant(cf.foreign_amount * cf.past_fixing), ctx.pay_time

    foreign = model.currency_index(cf.foreign_currency)
    pay = ctx.currency_index
    if foreign == pay:
        return {}, _constant(cf.foreign_amount), ctx.pay_time
    # FX states are base currency per unit of currency; the base currency has none
    indices = tuple(model.fx_index(i) for i in (foreign, pay) if i != 0)
    t_fix = model.time(cf.fixing_date)
    foreign_amount = cf.foreign_amount

    def amount(n_samples: int, states: Sequence[np.ndarray]) -> np.ndarray:
        log_fx = states[0]
        pos = 0
        if foreign != 0:
            numerator = np.exp(log_fx[pos])
            pos += 1
        else:
            numerator = np.ones(n_samples)
        denominator = np.exp(log_fx[pos]) if pay != 0 else 1.0
        return foreign_amount * numerator / denominator

    return {t_fix: indices}, amount, ctx.pay_time


_CASHFLOW_BUILDERS: dict[type, Callable] = {
    SimpleCashflow: _simple,
    FixedRateCoupon: _fixed,
    IborCoupon: _ibor,
    CappedFlooredIborCoupon: _capped_floored_ibor,
    FxLinkedCashflow: _fx_linked,
}


def supported_cashflow_kinds() -> tuple[str, ...]:
    return tuple(cls.__name__ for cls in _CASHFLOW_BUILDERS)


def _merge_requirements(
    required: dict[float, tuple[int, ...]], pay_time: float
) -> tuple[tuple[float, ...], tuple[tuple[int, ...], ...]]:
    merged: dict[float, tuple[int, ...]] = {}
    for t, idx in sorted(required.items()):
        key = next((k for k in merged if abs(k - t) <= TIME_TOLERANCE), t)
        merged[key] = tuple(dict.fromkeys(merged.get(key, ()) + tuple(idx)))
    if not any(abs(k - pay_time) <= TIME_TOLERANCE for k in merged):
        merged[pay_time] = ()
    items = sorted(merged.items())
    return tuple(t for t, _ in items), tuple(idx for _, idx in items)


def build_cashflow_infos(instrument: MultiLegInstrument, model: PathModel) -> list[CashflowInfo]:
    """Convert every live cashflow of ``instrument`` into a :class:`CashflowInfo`.

    Flows paid on or before the pricing date are dropped. Fails with
    :class:`UnsupportedCashflowKindError` on a cashflow type without an amount
    formula and with :class:`ValidationError` on an unknown currency or a
    missing past fixing.
    """
    infos: list[CashflowInfo] = []
    dropped = 0
    has_exercise = instrument.has_exercise
    for leg_no, leg in enumerate(instrument.legs):
        ccy = model.currency_index(leg.currency)
        for cf_no, cf in enumerate(leg.cashflows):
            builder = _CASHFLOW_BUILDERS.get(type(cf))
            if builder is None:
                raise UnsupportedCashflowKindError(
                    f"trade {instrument.trade_id!r} leg {leg_no} cashflow {cf_no}: "
                    f"no amount formula for {type(cf).__name__}; "
                    f"supported kinds are {list(supported_cashflow_kinds())}"
                )
            pay_time = model.time(cf.pay_date)
            if pay_time <= TIME_TOLERANCE:
                dropped += 1
                continue
            ctx = _FlowContext(
                model=model,
                currency_index=ccy,
                pay_time=pay_time,
                leg_label=f"trade {instrument.trade_id!r} leg {leg_no} cashflow {cf_no}",
            )
            required, amount_function, exercise_into = builder(cf, ctx)
            times, indices = _merge_requirements(required, pay_time)
            infos.append(
                CashflowInfo(
                    leg_index=leg_no,
                    cashflow_index=cf_no,
                    pay_time=pay_time,
                    exercise_into_time=exercise_into if has_exercise and leg.exercisable else None,
                    pay_currency_index=ccy,
                    payer_sign=leg.payer_sign,
                    required_simulation_times=times,
                    state_indices=indices,
                    amount_function=amount_function,
                    requires_fx_conversion=ccy != 0,
                    kind=type(cf).__name__,
                )
            )
    logger.debug(
        "Trade %s: %d cashflows to simulate, %d already paid and dropped",
        instrument.trade_id,
        len(infos),
        dropped,
    )
    return infos


def cashflow_table(infos: Sequence[CashflowInfo]) -> pd.DataFrame:
    """Tabular summary of cashflow descriptors (one row per flow)."""
    rows = [
        {
            "leg": info.leg_index,
            "cashflow": info.cashflow_index,
            "kind": info.kind,
            "pay_time": info.pay_time,
            "exercise_into_time": info.exercise_into_time,
            "currency_index": info.pay_currency_index,
            "payer_sign": info.payer_sign,
            "fixing_times": len(info.required_simulation_times) - 1,
            "requires_fx_conversion": info.requires_fx_conversion,
        }
        for info in infos
    ]
    columns = [
        "leg",
        "cashflow",
        "kind",
        "pay_time",
        "exercise_into_time",
        "currency_index",
        "payer_sign",
        "fixing_times",
        "requires_fx_conversion",
    ]
    return pd.DataFrame(rows, columns=columns)
