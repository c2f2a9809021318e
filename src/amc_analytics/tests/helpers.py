"""Test helpers for building markets, models, instruments and reference prices."""

import datetime as dt

import numpy as np

from amc_analytics.cashflows import (
    ExerciseSchedule,
    FixedRateCoupon,
    IborCoupon,
    Leg,
    MultiLegInstrument,
)
from amc_analytics.enums import SettlementType
from amc_analytics.market_environment import FactorCorrelation, MarketData
from amc_analytics.rates import DiscountCurve
from amc_analytics.stochastic_processes import CrossAssetModel, FXParams, LGMParams

PRICING_DATE = dt.date(2025, 1, 1)
NOMINAL = 1_000_000.0


def years_after(date: dt.date, years: int) -> dt.date:
    return dt.date(date.year + years, date.month, date.day)


def flat_market(currency: str, rate: float, pricing_date: dt.date = PRICING_DATE) -> MarketData:
    """Flat continuously-compounded curve long enough for 30y trades."""
    return MarketData(pricing_date, DiscountCurve.flat(rate, end_time=40.0), currency)


def single_currency_model(
    rate: float = 0.03,
    mean_reversion: float = 0.03,
    volatility: float = 0.01,
    currency: str = "EUR",
    max_time_step: float = 0.25,
) -> CrossAssetModel:
    return CrossAssetModel(
        markets=[flat_market(currency, rate)],
        ir_params=[LGMParams(mean_reversion=mean_reversion, volatility=volatility)],
        max_time_step=max_time_step,
    )


def two_currency_model(
    base_rate: float = 0.03,
    foreign_rate: float = 0.045,
    fx_spot: float = 0.9,
    fx_vol: float = 0.10,
    ir_vol: float = 0.01,
    correlated: bool = True,
) -> CrossAssetModel:
    """EUR base, USD foreign; FX quoted as EUR per USD."""
    correlation = None
    if correlated:
        correlation = FactorCorrelation(
            np.array(
                [
                    [1.0, 0.5, -0.2],
                    [0.5, 1.0, 0.3],
                    [-0.2, 0.3, 1.0],
                ]
            ),
            ["IR:EUR", "IR:USD", "FX:USDEUR"],
        )
    return CrossAssetModel(
        markets=[flat_market("EUR", base_rate), flat_market("USD", foreign_rate)],
        ir_params=[
            LGMParams(mean_reversion=0.03, volatility=ir_vol),
            LGMParams(mean_reversion=0.02, volatility=ir_vol),
        ],
        fx_params=[FXParams(spot=fx_spot, volatility=fx_vol)],
        correlation=correlation,
    )


def swap_legs(
    nominal: float,
    fixed_rate: float,
    start_year: int,
    end_year: int,
    payer_fixed: bool = True,
    currency: str = "EUR",
    pricing_date: dt.date = PRICING_DATE,
) -> tuple[Leg, Leg]:
    """Annual fixed leg and annual Ibor leg over [start_year, end_year]."""
    periods = [
        (years_after(pricing_date, y), years_after(pricing_date, y + 1))
        for y in range(start_year, end_year)
    ]
    fixed = Leg(
        cashflows=[
            FixedRateCoupon(
                pay_date=end,
                nominal=nominal,
                rate=fixed_rate,
                accrual_start=start,
                accrual_end=end,
            )
            for start, end in periods
        ],
        currency=currency,
        payer=payer_fixed,
    )
    floating = Leg(
        cashflows=[
            IborCoupon(pay_date=end, nominal=nominal, accrual_start=start, accrual_end=end)
            for start, end in periods
        ],
        currency=currency,
        payer=not payer_fixed,
    )
    return fixed, floating


def par_rate(model: CrossAssetModel, start_year: int, end_year: int) -> float:
    """Par rate of an annual ACT/365F swap on the initial curve of the base currency."""
    curve = model.markets[0].discount_curve
    dates = [years_after(model.pricing_date, y) for y in range(start_year, end_year + 1)]
    times = np.array([model.time(d) for d in dates])
    dfs = curve.df(times)
    annuity = float(np.sum(np.diff(times) * dfs[1:]))
    return float((dfs[0] - dfs[-1]) / annuity)


def swaption(
    model: CrossAssetModel,
    nominal: float,
    fixed_rate: float,
    expiry_year: int,
    end_year: int,
    payer: bool = True,
    settlement: SettlementType = SettlementType.PHYSICAL,
    trade_id: str = "SWAPTION",
) -> MultiLegInstrument:
    fixed, floating = swap_legs(nominal, fixed_rate, expiry_year, end_year, payer_fixed=payer)
    return MultiLegInstrument(
        trade_id=trade_id,
        legs=(fixed, floating),
        exercise=ExerciseSchedule(
            dates=(years_after(model.pricing_date, expiry_year),), settlement=settlement
        ),
    )


def lgm_swaption_price(
    model: CrossAssetModel,
    nominal: float,
    fixed_rate: float,
    expiry_year: int,
    end_year: int,
    payer: bool = True,
    nodes: int = 120,
) -> float:
    """European swaption in the single-currency LGM model by Gauss-Hermite quadrature.

    With the swap starting at expiry T, the deflated exercise value is
    ``sum_j c_j P(0, T_j) exp(-H_j x - 0.5 H_j^2 zeta_T)`` with ``x ~ N(0, zeta_T)``.
    """
    curve = model.markets[0].discount_curve
    dates = [years_after(model.pricing_date, y) for y in range(expiry_year, end_year + 1)]
    times = np.array([model.time(d) for d in dates])
    taus = np.diff(times)
    sign = 1.0 if payer else -1.0
    weights = np.zeros(times.size)
    weights[0] = 1.0
    weights[-1] -= 1.0
    weights[1:] -= fixed_rate * taus
    weights *= sign * nominal

    zeta = model._zeta(0, times[0])
    H = model._H(0, times)
    dfs = curve.df(times)
    x, w = np.polynomial.hermite_e.hermegauss(nodes)
    state = np.sqrt(zeta) * x
    deflated = (
        weights[None, :]
        * dfs[None, :]
        * np.exp(-H[None, :] * state[:, None] - 0.5 * H[None, :] ** 2 * zeta)
    ).sum(axis=1)
    return float(np.sum(w * np.maximum(deflated, 0.0)) / np.sqrt(2.0 * np.pi))
