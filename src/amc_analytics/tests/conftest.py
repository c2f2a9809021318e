"""Shared pytest fixtures for amc_analytics tests."""

import datetime as dt

import pytest

from amc_analytics.cashflows import (
    ExerciseSchedule,
    FixedRateCoupon,
    Leg,
    MultiLegInstrument,
    SimpleCashflow,
)
from amc_analytics.enums import SequenceType
from amc_analytics.stochastic_processes import CrossAssetModel
from amc_analytics.valuation import AmcParams

from amc_analytics.tests.helpers import (
    NOMINAL,
    PRICING_DATE,
    single_currency_model,
    swaption,
    two_currency_model,
    years_after,
)


# ---------------------------------------------------------------------------
# Scalar constants
# ---------------------------------------------------------------------------

RATE = 0.03


@pytest.fixture()
def pricing_date() -> dt.date:
    return PRICING_DATE


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


@pytest.fixture()
def lgm_model() -> CrossAssetModel:
    """Single-currency EUR LGM model on a flat 3% curve."""
    return single_currency_model(rate=RATE)


@pytest.fixture()
def zero_vol_model() -> CrossAssetModel:
    return single_currency_model(rate=RATE, volatility=0.0)


@pytest.fixture()
def fx_model() -> CrossAssetModel:
    """EUR base / USD foreign model with correlated factors."""
    return two_currency_model()


# ---------------------------------------------------------------------------
# Parameters
# ---------------------------------------------------------------------------


@pytest.fixture()
def amc_params() -> AmcParams:
    return AmcParams(
        calibration_samples=1000,
        calibration_seed=42,
        polynomial_order=2,
        calibration_sequence_type=SequenceType.MERSENNE_TWISTER,
    )


# ---------------------------------------------------------------------------
# Instruments
# ---------------------------------------------------------------------------


@pytest.fixture()
def payer_swaption(lgm_model: CrossAssetModel) -> MultiLegInstrument:
    """5y into 5y payer swaption struck at 3%."""
    return swaption(lgm_model, NOMINAL, 0.03, expiry_year=5, end_year=10)


@pytest.fixture()
def fixed_bond(pricing_date: dt.date) -> MultiLegInstrument:
    """Receiver 3y annual fixed coupons plus redemption, no optionality."""
    coupons = [
        FixedRateCoupon(
            pay_date=years_after(pricing_date, y + 1),
            nominal=NOMINAL,
            rate=0.04,
            accrual_start=years_after(pricing_date, y),
            accrual_end=years_after(pricing_date, y + 1),
        )
        for y in range(3)
    ]
    redemption = SimpleCashflow(pay_date=years_after(pricing_date, 3), amount=NOMINAL)
    return MultiLegInstrument(
        trade_id="BOND",
        legs=(Leg(cashflows=coupons + [redemption], currency="EUR"),),
    )


@pytest.fixture()
def bullet_option(pricing_date: dt.date):
    """Right at year 2 to receive a single amount paid at year 3."""

    def build(amount: float, settlement="physical") -> MultiLegInstrument:
        return MultiLegInstrument(
            trade_id="BULLET",
            legs=(
                Leg(
                    cashflows=[SimpleCashflow(pay_date=years_after(pricing_date, 3), amount=amount)],
                    currency="EUR",
                ),
            ),
            exercise=ExerciseSchedule(
                dates=(years_after(pricing_date, 2),), settlement=settlement
            ),
        )

    return build
