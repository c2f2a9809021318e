"""Tests for the cashflow descriptor builder."""

import datetime as dt
from dataclasses import dataclass

import numpy as np
import pytest

from amc_analytics.cashflows import (
    CappedFlooredIborCoupon,
    ExerciseSchedule,
    FixedRateCoupon,
    FxLinkedCashflow,
    IborCoupon,
    Leg,
    MultiLegInstrument,
    SimpleCashflow,
)
from amc_analytics.exceptions import UnsupportedCashflowKindError, ValidationError
from amc_analytics.valuation.cashflow_info import (
    CashflowInfo,
    build_cashflow_infos,
    cashflow_table,
    supported_cashflow_kinds,
)
from amc_analytics.stochastic_processes import CrossAssetModel, FXParams, LGMParams

from amc_analytics.tests.helpers import PRICING_DATE, flat_market, years_after


def _instrument(*legs, exercise=None):
    return MultiLegInstrument(trade_id="T1", legs=legs, exercise=exercise)


@dataclass(frozen=True)
class _InflationCashflow:
    pay_date: dt.date
    index_ratio: float


class _SubclassedCashflow(SimpleCashflow):
    pass


class TestBuildCashflowInfos:
    def test_fixed_flow_needs_only_pay_time(self, lgm_model):
        leg = Leg([SimpleCashflow(years_after(PRICING_DATE, 2), 100.0)], currency="EUR")
        (info,) = build_cashflow_infos(_instrument(leg), lgm_model)
        assert info.pay_time == pytest.approx(lgm_model.time(years_after(PRICING_DATE, 2)))
        assert info.required_simulation_times == (info.pay_time,)
        assert info.state_indices == ((),)
        assert info.exercise_into_time is None
        assert not info.requires_fx_conversion
        np.testing.assert_allclose(info.amount([np.empty((0, 3))], 3), 100.0)

    def test_ibor_adds_fixing_time_and_rate_state(self, lgm_model):
        start, end = years_after(PRICING_DATE, 1), years_after(PRICING_DATE, 2)
        leg = Leg([IborCoupon(pay_date=end, nominal=1.0, accrual_start=start, accrual_end=end)], "EUR")
        (info,) = build_cashflow_infos(_instrument(leg), lgm_model)
        t_fix = lgm_model.time(start)
        assert info.required_simulation_times == pytest.approx((t_fix, info.pay_time))
        assert info.state_indices == ((lgm_model.ir_index(0),), ())
        assert info.kind == "IborCoupon"

    def test_ibor_amount_is_simple_forward(self, zero_vol_model):
        start, end = years_after(PRICING_DATE, 1), years_after(PRICING_DATE, 2)
        cpn = IborCoupon(
            pay_date=end, nominal=100.0, accrual_start=start, accrual_end=end, spread=0.001
        )
        (info,) = build_cashflow_infos(_instrument(Leg([cpn], "EUR")), zero_vol_model)
        tau = cpn.index_fraction
        t0, t1 = zero_vol_model.time(start), zero_vol_model.time(end)
        forward = (np.exp(0.03 * (t1 - t0)) - 1.0) / tau
        amount = info.amount([np.zeros((1, 2)), np.empty((0, 2))], 2)
        np.testing.assert_allclose(amount, 100.0 * (forward + 0.001) * cpn.accrual_fraction)

    def test_capped_floored_clips_rate(self, zero_vol_model):
        start, end = years_after(PRICING_DATE, 1), years_after(PRICING_DATE, 2)
        capped = CappedFlooredIborCoupon(
            pay_date=end, nominal=100.0, accrual_start=start, accrual_end=end, cap=0.01
        )
        floored = CappedFlooredIborCoupon(
            pay_date=end, nominal=100.0, accrual_start=start, accrual_end=end, floor=0.05
        )
        infos = build_cashflow_infos(_instrument(Leg([capped, floored], "EUR")), zero_vol_model)
        states = [np.zeros((1, 1)), np.empty((0, 1))]
        assert float(infos[0].amount(states, 1)[0]) == pytest.approx(100.0 * 0.01 * capped.accrual_fraction)
        assert float(infos[1].amount(states, 1)[0]) == pytest.approx(100.0 * 0.05 * floored.accrual_fraction)

    def test_paid_flows_are_dropped(self, lgm_model):
        leg = Leg(
            [
                SimpleCashflow(PRICING_DATE - dt.timedelta(days=10), 1.0),
                SimpleCashflow(PRICING_DATE, 2.0),
                SimpleCashflow(years_after(PRICING_DATE, 1), 3.0),
            ],
            "EUR",
        )
        infos = build_cashflow_infos(_instrument(leg), lgm_model)
        assert [i.cashflow_index for i in infos] == [2]

    def test_past_fixing_is_used(self, lgm_model):
        start = PRICING_DATE - dt.timedelta(days=90)
        end = PRICING_DATE + dt.timedelta(days=92)
        cpn = IborCoupon(
            pay_date=end, nominal=1000.0, accrual_start=start, accrual_end=end, past_fixing=0.025
        )
        (info,) = build_cashflow_infos(_instrument(Leg([cpn], "EUR")), lgm_model)
        assert info.required_simulation_times == (info.pay_time,)
        np.testing.assert_allclose(
            info.amount([np.empty((0, 1))], 1), 1000.0 * 0.025 * cpn.accrual_fraction
        )

    def test_missing_past_fixing_raises(self, lgm_model):
        start = PRICING_DATE - dt.timedelta(days=90)
        end = PRICING_DATE + dt.timedelta(days=92)
        cpn = IborCoupon(pay_date=end, nominal=1000.0, accrual_start=start, accrual_end=end)
        with pytest.raises(ValidationError, match="past_fixing"):
            build_cashflow_infos(_instrument(Leg([cpn], "EUR")), lgm_model)

    def test_coupon_fixing_today_uses_initial_curve(self, lgm_model):
        end = PRICING_DATE + dt.timedelta(days=182)
        cpn = IborCoupon(pay_date=end, nominal=1000.0, accrual_start=PRICING_DATE, accrual_end=end)
        (info,) = build_cashflow_infos(_instrument(Leg([cpn], "EUR")), lgm_model)
        assert info.required_simulation_times == (info.pay_time,)
        tau = 182.0 / 365.0
        forward = (np.exp(0.03 * tau) - 1.0) / tau
        np.testing.assert_allclose(
            info.amount([np.empty((0, 1))], 1), 1000.0 * forward * tau, rtol=1e-10
        )

    def test_coupon_fixing_today_prefers_past_fixing(self, lgm_model):
        end = PRICING_DATE + dt.timedelta(days=182)
        cpn = IborCoupon(
            pay_date=end,
            nominal=1000.0,
            accrual_start=PRICING_DATE,
            accrual_end=end,
            past_fixing=0.05,
        )
        (info,) = build_cashflow_infos(_instrument(Leg([cpn], "EUR")), lgm_model)
        np.testing.assert_allclose(
            info.amount([np.empty((0, 1))], 1), 1000.0 * 0.05 * cpn.accrual_fraction
        )

    def test_unsupported_kind_raises(self, lgm_model):
        leg = Leg([_InflationCashflow(years_after(PRICING_DATE, 1), 1.02)], "EUR")
        with pytest.raises(UnsupportedCashflowKindError, match="_InflationCashflow"):
            build_cashflow_infos(_instrument(leg), lgm_model)

    def test_unsupported_kind_is_reported_even_if_paid(self, lgm_model):
        leg = Leg([_InflationCashflow(PRICING_DATE - dt.timedelta(days=1), 1.02)], "EUR")
        with pytest.raises(UnsupportedCashflowKindError):
            build_cashflow_infos(_instrument(leg), lgm_model)

    def test_dispatch_is_on_exact_type(self, lgm_model):
        leg = Leg([_SubclassedCashflow(years_after(PRICING_DATE, 1), 1.0)], "EUR")
        with pytest.raises(UnsupportedCashflowKindError, match="_SubclassedCashflow"):
            build_cashflow_infos(_instrument(leg), lgm_model)

    def test_unknown_currency_raises(self, lgm_model):
        leg = Leg([SimpleCashflow(years_after(PRICING_DATE, 1), 1.0)], "JPY")
        with pytest.raises(ValidationError, match="JPY"):
            build_cashflow_infos(_instrument(leg), lgm_model)

    def test_foreign_flow_flags_conversion(self, fx_model):
        leg = Leg([SimpleCashflow(years_after(PRICING_DATE, 1), 1.0)], "USD", payer=True)
        (info,) = build_cashflow_infos(_instrument(leg), fx_model)
        assert info.requires_fx_conversion
        assert info.pay_currency_index == 1
        assert info.payer_sign == -1.0

    def test_fx_linked_flow(self, fx_model):
        fixing = years_after(PRICING_DATE, 1)
        leg = Leg(
            [
                FxLinkedCashflow(
                    pay_date=fixing + dt.timedelta(days=2),
                    fixing_date=fixing,
                    foreign_amount=50.0,
                    foreign_currency="USD",
                )
            ],
            "EUR",
        )
        (info,) = build_cashflow_infos(_instrument(leg), fx_model)
        assert info.state_indices[0] == (fx_model.fx_index(1),)
        log_fx = np.log(np.array([[0.8, 1.25]]))
        np.testing.assert_allclose(info.amount([log_fx, np.empty((0, 2))], 2), [40.0, 62.5])

    def test_fx_linked_cross_currency(self):
        model = CrossAssetModel(
            markets=[flat_market("EUR", 0.02), flat_market("USD", 0.03), flat_market("GBP", 0.04)],
            ir_params=[LGMParams(mean_reversion=0.0, volatility=0.0)] * 3,
            fx_params=[FXParams(spot=0.9, volatility=0.1), FXParams(spot=1.2, volatility=0.1)],
        )
        fixing = years_after(PRICING_DATE, 1)
        leg = Leg(
            [
                FxLinkedCashflow(
                    pay_date=fixing, fixing_date=fixing, foreign_amount=120.0, foreign_currency="GBP"
                )
            ],
            "USD",
        )
        (info,) = build_cashflow_infos(_instrument(leg), model)
        # GBP state first, then the USD (pay currency) state
        assert info.state_indices == ((model.fx_index(2), model.fx_index(1)),)
        state = np.log(np.array([[1.2], [0.9]]))
        np.testing.assert_allclose(info.amount([state], 1), [120.0 * 1.2 / 0.9])

    def test_exercise_into_times(self, lgm_model):
        start, end = years_after(PRICING_DATE, 2), years_after(PRICING_DATE, 3)
        option_leg = Leg(
            [
                FixedRateCoupon(pay_date=end, nominal=1.0, rate=0.02, accrual_start=start, accrual_end=end),
                SimpleCashflow(end, 1.0),
            ],
            "EUR",
        )
        premium_leg = Leg([SimpleCashflow(years_after(PRICING_DATE, 1), 0.1)], "EUR", payer=True, exercisable=False)
        exercise = ExerciseSchedule(dates=(start,))
        infos = build_cashflow_infos(_instrument(option_leg, premium_leg, exercise=exercise), lgm_model)
        assert infos[0].exercise_into_time == pytest.approx(lgm_model.time(start))
        assert infos[1].exercise_into_time == pytest.approx(lgm_model.time(end))
        assert infos[2].exercise_into_time is None

    def test_supported_kinds(self):
        assert set(supported_cashflow_kinds()) == {
            "SimpleCashflow",
            "FixedRateCoupon",
            "IborCoupon",
            "CappedFlooredIborCoupon",
            "FxLinkedCashflow",
        }

    def test_cashflow_table(self, fx_model):
        legs = (
            Leg([SimpleCashflow(years_after(PRICING_DATE, 1), 1.0)], "EUR"),
            Leg([SimpleCashflow(years_after(PRICING_DATE, 2), 1.0)], "USD"),
        )
        table = cashflow_table(build_cashflow_infos(_instrument(*legs), fx_model))
        assert list(table["leg"]) == [0, 1]
        assert list(table["requires_fx_conversion"]) == [False, True]
        assert "pay_time" in table.columns


class TestCashflowInfoInvariants:
    def _info(self, **overrides):
        kwargs = dict(
            leg_index=0,
            cashflow_index=0,
            pay_time=2.0,
            exercise_into_time=None,
            pay_currency_index=0,
            payer_sign=1.0,
            required_simulation_times=(1.0, 2.0),
            state_indices=((0,), ()),
            amount_function=lambda n, s: np.ones(n),
        )
        kwargs.update(overrides)
        return CashflowInfo(**kwargs)

    def test_valid(self):
        assert self._info().pay_time == 2.0

    def test_required_time_after_pay_time(self):
        with pytest.raises(ValidationError, match="after its pay time"):
            self._info(required_simulation_times=(1.0, 3.0))

    def test_exercise_into_after_pay_time(self):
        with pytest.raises(ValidationError, match="exercise-into"):
            self._info(exercise_into_time=2.5)

    def test_bad_payer_sign(self):
        with pytest.raises(ValidationError, match="payer_sign"):
            self._info(payer_sign=2.0)

    def test_state_indices_length(self):
        with pytest.raises(ValidationError, match="one entry per"):
            self._info(state_indices=((0,),))
