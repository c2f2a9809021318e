"""Tests for DiscountCurve construction, interpolation and derived rates."""

import datetime as dt
import warnings

import numpy as np
import pytest

from amc_analytics.exceptions import ValidationError
from amc_analytics.rates import DiscountCurve


# ---------------------------------------------------------------------------
# Construction / Validation
# ---------------------------------------------------------------------------


class TestDiscountCurveConstruction:
    def test_flat_curve(self):
        curve = DiscountCurve.flat(rate=0.05, end_time=1.0)
        assert curve.flat_rate == 0.05
        assert float(curve.df(0.0)) == pytest.approx(1.0)
        assert float(curve.df(1.0)) == pytest.approx(np.exp(-0.05))

    def test_flat_curve_steps(self):
        curve = DiscountCurve.flat(rate=0.05, end_time=2.0, steps=10)
        assert curve.times.size == 11
        assert curve.end_time == 2.0

    @pytest.mark.parametrize("end_time", [0.0, -1.0])
    def test_flat_curve_end_time(self, end_time):
        with pytest.raises(ValidationError, match="end_time must be positive"):
            DiscountCurve.flat(rate=0.05, end_time=end_time)

    def test_non_increasing_times(self):
        with pytest.raises(ValidationError, match="strictly increasing"):
            DiscountCurve(times=np.array([0.0, 0.5, 0.5]), dfs=np.array([1.0, 0.98, 0.96]))

    def test_negative_discount_factor(self):
        with pytest.raises(ValidationError, match="positive"):
            DiscountCurve(times=np.array([0.0, 1.0]), dfs=np.array([1.0, -0.5]))

    def test_shape_mismatch(self):
        with pytest.raises(ValidationError, match="equal length"):
            DiscountCurve(times=np.array([0.0, 1.0]), dfs=np.array([1.0]))

    def test_single_pillar(self):
        with pytest.raises(ValidationError, match="two pillars"):
            DiscountCurve(times=np.array([0.0]), dfs=np.array([1.0]))

    def test_df_above_one_warns(self):
        with pytest.warns(UserWarning, match="negative rates"):
            DiscountCurve(times=np.array([0.0, 1.0]), dfs=np.array([1.0, 1.01]))

    def test_inconsistent_flat_rate(self):
        with pytest.raises(ValidationError, match="flat_rate"):
            DiscountCurve(times=np.array([0.0, 1.0]), dfs=np.array([1.0, 0.9]), flat_rate=0.03)

    def test_arrays_are_read_only(self):
        curve = DiscountCurve.flat(rate=0.02, end_time=5.0)
        with pytest.raises(ValueError):
            curve.dfs[0] = 0.5

    def test_from_zero_rates(self):
        curve = DiscountCurve.from_zero_rates(np.array([0.0, 1.0, 2.0]), np.array([0.0, 0.02, 0.03]))
        np.testing.assert_allclose(curve.dfs, np.exp(-np.array([0.0, 0.02, 0.06])))

    def test_from_zero_rates_must_start_at_zero(self):
        with pytest.raises(ValidationError, match="start at 0"):
            DiscountCurve.from_zero_rates(np.array([0.5, 1.0]), np.array([0.01, 0.02]))

    def test_from_dates_adds_reference_pillar(self):
        reference = dt.date(2025, 1, 1)
        curve = DiscountCurve.from_dates(
            reference, [dt.date(2026, 1, 1), dt.date(2027, 1, 1)], [0.97, 0.94]
        )
        np.testing.assert_allclose(curve.times, [0.0, 1.0, 2.0])
        np.testing.assert_allclose(curve.dfs, [1.0, 0.97, 0.94])


# ---------------------------------------------------------------------------
# Interpolation and extrapolation
# ---------------------------------------------------------------------------


class TestDiscountCurveInterpolation:
    @pytest.fixture()
    def curve(self):
        return DiscountCurve(times=np.array([0.0, 1.0, 3.0]), dfs=np.array([1.0, 0.97, 0.90]))

    def test_pillars_are_reproduced(self, curve):
        np.testing.assert_allclose(curve.df(curve.times), curve.dfs)

    def test_log_linear_between_pillars(self, curve):
        expected = np.sqrt(0.97 * 0.90)
        assert float(curve.df(2.0)) == pytest.approx(expected)

    def test_vectorised(self, curve):
        assert curve.df(np.array([0.5, 1.5, 2.5])).shape == (3,)

    def test_right_extrapolation_extends_last_forward(self, curve):
        forward = np.log(0.97 / 0.90) / 2.0
        with pytest.warns(UserWarning, match="Extrapolating"):
            value = float(curve.df(5.0))
        assert value == pytest.approx(0.90 * np.exp(-forward * 2.0))

    def test_no_warning_inside_the_grid(self, curve):
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            curve.df(np.linspace(0.0, 3.0, 7))

    def test_flat_curve_has_no_horizon(self):
        curve = DiscountCurve.flat(rate=0.03, end_time=1.0)
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            assert float(curve.df(30.0)) == pytest.approx(np.exp(-0.9))


# ---------------------------------------------------------------------------
# Derived rates
# ---------------------------------------------------------------------------


class TestDerivedRates:
    def test_zero_rate_of_flat_curve(self):
        curve = DiscountCurve.flat(rate=0.04, end_time=10.0)
        np.testing.assert_allclose(curve.zero_rate(np.array([0.5, 5.0, 10.0])), 0.04)

    def test_zero_rate_requires_positive_time(self):
        curve = DiscountCurve.flat(rate=0.04, end_time=10.0)
        with pytest.raises(ValidationError, match="t > 0"):
            curve.zero_rate(0.0)

    def test_simple_forward(self):
        curve = DiscountCurve.flat(rate=0.04, end_time=10.0)
        expected = (np.exp(0.04 * 0.5) - 1.0) / 0.5
        assert curve.simple_forward(1.0, 1.5) == pytest.approx(expected)

    def test_simple_forward_requires_ordered_dates(self):
        curve = DiscountCurve.flat(rate=0.04, end_time=10.0)
        with pytest.raises(ValidationError, match="end > start"):
            curve.simple_forward(2.0, 2.0)
