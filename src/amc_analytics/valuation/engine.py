"""Calibration of multi-leg AMC regressions by backward induction.

``McMultiLegEngine`` draws a Monte Carlo batch from the model, walks the
exercise and simulation (xva) times backward and fits, at each of them,
polynomial regressions of the deflated underlying, exercise-into,
continuation, option and unconditional values on the model state, plus,
under physical settlement, the value of the flows held after each earlier
exercise time. The result is an immutable :class:`CalibrationResult`
owning the reusable
:class:`~amc_analytics.valuation.calculator.MultiLegAmcCalculator`.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
import datetime as dt
import logging
import numpy as np
import pandas as pd

from ..cashflows import MultiLegInstrument
from ..enums import SequenceType, SettlementType
from ..exceptions import (
    ConfigurationError,
    DegenerateRegressionError,
    InsufficientSamplesError,
)
from ..stochastic_processes import PathModel
from ..utils import log_timing
from .calculator import MultiLegAmcCalculator
from .cashflow_info import CashflowInfo, build_cashflow_infos
from .params import AmcParams
from .path_value import PathValueEvaluator
from .regression import (
    BasisSystem,
    RegressionCoefficients,
    StateTransform,
    constant_fit,
    least_squares_fit,
)
from .time_index import TIME_TOLERANCE, SimulationTimeIndex

logger = logging.getLogger(__name__)

__all__ = ["McMultiLegEngine", "CalibrationResult"]


def _warn_if_high_std_error(
    *,
    pv_pathwise: np.ndarray,
    pv_mean: float,
    params: AmcParams,
    label: str,
) -> float:
    """Return the MC standard error; log a warning if it is high relative to the PV."""
    n_paths = pv_pathwise.size
    if n_paths < 2:
        return 0.0
    std_error = float(np.std(pv_pathwise, ddof=1) / np.sqrt(n_paths))
    if params.std_error_warn_ratio is None:
        return std_error
    scale = max(abs(pv_mean), 1.0e-12)
    ratio = std_error / scale
    logger.debug("AMC %s std_error=%.6g ratio=%.6g paths=%d", label, std_error, ratio, n_paths)
    if ratio > params.std_error_warn_ratio:
        logger.warning(
            "AMC %s standard error high: std_error=%.6g ratio=%.6g (>%.3g) paths=%d",
            label,
            std_error,
            ratio,
            params.std_error_warn_ratio,
            n_paths,
        )
    return std_error


@dataclass(frozen=True, slots=True)
class CalibrationResult:
    """Outcome of :meth:`McMultiLegEngine.calibrate`.

    Attributes
    ==========
    result_value:
        Calibration-batch estimate of the instrument value (base currency,
        valuation date): the option value for instruments with exercise, the
        underlying value otherwise.
    underlying_value:
        Batch estimate of the value of all cashflows, ignoring exercise.
    standard_error:
        Monte Carlo standard error of ``result_value``.
    pricing_value:
        Out-of-sample value of the fitted exercise strategy on an independent
        batch, ``None`` when ``pricing_samples`` is 0.
    coefficients:
        Fitted coefficient sets per regression time, increasing in time.
    initial_state:
        Model state at the valuation date.
    calculator:
        Reusable calculator built from the coefficients.
    exercise_rates:
        Per exercise time, the fraction of calibration paths on which the
        fitted rule exercises.
    """

    result_value: float
    underlying_value: float
    standard_error: float
    pricing_value: float | None
    coefficients: tuple[RegressionCoefficients, ...]
    initial_state: np.ndarray
    calculator: MultiLegAmcCalculator
    exercise_rates: tuple[float, ...] = ()

    def to_frame(self) -> pd.DataFrame:
        """One row per regression time with flags, exercise rates and fallbacks."""
        rates = iter(self.exercise_rates)
        rows = []
        for c in self.coefficients:
            rows.append(
                {
                    "time": c.time,
                    "exercise_time": c.is_exercise_time,
                    "xva_time": c.is_xva_time,
                    "exercise_rate": next(rates) if c.is_exercise_time else np.nan,
                    "degenerate": ", ".join(c.degenerate),
                }
            )
        columns = ["time", "exercise_time", "xva_time", "exercise_rate", "degenerate"]
        return pd.DataFrame(rows, columns=columns).set_index("time")


@dataclass(frozen=True, slots=True)
class _BatchOutcome:
    pathwise: np.ndarray
    underlying: np.ndarray
    exercise_rates: tuple[float, ...]


class McMultiLegEngine:
    """American Monte Carlo engine for multi-leg instruments with Bermudan exercise.

    Construction builds and validates the cashflow descriptors and the
    simulation time grid (fails fast on unsupported cashflow kinds and
    unknown currencies). :meth:`calibrate` runs the Monte Carlo batch.

    Parameters
    ==========
    model: PathModel
        Path generation, numeraire and discount bond service.
    instrument: MultiLegInstrument
        Legs and optional exercise schedule.
    params: AmcParams, optional
        Calibration configuration; defaults to ``AmcParams()``.
    simulation_dates: sequence of dates
        Outer simulation (xva) dates at which the calculator must return values.
    """

    def __init__(
        self,
        model: PathModel,
        instrument: MultiLegInstrument,
        params: AmcParams | None = None,
        simulation_dates: Sequence[dt.date] = (),
    ) -> None:
        if params is None:
            params = AmcParams()
        if not isinstance(params, AmcParams):
            raise ConfigurationError(f"params must be AmcParams, got {type(params).__name__}")
        if not isinstance(instrument, MultiLegInstrument):
            raise ConfigurationError(
                f"instrument must be MultiLegInstrument, got {type(instrument).__name__}"
            )
        self.model = model
        self.instrument = instrument
        self.params = params
        self.cashflows: list[CashflowInfo] = build_cashflow_infos(instrument, model)

        exercise_times: list[float] = []
        if instrument.has_exercise:
            for d in instrument.exercise.dates:
                t = model.time(d)
                if t > TIME_TOLERANCE:
                    exercise_times.append(t)
                else:
                    logger.debug("Trade %s: exercise date %s has passed", instrument.trade_id, d)
        self.exercise_times = SimulationTimeIndex(exercise_times)
        self.xva_times = SimulationTimeIndex(
            t for t in (model.time(d) for d in simulation_dates) if t > TIME_TOLERANCE
        )
        self.regression_times = self.exercise_times.union(self.xva_times)
        required = [t for cf in self.cashflows for t in cf.required_simulation_times]
        self.time_index = self.regression_times.union(required)

        indices = {model.ir_index(0)}
        for cf in self.cashflows:
            indices.add(model.ir_index(cf.pay_currency_index))
            if cf.pay_currency_index != 0:
                indices.add(model.fx_index(cf.pay_currency_index))
            for idx in cf.state_indices:
                indices.update(idx)
        self.state_indices: tuple[int, ...] = tuple(sorted(indices))
        self.basis = BasisSystem(
            len(self.state_indices), params.polynomial_order, params.polynomial_type
        )
        self._evaluator = PathValueEvaluator(model, self.time_index)
        self._pay_times = np.array([cf.pay_time for cf in self.cashflows])
        self._exercise_into_times = np.array(
            [np.nan if cf.exercise_into_time is None else cf.exercise_into_time for cf in self.cashflows]
        )
        self._unconditional = np.array(
            [cf.exercise_into_time is None for cf in self.cashflows], dtype=bool
        )
        self._physical = (
            self.has_exercise and instrument.exercise.settlement is SettlementType.PHYSICAL
        )
        logger.debug(
            "Trade %s: %d cashflows, %d exercise times, %d xva times, %d simulation times, "
            "%d regression variables, basis size %d",
            instrument.trade_id,
            len(self.cashflows),
            len(self.exercise_times),
            len(self.xva_times),
            len(self.time_index),
            len(self.state_indices),
            self.basis.size,
        )

    @property
    def has_exercise(self) -> bool:
        return len(self.exercise_times) > 0

    def _check_samples(self) -> None:
        if len(self.regression_times) == 0:
            return
        needed = self.params.min_samples_per_basis_function * self.basis.size
        if self.params.calibration_samples < needed:
            raise InsufficientSamplesError(
                f"calibration_samples={self.params.calibration_samples} is below the "
                f"{needed} paths needed for a basis of size {self.basis.size} "
                f"({self.params.min_samples_per_basis_function} per basis function)"
            )

    def _simulate(self, n_samples: int, seed: int | None, sequence_type: SequenceType) -> np.ndarray:
        return self.model.generate_paths(
            self.time_index.times,
            n_samples,
            seed=seed,
            sequence_type=sequence_type,
            ordering=self.params.brownian_ordering,
            direction_integers=self.params.direction_integers,
        )

    def _cashflow_values(self, paths: np.ndarray) -> np.ndarray:
        n_samples = paths.shape[-1]
        values = np.empty((len(self.cashflows), n_samples))
        for k, cf in enumerate(self.cashflows):
            values[k] = self._evaluator.evaluate(cf, paths)
        return values

    def _regression_state(self, paths: np.ndarray, t: float) -> np.ndarray:
        return paths[self.time_index.index(t)][list(self.state_indices)]

    def _fit(
        self,
        design: np.ndarray,
        target: np.ndarray,
        label: str,
        t: float,
        degenerate: list[str],
    ) -> np.ndarray:
        try:
            return least_squares_fit(
                design,
                target,
                rcond=self.params.regression_rcond,
                ridge_lambda=self.params.ridge_lambda,
            )
        except DegenerateRegressionError as exc:
            logger.warning(
                "Trade %s: %s regression at t=%.6f is degenerate (%s); "
                "using the constant (mean) approximation",
                self.instrument.trade_id,
                label,
                t,
                exc,
            )
            degenerate.append(label)
            return constant_fit(target, self.basis.size)

    def _fit_entered(
        self,
        design: np.ndarray,
        cf_values: np.ndarray,
        after: np.ndarray,
        t: float,
        exercise_into_coeffs: np.ndarray | None,
        degenerate: list[str],
    ) -> list[np.ndarray]:
        """Flows entered at each exercise time up to ``t`` that are still to be paid at ``t``."""
        entered = []
        for k, t_ex in enumerate(self.exercise_times):
            if t_ex > t + TIME_TOLERANCE:
                break
            if abs(t_ex - t) <= TIME_TOLERANCE:
                entered.append(exercise_into_coeffs)
                continue
            with np.errstate(invalid="ignore"):
                held = after & (self._exercise_into_times >= t_ex - TIME_TOLERANCE)
            entered.append(
                self._fit(design, held.astype(float) @ cf_values, f"entered_{k}", t, degenerate)
            )
        return entered

    def _backward_induction(
        self,
        paths: np.ndarray,
        fitted: dict[float, RegressionCoefficients] | None = None,
    ) -> tuple[_BatchOutcome, list[RegressionCoefficients]]:
        """Realised option value per path, fitting coefficients unless ``fitted`` is given."""
        cf_values = self._cashflow_values(paths)
        n_samples = paths.shape[-1]
        underlying_total = cf_values.sum(axis=0)
        option = np.zeros(n_samples)
        exercise_rates: list[float] = []
        coefficients: list[RegressionCoefficients] = []

        for t in reversed(self.regression_times.times.tolist()):
            is_exercise = t in self.exercise_times
            is_xva = t in self.xva_times
            after = self._pay_times > t - TIME_TOLERANCE
            with np.errstate(invalid="ignore"):
                into = self._exercise_into_times >= t - TIME_TOLERANCE
            underlying_dirty = after.astype(float) @ cf_values
            unconditional = (after & self._unconditional).astype(float) @ cf_values

            state = self._regression_state(paths, t)
            if fitted is None:
                transform = StateTransform.fit(state)
            else:
                transform = fitted[t].transform
            design = self.basis.design_matrix(transform.apply(state))
            degenerate: list[str] = []

            exercise_into_coeffs = continuation_coeffs = None
            if is_exercise:
                exercise_value = into.astype(float) @ cf_values
                if fitted is None:
                    exercise_into_coeffs = self._fit(
                        design, exercise_value, "exercise_into", t, degenerate
                    )
                    continuation_coeffs = self._fit(design, option, "continuation", t, degenerate)
                else:
                    exercise_into_coeffs = fitted[t].exercise_into
                    continuation_coeffs = fitted[t].continuation
                exercise = design @ exercise_into_coeffs > design @ continuation_coeffs
                option = np.where(exercise, exercise_value, option)
                exercise_rates.append(float(np.mean(exercise)))

            if fitted is None:
                unconditional_coeffs = None
                entered: list[np.ndarray] = []
                if self.has_exercise:
                    unconditional_coeffs = self._fit(
                        design, unconditional, "unconditional", t, degenerate
                    )
                    if self._physical:
                        entered = self._fit_entered(
                            design, cf_values, after, t, exercise_into_coeffs, degenerate
                        )
                coefficients.append(
                    RegressionCoefficients(
                        time=t,
                        is_exercise_time=is_exercise,
                        is_xva_time=is_xva,
                        transform=transform,
                        underlying_dirty=self._fit(
                            design, underlying_dirty, "underlying_dirty", t, degenerate
                        ),
                        option=self._fit(design, option + unconditional, "option", t, degenerate),
                        exercise_into=exercise_into_coeffs,
                        continuation=continuation_coeffs,
                        unconditional=unconditional_coeffs,
                        entered=tuple(entered),
                        degenerate=tuple(degenerate),
                    )
                )

        if self.has_exercise:
            pathwise = option + (self._unconditional.astype(float) @ cf_values)
        else:
            pathwise = underlying_total
        coefficients.reverse()
        exercise_rates.reverse()
        outcome = _BatchOutcome(
            pathwise=pathwise,
            underlying=underlying_total,
            exercise_rates=tuple(exercise_rates),
        )
        return outcome, coefficients

    def calibrate(self) -> CalibrationResult:
        """Run the calibration batch and return the immutable result.

        Raises
        ======
        InsufficientSamplesError
            ``calibration_samples`` is below
            ``min_samples_per_basis_function * basis size``; detected before
            any path is drawn.
        """
        params = self.params
        trade_id = self.instrument.trade_id
        self._check_samples()

        with log_timing(logger, f"AMC calibration paths ({trade_id})", params.log_timings):
            paths = self._simulate(
                params.calibration_samples,
                params.calibration_seed,
                params.calibration_sequence_type,
            )
        with log_timing(logger, f"AMC backward induction ({trade_id})", params.log_timings):
            outcome, coefficients = self._backward_induction(paths)

        result_value = float(np.mean(outcome.pathwise))
        underlying_value = float(np.mean(outcome.underlying))
        standard_error = _warn_if_high_std_error(
            pv_pathwise=outcome.pathwise,
            pv_mean=result_value,
            params=params,
            label=f"calibration ({trade_id})",
        )
        logger.debug(
            "Trade %s calibrated: value=%.6g underlying=%.6g std_error=%.3g paths=%d",
            trade_id,
            result_value,
            underlying_value,
            standard_error,
            params.calibration_samples,
        )

        pricing_value = None
        if params.pricing_samples > 0:
            with log_timing(logger, f"AMC pricing batch ({trade_id})", params.log_timings):
                pricing_paths = self._simulate(
                    params.pricing_samples, params.pricing_seed, params.pricing_sequence_type
                )
                fitted = {c.time: c for c in coefficients}
                pricing_outcome, _ = self._backward_induction(pricing_paths, fitted=fitted)
            pricing_value = float(np.mean(pricing_outcome.pathwise))
            logger.debug(
                "Trade %s out-of-sample value=%.6g (calibration %.6g) paths=%d",
                trade_id,
                pricing_value,
                result_value,
                params.pricing_samples,
            )

        settlement = self.instrument.exercise.settlement if self.has_exercise else None
        calculator = MultiLegAmcCalculator(
            model=self.model,
            instrument_id=trade_id,
            basis=self.basis,
            coefficients=coefficients,
            state_indices=self.state_indices,
            settlement=settlement,
            result_value=result_value,
            initial_state=self.model.initial_state,
        )
        return CalibrationResult(
            result_value=result_value,
            underlying_value=underlying_value,
            standard_error=standard_error,
            pricing_value=pricing_value,
            coefficients=tuple(coefficients),
            initial_state=np.array(self.model.initial_state, dtype=float),
            calculator=calculator,
            exercise_rates=outcome.exercise_rates,
        )
