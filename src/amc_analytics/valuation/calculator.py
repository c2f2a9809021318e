"""Reusable multi-leg AMC calculator for outer exposure simulations.

The calculator is built from fitted regression coefficients only. Each call
to :meth:`MultiLegAmcCalculator.simulate_path` evaluates polynomials on the
state of an externally simulated path: no regression, no simulation and no
state kept between calls.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any
import logging
import numpy as np
import pandas as pd

from ..enums import SettlementType
from ..exceptions import AmcAnalyticsError, MissingSimulationTimeError, ValidationError
from ..stochastic_processes import PathModel
from .regression import BasisSystem, RegressionCoefficients
from .time_index import TIME_TOLERANCE, SimulationTimeIndex

logger = logging.getLogger(__name__)

__all__ = ["MultiLegAmcCalculator", "PathValuation", "BatchValuation"]


@dataclass(frozen=True, slots=True)
class PathValuation:
    """Values of one (multi-sample) path.

    ``times[0]`` is 0.0 and ``values[0]`` the calibrated result value;
    ``values`` has shape ``(len(times), n_samples)``. ``exercised[k]`` tells
    whether a sample has exercised at or before the k-th exercise time.
    """

    times: np.ndarray
    values: np.ndarray
    exercised: np.ndarray
    path_id: Any = None

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            self.values,
            index=pd.Index(self.times, name="time"),
            columns=pd.RangeIndex(self.values.shape[1], name="sample"),
        )


@dataclass(frozen=True, slots=True)
class BatchValuation:
    """Results of :meth:`MultiLegAmcCalculator.simulate_paths` keyed by path id."""

    results: dict = field(default_factory=dict)
    errors: dict = field(default_factory=dict)

    @property
    def succeeded(self) -> list:
        return sorted(self.results, key=str)

    @property
    def failed(self) -> list:
        return sorted(self.errors, key=str)


class MultiLegAmcCalculator:
    """Exercise decisions and values of a calibrated multi-leg instrument on new paths.

    Parameters
    ==========
    model: PathModel
        Model the coefficients were fitted under (numeraire only).
    instrument_id: str
        Trade id, reported with per-path errors.
    basis: BasisSystem
        Regression basis shared by all coefficient sets.
    coefficients: sequence of RegressionCoefficients
        One entry per regression time, increasing in time.
    state_indices: tuple of int
        Model state components the regressions use (the slice an outer
        simulation must supply).
    settlement: SettlementType or None
        Settlement on exercise; ``None`` for instruments without exercise.
    result_value: float
        Calibrated value at the valuation date.
    initial_state: np.ndarray
        Model state at the valuation date.
    """

    def __init__(
        self,
        model: PathModel,
        instrument_id: str,
        basis: BasisSystem,
        coefficients: Sequence[RegressionCoefficients],
        state_indices: Sequence[int],
        settlement: SettlementType | None,
        result_value: float,
        initial_state: np.ndarray,
    ) -> None:
        self._model = model
        self.instrument_id = instrument_id
        self.basis = basis
        self.coefficients = tuple(coefficients)
        self.state_indices = tuple(int(i) for i in state_indices)
        self.settlement = settlement
        self.result_value = float(result_value)
        self.initial_state = np.array(initial_state, dtype=float)
        self.initial_state.setflags(write=False)
        self.base_currency = model.base_currency
        self.model_state_size = model.state_size

        if basis.dimension != len(self.state_indices):
            raise ValidationError("basis dimension must equal the number of state indices")
        self._regression_index = SimulationTimeIndex(c.time for c in self.coefficients)
        if len(self._regression_index) != len(self.coefficients):
            raise ValidationError("regression coefficients must have distinct times")
        self._by_position = tuple(sorted(self.coefficients, key=lambda c: c.time))
        self.exercise_times = np.array(
            [c.time for c in self._by_position if c.is_exercise_time], dtype=float
        )
        self.xva_times = np.array([c.time for c in self._by_position if c.is_xva_time], dtype=float)
        if self.exercise_times.size and settlement is None:
            raise ValidationError("an instrument with exercise times needs a settlement type")
        for c in self._by_position:
            n_done = int(np.sum(self.exercise_times <= c.time + TIME_TOLERANCE))
            if n_done == 0:
                continue
            if c.unconditional is None:
                raise ValidationError(
                    f"coefficients at time {c.time:.6f} after an exercise time need "
                    "unconditional coefficients"
                )
            if settlement is SettlementType.PHYSICAL and len(c.entered) != n_done:
                raise ValidationError(
                    f"physical settlement needs {n_done} entered coefficient sets at time "
                    f"{c.time:.6f}, got {len(c.entered)}"
                )
        self._numeraire_row = self.state_indices.index(model.ir_index(0))

    @property
    def has_exercise(self) -> bool:
        return self.exercise_times.size > 0

    @property
    def output_times(self) -> np.ndarray:
        return self._regression_index.times

    def __repr__(self) -> str:
        return (
            f"MultiLegAmcCalculator(instrument_id={self.instrument_id!r}, "
            f"base_currency={self.base_currency!r}, state_indices={self.state_indices}, "
            f"exercise_times={len(self.exercise_times)}, regression_times={len(self.coefficients)})"
        )

    # ------------------------------------------------------------------
    # Polynomial evaluation
    # ------------------------------------------------------------------

    def _coefficients_at(self, t: float) -> RegressionCoefficients:
        pos = self._regression_index.find(t)
        if pos is None:
            raise ValidationError(
                f"no regression coefficients at time {t:.10g} for instrument "
                f"{self.instrument_id!r}; calibrate with this time as a simulation date"
            )
        return self._by_position[pos]

    def _design(self, coeffs: RegressionCoefficients, state: np.ndarray) -> np.ndarray:
        return self.basis.design_matrix(coeffs.transform.apply(state))

    def _reduce(self, paths: np.ndarray) -> np.ndarray:
        n_state = paths.shape[1]
        if n_state == len(self.state_indices):
            return paths
        if n_state == self.model_state_size:
            return paths[:, list(self.state_indices), :]
        raise ValidationError(
            f"paths carry {n_state} state components; expected the full model state "
            f"({self.model_state_size}) or the calculator slice ({len(self.state_indices)})"
        )

    def exercise_decisions(
        self,
        path_index: SimulationTimeIndex,
        paths: np.ndarray,
        until: float,
        path_id: Any = None,
    ) -> np.ndarray:
        """Cumulative exercise indicator per exercise time, shape ``(n_exercise, n_samples)``.

        Only exercise times up to ``until`` are evaluated; later rows are
        ``False``. Exercise happens where the fitted exercise value strictly
        exceeds the fitted continuation value.
        """
        n_samples = paths.shape[-1]
        exercised = np.zeros((self.exercise_times.size, n_samples), dtype=bool)
        already = np.zeros(n_samples, dtype=bool)
        for k, t in enumerate(self.exercise_times):
            if t > until + TIME_TOLERANCE:
                break
            pos = path_index.find(t)
            if pos is None:
                raise MissingSimulationTimeError(
                    t,
                    instrument_id=self.instrument_id,
                    path_id=path_id,
                    detail="exercise time missing from path times",
                )
            coeffs = self._coefficients_at(t)
            design = self._design(coeffs, paths[pos])
            exercise_value = design @ coeffs.exercise_into
            continuation_value = design @ coeffs.continuation
            already = already | (exercise_value > continuation_value)
            exercised[k] = already
        return exercised

    # ------------------------------------------------------------------
    # Path evaluation
    # ------------------------------------------------------------------

    def simulate_path(
        self,
        path_times: Sequence[float],
        paths: np.ndarray,
        is_relevant_time: Sequence[bool] | None = None,
        sticky_close_out: bool = False,
        exercised: np.ndarray | None = None,
        path_id: Any = None,
        deflated: bool = False,
    ) -> PathValuation:
        """Value the instrument along one outer path.

        Parameters
        ==========
        path_times: sequence of float
            Strictly increasing positive times of the supplied path.
        paths: np.ndarray
            State at each path time, shape ``(len(path_times), n_state, n_samples)``
            or ``(len(path_times), n_state)`` for one sample. ``n_state`` is the
            full model state size or ``len(state_indices)``.
        is_relevant_time: sequence of bool, optional
            Path times for which a value is returned; all by default.
        sticky_close_out: bool
            Reuse the exercise decisions in ``exercised`` (from the non-sticky
            run of the same path) instead of recomputing them.
        exercised: np.ndarray, optional
            Cumulative exercise indicator ``(n_exercise, n_samples)``,
            required for sticky close-out runs only.
        path_id:
            Reported with errors.
        deflated: bool
            Return deflated values instead of base-currency values at each time.

        Returns
        =======
        PathValuation
        """
        times = np.asarray(path_times, dtype=float)
        if times.ndim != 1:
            raise ValidationError("path_times must be one-dimensional")
        if times.size and (times[0] <= 0.0 or np.any(np.diff(times) <= TIME_TOLERANCE)):
            raise ValidationError("path_times must be positive and strictly increasing")
        paths = np.asarray(paths, dtype=float)
        if paths.ndim == 2:
            paths = paths[:, :, None]
        if paths.ndim != 3 or paths.shape[0] != times.size:
            raise ValidationError(
                f"paths must have shape ({times.size}, n_state, n_samples), got {paths.shape}"
            )
        paths = self._reduce(paths)
        n_samples = paths.shape[-1]

        if is_relevant_time is None:
            relevant = np.ones(times.size, dtype=bool)
        else:
            relevant = np.asarray(is_relevant_time, dtype=bool)
            if relevant.shape != times.shape:
                raise ValidationError("is_relevant_time must have one flag per path time")
        output_positions = np.flatnonzero(relevant)
        last_output = float(times[output_positions[-1]]) if output_positions.size else 0.0
        path_index = SimulationTimeIndex(times)

        if sticky_close_out:
            if self.has_exercise:
                if exercised is None:
                    raise ValidationError(
                        "sticky close-out runs need the exercise indicator of the original run"
                    )
                exercised = np.asarray(exercised, dtype=bool)
                if exercised.shape != (self.exercise_times.size, n_samples):
                    raise ValidationError(
                        f"exercised must have shape ({self.exercise_times.size}, {n_samples}), "
                        f"got {exercised.shape}"
                    )
            else:
                exercised = np.zeros((0, n_samples), dtype=bool)
        else:
            if exercised is not None:
                raise ValidationError("exercised is only accepted for sticky close-out runs")
            exercised = self.exercise_decisions(path_index, paths, last_output, path_id)

        values = np.empty((output_positions.size + 1, n_samples))
        values[0] = self.result_value
        for row, pos in enumerate(output_positions, start=1):
            t = float(times[pos])
            state = paths[pos]
            value = self._value_at(t, state, exercised)
            if not deflated:
                value = value * self._model.numeraire(t, state[self._numeraire_row])
            values[row] = value

        return PathValuation(
            times=np.concatenate([[0.0], times[output_positions]]),
            values=values,
            exercised=exercised,
            path_id=path_id,
        )

    def _value_at(self, t: float, state: np.ndarray, exercised: np.ndarray) -> np.ndarray:
        coeffs = self._coefficients_at(t)
        design = self._design(coeffs, state)
        if not self.has_exercise:
            return design @ coeffs.underlying_dirty

        option = design @ coeffs.option
        done_by = self.exercise_times <= t + TIME_TOLERANCE
        if not np.any(done_by):
            return option
        last = int(np.flatnonzero(done_by)[-1])
        exercised_now = exercised[last]
        unconditional = design @ coeffs.unconditional
        if self.settlement is SettlementType.PHYSICAL:
            # flows entered at the sample's own exercise time, still to be paid
            entered = np.stack([design @ beta for beta in coeffs.entered])
            first = np.argmax(exercised[: last + 1], axis=0)
            held = entered[first, np.arange(entered.shape[1])] + unconditional
            return np.where(exercised_now, held, option)

        # cash settlement
        at_exercise_time = abs(self.exercise_times[last] - t) <= TIME_TOLERANCE
        if at_exercise_time:
            exercised_before = exercised[last - 1] if last > 0 else np.zeros_like(exercised_now)
            settlement_amount = design @ coeffs.exercise_into + unconditional
        else:
            exercised_before = exercised_now
            settlement_amount = option
        value = np.where(exercised_now, settlement_amount, option)
        return np.where(exercised_before, unconditional, value)

    def simulate_paths(
        self,
        path_times: Sequence[float],
        batch: Mapping[Any, np.ndarray] | Sequence[np.ndarray],
        is_relevant_time: Sequence[bool] | None = None,
        sticky_close_out: bool = False,
        exercised: Mapping[Any, np.ndarray] | None = None,
        deflated: bool = False,
        max_workers: int | None = None,
    ) -> BatchValuation:
        """Evaluate independent outer paths concurrently.

        ``batch`` maps path ids to path arrays (a sequence is keyed by position).
        A library error on one path is recorded in ``BatchValuation.errors``
        and does not affect the other paths.
        """
        items = dict(batch) if isinstance(batch, Mapping) else dict(enumerate(batch))
        exercised = exercised or {}
        results: dict = {}
        errors: dict = {}
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            future_to_path = {
                executor.submit(
                    self.simulate_path,
                    path_times,
                    paths,
                    is_relevant_time,
                    sticky_close_out,
                    exercised.get(path_id) if sticky_close_out else None,
                    path_id,
                    deflated,
                ): path_id
                for path_id, paths in items.items()
            }
            for future in as_completed(future_to_path):
                path_id = future_to_path[future]
                try:
                    results[path_id] = future.result()
                except AmcAnalyticsError as exc:
                    logger.warning(
                        "Trade %s path %r failed: %s", self.instrument_id, path_id, exc
                    )
                    errors[path_id] = exc
        logger.debug(
            "Trade %s batch: %d paths valued, %d failed",
            self.instrument_id,
            len(results),
            len(errors),
        )
        return BatchValuation(results=results, errors=errors)
