"""Deflated base-currency value of simulated cashflows along paths."""

from __future__ import annotations

from collections.abc import Iterable
import numpy as np

from ..exceptions import ValidationError
from ..stochastic_processes import PathModel
from .cashflow_info import CashflowInfo
from .time_index import TIME_TOLERANCE, SimulationTimeIndex

__all__ = ["PathValueEvaluator"]


class PathValueEvaluator:
    """Evaluate cashflows on a block of simulated paths.

    ``path_values`` has shape ``(len(time_index), state_size, n_samples)`` and
    holds the model state at each indexed time; the state at time 0 is the
    model initial state. The value of a flow is

        payer_sign * amount * FX(pay -> base)(pay_time) / N(pay_time)

    i.e. the base-currency amount deflated to the valuation date. Evaluation
    has no side effects and may run in any order.
    """

    def __init__(self, model: PathModel, time_index: SimulationTimeIndex) -> None:
        self.model = model
        self.time_index = time_index
        self._numeraire_index = model.ir_index(0)

    def _check_shape(self, path_values: np.ndarray) -> None:
        if path_values.ndim != 3:
            raise ValidationError(
                f"path_values must have shape (n_times, state_size, n_samples), got {path_values.shape}"
            )
        if path_values.shape[0] != len(self.time_index):
            raise ValidationError(
                f"path_values has {path_values.shape[0]} times, index has {len(self.time_index)}"
            )
        if path_values.shape[1] != self.model.state_size:
            raise ValidationError(
                f"path_values state size {path_values.shape[1]} != model state size "
                f"{self.model.state_size}"
            )

    def state_at(self, path_values: np.ndarray, t: float) -> np.ndarray:
        """Model state at ``t``, shape ``(state_size, n_samples)``."""
        if t <= TIME_TOLERANCE:
            n_samples = path_values.shape[-1]
            return np.broadcast_to(
                self.model.initial_state[:, None], (self.model.state_size, n_samples)
            )
        return path_values[self.time_index.index(t)]

    def convert_to_base(
        self, amount: np.ndarray, currency_index: int, state: np.ndarray
    ) -> np.ndarray:
        """Amount in currency ``currency_index`` expressed in base currency."""
        if currency_index == 0:
            return np.asarray(amount, dtype=float)
        return amount * np.exp(state[self.model.fx_index(currency_index)])

    def convert_from_base(
        self, amount: np.ndarray, currency_index: int, state: np.ndarray
    ) -> np.ndarray:
        """Base-currency amount expressed in currency ``currency_index``."""
        if currency_index == 0:
            return np.asarray(amount, dtype=float)
        return amount * np.exp(-state[self.model.fx_index(currency_index)])

    def amount(self, cashflow: CashflowInfo, path_values: np.ndarray) -> np.ndarray:
        """Undiscounted pay-currency amount per sample (payer sign excluded)."""
        n_samples = path_values.shape[-1]
        states = [
            self.state_at(path_values, t)[list(idx)] if idx else np.empty((0, n_samples))
            for t, idx in zip(cashflow.required_simulation_times, cashflow.state_indices)
        ]
        return cashflow.amount(states, n_samples)

    def evaluate(self, cashflow: CashflowInfo, path_values: np.ndarray) -> np.ndarray:
        """Deflated base-currency value of ``cashflow`` per sample."""
        path_values = np.asarray(path_values, dtype=float)
        self._check_shape(path_values)
        amount = self.amount(cashflow, path_values)
        pay_state = self.state_at(path_values, cashflow.pay_time)
        base = self.convert_to_base(amount, cashflow.pay_currency_index, pay_state)
        numeraire = self.model.numeraire(cashflow.pay_time, pay_state[self._numeraire_index])
        return cashflow.payer_sign * base / numeraire

    def evaluate_total(
        self, cashflows: Iterable[CashflowInfo], path_values: np.ndarray
    ) -> np.ndarray:
        """Sum of :meth:`evaluate` over ``cashflows``."""
        total = np.zeros(np.shape(path_values)[-1])
        for cf in cashflows:
            total += self.evaluate(cf, path_values)
        return total
