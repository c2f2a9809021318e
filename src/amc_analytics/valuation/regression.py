"""Polynomial basis systems and least-squares fits for American Monte Carlo."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from itertools import product
import logging
import numpy as np
from numpy.polynomial import chebyshev, hermite_e, laguerre, legendre, polynomial

from ..enums import PolynomialType
from ..exceptions import DegenerateRegressionError, ValidationError

logger = logging.getLogger(__name__)

__all__ = [
    "BasisSystem",
    "StateTransform",
    "RegressionCoefficients",
    "least_squares_fit",
    "constant_fit",
]

# Standardised inputs below this spread are treated as constant
_MIN_SCALE = 1.0e-12


def _chebyshev_2nd_vander(x: np.ndarray, deg: int) -> np.ndarray:
    """Chebyshev polynomials of the second kind ``U_0..U_deg``.

    ``U_0 = 1``, ``U_1 = 2x``, ``U_{k+1} = 2x U_k - U_{k-1}``.
    """
    x = np.asarray(x, dtype=float)
    cols: list[np.ndarray] = [np.ones_like(x)]
    if deg >= 1:
        cols.append(2.0 * x)
    for k in range(1, deg):
        cols.append(2.0 * x * cols[k] - cols[k - 1])
    return np.stack(cols, axis=-1)


# Maps PolynomialType → one-dimensional pseudo-Vandermonde builder (n,) -> (n, deg+1)
_VANDER: dict[PolynomialType, Callable[[np.ndarray, int], np.ndarray]] = {
    PolynomialType.MONOMIAL: polynomial.polyvander,
    PolynomialType.LAGUERRE: laguerre.lagvander,
    PolynomialType.HERMITE: hermite_e.hermevander,
    PolynomialType.LEGENDRE: legendre.legvander,
    PolynomialType.CHEBYSHEV: chebyshev.chebvander,
    PolynomialType.CHEBYSHEV_2ND: _chebyshev_2nd_vander,
}


class BasisSystem:
    """Total-degree multivariate polynomial basis.

    The basis holds every product ``p_{m_1}(x_1) ... p_{m_d}(x_d)`` with
    ``m_1 + ... + m_d <= order`` of the chosen one-dimensional family,
    ordered by total degree. The first function is the constant 1 for every
    family, so a constant approximation is ``[c, 0, ..., 0]``.
    """

    def __init__(self, dimension: int, order: int, polynomial_type: PolynomialType) -> None:
        if dimension < 1:
            raise ValidationError(f"basis dimension must be >= 1, got {dimension}")
        if order < 0:
            raise ValidationError(f"basis order must be >= 0, got {order}")
        if polynomial_type not in _VANDER:
            raise ValidationError(f"Unsupported polynomial type: {polynomial_type}")
        self.dimension = dimension
        self.order = order
        self.polynomial_type = polynomial_type
        indices = [m for m in product(range(order + 1), repeat=dimension) if sum(m) <= order]
        indices.sort(key=lambda m: (sum(m), tuple(-k for k in m)))
        self.multi_indices: tuple[tuple[int, ...], ...] = tuple(indices)
        self._vander = _VANDER[polynomial_type]

    @property
    def size(self) -> int:
        return len(self.multi_indices)

    def __repr__(self) -> str:
        return (
            f"BasisSystem(dimension={self.dimension}, order={self.order}, "
            f"polynomial_type={self.polynomial_type.value})"
        )

    def design_matrix(self, x: np.ndarray) -> np.ndarray:
        """Evaluate every basis function at ``x`` of shape ``(dimension, n)``.

        Returns
        -------
        np.ndarray, shape (n, size)
        """
        x = np.atleast_2d(np.asarray(x, dtype=float))
        if x.shape[0] != self.dimension:
            raise ValidationError(
                f"expected {self.dimension} regression variables, got {x.shape[0]}"
            )
        vanders = [self._vander(x[k], self.order) for k in range(self.dimension)]
        n = x.shape[1]
        out = np.empty((n, self.size))
        for col, m in enumerate(self.multi_indices):
            value = np.ones(n)
            for k, degree in enumerate(m):
                if degree:
                    value = value * vanders[k][:, degree]
            out[:, col] = value
        return out


@dataclass(frozen=True, slots=True)
class StateTransform:
    """Affine standardisation ``(x - shift) / scale`` fitted on the calibration batch."""

    shift: np.ndarray
    scale: np.ndarray

    @classmethod
    def fit(cls, x: np.ndarray) -> "StateTransform":
        x = np.atleast_2d(np.asarray(x, dtype=float))
        shift = x.mean(axis=1)
        scale = np.maximum(x.std(axis=1), _MIN_SCALE)
        return cls(shift=shift, scale=scale)

    def apply(self, x: np.ndarray) -> np.ndarray:
        x = np.atleast_2d(np.asarray(x, dtype=float))
        return (x - self.shift[:, None]) / self.scale[:, None]


def least_squares_fit(
    design: np.ndarray,
    target: np.ndarray,
    *,
    rcond: float,
    ridge_lambda: float = 0.0,
) -> np.ndarray:
    """Least-squares coefficients of ``target`` on the columns of ``design``.

    Raises :class:`DegenerateRegressionError` when the numerical rank of
    ``design`` (singular values above ``rcond * s_max``) is below the number
    of columns, or when the fit is not finite.
    """
    n, p = design.shape
    if target.shape != (n,):
        raise ValidationError(f"target must have shape ({n},), got {target.shape}")
    if n < p:
        raise DegenerateRegressionError(f"{n} samples for {p} basis functions")
    singular_values = np.linalg.svd(design, compute_uv=False)
    s_max = float(singular_values[0]) if singular_values.size else 0.0
    rank = int(np.sum(singular_values > rcond * s_max)) if s_max > 0.0 else 0
    if rank < p:
        raise DegenerateRegressionError(
            f"design matrix rank {rank} < basis size {p} (rcond={rcond:g})"
        )
    if ridge_lambda > 0.0:
        # Ridge solve:  beta = (X^T X + lambda I)^{-1} X^T y
        beta = np.linalg.solve(design.T @ design + ridge_lambda * np.eye(p), design.T @ target)
    else:
        beta, *_ = np.linalg.lstsq(design, target, rcond=None)
    if not np.all(np.isfinite(beta)):
        raise DegenerateRegressionError("regression coefficients are not finite")
    return beta


def constant_fit(target: np.ndarray, size: int) -> np.ndarray:
    """Coefficients of the constant (batch mean) approximation."""
    beta = np.zeros(size)
    beta[0] = float(np.mean(target))
    return beta


@dataclass(frozen=True, slots=True)
class RegressionCoefficients:
    """Fitted coefficient sets at one regression time.

    ``underlying_dirty`` and ``option`` exist at every regression time;
    ``exercise_into`` and ``continuation`` only at exercise times. For
    instruments with exercise, ``unconditional`` fits the flows of
    non-exercisable legs still to be paid, and ``entered[k]`` (physical
    settlement only) the flows entered by exercising at the k-th exercise
    time at or before this time that are still to be paid. All values are
    deflated (valuation-date units). ``degenerate`` names the fits that fell
    back to the constant approximation.
    """

    time: float
    is_exercise_time: bool
    is_xva_time: bool
    transform: StateTransform
    underlying_dirty: np.ndarray
    option: np.ndarray
    exercise_into: np.ndarray | None = None
    continuation: np.ndarray | None = None
    unconditional: np.ndarray | None = None
    entered: tuple[np.ndarray, ...] = ()
    degenerate: tuple[str, ...] = field(default=())

    def __post_init__(self) -> None:
        if self.is_exercise_time and (self.exercise_into is None or self.continuation is None):
            raise ValidationError(
                f"exercise time {self.time:.6f} needs exercise_into and continuation coefficients"
            )
        for name in ("underlying_dirty", "option", "exercise_into", "continuation", "unconditional"):
            value = getattr(self, name)
            if value is not None:
                arr = np.array(value, dtype=float)
                arr.setflags(write=False)
                object.__setattr__(self, name, arr)
        entered = []
        for value in self.entered:
            arr = np.array(value, dtype=float)
            arr.setflags(write=False)
            entered.append(arr)
        object.__setattr__(self, "entered", tuple(entered))
