"""Initial market and factor correlation inputs of the cross-asset model."""

from __future__ import annotations
from collections.abc import Mapping
from typing import Sequence
from dataclasses import dataclass, field
import datetime as dt
import numpy as np
from .rates import DiscountCurve
from .exceptions import ValidationError


@dataclass(frozen=True, slots=True)
class MarketData:
    """Initial market of one currency: valuation date, discount curve and currency code."""

    pricing_date: dt.date
    discount_curve: DiscountCurve
    currency: str

    def __post_init__(self) -> None:
        if not isinstance(self.pricing_date, dt.date):
            raise ValidationError(
                f"pricing_date must be a date or datetime, got {type(self.pricing_date).__name__}"
            )
        if not isinstance(self.discount_curve, DiscountCurve):
            raise ValidationError(
                f"discount_curve must be a DiscountCurve, got {type(self.discount_curve).__name__}"
            )
        if not isinstance(self.currency, str) or len(self.currency) != 3:
            raise ValidationError(f"currency must be a 3-letter code, got {self.currency!r}")


@dataclass(frozen=True, slots=True)
class FactorCorrelation:
    """Instantaneous correlation between named Brownian drivers.

    Factor names follow the model convention ``IR:<ccy>`` for the LGM factor
    of a currency and ``FX:<foreign><base>`` for an FX rate. The matrix may
    list the factors in any order; :meth:`reordered` returns it in the order
    a model needs.

    Parameters
    ----------
    correlation_matrix : np.ndarray, shape (n_factors, n_factors)
        Symmetric positive-definite matrix with unit diagonal.
    factor_names : Sequence[str]
        Name of row/column *i*.
    """

    correlation_matrix: np.ndarray
    factor_names: Sequence[str]
    _factor_index: dict[str, int] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        C = np.asarray(self.correlation_matrix, dtype=float)
        if C.ndim != 2 or C.shape[0] != C.shape[1]:
            raise ValidationError(f"correlation_matrix must be square, got shape {C.shape}")
        names = tuple(self.factor_names)
        if len(names) != C.shape[0]:
            raise ValidationError(
                f"{len(names)} factor names for a {C.shape[0]}x{C.shape[0]} correlation matrix"
            )
        if len(set(names)) != len(names):
            raise ValidationError("factor_names must contain unique entries")
        if not np.allclose(C, C.T, atol=1e-12):
            raise ValidationError("correlation_matrix must be symmetric")
        if not np.allclose(np.diag(C), 1.0, atol=1e-12):
            raise ValidationError("correlation_matrix must have a unit diagonal")
        if np.any(np.abs(C) > 1.0 + 1e-12):
            raise ValidationError("correlations must lie in [-1, 1]")
        try:
            np.linalg.cholesky(C)
        except np.linalg.LinAlgError as exc:
            raise ValidationError("correlation_matrix is not positive-definite") from exc

        C.setflags(write=False)
        object.__setattr__(self, "correlation_matrix", C)
        object.__setattr__(self, "factor_names", names)
        object.__setattr__(self, "_factor_index", {name: i for i, name in enumerate(names)})

    @classmethod
    def identity(cls, factor_names: Sequence[str]) -> "FactorCorrelation":
        """Uncorrelated factors."""
        return cls(np.eye(len(factor_names)), list(factor_names))

    @classmethod
    def from_pairs(
        cls, factor_names: Sequence[str], pairs: Mapping[tuple[str, str], float]
    ) -> "FactorCorrelation":
        """Build from pairwise correlations; unlisted pairs are uncorrelated.

        >>> FactorCorrelation.from_pairs(["IR:EUR", "IR:USD"], {("IR:EUR", "IR:USD"): 0.4}).rho("IR:USD", "IR:EUR")
        0.4
        """
        index = {name: i for i, name in enumerate(factor_names)}
        C = np.eye(len(index))
        for (first, second), value in pairs.items():
            if first not in index or second not in index:
                raise ValidationError(f"unknown factor in correlation pair ({first}, {second})")
            if first == second:
                raise ValidationError(f"self-correlation given for factor {first}")
            C[index[first], index[second]] = C[index[second], index[first]] = float(value)
        return cls(C, list(factor_names))

    def factor_index(self, name: str) -> int:
        """Return the integer index for *name*.

        Raises ``ValidationError`` if *name* is not in ``factor_names``.
        """
        try:
            return self._factor_index[name]
        except KeyError:
            raise ValidationError(
                f"Factor '{name}' not found in FactorCorrelation. "
                f"Available: {list(self.factor_names)}"
            ) from None

    def rho(self, first: str, second: str) -> float:
        """Correlation between two named factors."""
        return float(self.correlation_matrix[self.factor_index(first), self.factor_index(second)])

    def reordered(self, factor_names: Sequence[str]) -> np.ndarray:
        """Correlation matrix in the order of ``factor_names``, which must name every factor."""
        if len(factor_names) != len(self.factor_names):
            raise ValidationError(
                f"correlation covers {list(self.factor_names)}, model needs {list(factor_names)}"
            )
        order = [self.factor_index(name) for name in factor_names]
        return self.correlation_matrix[np.ix_(order, order)]
