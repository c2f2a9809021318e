"""Parameter class for American Monte Carlo calibration and pricing.

The configuration surface mirrors the recognised engine options
(``calibrationSamples``, ``pricingSamples``, ``calibrationSeed``,
``pricingSeed``, ``basisPolynomialOrder``, ``basisPolynomialType``,
``sequenceType``, ``brownianOrdering``, ``directionIntegers``);
:meth:`AmcParams.from_mapping` accepts those keys as well as the snake_case
field names.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, fields
from typing import Any

from ..enums import BrownianOrdering, DirectionIntegers, PolynomialType, SequenceType
from ..exceptions import ConfigurationError, ValidationError

__all__ = ["AmcParams"]

_ENUM_FIELDS = {
    "polynomial_type": PolynomialType,
    "calibration_sequence_type": SequenceType,
    "pricing_sequence_type": SequenceType,
    "brownian_ordering": BrownianOrdering,
    "direction_integers": DirectionIntegers,
}

_CONFIG_KEYS = {
    "calibrationSamples": "calibration_samples",
    "pricingSamples": "pricing_samples",
    "calibrationSeed": "calibration_seed",
    "pricingSeed": "pricing_seed",
    "basisPolynomialOrder": "polynomial_order",
    "basisPolynomialType": "polynomial_type",
    "calibrationSequenceType": "calibration_sequence_type",
    "pricingSequenceType": "pricing_sequence_type",
    "brownianOrdering": "brownian_ordering",
    "directionIntegers": "direction_integers",
    "regressionRcond": "regression_rcond",
    "ridgeLambda": "ridge_lambda",
}


def _coerce_enum(enum_cls, value, name: str):
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        key = value.strip()
        for member in enum_cls:
            if key.lower() in (member.value.lower(), member.name.lower()):
                return member
        raise ConfigurationError(
            f"{name}: unknown value {value!r}; expected one of {[m.value for m in enum_cls]}"
        )
    raise ConfigurationError(
        f"{name} must be {enum_cls.__name__} enum or str, got {type(value).__name__}"
    )


@dataclass(frozen=True, slots=True)
class AmcParams:
    """Parameters for multi-leg American Monte Carlo valuation.

    Attributes
    ==========
    calibration_samples:
        Paths in the calibration (regression) batch. Default: 10000.
    pricing_samples:
        Paths in the optional out-of-sample pricing batch; 0 disables it.
    calibration_seed, pricing_seed:
        Seeds of the two batches.
    polynomial_order:
        Total degree of the regression basis. Typical range: 2-4. Default: 2.
    polynomial_type:
        Polynomial family of the basis (monomial, Laguerre, Hermite, Legendre,
        Chebyshev of the first or second kind).
    calibration_sequence_type, pricing_sequence_type:
        Pseudo-random or Sobol variates for each batch.
    brownian_ordering, direction_integers:
        Sobol path construction details passed through to the model.
    regression_rcond:
        Relative singular value threshold below which a regression is
        considered degenerate and replaced by the constant (mean) fit.
    ridge_lambda:
        Optional Tikhonov term added to the normal equations (0 = plain
        least squares).
    min_samples_per_basis_function:
        Calibration needs at least this many paths per basis function.
    std_error_warn_ratio:
        Warn when the standard error exceeds this fraction of ``|result_value|``.
        ``None`` disables the check.
    log_timings:
        Emit debug timing logs for calibration stages.
    """

    calibration_samples: int = 10_000
    pricing_samples: int = 0
    calibration_seed: int | None = 42
    pricing_seed: int | None = 17
    polynomial_order: int = 2
    polynomial_type: PolynomialType | str = PolynomialType.MONOMIAL
    calibration_sequence_type: SequenceType | str = SequenceType.MERSENNE_TWISTER
    pricing_sequence_type: SequenceType | str = SequenceType.MERSENNE_TWISTER
    brownian_ordering: BrownianOrdering | str = BrownianOrdering.STEPS
    direction_integers: DirectionIntegers | str = DirectionIntegers.JOE_KUO_D6
    regression_rcond: float = 1.0e-10
    ridge_lambda: float = 0.0
    min_samples_per_basis_function: int = 2
    std_error_warn_ratio: float | None = 0.1
    log_timings: bool = False

    def __post_init__(self):
        for name, enum_cls in _ENUM_FIELDS.items():
            object.__setattr__(self, name, _coerce_enum(enum_cls, getattr(self, name), name))
        for name in ("calibration_samples", "pricing_samples", "polynomial_order"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigurationError(f"{name} must be an int, got {type(value).__name__}")
        if self.calibration_samples < 1:
            raise ValidationError(
                f"calibration_samples must be >= 1, got {self.calibration_samples}"
            )
        if self.pricing_samples < 0:
            raise ValidationError(f"pricing_samples must be >= 0, got {self.pricing_samples}")
        if self.polynomial_order < 0:
            raise ValidationError(f"polynomial_order must be >= 0, got {self.polynomial_order}")
        if not (0.0 < self.regression_rcond < 1.0):
            raise ValidationError(
                f"regression_rcond must be in (0, 1), got {self.regression_rcond}"
            )
        if self.ridge_lambda < 0.0:
            raise ValidationError(f"ridge_lambda must be >= 0, got {self.ridge_lambda}")
        if self.min_samples_per_basis_function < 1:
            raise ValidationError(
                "min_samples_per_basis_function must be >= 1, got "
                f"{self.min_samples_per_basis_function}"
            )
        if self.std_error_warn_ratio is not None and self.std_error_warn_ratio <= 0.0:
            raise ValidationError("std_error_warn_ratio must be positive or None")

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> "AmcParams":
        """Build parameters from engine configuration keys or field names.

        ``sequenceType`` sets both the calibration and the pricing sequence
        type unless they are given separately. Values may be strings (as read
        from configuration files); numbers are converted.
        """
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        sequence_type = None
        for key, value in config.items():
            if key == "sequenceType":
                sequence_type = value
                continue
            name = _CONFIG_KEYS.get(key, key)
            if name not in known:
                raise ConfigurationError(f"unknown AMC parameter {key!r}")
            kwargs[name] = value
        if sequence_type is not None:
            kwargs.setdefault("calibration_sequence_type", sequence_type)
            kwargs.setdefault("pricing_sequence_type", sequence_type)

        for name in (
            "calibration_samples",
            "pricing_samples",
            "polynomial_order",
            "min_samples_per_basis_function",
        ):
            if name in kwargs:
                kwargs[name] = _as_int(kwargs[name], name)
        for name in ("calibration_seed", "pricing_seed"):
            if name in kwargs and kwargs[name] is not None:
                kwargs[name] = _as_int(kwargs[name], name)
        for name in ("regression_rcond", "ridge_lambda", "std_error_warn_ratio"):
            if name in kwargs and kwargs[name] is not None:
                try:
                    kwargs[name] = float(kwargs[name])
                except (TypeError, ValueError) as exc:
                    raise ConfigurationError(f"{name} must be numeric") from exc
        if "log_timings" in kwargs and isinstance(kwargs["log_timings"], str):
            kwargs["log_timings"] = kwargs["log_timings"].strip().lower() in ("true", "1", "yes")
        return cls(**kwargs)


def _as_int(value, name: str) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"{name} must be an integer, got bool")
    try:
        out = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from exc
    if isinstance(value, float) and out != value:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    return out
