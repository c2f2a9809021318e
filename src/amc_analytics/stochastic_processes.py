"Multi-currency IR-FX path simulation for AMC valuation"

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence
import datetime as dt
import logging
import numpy as np

from .enums import BrownianOrdering, DirectionIntegers, SequenceType
from .exceptions import ValidationError
from .market_environment import FactorCorrelation, MarketData
from .random_numbers import standard_normals
from .utils import calculate_year_fraction

logger = logging.getLogger(__name__)

__all__ = [
    "LGMParams",
    "FXParams",
    "PathModel",
    "CrossAssetModel",
]

_TINY_KAPPA = 1.0e-8


@dataclass(frozen=True, slots=True, kw_only=True)
class LGMParams:
    """Linear Gauss-Markov (Hull-White) parameters of one currency.

    Constant mean reversion ``kappa`` and short-rate volatility ``sigma``
    give ``H(t) = (1 - exp(-kappa t)) / kappa`` and
    ``zeta(t) = sigma^2 (exp(2 kappa t) - 1) / (2 kappa)``.
    """

    mean_reversion: float
    volatility: float

    def __post_init__(self) -> None:
        if not np.isfinite(self.mean_reversion):
            raise ValidationError("mean_reversion must be finite")
        if not np.isfinite(self.volatility) or self.volatility < 0.0:
            raise ValidationError("volatility must be finite and >= 0")


@dataclass(frozen=True, slots=True, kw_only=True)
class FXParams:
    """Lognormal FX rate, quoted as units of base currency per unit of foreign currency."""

    spot: float
    volatility: float

    def __post_init__(self) -> None:
        if not np.isfinite(self.spot) or self.spot <= 0.0:
            raise ValidationError("FX spot must be positive and finite")
        if not np.isfinite(self.volatility) or self.volatility < 0.0:
            raise ValidationError("FX volatility must be finite and >= 0")


class PathModel(Protocol):
    """Path generation and discounting service consumed by the AMC engine."""

    currencies: tuple[str, ...]
    state_size: int
    initial_state: np.ndarray
    pricing_date: dt.date

    @property
    def base_currency(self) -> str: ...

    def time(self, date: dt.date) -> float: ...

    def currency_index(self, currency: str) -> int: ...

    def ir_index(self, currency_index: int) -> int: ...

    def fx_index(self, currency_index: int) -> int: ...

    def numeraire(self, t: float, z: np.ndarray) -> np.ndarray: ...

    def discount_bond(self, currency_index: int, t: float, T: float, z: np.ndarray) -> np.ndarray: ...

    def generate_paths(
        self,
        times: np.ndarray,
        n_samples: int,
        *,
        seed: int | None,
        sequence_type: SequenceType,
        ordering: BrownianOrdering,
        direction_integers: DirectionIntegers,
    ) -> np.ndarray: ...


class CrossAssetModel:
    """Cross-currency model: one LGM factor per currency, lognormal FX per foreign currency.

    The state vector is ``[z_0, ..., z_k, ln x_1, ..., ln x_k]`` where ``z_i`` is
    the LGM state of currency *i* (index 0 is the base currency) and ``x_i``
    the FX rate of foreign currency *i* in base currency units. Paths are
    simulated under the base-currency LGM measure, whose numeraire is

        N(t) = exp(H_0(t) z_0 + 0.5 H_0(t)^2 zeta_0(t)) / P_0(0, t)

    so that ``z_0`` is a driftless Gaussian and deflated base-currency prices
    are martingales. Foreign states and FX rates carry the measure-change
    drifts

        dz_i = (-H_i a_i^2 + H_0 a_0 a_i rho(z_0, z_i) - s_i a_i rho(z_i, x_i)) dt + a_i dW
        d ln x_i = (r_0 - r_i - s_i^2 / 2 + s_i H_0 a_0 rho(z_0, x_i)) dt + s_i dW

    and are discretised with an Euler scheme on a grid refined to
    ``max_time_step``. The base-currency state is simulated exactly.

    Parameters
    ==========
    markets: sequence of MarketData
        Initial market per currency; the first entry is the base currency.
    ir_params: sequence of LGMParams
        One entry per currency, same order as ``markets``.
    fx_params: sequence of FXParams
        One entry per foreign currency (``markets[1:]``).
    correlation: FactorCorrelation, optional
        Correlation of the factors named ``IR:<ccy>`` and ``FX:<ccy><base>``;
        identity when omitted. Factor order in the matrix is free.
    max_time_step: float
        Largest Euler step in years.
    """

    def __init__(
        self,
        markets: Sequence[MarketData],
        ir_params: Sequence[LGMParams],
        fx_params: Sequence[FXParams] = (),
        correlation: FactorCorrelation | None = None,
        max_time_step: float = 0.25,
    ) -> None:
        if not markets:
            raise ValidationError("at least one currency market is required")
        if len(ir_params) != len(markets):
            raise ValidationError(
                f"ir_params length ({len(ir_params)}) must match markets ({len(markets)})"
            )
        if len(fx_params) != len(markets) - 1:
            raise ValidationError(
                f"fx_params length ({len(fx_params)}) must be number of foreign currencies "
                f"({len(markets) - 1})"
            )
        currencies = tuple(m.currency for m in markets)
        if len(set(currencies)) != len(currencies):
            raise ValidationError(f"duplicate currencies in model: {currencies}")
        pricing_date = markets[0].pricing_date
        if any(m.pricing_date != pricing_date for m in markets):
            raise ValidationError("all markets must share the same pricing_date")
        if not (max_time_step > 0.0):
            raise ValidationError("max_time_step must be positive")

        self.markets = tuple(markets)
        self.currencies = currencies
        self.pricing_date = pricing_date
        self.ir_params = tuple(ir_params)
        self.fx_params = tuple(fx_params)
        self.max_time_step = float(max_time_step)

        n_ccy = len(currencies)
        self.state_size = 2 * n_ccy - 1
        self.factor_names = [f"IR:{c}" for c in currencies] + [
            f"FX:{c}{currencies[0]}" for c in currencies[1:]
        ]
        if correlation is None:
            correlation = FactorCorrelation.identity(self.factor_names)
        self.correlation = correlation
        self._rho = correlation.reordered(self.factor_names)
        self._cholesky = np.linalg.cholesky(self._rho)

        initial = np.zeros(self.state_size)
        for i, fx in enumerate(self.fx_params, start=1):
            initial[self.fx_index(i)] = np.log(fx.spot)
        self.initial_state = initial

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    @property
    def base_currency(self) -> str:
        return self.currencies[0]

    def time(self, date: dt.date) -> float:
        """Year fraction (ACT/365F) from the pricing date."""
        return calculate_year_fraction(self.pricing_date, date)

    def currency_index(self, currency: str) -> int:
        try:
            return self.currencies.index(currency)
        except ValueError:
            raise ValidationError(
                f"currency {currency!r} not in model currencies {list(self.currencies)}"
            ) from None

    def ir_index(self, currency_index: int) -> int:
        if not 0 <= currency_index < len(self.currencies):
            raise ValidationError(f"currency index {currency_index} out of range")
        return currency_index

    def fx_index(self, currency_index: int) -> int:
        if not 1 <= currency_index < len(self.currencies):
            raise ValidationError(
                f"no FX state for currency index {currency_index} (base currency or out of range)"
            )
        return len(self.currencies) + currency_index - 1

    # ------------------------------------------------------------------
    # LGM functions
    # ------------------------------------------------------------------

    def _H(self, i: int, t: float | np.ndarray) -> np.ndarray:
        kappa = self.ir_params[i].mean_reversion
        t = np.asarray(t, dtype=float)
        if abs(kappa) < _TINY_KAPPA:
            return t
        return (1.0 - np.exp(-kappa * t)) / kappa

    def _H_prime(self, i: int, t: float) -> float:
        return float(np.exp(-self.ir_params[i].mean_reversion * t))

    def _alpha(self, i: int, t: float) -> float:
        p = self.ir_params[i]
        return float(p.volatility * np.exp(p.mean_reversion * t))

    def _zeta(self, i: int, t: float) -> float:
        p = self.ir_params[i]
        if abs(p.mean_reversion) < _TINY_KAPPA:
            return p.volatility**2 * t
        return p.volatility**2 * np.expm1(2.0 * p.mean_reversion * t) / (2.0 * p.mean_reversion)

    def _P0(self, i: int, t: float | np.ndarray) -> np.ndarray:
        return self.markets[i].discount_curve.df(t)

    def numeraire(self, t: float, z: np.ndarray) -> np.ndarray:
        """Base-currency LGM numeraire at time ``t`` for base states ``z``."""
        H = float(self._H(0, t))
        zeta = self._zeta(0, t)
        z = np.asarray(z, dtype=float)
        return np.exp(H * z + 0.5 * H * H * zeta) / float(self._P0(0, t))

    def discount_bond(self, currency_index: int, t: float, T: float, z: np.ndarray) -> np.ndarray:
        """Zero bond ``P_i(t, T)`` in currency ``currency_index`` given its LGM state ``z``."""
        if T < t:
            raise ValidationError(f"bond maturity {T} precedes observation time {t}")
        i = currency_index
        Ht = float(self._H(i, t))
        HT = float(self._H(i, T))
        zeta = self._zeta(i, t)
        z = np.asarray(z, dtype=float)
        ratio = float(self._P0(i, T)) / float(self._P0(i, t))
        return ratio * np.exp(-(HT - Ht) * z - 0.5 * (HT * HT - Ht * Ht) * zeta)

    # ------------------------------------------------------------------
    # Path generation
    # ------------------------------------------------------------------

    def _refined_grid(self, times: np.ndarray) -> np.ndarray:
        grid = [0.0]
        for t in times:
            start = grid[-1]
            n_sub = max(1, int(np.ceil((t - start) / self.max_time_step - 1.0e-12)))
            grid.extend(start + (t - start) * np.arange(1, n_sub + 1) / n_sub)
            grid[-1] = float(t)
        return np.asarray(grid)

    def generate_paths(
        self,
        times: np.ndarray,
        n_samples: int,
        *,
        seed: int | None = None,
        sequence_type: SequenceType = SequenceType.MERSENNE_TWISTER,
        ordering: BrownianOrdering = BrownianOrdering.STEPS,
        direction_integers: DirectionIntegers = DirectionIntegers.JOE_KUO_D6,
    ) -> np.ndarray:
        """Simulate the joint state at the requested times.

        Parameters
        ==========
        times: np.ndarray
            Strictly increasing positive year fractions.
        n_samples: int
            Number of paths.

        Returns
        =======
        paths: np.ndarray
            Shape ``(len(times), state_size, n_samples)``.
        """
        times = np.asarray(times, dtype=float)
        if times.ndim != 1:
            raise ValidationError("times must be a 1-D array")
        if n_samples < 1:
            raise ValidationError(f"n_samples must be >= 1, got {n_samples}")
        out = np.empty((times.size, self.state_size, n_samples))
        if times.size == 0:
            return out
        if times[0] <= 0.0 or np.any(np.diff(times) <= 0.0):
            raise ValidationError("times must be positive and strictly increasing")

        grid = self._refined_grid(times)
        n_steps = grid.size - 1
        n_factors = self.state_size
        normals = standard_normals(
            n_factors,
            n_steps,
            n_samples,
            seed=seed,
            sequence_type=sequence_type,
            ordering=ordering,
            direction_integers=direction_integers,
            step_times=grid[1:],
        )
        logger.debug(
            "CrossAssetModel paths=%d steps=%d factors=%d sequence=%s",
            n_samples,
            n_steps,
            n_factors,
            sequence_type.value,
        )

        n_ccy = len(self.currencies)
        state = np.repeat(self.initial_state[:, None], n_samples, axis=1)
        rho = self._rho
        out_pos = 0
        for step in range(n_steps):
            t0, t1 = grid[step], grid[step + 1]
            dt_step = t1 - t0
            eps = self._cholesky @ normals[step]
            prev = state.copy()

            H0 = float(self._H(0, t0))
            a0 = self._alpha(0, t0)
            z0 = prev[0]
            state[0] = z0 + np.sqrt(self._zeta(0, t1) - self._zeta(0, t0)) * eps[0]
            r0_stoch = self._H_prime(0, t0) * z0 + H0 * self._H_prime(0, t0) * self._zeta(0, t0)
            log_growth_0 = np.log(float(self._P0(0, t0)) / float(self._P0(0, t1)))

            for i in range(1, n_ccy):
                fx = self.fx_index(i)
                Hi = float(self._H(i, t0))
                ai = self._alpha(i, t0)
                sx = self.fx_params[i - 1].volatility
                zi = prev[i]
                drift_z = (-Hi * ai * ai + H0 * a0 * ai * rho[0, i] - sx * ai * rho[i, fx]) * dt_step
                state[i] = zi + drift_z + np.sqrt(self._zeta(i, t1) - self._zeta(i, t0)) * eps[i]

                ri_stoch = self._H_prime(i, t0) * zi + Hi * self._H_prime(i, t0) * self._zeta(i, t0)
                log_growth_i = np.log(float(self._P0(i, t0)) / float(self._P0(i, t1)))
                drift_x = (
                    log_growth_0
                    - log_growth_i
                    + (r0_stoch - ri_stoch) * dt_step
                    - 0.5 * sx * sx * dt_step
                    + sx * H0 * a0 * rho[0, fx] * dt_step
                )
                state[fx] = prev[fx] + drift_x + sx * np.sqrt(dt_step) * eps[fx]

            if out_pos < times.size and np.isclose(t1, times[out_pos], rtol=0.0, atol=1e-12):
                out[out_pos] = state
                out_pos += 1
        return out
