"""Standard normal variate generation for multi-factor path simulation.

All generators return an array of shape ``(n_steps, n_factors, n_samples)``
holding independent standard normal increments per time step, factor and
sample. Low-discrepancy sequences map their dimensions to (factor, step)
pairs according to a :class:`~amc_analytics.enums.BrownianOrdering`, and the
Brownian-bridge variant builds each factor's path by bisection so that the
first (best distributed) dimensions drive the coarse shape of the path.
"""

from __future__ import annotations

import logging
import numpy as np
from scipy.stats import norm, qmc

from .enums import BrownianOrdering, DirectionIntegers, SequenceType
from .exceptions import UnsupportedFeatureError, ValidationError

logger = logging.getLogger(__name__)

__all__ = [
    "BrownianBridge",
    "ordering_matrix",
    "standard_normals",
]

# scipy ships the Joe-Kuo (2008) direction numbers for up to 21201 dimensions
_SOBOL_MAX_DIMENSION = 21201
_UNIFORM_CLIP = 1.0e-12


class BrownianBridge:
    """Brownian-bridge construction on a fixed grid of step times.

    Given independent standard normals ``v[0..m-1]`` (``v[0]`` drives the
    terminal value), :meth:`transform` returns normalised increments
    ``(W(t_i) - W(t_{i-1})) / sqrt(t_i - t_{i-1})``, again independent
    standard normals, but with the path shape dominated by the leading
    variates.
    """

    def __init__(self, step_times: np.ndarray) -> None:
        t = np.asarray(step_times, dtype=float)
        if t.ndim != 1 or t.size == 0:
            raise ValidationError("step_times must be a non-empty 1-D array")
        if t[0] <= 0.0 or np.any(np.diff(t) <= 0.0):
            raise ValidationError("step_times must be positive and strictly increasing")
        m = t.size
        self.times = t
        self.size = m
        self._sqrt_dt = np.sqrt(np.diff(np.concatenate([[0.0], t])))
        self._bridge_index = np.zeros(m, dtype=int)
        self._left_index = np.zeros(m, dtype=int)
        self._right_index = np.zeros(m, dtype=int)
        self._left_weight = np.zeros(m)
        self._right_weight = np.zeros(m)
        self._std_dev = np.zeros(m)

        filled = np.zeros(m, dtype=bool)
        filled[m - 1] = True
        self._bridge_index[0] = m - 1
        self._std_dev[0] = np.sqrt(t[m - 1])
        j = 0
        for i in range(1, m):
            while filled[j]:
                j = (j + 1) % m
            k = j
            while not filled[k]:
                k += 1
            # midpoint of the unfilled stretch [j, k)
            l = j + ((k - 1 - j) >> 1)
            filled[l] = True
            self._bridge_index[i] = l
            self._left_index[i] = j
            self._right_index[i] = k
            if j != 0:
                span = t[k] - t[j - 1]
                self._left_weight[i] = (t[k] - t[l]) / span
                self._right_weight[i] = (t[l] - t[j - 1]) / span
                self._std_dev[i] = np.sqrt((t[l] - t[j - 1]) * (t[k] - t[l]) / span)
            else:
                self._left_weight[i] = (t[k] - t[l]) / t[k]
                self._right_weight[i] = t[l] / t[k]
                self._std_dev[i] = np.sqrt(t[l] * (t[k] - t[l]) / t[k])
            j = k + 1
            if j >= m:
                j = 0

    def transform(self, variates: np.ndarray) -> np.ndarray:
        """Map ``(m, n_samples)`` variates to ``(m, n_samples)`` normalised increments."""
        v = np.asarray(variates, dtype=float)
        if v.shape[0] != self.size:
            raise ValidationError(
                f"expected {self.size} variates per sample, got {v.shape[0]}"
            )
        w = np.empty_like(v)
        w[self.size - 1] = self._std_dev[0] * v[0]
        for i in range(1, self.size):
            j = self._left_index[i]
            k = self._right_index[i]
            l = self._bridge_index[i]
            if j != 0:
                w[l] = (
                    self._left_weight[i] * w[j - 1]
                    + self._right_weight[i] * w[k]
                    + self._std_dev[i] * v[i]
                )
            else:
                w[l] = self._right_weight[i] * w[k] + self._std_dev[i] * v[i]
        increments = np.diff(w, axis=0, prepend=np.zeros((1,) + w.shape[1:]))
        return increments / self._sqrt_dt.reshape((-1,) + (1,) * (w.ndim - 1))


def ordering_matrix(ordering: BrownianOrdering, n_factors: int, n_steps: int) -> np.ndarray:
    """Return ``D`` with ``D[factor, step]`` the sequence dimension driving that pair.

    ``STEPS`` fills all factors of a step before moving to the next step,
    ``FACTORS`` fills a whole factor path before the next factor and
    ``DIAGONAL`` walks the anti-diagonals of the (factor, step) grid.
    """
    if ordering is BrownianOrdering.STEPS:
        return np.arange(n_factors * n_steps).reshape(n_steps, n_factors).T.copy()
    if ordering is BrownianOrdering.FACTORS:
        return np.arange(n_factors * n_steps).reshape(n_factors, n_steps)
    if ordering is BrownianOrdering.DIAGONAL:
        pairs = sorted(
            ((f, s) for f in range(n_factors) for s in range(n_steps)),
            key=lambda p: (p[0] + p[1], p[1]),
        )
        dims = np.empty((n_factors, n_steps), dtype=int)
        for d, (f, s) in enumerate(pairs):
            dims[f, s] = d
        return dims
    raise ValidationError(f"Unsupported Brownian ordering: {ordering}")


def _pseudo_random(
    n_steps: int, n_factors: int, n_samples: int, seed: int | None, antithetic: bool
) -> np.ndarray:
    rng = np.random.Generator(np.random.MT19937(seed))
    if not antithetic:
        return rng.standard_normal((n_steps, n_factors, n_samples))
    half = (n_samples + 1) // 2
    base = rng.standard_normal((n_steps, n_factors, half))
    out = np.empty((n_steps, n_factors, n_samples))
    out[..., 0::2] = base
    out[..., 1::2] = -base[..., : n_samples // 2]
    return out


def _sobol_uniforms(dimension: int, n_samples: int, seed: int | None) -> np.ndarray:
    if dimension > _SOBOL_MAX_DIMENSION:
        raise UnsupportedFeatureError(
            f"Sobol sequences support at most {_SOBOL_MAX_DIMENSION} dimensions, "
            f"got {dimension} (steps x factors)"
        )
    sampler = qmc.Sobol(d=dimension, scramble=True, seed=seed)
    u = sampler.random(n_samples)
    return np.clip(u, _UNIFORM_CLIP, 1.0 - _UNIFORM_CLIP)


def standard_normals(
    n_factors: int,
    n_steps: int,
    n_samples: int,
    *,
    seed: int | None,
    sequence_type: SequenceType = SequenceType.MERSENNE_TWISTER,
    ordering: BrownianOrdering = BrownianOrdering.STEPS,
    direction_integers: DirectionIntegers = DirectionIntegers.JOE_KUO_D6,
    step_times: np.ndarray | None = None,
) -> np.ndarray:
    """Generate independent standard normal increments.

    Parameters
    ----------
    n_factors, n_steps, n_samples : int
        Output shape is ``(n_steps, n_factors, n_samples)``.
    seed : int, optional
        Seed of the generator (also the scrambling seed for Sobol).
    sequence_type : SequenceType
        Pseudo-random (optionally antithetic) or Sobol (optionally with
        Brownian-bridge path construction).
    ordering : BrownianOrdering
        Dimension assignment for Sobol sequences; ignored for pseudo-random.
    direction_integers : DirectionIntegers
        Only the Joe-Kuo D6 set is available.
    step_times : np.ndarray, optional
        Step end times, required for ``SOBOL_BROWNIAN_BRIDGE``.
    """
    if n_factors < 1 or n_steps < 1 or n_samples < 1:
        raise ValidationError(
            f"n_factors, n_steps and n_samples must be >= 1, got "
            f"{n_factors}, {n_steps}, {n_samples}"
        )
    if sequence_type is SequenceType.MERSENNE_TWISTER:
        return _pseudo_random(n_steps, n_factors, n_samples, seed, antithetic=False)
    if sequence_type is SequenceType.MERSENNE_TWISTER_ANTITHETIC:
        return _pseudo_random(n_steps, n_factors, n_samples, seed, antithetic=True)
    if sequence_type not in (SequenceType.SOBOL, SequenceType.SOBOL_BROWNIAN_BRIDGE):
        raise ValidationError(f"Unsupported sequence type: {sequence_type}")

    if direction_integers is not DirectionIntegers.JOE_KUO_D6:
        raise UnsupportedFeatureError(
            f"direction integers {direction_integers.value} are not available; "
            "use DirectionIntegers.JOE_KUO_D6"
        )
    dims = ordering_matrix(ordering, n_factors, n_steps)
    u = _sobol_uniforms(n_factors * n_steps, n_samples, seed)
    z = norm.ppf(u).T  # (dimension, n_samples)
    out = np.empty((n_steps, n_factors, n_samples))
    for f in range(n_factors):
        out[:, f, :] = z[dims[f]]
    logger.debug(
        "Sobol variates dimension=%d samples=%d ordering=%s",
        n_factors * n_steps,
        n_samples,
        ordering.value,
    )
    if sequence_type is SequenceType.SOBOL:
        return out

    if step_times is None:
        raise ValidationError("step_times are required for Brownian-bridge construction")
    bridge = BrownianBridge(step_times)
    if bridge.size != n_steps:
        raise ValidationError(
            f"step_times length ({bridge.size}) must equal n_steps ({n_steps})"
        )
    for f in range(n_factors):
        out[:, f, :] = bridge.transform(out[:, f, :])
    return out
