"""Custom exception hierarchy for the amc_analytics library.

All library-specific exceptions inherit from :class:`AmcAnalyticsError`,
enabling callers to catch *any* library error with a single ``except`` clause::

    try:
        result = McMultiLegEngine(model, instrument, params).calibrate()
    except AmcAnalyticsError as exc:
        log.error("Library error: %s", exc)
"""

from __future__ import annotations


class AmcAnalyticsError(Exception):
    """Base exception for all library errors."""


# ── Input validation ────────────────────────────────────────────────


class ValidationError(AmcAnalyticsError):
    """Invalid input values (out-of-range, non-finite, inconsistent inputs, etc.)."""


class ConfigurationError(AmcAnalyticsError):
    """Wrong types passed to a public API (e.g. raw int instead of enum)."""


class InsufficientSamplesError(ValidationError):
    """Calibration batch is too small for a well-posed regression."""


# ── Feature support ─────────────────────────────────────────────────


class UnsupportedFeatureError(AmcAnalyticsError):
    """Requested feature combination is not (yet) supported."""


class UnsupportedCashflowKindError(UnsupportedFeatureError):
    """A cashflow type has no known amount formula."""


# ── Numerical issues ────────────────────────────────────────────────


class NumericalError(AmcAnalyticsError):
    """Base for errors arising from numerical computation."""


class DegenerateRegressionError(NumericalError):
    """Regression design matrix is rank deficient or the fit is not finite."""


# ── Path evaluation ─────────────────────────────────────────────────


class MissingSimulationTimeError(AmcAnalyticsError):
    """A path does not provide state at a time the calculation needs.

    Carries enough context for a batch driver to skip or retry the single
    affected path.
    """

    def __init__(
        self,
        time: float,
        *,
        instrument_id: str | None = None,
        path_id: int | str | None = None,
        detail: str | None = None,
    ) -> None:
        self.time = float(time)
        self.instrument_id = instrument_id
        self.path_id = path_id
        msg = f"simulation time {self.time:.10g} not available"
        if instrument_id is not None:
            msg += f" (instrument {instrument_id!r}"
            msg += f", path {path_id!r})" if path_id is not None else ")"
        elif path_id is not None:
            msg += f" (path {path_id!r})"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)
