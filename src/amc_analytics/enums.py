"""Enums for multi-leg AMC valuation."""

from enum import Enum

__all__ = [
    "SettlementType",
    "SequenceType",
    "BrownianOrdering",
    "DirectionIntegers",
    "PolynomialType",
    "DayCountConvention",
]


class SettlementType(Enum):
    PHYSICAL = "physical"
    CASH = "cash"


class SequenceType(Enum):
    MERSENNE_TWISTER = "mersenne_twister"
    MERSENNE_TWISTER_ANTITHETIC = "mersenne_twister_antithetic"
    SOBOL = "sobol"
    SOBOL_BROWNIAN_BRIDGE = "sobol_brownian_bridge"


class BrownianOrdering(Enum):
    """Assignment of low-discrepancy dimensions to (factor, step) pairs."""

    STEPS = "steps"
    FACTORS = "factors"
    DIAGONAL = "diagonal"


class DirectionIntegers(Enum):
    JOE_KUO_D6 = "joe_kuo_d6"
    JOE_KUO_D7 = "joe_kuo_d7"
    JAECKEL = "jaeckel"


class PolynomialType(Enum):
    MONOMIAL = "monomial"
    LAGUERRE = "laguerre"
    HERMITE = "hermite"
    LEGENDRE = "legendre"
    CHEBYSHEV = "chebyshev"
    CHEBYSHEV_2ND = "chebyshev_2nd"


class DayCountConvention(Enum):
    ACT_360 = "ACT/360"
    ACT_365F = "ACT/365F"
    ACT_365_25 = "ACT/365.25"
    THIRTY_360_US = "30/360 US"
