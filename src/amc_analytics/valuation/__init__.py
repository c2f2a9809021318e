"""American Monte Carlo valuation of multi-leg instruments.

Public API
----------
Calibration:
    McMultiLegEngine: builds cashflow descriptors and fits the regressions
    CalibrationResult: immutable calibration outcome owning the calculator
    AmcParams: calibration configuration

Reuse:
    MultiLegAmcCalculator: cheap per-path evaluation for outer simulations
    PathValuation, BatchValuation: per-path and batch results

Building blocks:
    CashflowInfo, build_cashflow_infos, cashflow_table
    SimulationTimeIndex
    PathValueEvaluator
    BasisSystem, RegressionCoefficients
"""

from .params import AmcParams
from .cashflow_info import CashflowInfo, build_cashflow_infos, cashflow_table
from .time_index import SimulationTimeIndex
from .path_value import PathValueEvaluator
from .regression import BasisSystem, RegressionCoefficients, StateTransform
from .calculator import BatchValuation, MultiLegAmcCalculator, PathValuation
from .engine import CalibrationResult, McMultiLegEngine

__all__ = [
    # Calibration
    "McMultiLegEngine",
    "CalibrationResult",
    "AmcParams",
    # Reuse
    "MultiLegAmcCalculator",
    "PathValuation",
    "BatchValuation",
    # Building blocks
    "CashflowInfo",
    "build_cashflow_infos",
    "cashflow_table",
    "SimulationTimeIndex",
    "PathValueEvaluator",
    "BasisSystem",
    "RegressionCoefficients",
    "StateTransform",
]
