from .cashflows import (
    CappedFlooredIborCoupon,
    ExerciseSchedule,
    FixedRateCoupon,
    FxLinkedCashflow,
    IborCoupon,
    Leg,
    MultiLegInstrument,
    SimpleCashflow,
)
from .market_environment import FactorCorrelation, MarketData
from .rates import DiscountCurve
from .stochastic_processes import CrossAssetModel, FXParams, LGMParams, PathModel
from .valuation import (
    AmcParams,
    CalibrationResult,
    McMultiLegEngine,
    MultiLegAmcCalculator,
)


__all__ = [
    "SimpleCashflow",
    "FixedRateCoupon",
    "IborCoupon",
    "CappedFlooredIborCoupon",
    "FxLinkedCashflow",
    "Leg",
    "ExerciseSchedule",
    "MultiLegInstrument",
    "MarketData",
    "FactorCorrelation",
    "DiscountCurve",
    "CrossAssetModel",
    "LGMParams",
    "FXParams",
    "PathModel",
    "AmcParams",
    "CalibrationResult",
    "McMultiLegEngine",
    "MultiLegAmcCalculator",
]
