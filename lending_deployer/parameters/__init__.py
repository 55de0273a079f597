"""Protocol parameter tables and the rate curve compiler."""
from .rates import RateCurve, compile_curve, percent
from .registry import (
    ASSETS,
    RATE_CURVES,
    RISK_PARAMETERS,
    UNIT,
    AssetDescriptor,
    RateCurveParams,
    RiskParameters,
    Role,
    lookup,
)

__all__ = [
    "ASSETS",
    "RATE_CURVES",
    "RISK_PARAMETERS",
    "UNIT",
    "AssetDescriptor",
    "RateCurve",
    "RateCurveParams",
    "RiskParameters",
    "Role",
    "compile_curve",
    "lookup",
    "percent",
]
