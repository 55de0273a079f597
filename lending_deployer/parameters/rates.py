"""Rate curve compiler: pure fixed-point arithmetic, no I/O.

Percentages go in, the four constructor values of a jump-rate model come
out. All arithmetic is integer and floors like the on-chain U256 math.
"""
from __future__ import annotations

from dataclasses import dataclass

from ..errors import DerivationDomainError
from .registry import UNIT, RateCurveParams


@dataclass(frozen=True)
class RateCurve:
    """Fixed-point rate model coefficients, each a fraction of UNIT."""

    base_rate_per_year: int
    multiplier_slope1: int
    multiplier_slope2: int
    kink: int

    def as_constructor_args(self) -> list[int]:
        return [
            self.base_rate_per_year,
            self.multiplier_slope1,
            self.multiplier_slope2,
            self.kink,
        ]


def percent(value: int) -> int:
    """Map a whole percentage to a fraction of UNIT (``8`` → ``0.08 * UNIT``)."""
    if value < 0:
        raise DerivationDomainError(f"Percentage must be non-negative, got {value}")
    return value * UNIT // 100


def compile_curve(params: RateCurveParams) -> RateCurve:
    """Convert a percentage-denominated curve into constructor coefficients.

    Raises:
        DerivationDomainError: if the optimal utilization is not strictly
            between 0% and 100%, which would zero one of the slope divisors.
    """
    if not 0 < params.optimal_utilization < 100:
        raise DerivationDomainError(
            "Optimal utilization must lie strictly between 0% and 100%, "
            f"got {params.optimal_utilization}%"
        )

    kink = percent(params.optimal_utilization)
    return RateCurve(
        base_rate_per_year=percent(params.base_rate),
        multiplier_slope1=percent(params.slope1) * UNIT // kink,
        multiplier_slope2=percent(params.slope2) * UNIT // (UNIT - kink),
        kink=kink,
    )


def utilization_rate(cash: int, borrows: int, reserves: int) -> int:
    """Borrows as a fraction of UNIT of the pool's total supplied liquidity."""
    if borrows == 0:
        return 0
    return borrows * UNIT // (cash + borrows - reserves)


def borrow_rate(curve: RateCurve, cash: int, borrows: int, reserves: int) -> int:
    """Per-year borrow rate the deployed model charges at this pool state."""
    util = utilization_rate(cash, borrows, reserves)
    if util <= curve.kink:
        return util * curve.multiplier_slope1 // UNIT + curve.base_rate_per_year

    normal_rate = curve.kink * curve.multiplier_slope1 // UNIT + curve.base_rate_per_year
    excess_util = util - curve.kink
    return excess_util * curve.multiplier_slope2 // UNIT + normal_rate


def supply_rate(
    curve: RateCurve, cash: int, borrows: int, reserves: int, reserve_factor: int
) -> int:
    """Per-year rate paid to suppliers after the reserve cut."""
    one_minus_reserve_factor = UNIT - reserve_factor
    rate_to_pool = borrow_rate(curve, cash, borrows, reserves) * one_minus_reserve_factor // UNIT
    return utilization_rate(cash, borrows, reserves) * rate_to_pool // UNIT
