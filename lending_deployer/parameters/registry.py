"""Static asset, role, rate-curve and risk parameter tables."""
from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Iterator

from ..errors import DerivationDomainError

UNIT = 10**18

# All-zero account id in generic SS58 format.
ZERO_ADDRESS = "5C4hrfjw9DjXZTzV3MwzrrAr9P1MJhSrvWGWqi1eSuyUpnhM"

# Total supply minted by test-asset token contracts.
TEST_TOKEN_SUPPLY = UNIT * 100_000_000_000


class Role(IntEnum):
    """Access-control roles and their on-chain selectors."""

    DEFAULT_ADMIN_ROLE = 0
    CONTROLLER_ADMIN = 2873677832
    TOKEN_ADMIN = 937842313
    BORROW_CAP_GUARDIAN = 181502825
    PAUSE_GUARDIAN = 1332676982

    @classmethod
    def delegatable(cls) -> Iterator[Role]:
        """Every role except the implicit super-role held by the deployer."""
        return (role for role in cls if role is not cls.DEFAULT_ADMIN_ROLE)

    @classmethod
    def from_name(cls, name: str) -> Role:
        try:
            return cls[name.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown role '{name}'") from None


@dataclass(frozen=True)
class AssetDescriptor:
    symbol: str
    name: str
    decimals: int = 18
    total_supply: int = TEST_TOKEN_SUPPLY
    price: int = UNIT
    rate_model: str = ""

    @property
    def is_test_asset(self) -> bool:
        """Test assets get a freshly deployed token contract."""
        return self.total_supply > 0


@dataclass(frozen=True)
class RateCurveParams:
    """Human-denominated rate curve, all values in whole percent."""

    base_rate: int
    slope1: int
    slope2: int
    optimal_utilization: int


@dataclass(frozen=True)
class RiskParameters:
    collateral_factor: int
    reserve_factor: int
    initial_exchange_rate: int = UNIT
    liquidation_threshold: int = 10000

    def __post_init__(self) -> None:
        for field_name in ("collateral_factor", "reserve_factor"):
            value = getattr(self, field_name)
            if not 0 <= value <= UNIT:
                raise DerivationDomainError(
                    f"{field_name} must lie in [0, {UNIT}], got {value}"
                )


def risk(collateral: int, reserve: int, threshold: int) -> RiskParameters:
    """Build risk parameters from whole percentages."""
    return RiskParameters(
        collateral_factor=collateral * UNIT // 100,
        reserve_factor=reserve * UNIT // 100,
        initial_exchange_rate=UNIT,
        liquidation_threshold=threshold * 100,
    )


RATE_CURVES: dict[str, RateCurveParams] = {
    "weth": RateCurveParams(0, 8, 100, 65),
    "bnb": RateCurveParams(0, 7, 300, 45),
    "dai": RateCurveParams(0, 4, 60, 90),
    "dot": RateCurveParams(0, 7, 100, 65),
    "matic": RateCurveParams(0, 7, 300, 45),
    "usdc": RateCurveParams(0, 4, 60, 90),
    "usdt": RateCurveParams(0, 4, 60, 90),
    "wastr": RateCurveParams(0, 7, 300, 45),
}

RISK_PARAMETERS: dict[str, RiskParameters] = {
    "wastr": risk(40, 20, 100),
    "dot": risk(65, 20, 100),
    "usdc": risk(80, 10, 100),
    "usdt": risk(80, 10, 100),
    "dai": risk(80, 10, 100),
    "busd": risk(80, 10, 100),
    "weth": risk(80, 10, 100),
    "wbtc": risk(70, 10, 100),
    "matic": risk(40, 20, 100),
    "bnb": risk(40, 20, 100),
    "wsdn": risk(40, 20, 100),
}

ASSETS: dict[str, AssetDescriptor] = {
    "weth": AssetDescriptor("WETH", "Wrapped Ether", 18, price=UNIT, rate_model="weth"),
    "wbtc": AssetDescriptor("WBTC", "Wrapped Bitcoin", 8, price=UNIT, rate_model="weth"),
    "dai": AssetDescriptor("DAI", "Dai Stablecoin", 18, price=UNIT, rate_model="dai"),
    "usdc": AssetDescriptor("USDC", "USD Coin", 6, price=UNIT, rate_model="usdc"),
    "usdt": AssetDescriptor("USDT", "Tether USD", 6, price=UNIT, rate_model="usdt"),
    "dot": AssetDescriptor("DOT", "Polkadot", 10, price=UNIT, rate_model="dot"),
    # Existing token; its address comes from config.
    "wastr": AssetDescriptor(
        "WASTR", "Wrapped Astar", 18, total_supply=0, price=UNIT, rate_model="wastr"
    ),
}


def lookup(symbol: str) -> tuple[AssetDescriptor, RateCurveParams, RiskParameters]:
    """Return the descriptor, rate curve and risk parameters for ``symbol``."""
    key = symbol.lower()
    if key not in ASSETS:
        raise KeyError(f"Unknown asset '{symbol}'")
    asset = ASSETS[key]
    return asset, RATE_CURVES[asset.rate_model], RISK_PARAMETERS[key]
