"""Deployment orchestration: manager, controller, oracle, then one market per asset.

The run is a strictly linear sequence. Each step takes the current
``Deployment`` value, checks that the run is at the stage it requires,
performs its calls through the ``TransactionExecutor`` and returns the next
``Deployment``. Nothing about progress lives outside that value.

Preconditions: exactly one orchestrator runs against a given network at a
time. Runs are not idempotent; a second run deploys a fresh set of
contracts. A failure stops the run where it happened and leaves everything
deployed so far in place.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Any, Awaitable, Callable, Iterator

from ..config import AppConfig
from ..errors import DerivationDomainError, DeploymentError, OrderingError
from ..models import ContractCode, DeployedContract, Signer
from ..parameters.rates import RateCurve, compile_curve
from ..parameters.registry import (
    ZERO_ADDRESS,
    AssetDescriptor,
    RiskParameters,
    Role,
    lookup,
)
from .executor import TransactionExecutor

logger = logging.getLogger(__name__)

MANAGER = ContractCode("manager")
CONTROLLER = ContractCode("controller")
PRICE_ORACLE = ContractCode("price_oracle")
RATE_MODEL = ContractCode("default_interest_rate_model")
POOL = ContractCode("pool")
TOKEN = ContractCode("psp22_token")
LENS = ContractCode("lens")
FAUCET = ContractCode("faucet")

# Roles the deploying signer itself exercises during the run.
_DEPLOYER_ROLES = frozenset({Role.CONTROLLER_ADMIN, Role.TOKEN_ADMIN})


class Stage(IntEnum):
    UNSTARTED = 0
    MANAGER_DEPLOYED = 1
    CONTROLLER_DEPLOYED = 2
    CONTROLLER_WIRED = 3
    ORACLE_DEPLOYED = 4
    ROLES_GRANTED = 5
    ORACLE_WIRED = 6
    MARKETS_CONFIGURED = 7
    COMPLETE = 8


class MarketStage(IntEnum):
    UNDERLYING_RESOLVED = 1
    RATE_MODEL_DEPLOYED = 2
    POOL_DEPLOYED = 3
    PRICE_SET = 4
    MARKET_SUPPORTED = 5
    RESERVE_FACTOR_SET = 6


@dataclass(frozen=True)
class MarketPlan:
    """Everything about one market that is known before touching the network."""

    asset: AssetDescriptor
    rate_model_key: str
    curve: RateCurve
    risk: RiskParameters

    @property
    def symbol(self) -> str:
        return self.asset.symbol


@dataclass(frozen=True)
class MarketDeployment:
    asset: AssetDescriptor
    stage: MarketStage
    underlying: str
    token: DeployedContract | None = None
    rate_model: DeployedContract | None = None
    pool: DeployedContract | None = None

    @property
    def supported(self) -> bool:
        return self.stage >= MarketStage.MARKET_SUPPORTED


@dataclass(frozen=True)
class Deployment:
    """Progress of a single run. Every step returns a new value."""

    signer: Signer
    stage: Stage = Stage.UNSTARTED
    manager: DeployedContract | None = None
    controller: DeployedContract | None = None
    oracle: DeployedContract | None = None
    granted_roles: tuple[tuple[Role, str], ...] = ()
    markets: tuple[MarketDeployment, ...] = ()
    shared_rate_models: tuple[tuple[str, DeployedContract], ...] = ()
    auxiliary: tuple[DeployedContract, ...] = ()

    def market(self, symbol: str) -> MarketDeployment:
        for market in self.markets:
            if market.asset.symbol.lower() == symbol.lower():
                return market
        raise KeyError(f"No market for '{symbol}'")

    def has_market(self, symbol: str) -> bool:
        return any(m.asset.symbol.lower() == symbol.lower() for m in self.markets)

    def with_market(self, market: MarketDeployment) -> Deployment:
        """Replace the entry for ``market.asset`` or append it."""
        symbol = market.asset.symbol
        if self.has_market(symbol):
            markets = tuple(
                market if m.asset.symbol == symbol else m for m in self.markets
            )
        else:
            markets = self.markets + (market,)
        return replace(self, markets=markets)

    def shared_rate_model(self, key: str) -> DeployedContract | None:
        for model_key, handle in self.shared_rate_models:
            if model_key == key:
                return handle
        return None

    def addresses(self) -> dict[str, Any]:
        """Nested name → address mapping of everything deployed."""
        result: dict[str, Any] = {}
        for key, handle in (
            ("manager", self.manager),
            ("controller", self.controller),
            ("priceOracle", self.oracle),
        ):
            if handle is not None:
                result[key] = handle.address

        markets: dict[str, Any] = {}
        for market in self.markets:
            entry: dict[str, str] = {"underlying": market.underlying}
            if market.rate_model is not None:
                entry["rateModel"] = market.rate_model.address
            if market.pool is not None:
                entry["pool"] = market.pool.address
            markets[market.asset.symbol] = entry
        if markets:
            result["markets"] = markets

        for handle in self.auxiliary:
            result[handle.code.name] = handle.address
        return result


def plan_markets(symbols: tuple[str, ...] | list[str]) -> list[MarketPlan]:
    """Resolve and compile parameters for every market up front.

    Derivation errors surface here, before any network call is made.
    """
    plans: list[MarketPlan] = []
    for symbol in symbols:
        with _located("plan_markets", symbol.upper()):
            try:
                asset, curve_params, risk = lookup(symbol)
            except KeyError as e:
                raise DerivationDomainError(f"Unknown asset '{symbol}'") from e
            curve = compile_curve(curve_params)
        plans.append(MarketPlan(asset, asset.rate_model, curve, risk))
    return plans


@contextmanager
def _located(step: str, asset: str | None = None) -> Iterator[None]:
    """Tag a failure with the step (and asset) it happened in."""
    try:
        yield
    except DeploymentError as exc:
        if exc.step is None:
            exc.step = step
            exc.asset = asset
        raise


def _require(state: Deployment, expected: Stage, step: str) -> None:
    if state.stage != expected:
        raise OrderingError(
            f"{step} requires stage {expected.name}, run is at {state.stage.name}"
        )


def _require_market(market: MarketDeployment, expected: MarketStage, step: str) -> None:
    if market.stage != expected:
        raise OrderingError(
            f"{step} for {market.asset.symbol} requires {expected.name}, "
            f"market is at {market.stage.name}"
        )


class DeploymentOrchestrator:
    """Sequence contract instantiation and configuration for one run."""

    def __init__(
        self,
        executor: TransactionExecutor,
        config: AppConfig,
        signer: Signer,
    ) -> None:
        self._executor = executor
        self._config = config
        self._settings = config.protocol
        self._signer = signer

    # ------------------------------------------------------------------
    # Protocol core
    # ------------------------------------------------------------------

    async def deploy_manager(self, state: Deployment) -> Deployment:
        _require(state, Stage.UNSTARTED, "deploy_manager")
        manager = await self._executor.deploy(
            MANAGER, [ZERO_ADDRESS], self._signer, name="Manager"
        )
        return replace(state, stage=Stage.MANAGER_DEPLOYED, manager=manager)

    async def deploy_controller(self, state: Deployment) -> Deployment:
        _require(state, Stage.MANAGER_DEPLOYED, "deploy_controller")
        controller = await self._executor.deploy(
            CONTROLLER, [state.manager.address], self._signer, name="Controller"
        )
        return replace(state, stage=Stage.CONTROLLER_DEPLOYED, controller=controller)

    async def wire_controller(self, state: Deployment) -> Deployment:
        _require(state, Stage.CONTROLLER_DEPLOYED, "wire_controller")
        await self._executor.send(
            state.manager, "setController", [state.controller.address]
        )
        logger.info(
            "Controller %s has been set to manager %s",
            state.controller.address,
            state.manager.address,
        )
        return replace(state, stage=Stage.CONTROLLER_WIRED)

    async def deploy_oracle(self, state: Deployment) -> Deployment:
        _require(state, Stage.CONTROLLER_WIRED, "deploy_oracle")
        oracle = await self._executor.deploy(
            PRICE_ORACLE, [], self._signer, name="PriceOracle"
        )
        return replace(state, stage=Stage.ORACLE_DEPLOYED, oracle=oracle)

    def role_grants(self) -> list[tuple[Role, str]]:
        """Grants in the order they are issued, one call each.

        Roles the deployer exercises later in the run (CONTROLLER_ADMIN,
        TOKEN_ADMIN) are granted to the deployer first even when delegated,
        so a delegated one yields two grant calls rather than one.
        """
        grants: list[tuple[Role, str]] = []
        for role in Role.delegatable():
            delegate = self._config.role_grantees.get(role, self._signer.address)
            if role in _DEPLOYER_ROLES and delegate != self._signer.address:
                grants.append((role, self._signer.address))
            grants.append((role, delegate))
        return grants

    async def grant_roles(self, state: Deployment) -> Deployment:
        _require(state, Stage.ORACLE_DEPLOYED, "grant_roles")
        granted = list(state.granted_roles)
        for role, grantee in self.role_grants():
            await self._executor.send(state.manager, "grantRole", [int(role), grantee])
            logger.info("Role %s has been granted to %s", role.name, grantee)
            granted.append((role, grantee))
        return replace(state, stage=Stage.ROLES_GRANTED, granted_roles=tuple(granted))

    async def wire_oracle(self, state: Deployment) -> Deployment:
        _require(state, Stage.ROLES_GRANTED, "wire_oracle")
        await self._executor.send(
            state.manager, "setPriceOracle", [state.oracle.address]
        )
        logger.info("PriceOracle %s has been set", state.oracle.address)
        await self._executor.send(
            state.manager, "setCloseFactorMantissa", [self._settings.close_factor]
        )
        await self._executor.send(
            state.manager,
            "setLiquidationIncentiveMantissa",
            [self._settings.liquidation_incentive],
        )
        return replace(state, stage=Stage.ORACLE_WIRED)

    # ------------------------------------------------------------------
    # Per-asset markets
    # ------------------------------------------------------------------

    async def resolve_underlying(self, state: Deployment, plan: MarketPlan) -> Deployment:
        if state.has_market(plan.symbol):
            raise OrderingError(f"Market {plan.symbol} is already being configured")

        asset = plan.asset
        configured = self._config.underlying_addresses.get(asset.symbol.lower())
        if configured:
            market = MarketDeployment(asset, MarketStage.UNDERLYING_RESOLVED, configured)
        elif asset.is_test_asset:
            token = await self._executor.deploy(
                TOKEN,
                [asset.total_supply, asset.name, asset.symbol, asset.decimals],
                self._signer,
                name=f"{asset.symbol}Token",
            )
            market = MarketDeployment(
                asset, MarketStage.UNDERLYING_RESOLVED, token.address, token=token
            )
        else:
            raise OrderingError(f"No underlying token address for {asset.symbol}")
        return state.with_market(market)

    async def deploy_rate_model(self, state: Deployment, plan: MarketPlan) -> Deployment:
        market = state.market(plan.symbol)
        _require_market(market, MarketStage.UNDERLYING_RESOLVED, "deploy_rate_model")

        shared = self._settings.share_rate_models
        rate_model = state.shared_rate_model(plan.rate_model_key) if shared else None
        if rate_model is not None:
            logger.info(
                "Reusing rate model %s (%s) for %s",
                rate_model.address,
                plan.rate_model_key,
                plan.symbol,
            )
        else:
            rate_model = await self._executor.deploy(
                RATE_MODEL,
                plan.curve.as_constructor_args(),
                self._signer,
                name=f"{plan.symbol}InterestRateModel",
            )
            if shared:
                state = replace(
                    state,
                    shared_rate_models=state.shared_rate_models
                    + ((plan.rate_model_key, rate_model),),
                )

        market = replace(
            market, stage=MarketStage.RATE_MODEL_DEPLOYED, rate_model=rate_model
        )
        return state.with_market(market)

    async def deploy_pool(self, state: Deployment, plan: MarketPlan) -> Deployment:
        market = state.market(plan.symbol)
        _require_market(market, MarketStage.RATE_MODEL_DEPLOYED, "deploy_pool")

        asset = plan.asset
        pool = await self._executor.deploy(
            POOL,
            [
                market.underlying,
                state.controller.address,
                market.rate_model.address,
                plan.risk.initial_exchange_rate,
                plan.risk.liquidation_threshold,
                self._settings.collateral_name_prefix + asset.name,
                self._settings.collateral_symbol_prefix + asset.symbol,
                asset.decimals,
            ],
            self._signer,
            name=f"{asset.symbol}Pool",
        )
        market = replace(market, stage=MarketStage.POOL_DEPLOYED, pool=pool)
        return state.with_market(market)

    async def set_price(self, state: Deployment, plan: MarketPlan) -> Deployment:
        market = state.market(plan.symbol)
        _require_market(market, MarketStage.POOL_DEPLOYED, "set_price")

        await self._executor.send(
            state.oracle, "setFixedPrice", [market.underlying, plan.asset.price]
        )
        logger.info("Price of %s has been set to %d", plan.asset.name, plan.asset.price)
        return state.with_market(replace(market, stage=MarketStage.PRICE_SET))

    async def support_market(self, state: Deployment, plan: MarketPlan) -> Deployment:
        market = state.market(plan.symbol)
        _require_market(market, MarketStage.PRICE_SET, "support_market")

        await self._executor.send(
            state.manager,
            "supportMarketWithCollateralFactorMantissa",
            [market.pool.address, market.underlying, plan.risk.collateral_factor],
        )
        logger.info(
            "%s has been added to markets with collateral factor = %d",
            plan.asset.name,
            plan.risk.collateral_factor,
        )
        return state.with_market(replace(market, stage=MarketStage.MARKET_SUPPORTED))

    async def set_reserve_factor(self, state: Deployment, plan: MarketPlan) -> Deployment:
        market = state.market(plan.symbol)
        _require_market(market, MarketStage.MARKET_SUPPORTED, "set_reserve_factor")

        await self._executor.send(
            state.manager,
            "setReserveFactorMantissa",
            [market.pool.address, plan.risk.reserve_factor],
        )
        return state.with_market(replace(market, stage=MarketStage.RESERVE_FACTOR_SET))

    async def configure_market(self, state: Deployment, plan: MarketPlan) -> Deployment:
        """Run the per-asset sequence for one market."""
        logger.info(
            "---------------- Start setting up pool for %s ----------------", plan.symbol
        )
        steps: tuple[Callable[[Deployment, MarketPlan], Awaitable[Deployment]], ...] = (
            self.resolve_underlying,
            self.deploy_rate_model,
            self.deploy_pool,
            self.set_price,
            self.support_market,
            self.set_reserve_factor,
        )
        for step in steps:
            with _located(step.__name__, plan.symbol):
                state = await step(state, plan)
        logger.info("---------------- Finished %s ----------------", plan.symbol)
        return state

    async def configure_markets(
        self, state: Deployment, plans: list[MarketPlan]
    ) -> Deployment:
        _require(state, Stage.ORACLE_WIRED, "configure_markets")
        for plan in plans:
            state = await self.configure_market(state, plan)
        return replace(state, stage=Stage.MARKETS_CONFIGURED)

    # ------------------------------------------------------------------
    # Auxiliary contracts and the full run
    # ------------------------------------------------------------------

    async def deploy_auxiliary(self, state: Deployment) -> Deployment:
        _require(state, Stage.MARKETS_CONFIGURED, "deploy_auxiliary")
        auxiliary = list(state.auxiliary)
        if self._settings.deploy_lens:
            auxiliary.append(
                await self._executor.deploy(LENS, [], self._signer, name="Lens")
            )
        if self._settings.deploy_faucet:
            auxiliary.append(
                await self._executor.deploy(FAUCET, [], self._signer, name="Faucet")
            )
        return replace(state, stage=Stage.COMPLETE, auxiliary=tuple(auxiliary))

    async def run(self) -> Deployment:
        """Execute the whole sequence; the first failure aborts the run."""
        plans = plan_markets(self._config.markets)

        state = Deployment(signer=self._signer)
        core_steps: tuple[Callable[[Deployment], Awaitable[Deployment]], ...] = (
            self.deploy_manager,
            self.deploy_controller,
            self.wire_controller,
            self.deploy_oracle,
            self.grant_roles,
            self.wire_oracle,
        )
        for step in core_steps:
            with _located(step.__name__):
                state = await step(state)

        with _located("configure_markets"):
            state = await self.configure_markets(state, plans)

        with _located("deploy_auxiliary"):
            state = await self.deploy_auxiliary(state)

        logger.info("Deployment complete: %d market(s)", len(state.markets))
        return state
