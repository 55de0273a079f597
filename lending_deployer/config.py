"""Configuration loader: reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .models import CallOptions
from .parameters.registry import ASSETS, UNIT, Role

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NetworkConfig:
    """One deployment environment: where to send calls and how they settle."""

    name: str = ""
    rpc_endpoints: tuple[str, ...] = ()
    rpc_timeout: int = 30
    instant_finality: bool = False


@dataclass(frozen=True)
class FinalityConfig:
    poll_interval_seconds: float = 10.0
    backoff_factor: float = 1.5
    max_poll_interval_seconds: float = 60.0
    timeout_seconds: float = 600.0


@dataclass(frozen=True)
class SignerConfig:
    address: str = ""
    label: str = "deployer"


@dataclass(frozen=True)
class ProtocolSettings:
    close_factor: int = UNIT
    liquidation_incentive: int = UNIT * 10 // 90
    collateral_name_prefix: str = "Starlay "
    collateral_symbol_prefix: str = "l"
    share_rate_models: bool = False
    deploy_lens: bool = False
    deploy_faucet: bool = False


@dataclass(frozen=True)
class AppConfig:
    networks: dict[str, NetworkConfig] = field(default_factory=dict)
    finality: FinalityConfig = field(default_factory=FinalityConfig)
    gas: CallOptions = field(default_factory=CallOptions)
    signer: SignerConfig = field(default_factory=SignerConfig)
    protocol: ProtocolSettings = field(default_factory=ProtocolSettings)
    role_grantees: dict[Role, str] = field(default_factory=dict)
    markets: tuple[str, ...] = ()
    underlying_addresses: dict[str, str] = field(default_factory=dict)

    def environment(self, name: str) -> NetworkConfig:
        """Resolve the network selected for this run."""
        if name not in self.networks:
            known = ", ".join(sorted(self.networks)) or "none"
            raise ValueError(f"Unknown network '{name}' (configured: {known})")
        return self.networks[name]


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_networks(raw: dict[str, Any]) -> dict[str, NetworkConfig]:
    networks: dict[str, NetworkConfig] = {}
    for name, cfg in raw.items():
        networks[name] = NetworkConfig(
            name=name,
            # Unset ${VAR} endpoints interpolate to "" and are dropped.
            rpc_endpoints=tuple(e for e in cfg.get("rpc_endpoints", []) if e),
            rpc_timeout=int(cfg.get("rpc_timeout", 30)),
            instant_finality=bool(cfg.get("instant_finality", False)),
        )
    return networks


def _build_finality(raw: dict[str, Any]) -> FinalityConfig:
    return FinalityConfig(
        poll_interval_seconds=float(raw.get("poll_interval_seconds", 10.0)),
        backoff_factor=float(raw.get("backoff_factor", 1.5)),
        max_poll_interval_seconds=float(raw.get("max_poll_interval_seconds", 60.0)),
        timeout_seconds=float(raw.get("timeout_seconds", 600.0)),
    )


def _build_gas(raw: dict[str, Any]) -> CallOptions:
    defaults = CallOptions()
    return CallOptions(
        ref_time=int(raw.get("ref_time", defaults.ref_time)),
        proof_size=int(raw.get("proof_size", defaults.proof_size)),
        storage_deposit_limit=int(
            raw.get("storage_deposit_limit", defaults.storage_deposit_limit)
        ),
    )


def _build_signer(raw: dict[str, Any]) -> SignerConfig:
    return SignerConfig(
        address=raw.get("address", ""),
        label=raw.get("label", "deployer"),
    )


def _build_protocol(raw: dict[str, Any]) -> ProtocolSettings:
    defaults = ProtocolSettings()
    return ProtocolSettings(
        close_factor=int(raw.get("close_factor", defaults.close_factor)),
        liquidation_incentive=int(
            raw.get("liquidation_incentive", defaults.liquidation_incentive)
        ),
        collateral_name_prefix=raw.get(
            "collateral_name_prefix", defaults.collateral_name_prefix
        ),
        collateral_symbol_prefix=raw.get(
            "collateral_symbol_prefix", defaults.collateral_symbol_prefix
        ),
        share_rate_models=bool(raw.get("share_rate_models", False)),
        deploy_lens=bool(raw.get("deploy_lens", False)),
        deploy_faucet=bool(raw.get("deploy_faucet", False)),
    )


def _build_role_grantees(raw: dict[str, Any]) -> dict[Role, str]:
    grantees: dict[Role, str] = {}
    for name, address in raw.items():
        if not address:
            continue
        grantees[Role.from_name(name)] = address
    return grantees


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from this package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        networks=_build_networks(raw.get("networks", {})),
        finality=_build_finality(raw.get("finality", {})),
        gas=_build_gas(raw.get("gas", {})),
        signer=_build_signer(raw.get("signer", {})),
        protocol=_build_protocol(raw.get("protocol", {})),
        role_grantees=_build_role_grantees(raw.get("role_grantees", {})),
        markets=tuple(str(m).lower() for m in raw.get("markets", [])),
        underlying_addresses={
            str(k).lower(): v for k, v in raw.get("underlying_addresses", {}).items()
        },
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.networks:
        raise ValueError("At least one network must be configured")

    for network in cfg.networks.values():
        if not network.rpc_endpoints:
            raise ValueError(f"Network '{network.name}' has no RPC endpoints")

    if not cfg.signer.address:
        raise ValueError("Signer has no address")

    if Role.DEFAULT_ADMIN_ROLE in cfg.role_grantees:
        raise ValueError("DEFAULT_ADMIN_ROLE cannot be delegated")

    for symbol in cfg.markets:
        if symbol not in ASSETS:
            raise ValueError(f"Market references unknown asset '{symbol}'")
        if not ASSETS[symbol].is_test_asset and symbol not in cfg.underlying_addresses:
            raise ValueError(f"Asset '{symbol}' has no underlying address")

    if cfg.finality.timeout_seconds <= 0:
        raise ValueError("Finality timeout must be positive")
