"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from dataclasses import replace
from pathlib import Path
from typing import Callable

import pytest
import pytest_asyncio

from ledger import InMemoryLedger
from lending_deployer.config import (
    AppConfig,
    FinalityConfig,
    NetworkConfig,
    ProtocolSettings,
    SignerConfig,
)
from lending_deployer.models import CallOptions, Signer
from lending_deployer.services import Deployment, DeploymentOrchestrator, TransactionExecutor

DEPLOYER = "5Deployer"


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_network() -> NetworkConfig:
    return NetworkConfig(
        name="testnet",
        rpc_endpoints=(
            "https://rpc1.example.com",
            "https://rpc2.example.com",
            "https://rpc3.example.com",
        ),
        rpc_timeout=5,
    )


@pytest.fixture()
def fast_finality() -> FinalityConfig:
    return FinalityConfig(
        poll_interval_seconds=0.01,
        backoff_factor=2.0,
        max_poll_interval_seconds=0.02,
        timeout_seconds=0.2,
    )


@pytest.fixture()
def sample_app_config() -> AppConfig:
    return AppConfig(
        networks={
            "local": NetworkConfig(
                name="local",
                rpc_endpoints=("ws://127.0.0.1:9944",),
                instant_finality=True,
            )
        },
        signer=SignerConfig(address=DEPLOYER),
        protocol=ProtocolSettings(),
        markets=("weth", "usdc"),
    )


# ---------------------------------------------------------------------------
# Ledger-backed deployment fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def deployer() -> Signer:
    return Signer(address=DEPLOYER)


@pytest.fixture()
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture()
def executor(ledger: InMemoryLedger, sample_app_config: AppConfig) -> TransactionExecutor:
    return TransactionExecutor(ledger, CallOptions(), sample_app_config.finality)


@pytest.fixture()
def make_orchestrator(
    executor: TransactionExecutor,
    sample_app_config: AppConfig,
    deployer: Signer,
) -> Callable[..., DeploymentOrchestrator]:
    """Build an orchestrator over the shared ledger with config overrides.

    Keyword arguments matching ``ProtocolSettings`` fields go to the
    protocol section; the rest replace ``AppConfig`` fields.
    """

    def _make(**overrides) -> DeploymentOrchestrator:
        protocol_fields = set(ProtocolSettings.__dataclass_fields__)
        protocol = {k: v for k, v in overrides.items() if k in protocol_fields}
        app = {k: v for k, v in overrides.items() if k not in protocol_fields}
        config = replace(
            sample_app_config,
            protocol=replace(sample_app_config.protocol, **protocol),
            **app,
        )
        return DeploymentOrchestrator(executor, config, deployer)

    return _make


@pytest.fixture()
def orchestrator(make_orchestrator) -> DeploymentOrchestrator:
    return make_orchestrator()


@pytest_asyncio.fixture()
async def wired(orchestrator: DeploymentOrchestrator, deployer: Signer) -> Deployment:
    """A run advanced through the protocol core, ready for markets."""
    state = Deployment(signer=deployer)
    for step in (
        orchestrator.deploy_manager,
        orchestrator.deploy_controller,
        orchestrator.wire_controller,
        orchestrator.deploy_oracle,
        orchestrator.grant_roles,
        orchestrator.wire_oracle,
    ):
        state = await step(state)
    return state


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    networks:
      testnet:
        rpc_endpoints: ["https://rpc1.example.com", "${UNSET_RPC_URL_XYZ}"]
        rpc_timeout: 10
      local:
        rpc_endpoints: ["ws://127.0.0.1:9944"]
        instant_finality: true
    finality:
      poll_interval_seconds: 2
      timeout_seconds: 60
    gas:
      proof_size: 3000000
    signer:
      address: "${TEST_DEPLOYER_ADDRESS}"
      label: ops
    protocol:
      share_rate_models: true
      deploy_lens: true
    role_grantees:
      borrow_cap_guardian: "5Guardian"
      pause_guardian: ""
    markets: [WETH, usdc, wastr]
    underlying_addresses:
      WASTR: "5Wastr"
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("TEST_DEPLOYER_ADDRESS", DEPLOYER)
    monkeypatch.delenv("UNSET_RPC_URL_XYZ", raising=False)
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
