"""Command-line interface for the lending protocol deployer."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path

from .chains.substrate import ContractsRpcClient
from .config import AppConfig, load_config
from .errors import BusinessRejection, DeploymentError, ExecutionFault
from .logging_setup import configure_logging
from .models import Signer
from .parameters.rates import compile_curve
from .parameters.registry import RATE_CURVES
from .services import DeploymentOrchestrator, TransactionExecutor

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="lending-deployer",
        description="Deploy and configure the lending protocol contracts",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    deploy_parser = sub.add_parser("deploy", help="Deploy and configure all contracts")
    deploy_parser.add_argument(
        "--network",
        default="testnet",
        help="Network name from config.yaml (default: testnet)",
    )
    deploy_parser.add_argument(
        "--output",
        default=None,
        help="Write deployed addresses as JSON to this path",
    )

    rates_parser = sub.add_parser("rates", help="Print compiled rate curve coefficients")
    rates_parser.add_argument(
        "models",
        nargs="*",
        help="Rate model keys (default: all)",
    )

    return parser


def render_rates(models: list[str]) -> str:
    """Tabulate compiled curves for the given (or all) rate model keys."""
    keys = [m.lower() for m in models] or sorted(RATE_CURVES)
    lines = []
    for key in keys:
        if key not in RATE_CURVES:
            raise KeyError(f"Unknown rate model '{key}'")
        params = RATE_CURVES[key]
        curve = compile_curve(params)
        lines.append(
            f"{key}: base={params.base_rate}% slope1={params.slope1}% "
            f"slope2={params.slope2}% optimal={params.optimal_utilization}%\n"
            f"  baseRatePerYear={curve.base_rate_per_year}\n"
            f"  multiplierSlope1={curve.multiplier_slope1}\n"
            f"  multiplierSlope2={curve.multiplier_slope2}\n"
            f"  kink={curve.kink}"
        )
    return "\n".join(lines)


async def _deploy(config: AppConfig, network: str, output: str | None) -> None:
    environment = config.environment(network)
    gateway = ContractsRpcClient(environment)
    signer = Signer(address=config.signer.address, label=config.signer.label)

    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGTERM, cancel.set)
    except (NotImplementedError, RuntimeError):
        pass

    executor = TransactionExecutor(gateway, config.gas, config.finality, cancel)
    orchestrator = DeploymentOrchestrator(executor, config, signer)

    logger.info("Deploying to %s as %s", environment.name, signer.address)
    deployment = await orchestrator.run()

    addresses = deployment.addresses()
    if output:
        Path(output).write_text(json.dumps(addresses, indent=2) + "\n")
        logger.info("Addresses written to %s", output)
    else:
        print(json.dumps(addresses, indent=2))


def _report_failure(error: DeploymentError) -> None:
    logger.error("Deployment aborted at %s", error.located())
    if error.calldata:
        logger.error("  call:   %s", error.calldata)
    if isinstance(error, (BusinessRejection, ExecutionFault)):
        logger.error("  reason: %s", error.reason)
    else:
        logger.error("  %s", error)


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    configure_logging(args.log_level)

    if args.command == "rates":
        print(render_rates(args.models))
        return

    config = load_config(args.config)
    try:
        asyncio.run(_deploy(config, args.network, args.output))
    except DeploymentError as e:
        _report_failure(e)
        sys.exit(1)
