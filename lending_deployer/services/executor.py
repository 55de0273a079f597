"""Preview-validate-commit execution of state-changing calls."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from ..config import FinalityConfig
from ..errors import BusinessRejection, DeploymentError, ExecutionFault
from ..interfaces.gateway import RemoteCallGateway
from ..models import (
    CallOptions,
    ContractCode,
    DeployedContract,
    FinalityReceipt,
    PendingTransaction,
    Receipt,
    Signer,
    format_calldata,
)
from ..results import Faulted, Rejected, decode_outcome

logger = logging.getLogger(__name__)


class TransactionExecutor:
    """Submit a call only after an identical simulated call succeeded.

    Every state-changing call is simulated first; an execution fault or a
    business rejection aborts before anything is submitted. Simulation and
    submission are separate network calls, so state may change in between.
    Runs assume a single writer per network.
    """

    def __init__(
        self,
        gateway: RemoteCallGateway,
        options: CallOptions,
        finality: FinalityConfig,
        cancel: asyncio.Event | None = None,
    ) -> None:
        self._gateway = gateway
        self._options = options
        self._finality = finality
        self._cancel = cancel

    async def _validated(
        self, calldata: str, simulate: Callable[[], Awaitable[Any]]
    ) -> Any:
        """Run a simulation and return the accepted value, or raise."""
        try:
            raw = await simulate()
        except RuntimeError as e:
            raise ExecutionFault(calldata, f"Simulation transport failure: {e}") from e

        outcome = decode_outcome(raw)
        if isinstance(outcome, Faulted):
            raise ExecutionFault(calldata, outcome.reason, outcome.detail)
        if isinstance(outcome.outcome, Rejected):
            raise BusinessRejection(
                calldata, outcome.outcome.reason, outcome.outcome.detail
            )
        return outcome.outcome.value

    async def _settle(
        self, calldata: str, pending: PendingTransaction
    ) -> FinalityReceipt:
        """Wait for finality; failures name the call that was submitted."""
        try:
            return await self._gateway.await_finality(
                pending, self._finality, self._cancel
            )
        except ExecutionFault as e:
            raise ExecutionFault(
                calldata, f"{e.reason} (tx {pending.tx_hash})", e.detail
            ) from e
        except DeploymentError as e:
            e.calldata = calldata
            raise

    async def preview(
        self, contract: DeployedContract, method: str, args: list[Any]
    ) -> Any:
        """Simulate and validate a call without submitting it."""
        calldata = format_calldata(contract.name, method, args)
        return await self._validated(
            calldata,
            lambda: self._gateway.simulate(contract, method, args, self._options),
        )

    async def read(
        self, contract: DeployedContract, method: str, args: list[Any] | None = None
    ) -> Any:
        """Decoded read-only query."""
        args = list(args or [])
        calldata = format_calldata(contract.name, method, args)
        return await self._validated(
            calldata, lambda: self._gateway.query(contract, method, args)
        )

    async def send(
        self, contract: DeployedContract, method: str, args: list[Any]
    ) -> Receipt:
        """Simulate, validate, then submit and wait for finality."""
        calldata = format_calldata(contract.name, method, args)
        value = await self._validated(
            calldata,
            lambda: self._gateway.simulate(contract, method, args, self._options),
        )

        try:
            pending = await self._gateway.submit(contract, method, args, self._options)
        except RuntimeError as e:
            raise ExecutionFault(calldata, f"Submission failed: {e}") from e

        finality = await self._settle(calldata, pending)
        logger.info("Succeeded: %s", calldata)
        return Receipt(calldata=calldata, value=value, finality=finality)

    async def deploy(
        self,
        code: ContractCode,
        args: list[Any],
        signer: Signer,
        name: str = "",
    ) -> DeployedContract:
        """Instantiate a contract under the same simulate-first discipline."""
        name = name or code.name
        calldata = format_calldata(name, "new", args)
        value = await self._validated(
            calldata,
            lambda: self._gateway.simulate_instantiate(code, args, signer, self._options),
        )

        try:
            pending = await self._gateway.instantiate(code, args, signer, self._options)
        except RuntimeError as e:
            raise ExecutionFault(calldata, f"Submission failed: {e}") from e

        await self._settle(calldata, pending)

        address = pending.contract_address
        if not address and isinstance(value, dict):
            address = value.get("address", "")
        if not address:
            raise ExecutionFault(calldata, "Instantiation returned no address")

        logger.info("%s was deployed at: %s", name, address)
        return DeployedContract(name=name, address=address, code=code, signer=signer)
