"""Remote call gateway protocol: the sole channel to the ledger network."""
from __future__ import annotations

import asyncio
from typing import Any, Protocol

from ..config import FinalityConfig
from ..models import (
    CallOptions,
    ContractCode,
    DeployedContract,
    FinalityReceipt,
    PendingTransaction,
    Signer,
)


class RemoteCallGateway(Protocol):
    """Simulate, submit and settle contract calls.

    Simulation results are returned raw (nested ``ok``/``err`` layers);
    interpreting them is the caller's job.
    """

    async def simulate(
        self,
        contract: DeployedContract,
        method: str,
        args: list[Any],
        options: CallOptions,
    ) -> Any: ...

    async def submit(
        self,
        contract: DeployedContract,
        method: str,
        args: list[Any],
        options: CallOptions,
    ) -> PendingTransaction: ...

    async def simulate_instantiate(
        self,
        code: ContractCode,
        args: list[Any],
        signer: Signer,
        options: CallOptions,
    ) -> Any: ...

    async def instantiate(
        self,
        code: ContractCode,
        args: list[Any],
        signer: Signer,
        options: CallOptions,
    ) -> PendingTransaction: ...

    async def query(
        self, contract: DeployedContract, method: str, args: list[Any]
    ) -> Any: ...

    async def await_finality(
        self,
        pending: PendingTransaction,
        policy: FinalityConfig,
        cancel: asyncio.Event | None = None,
    ) -> FinalityReceipt: ...
