"""Contracts-chain JSON-RPC client with fallback support."""
from __future__ import annotations

import asyncio
import logging
import ssl
from typing import Any

import aiohttp
import certifi

from ...config import FinalityConfig, NetworkConfig
from ...errors import ExecutionFault, FinalityCancelled, FinalityTimeout
from ...models import (
    CallOptions,
    ContractCode,
    DeployedContract,
    FinalityReceipt,
    PendingTransaction,
    Signer,
    encode_args,
)

logger = logging.getLogger(__name__)

SIMULATE_CALL = "contracts_call"
SIMULATE_INSTANTIATE = "contracts_instantiate"
SUBMIT_CALL = "contracts_submitCall"
SUBMIT_INSTANTIATE = "contracts_submitInstantiate"
TX_STATUS = "contracts_txStatus"

_FAILED_STATUSES = frozenset({"dropped", "invalid", "usurped", "retracted"})


class ContractsRpcClient:
    """Remote call gateway over JSON-RPC with automatic endpoint fallback.

    The endpoint is expected to hold contract metadata and signing keys for
    the configured signer addresses, so arguments and results travel as
    plain JSON.
    """

    def __init__(self, config: NetworkConfig) -> None:
        self.network = config.name
        self.endpoints = list(config.rpc_endpoints)
        self.timeout = config.rpc_timeout
        self.instant_finality = config.instant_finality
        self.current_rpc_index = 0

    async def _post(self, rpc_url: str, payload: dict[str, Any]) -> Any:
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)
        async with aiohttp.ClientSession(connector=connector) as session:
            async with session.post(
                rpc_url,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                result = await response.json()
                if "error" in result:
                    raise RuntimeError(f"RPC Error: {result['error']}")
                return result.get("result", {})

    async def rpc_call(
        self, method: str, params: list[Any], fallback: bool = True
    ) -> Any:
        """Make RPC call, rotating to alternative endpoints on failure.

        With ``fallback=False`` only the current endpoint is tried, so a
        submission is never broadcast twice.
        """
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}

        if not fallback:
            rpc_url = self.endpoints[self.current_rpc_index]
            try:
                return await self._post(rpc_url, payload)
            except Exception as e:
                raise RuntimeError(f"RPC endpoint {rpc_url} failed: {e}") from e

        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                result = await self._post(rpc_url, payload)
                if rpc_index != self.current_rpc_index:
                    logger.info("Switched to RPC endpoint: %s", rpc_url)
                    self.current_rpc_index = rpc_index
                return result
            except Exception as e:
                last_error = e
                logger.warning("RPC endpoint %s failed: %s", rpc_url, e)
                if attempt < len(self.endpoints) - 1:
                    logger.info("Trying next endpoint...")
                continue

        raise RuntimeError(f"All RPC endpoints failed. Last error: {last_error}")

    # ------------------------------------------------------------------
    # Calls on deployed contracts
    # ------------------------------------------------------------------

    @staticmethod
    def _call_params(
        contract: DeployedContract,
        method: str,
        args: list[Any],
        options: CallOptions,
    ) -> dict[str, Any]:
        return {
            "origin": contract.signer.address,
            "dest": contract.address,
            "contract": contract.code.name,
            "method": method,
            "args": encode_args(args),
            **options.to_params(),
        }

    async def simulate(
        self,
        contract: DeployedContract,
        method: str,
        args: list[Any],
        options: CallOptions,
    ) -> Any:
        """Dry-run a message call; returns the raw nested outcome."""
        return await self.rpc_call(
            SIMULATE_CALL, [self._call_params(contract, method, args, options)]
        )

    async def submit(
        self,
        contract: DeployedContract,
        method: str,
        args: list[Any],
        options: CallOptions,
    ) -> PendingTransaction:
        result = await self.rpc_call(
            SUBMIT_CALL,
            [self._call_params(contract, method, args, options)],
            fallback=False,
        )
        tx_hash = result.get("txHash", "") if isinstance(result, dict) else ""
        if not tx_hash:
            raise RuntimeError(f"{SUBMIT_CALL} returned no transaction hash: {result}")
        return PendingTransaction(tx_hash=tx_hash)

    async def query(
        self, contract: DeployedContract, method: str, args: list[Any]
    ) -> Any:
        """Read-only message call with default resource ceilings."""
        return await self.simulate(contract, method, args, CallOptions())

    # ------------------------------------------------------------------
    # Instantiation
    # ------------------------------------------------------------------

    @staticmethod
    def _instantiate_params(
        code: ContractCode,
        args: list[Any],
        signer: Signer,
        options: CallOptions,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {
            "origin": signer.address,
            "contract": code.name,
            "constructor": "new",
            "args": encode_args(args),
            **options.to_params(),
        }
        if code.code_hash:
            params["codeHash"] = code.code_hash
        return params

    async def simulate_instantiate(
        self,
        code: ContractCode,
        args: list[Any],
        signer: Signer,
        options: CallOptions,
    ) -> Any:
        return await self.rpc_call(
            SIMULATE_INSTANTIATE,
            [self._instantiate_params(code, args, signer, options)],
        )

    async def instantiate(
        self,
        code: ContractCode,
        args: list[Any],
        signer: Signer,
        options: CallOptions,
    ) -> PendingTransaction:
        result = await self.rpc_call(
            SUBMIT_INSTANTIATE,
            [self._instantiate_params(code, args, signer, options)],
            fallback=False,
        )
        if not isinstance(result, dict) or not result.get("txHash"):
            raise RuntimeError(
                f"{SUBMIT_INSTANTIATE} returned no transaction hash: {result}"
            )
        return PendingTransaction(
            tx_hash=result["txHash"], contract_address=result.get("address", "")
        )

    # ------------------------------------------------------------------
    # Finality
    # ------------------------------------------------------------------

    async def _poll_status(
        self, tx_hash: str, budget: float, cancel: asyncio.Event | None
    ) -> Any:
        """One status query, abandoned after ``budget`` seconds or on cancel.

        Raises ``asyncio.TimeoutError`` when the budget runs out first.
        """
        poll = asyncio.ensure_future(self.rpc_call(TX_STATUS, [tx_hash]))
        waiters = {poll}
        cancel_wait = None
        if cancel is not None:
            cancel_wait = asyncio.ensure_future(cancel.wait())
            waiters.add(cancel_wait)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=budget, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            leftover = [t for t in waiters if not t.done()]
            for task in leftover:
                task.cancel()
            await asyncio.gather(*leftover, return_exceptions=True)

        if cancel_wait is not None and cancel_wait in done:
            raise FinalityCancelled(tx_hash)
        if poll not in done:
            raise asyncio.TimeoutError
        return poll.result()

    async def await_finality(
        self,
        pending: PendingTransaction,
        policy: FinalityConfig,
        cancel: asyncio.Event | None = None,
    ) -> FinalityReceipt:
        """Poll until the transaction is finalized.

        The interval grows by ``backoff_factor`` up to
        ``max_poll_interval_seconds``; the whole wait, status queries
        included, is bounded by ``timeout_seconds``. Setting ``cancel``
        aborts the wait, even mid-query.
        """
        if self.instant_finality:
            return FinalityReceipt(tx_hash=pending.tx_hash)

        loop = asyncio.get_running_loop()
        started = loop.time()
        interval = policy.poll_interval_seconds

        while True:
            if cancel is not None and cancel.is_set():
                raise FinalityCancelled(pending.tx_hash)

            waited = loop.time() - started
            if waited >= policy.timeout_seconds:
                raise FinalityTimeout(pending.tx_hash, waited)

            try:
                status = await self._poll_status(
                    pending.tx_hash, policy.timeout_seconds - waited, cancel
                )
            except asyncio.TimeoutError:
                raise FinalityTimeout(pending.tx_hash, policy.timeout_seconds) from None
            except RuntimeError as e:
                logger.warning("Status poll for %s failed: %s", pending.tx_hash, e)
                status = {}

            state = str(status.get("status", "")).lower() if isinstance(status, dict) else ""
            if state == "finalized":
                return FinalityReceipt(
                    tx_hash=pending.tx_hash, block_hash=status.get("blockHash", "")
                )
            if state in _FAILED_STATUSES:
                raise ExecutionFault(
                    f"tx {pending.tx_hash}", f"Transaction {state}", status
                )

            waited = loop.time() - started
            if waited >= policy.timeout_seconds:
                raise FinalityTimeout(pending.tx_hash, waited)

            delay = min(interval, policy.timeout_seconds - waited)
            logger.debug(
                "Waiting %.1fs for %s (status: %s)", delay, pending.tx_hash, state or "?"
            )
            if cancel is None:
                await asyncio.sleep(delay)
            else:
                try:
                    await asyncio.wait_for(cancel.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass
                else:
                    raise FinalityCancelled(pending.tx_hash)

            interval = min(
                interval * policy.backoff_factor, policy.max_poll_interval_seconds
            )
