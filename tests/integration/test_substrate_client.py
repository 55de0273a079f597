"""Integration tests for the contracts RPC client: fallback, submission and finality."""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from lending_deployer.chains.substrate.client import (
    SIMULATE_CALL,
    SUBMIT_CALL,
    SUBMIT_INSTANTIATE,
    TX_STATUS,
    ContractsRpcClient,
)
from lending_deployer.config import FinalityConfig, NetworkConfig
from lending_deployer.errors import ExecutionFault, FinalityCancelled, FinalityTimeout
from lending_deployer.models import (
    CallOptions,
    ContractCode,
    DeployedContract,
    PendingTransaction,
    Signer,
)

CLIENT_MODULE = "lending_deployer.chains.substrate.client"


@pytest.fixture()
def client(sample_network: NetworkConfig) -> ContractsRpcClient:
    return ContractsRpcClient(sample_network)


@pytest.fixture()
def manager() -> DeployedContract:
    return DeployedContract("Manager", "5Manager", ContractCode("manager"), Signer("5Deployer"))


def _mock_session(response_data: dict | None = None, error: Exception | None = None):
    """Create a mock aiohttp session that returns given data or raises error."""
    mock_response = AsyncMock()
    if error:
        mock_response.json = AsyncMock(side_effect=error)
    else:
        mock_response.json = AsyncMock(return_value=response_data or {})
    mock_response.__aenter__ = AsyncMock(return_value=mock_response)
    mock_response.__aexit__ = AsyncMock(return_value=None)

    mock_session = AsyncMock()
    if error:
        mock_session.post = MagicMock(side_effect=error)
    else:
        mock_session.post = MagicMock(return_value=mock_response)
    mock_session.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session.__aexit__ = AsyncMock(return_value=None)

    return mock_session


def _sent_payload(mock_session) -> dict:
    return mock_session.post.call_args.kwargs["json"]


class TestRpcCall:
    @pytest.mark.asyncio
    async def test_successful_call(self, client: ContractsRpcClient) -> None:
        mock_session = _mock_session({"jsonrpc": "2.0", "result": {"data": "ok"}})

        with patch(f"{CLIENT_MODULE}.aiohttp.ClientSession", return_value=mock_session):
            with patch(f"{CLIENT_MODULE}.aiohttp.TCPConnector"):
                result = await client.rpc_call("test_method", [])

        assert result == {"data": "ok"}

    @pytest.mark.asyncio
    async def test_rpc_error_raises(self, client: ContractsRpcClient) -> None:
        mock_session = _mock_session(
            {"jsonrpc": "2.0", "error": {"code": -32000, "message": "bad"}}
        )

        with patch(f"{CLIENT_MODULE}.aiohttp.ClientSession", return_value=mock_session):
            with patch(f"{CLIENT_MODULE}.aiohttp.TCPConnector"):
                with pytest.raises(RuntimeError, match="All RPC endpoints failed"):
                    await client.rpc_call("test_method", [])

        assert mock_session.post.call_count == 3

    @pytest.mark.asyncio
    async def test_fallback_on_connection_error(self, client: ContractsRpcClient) -> None:
        """When first endpoint fails, should try the next one."""
        call_count = 0

        success_response = AsyncMock()
        success_response.json = AsyncMock(
            return_value={"jsonrpc": "2.0", "result": {"ok": True}}
        )
        success_response.__aenter__ = AsyncMock(return_value=success_response)
        success_response.__aexit__ = AsyncMock(return_value=None)

        def side_effect(*args, **kwargs):
            nonlocal call_count
            call_count += 1
            if call_count == 1:
                raise ConnectionError("first endpoint down")
            return success_response

        mock_session = AsyncMock()
        mock_session.post = MagicMock(side_effect=side_effect)
        mock_session.__aenter__ = AsyncMock(return_value=mock_session)
        mock_session.__aexit__ = AsyncMock(return_value=None)

        with patch(f"{CLIENT_MODULE}.aiohttp.ClientSession", return_value=mock_session):
            with patch(f"{CLIENT_MODULE}.aiohttp.TCPConnector"):
                result = await client.rpc_call("test_method", [])

        assert result == {"ok": True}
        assert client.current_rpc_index == 1

    @pytest.mark.asyncio
    async def test_all_endpoints_fail(self, client: ContractsRpcClient) -> None:
        mock_session = _mock_session(error=ConnectionError("down"))

        with patch(f"{CLIENT_MODULE}.aiohttp.ClientSession", return_value=mock_session):
            with patch(f"{CLIENT_MODULE}.aiohttp.TCPConnector"):
                with pytest.raises(RuntimeError, match="All RPC endpoints failed"):
                    await client.rpc_call("test_method", [])

    @pytest.mark.asyncio
    async def test_no_fallback_tries_current_endpoint_once(
        self, client: ContractsRpcClient
    ) -> None:
        mock_session = _mock_session(error=ConnectionError("down"))

        with patch(f"{CLIENT_MODULE}.aiohttp.ClientSession", return_value=mock_session):
            with patch(f"{CLIENT_MODULE}.aiohttp.TCPConnector"):
                with pytest.raises(RuntimeError, match="rpc1.example.com failed"):
                    await client.rpc_call("test_method", [], fallback=False)

        assert mock_session.post.call_count == 1


class TestCalls:
    @pytest.mark.asyncio
    async def test_simulate_sends_call_params(
        self, client: ContractsRpcClient, manager: DeployedContract
    ) -> None:
        mock_session = _mock_session({"result": {"ok": {"ok": None}}})

        with patch(f"{CLIENT_MODULE}.aiohttp.ClientSession", return_value=mock_session):
            with patch(f"{CLIENT_MODULE}.aiohttp.TCPConnector"):
                result = await client.simulate(
                    manager, "setCloseFactorMantissa", [10**18], CallOptions()
                )

        assert result == {"ok": {"ok": None}}
        payload = _sent_payload(mock_session)
        assert payload["method"] == SIMULATE_CALL
        params = payload["params"][0]
        assert params["origin"] == "5Deployer"
        assert params["dest"] == "5Manager"
        assert params["contract"] == "manager"
        assert params["method"] == "setCloseFactorMantissa"
        assert params["args"] == ["1000000000000000000"]
        assert params["gasLimit"] == {"refTime": 19_999_999_990, "proofSize": 2_000_000}

    @pytest.mark.asyncio
    async def test_submit_returns_pending(
        self, client: ContractsRpcClient, manager: DeployedContract
    ) -> None:
        mock_session = _mock_session({"result": {"txHash": "0xabc"}})

        with patch(f"{CLIENT_MODULE}.aiohttp.ClientSession", return_value=mock_session):
            with patch(f"{CLIENT_MODULE}.aiohttp.TCPConnector"):
                pending = await client.submit(manager, "setController", ["5C"], CallOptions())

        assert pending == PendingTransaction(tx_hash="0xabc")
        assert _sent_payload(mock_session)["method"] == SUBMIT_CALL

    @pytest.mark.asyncio
    async def test_submit_is_never_retried_elsewhere(
        self, client: ContractsRpcClient, manager: DeployedContract
    ) -> None:
        mock_session = _mock_session(error=ConnectionError("down"))

        with patch(f"{CLIENT_MODULE}.aiohttp.ClientSession", return_value=mock_session):
            with patch(f"{CLIENT_MODULE}.aiohttp.TCPConnector"):
                with pytest.raises(RuntimeError):
                    await client.submit(manager, "setController", ["5C"], CallOptions())

        assert mock_session.post.call_count == 1

    @pytest.mark.asyncio
    async def test_submit_without_hash_raises(
        self, client: ContractsRpcClient, manager: DeployedContract
    ) -> None:
        mock_session = _mock_session({"result": {}})

        with patch(f"{CLIENT_MODULE}.aiohttp.ClientSession", return_value=mock_session):
            with patch(f"{CLIENT_MODULE}.aiohttp.TCPConnector"):
                with pytest.raises(RuntimeError, match="no transaction hash"):
                    await client.submit(manager, "setController", ["5C"], CallOptions())

    @pytest.mark.asyncio
    async def test_instantiate_returns_address(self, client: ContractsRpcClient) -> None:
        mock_session = _mock_session({"result": {"txHash": "0x1", "address": "5Pool"}})
        code = ContractCode("pool", code_hash="0xcode")

        with patch(f"{CLIENT_MODULE}.aiohttp.ClientSession", return_value=mock_session):
            with patch(f"{CLIENT_MODULE}.aiohttp.TCPConnector"):
                pending = await client.instantiate(
                    code, ["5Token"], Signer("5Deployer"), CallOptions()
                )

        assert pending == PendingTransaction(tx_hash="0x1", contract_address="5Pool")
        payload = _sent_payload(mock_session)
        assert payload["method"] == SUBMIT_INSTANTIATE
        assert payload["params"][0]["constructor"] == "new"
        assert payload["params"][0]["codeHash"] == "0xcode"


class TestAwaitFinality:
    @pytest.mark.asyncio
    async def test_instant_finality_skips_polling(self) -> None:
        client = ContractsRpcClient(
            NetworkConfig(name="local", rpc_endpoints=("ws://x",), instant_finality=True)
        )
        client.rpc_call = AsyncMock()

        receipt = await client.await_finality(PendingTransaction("0x1"), FinalityConfig())

        assert receipt.tx_hash == "0x1"
        client.rpc_call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_polls_until_finalized(
        self, client: ContractsRpcClient, fast_finality: FinalityConfig
    ) -> None:
        client.rpc_call = AsyncMock(
            side_effect=[
                {"status": "ready"},
                {"status": "inBlock"},
                {"status": "finalized", "blockHash": "0xblock"},
            ]
        )

        receipt = await client.await_finality(PendingTransaction("0x1"), fast_finality)

        assert receipt.block_hash == "0xblock"
        assert client.rpc_call.await_count == 3
        client.rpc_call.assert_awaited_with(TX_STATUS, ["0x1"])

    @pytest.mark.asyncio
    async def test_poll_errors_are_tolerated(
        self, client: ContractsRpcClient, fast_finality: FinalityConfig
    ) -> None:
        client.rpc_call = AsyncMock(
            side_effect=[RuntimeError("All RPC endpoints failed"), {"status": "finalized"}]
        )

        receipt = await client.await_finality(PendingTransaction("0x1"), fast_finality)

        assert receipt.finalized

    @pytest.mark.asyncio
    async def test_dropped_transaction_faults(
        self, client: ContractsRpcClient, fast_finality: FinalityConfig
    ) -> None:
        client.rpc_call = AsyncMock(return_value={"status": "Dropped"})

        with pytest.raises(ExecutionFault, match="Transaction dropped"):
            await client.await_finality(PendingTransaction("0x1"), fast_finality)

    @pytest.mark.asyncio
    async def test_times_out(
        self, client: ContractsRpcClient, fast_finality: FinalityConfig
    ) -> None:
        client.rpc_call = AsyncMock(return_value={"status": "inBlock"})

        with pytest.raises(FinalityTimeout) as exc_info:
            await client.await_finality(PendingTransaction("0x1"), fast_finality)

        assert exc_info.value.tx_hash == "0x1"
        assert exc_info.value.waited >= fast_finality.timeout_seconds

    @pytest.mark.asyncio
    async def test_cancel_before_first_poll(
        self, client: ContractsRpcClient, fast_finality: FinalityConfig
    ) -> None:
        client.rpc_call = AsyncMock()
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(FinalityCancelled):
            await client.await_finality(PendingTransaction("0x1"), fast_finality, cancel)

        client.rpc_call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_while_waiting(self, client: ContractsRpcClient) -> None:
        client.rpc_call = AsyncMock(return_value={"status": "inBlock"})
        policy = FinalityConfig(poll_interval_seconds=5, timeout_seconds=30)
        cancel = asyncio.Event()

        async def cancel_soon() -> None:
            await asyncio.sleep(0.01)
            cancel.set()

        canceller = asyncio.create_task(cancel_soon())
        with pytest.raises(FinalityCancelled):
            await client.await_finality(PendingTransaction("0x1"), policy, cancel)
        await canceller

        assert client.rpc_call.await_count == 1

    @pytest.mark.asyncio
    async def test_slow_status_query_is_bounded_by_timeout(
        self, client: ContractsRpcClient, fast_finality: FinalityConfig
    ) -> None:
        async def stalled_post(rpc_url, payload):
            await asyncio.sleep(1)
            return {"status": "finalized"}

        client._post = stalled_post
        loop = asyncio.get_running_loop()
        started = loop.time()

        with pytest.raises(FinalityTimeout) as exc_info:
            await client.await_finality(PendingTransaction("0x1"), fast_finality)

        assert loop.time() - started < 0.8
        assert exc_info.value.waited >= fast_finality.timeout_seconds

    @pytest.mark.asyncio
    async def test_cancel_interrupts_slow_status_query(self, client: ContractsRpcClient) -> None:
        async def stalled_post(rpc_url, payload):
            await asyncio.sleep(1)
            return {"status": "finalized"}

        client._post = stalled_post
        policy = FinalityConfig(poll_interval_seconds=5, timeout_seconds=30)
        cancel = asyncio.Event()
        loop = asyncio.get_running_loop()
        loop.call_later(0.05, cancel.set)
        started = loop.time()

        with pytest.raises(FinalityCancelled):
            await client.await_finality(PendingTransaction("0x1"), policy, cancel)

        assert loop.time() - started < 0.8
