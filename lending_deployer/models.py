"""Data models, all frozen (immutable)."""
from __future__ import annotations

import json
from dataclasses import dataclass, replace
from typing import Any


@dataclass(frozen=True)
class Signer:
    """Principal on whose behalf the gateway signs transactions."""

    address: str
    label: str = "deployer"


@dataclass(frozen=True)
class ContractCode:
    """A contract blueprint that can be instantiated.

    ``name`` selects the uploaded artifact on the gateway side;
    ``code_hash`` pins a specific upload when set.
    """

    name: str
    code_hash: str = ""


@dataclass(frozen=True)
class DeployedContract:
    """Handle to a live contract, bound to the signer that calls it."""

    name: str
    address: str
    code: ContractCode
    signer: Signer

    def as_signer(self, signer: Signer) -> DeployedContract:
        """Same contract, called on behalf of another principal."""
        return replace(self, signer=signer)


@dataclass(frozen=True)
class CallOptions:
    """Resource ceilings attached to every call."""

    ref_time: int = (2_000_000_000 - 1) * 10
    proof_size: int = 2_000_000
    storage_deposit_limit: int = 10**18

    def to_params(self) -> dict[str, Any]:
        return {
            "gasLimit": {"refTime": self.ref_time, "proofSize": self.proof_size},
            "storageDepositLimit": str(self.storage_deposit_limit),
        }


@dataclass(frozen=True)
class PendingTransaction:
    tx_hash: str
    contract_address: str = ""


@dataclass(frozen=True)
class FinalityReceipt:
    tx_hash: str
    block_hash: str = ""
    finalized: bool = True


@dataclass(frozen=True)
class Receipt:
    """A committed call together with the value its simulation returned."""

    calldata: str
    value: Any
    finality: FinalityReceipt


def _jsonable(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool) and abs(value) > 2**53:
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    return value


def encode_args(args: list[Any] | tuple[Any, ...]) -> list[Any]:
    """Arguments as sent on the wire; integers above 2**53 become strings."""
    return [_jsonable(a) for a in args]


def format_calldata(name: str, method: str, args: list[Any] | tuple[Any, ...]) -> str:
    """Render ``Contract.method([...])`` for logs and error messages."""
    return f"{name}.{method}({json.dumps(encode_args(args))})"
