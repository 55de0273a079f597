"""Error taxonomy for deployment runs."""
from __future__ import annotations

from typing import Any


class DeploymentError(Exception):
    """Base class for every failure that aborts a deployment run.

    ``step`` and ``asset`` are filled in by the orchestrator when the error
    passes through it, so the operator sees where the run stopped.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.step: str | None = None
        self.asset: str | None = None
        # Contract.method([...]) of the call in flight, when there is one.
        self.calldata: str | None = None

    def located(self) -> str:
        """Return ``"step"`` or ``"step [ASSET]"`` for log lines."""
        if self.step is None:
            return "unknown step"
        if self.asset:
            return f"{self.step} [{self.asset}]"
        return self.step


class ExecutionFault(DeploymentError):
    """The call could not execute at all (trap, bad args, weight exhausted)."""

    def __init__(self, calldata: str, reason: str, detail: Any = None) -> None:
        super().__init__(f"Execution fault in {calldata}: {reason}")
        self.calldata = calldata
        self.reason = reason
        self.detail = detail


class BusinessRejection(DeploymentError):
    """The callee executed but declined the operation."""

    def __init__(self, calldata: str, reason: str, detail: Any = None) -> None:
        super().__init__(f"Rejected {calldata}: {reason}")
        self.calldata = calldata
        self.reason = reason
        self.detail = detail


class DerivationDomainError(DeploymentError, ValueError):
    """A protocol parameter cannot be derived from the given inputs."""


class OrderingError(DeploymentError):
    """An orchestration step was attempted before its prerequisites."""


class FinalityTimeout(DeploymentError):
    """A submitted transaction did not finalize within the configured bound."""

    def __init__(self, tx_hash: str, waited: float) -> None:
        super().__init__(f"Transaction {tx_hash} not finalized after {waited:.1f}s")
        self.tx_hash = tx_hash
        self.waited = waited


class FinalityCancelled(DeploymentError):
    """The finality wait was cancelled by the operator."""

    def __init__(self, tx_hash: str) -> None:
        super().__init__(f"Finality wait for {tx_hash} cancelled")
        self.tx_hash = tx_hash
