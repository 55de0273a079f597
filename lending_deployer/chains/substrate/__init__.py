"""Contracts-chain (ink!) gateway."""
from .client import ContractsRpcClient

__all__ = ["ContractsRpcClient"]
