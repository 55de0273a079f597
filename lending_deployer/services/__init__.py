"""Service modules"""
from .executor import TransactionExecutor
from .orchestrator import Deployment, DeploymentOrchestrator

__all__ = ["TransactionExecutor", "Deployment", "DeploymentOrchestrator"]
