"""Protocol interfaces for the lending protocol deployer."""
from .gateway import RemoteCallGateway

__all__ = ["RemoteCallGateway"]
