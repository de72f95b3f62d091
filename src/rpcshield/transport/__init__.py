"""Outbound RPC transport with endpoint rotation and two-phase confirmation."""

from rpcshield.transport.base import JsonRpcProvider, RpcProvider
from rpcshield.transport.confirmation import ConfirmationResult, ConfirmationState
from rpcshield.transport.factory import get_provider, get_transport
from rpcshield.transport.resilient import ResilientTransport, create_provider
from rpcshield.transport.rotation import RotationProvider, RotationState

__all__ = [
    "ConfirmationResult",
    "ConfirmationState",
    "JsonRpcProvider",
    "ResilientTransport",
    "RotationProvider",
    "RotationState",
    "RpcProvider",
    "create_provider",
    "get_provider",
    "get_transport",
]
