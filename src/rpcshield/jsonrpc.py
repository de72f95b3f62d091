"""JSON-RPC 2.0 envelope helpers shared by the gateway and the transport."""

import itertools
from typing import Any, Optional

JSONRPC_VERSION = "2.0"

# Standard codes
PARSE_ERROR = -32700
INTERNAL_ERROR = -32603

# Application-defined codes emitted by the gateway
ORIGIN_FORBIDDEN = -32403
RATE_LIMITED = -32429

_request_ids = itertools.count(1)


def build_request(method: str, params: Optional[list] = None) -> dict:
    """Build a JSON-RPC request with a process-unique id."""
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": next(_request_ids),
        "method": method,
        "params": params if params is not None else [],
    }


def build_error(
    request_id: Any,
    code: int,
    message: str,
    data: Optional[Any] = None,
) -> dict:
    """Build a JSON-RPC error response."""
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "error": error,
    }


def extract_id(payload: Any) -> Any:
    """Return the request id of a parsed payload, or None.

    Batches (lists) and non-object payloads have no single id.
    """
    if isinstance(payload, dict):
        return payload.get("id")
    return None


def extract_method(payload: Any) -> Optional[str]:
    """Return the method name of a parsed payload, or a batch marker."""
    if isinstance(payload, dict):
        return payload.get("method")
    if isinstance(payload, list):
        return f"batch[{len(payload)}]"
    return None
