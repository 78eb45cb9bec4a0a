"""Domain errors raised inside the engine.

Most failures never surface as exceptions: a failed source is folded into the
report as ``None``.  These types cover the cases that callers must see.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Stable error codes attached to every SSAError."""

    INVALID_ARGS = "INVALID_ARGS"
    RPC_TRANSPORT = "RPC_TRANSPORT"
    PERSISTENCE = "PERSISTENCE"
    REGISTRY = "REGISTRY"


class SSAError(Exception):
    """Base engine error with structured code + message."""

    code: ErrorCode = ErrorCode.INVALID_ARGS

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code.value, "message": self.message, "details": self.details}


class InvalidArgumentError(SSAError):
    """Malformed target identifier or RPC URL."""

    code = ErrorCode.INVALID_ARGS


class RpcTransportError(SSAError):
    """Request failed, timed out or returned a non-404 error status."""

    code = ErrorCode.RPC_TRANSPORT

    def __init__(self, message: str, endpoint: str = "", status_code: int | None = None) -> None:
        super().__init__(message, {"endpoint": endpoint, "status_code": status_code})
        self.endpoint = endpoint
        self.status_code = status_code


class PersistenceError(SSAError):
    """Snapshot, registry or report write failed."""

    code = ErrorCode.PERSISTENCE


class RegistryError(SSAError):
    code = ErrorCode.REGISTRY
