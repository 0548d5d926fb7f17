"""
daopath Error Taxonomy

Typed exceptions raised across the path resolver. Every error carries the
fields a caller needs for diagnostics as attributes, so the RPC boundary can
serialize them without parsing messages.

    PathError
    ├─ InvalidScript         malformed callscript (local, non-retryable)
    ├─ InvalidAddress        malformed 20-byte address
    ├─ ArtifactError         missing app, ABI or method
    ├─ NoPermission          no direct permission and no forwarder chain
    ├─ InsufficientBalance   sender cannot cover a token requirement
    ├─ ResolutionCancelled   caller abandoned a resolution
    ├─ ConfigError           invalid configuration
    └─ RPCError              chain query failed after bounded retries
       └─ RPCTimeout         chain query exceeded its deadline

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class PathError(Exception):
    """Base class for all resolver errors."""

    code = "path_error"

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": str(self)}


class InvalidScript(PathError):
    """Malformed callscript: bad magic, truncated segment or overrun length."""

    code = "invalid_script"

    def __init__(self, message: str, offset: Optional[int] = None):
        self.offset = offset
        if offset is not None:
            message = f"{message} (at byte {offset})"
        super().__init__(message)


class InvalidAddress(PathError, ValueError):
    """Value is not a 20-byte hex address."""

    code = "invalid_address"

    def __init__(self, value: Any, field: str = "address"):
        self.value = value
        self.field = field
        super().__init__(f"{field}: not a valid address: {value!r}")


class ArtifactError(PathError):
    """The target app, its ABI or the requested method is unknown."""

    code = "artifact_error"

    def __init__(self, message: str, address: Optional[str] = None):
        self.address = address
        super().__init__(message)


class NoPermission(PathError):
    """No direct permission and no forwarder chain within the bounded search."""

    code = "no_permission"

    def __init__(self, sender: str, destination: str, depth: int, reason: str = ""):
        self.sender = sender
        self.destination = destination
        self.depth = depth
        self.reason = reason
        message = (
            f"No transaction path for {sender} to {destination} "
            f"(searched depth {depth})"
        )
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "sender": self.sender,
            "destination": self.destination,
            "depth": self.depth,
        })
        return data


class InsufficientBalance(PathError):
    """Sender's token balance is below a required amount."""

    code = "insufficient_balance"

    def __init__(self, token: str, owner: str, balance: int, required: int):
        self.token = token
        self.owner = owner
        self.balance = balance
        self.required = required
        super().__init__(
            f"Balance too low. {owner} balance of {token} token is {balance} "
            f"(attempting to send {required})"
        )


class ResolutionCancelled(PathError):
    """Raised when a resolution is abandoned through its cancellation token."""

    code = "cancelled"


class ConfigError(PathError):
    """Configuration error."""

    code = "config_error"


class RPCError(PathError):
    """A chain query reverted, or kept failing until its retries ran out."""

    code = "rpc_error"

    def __init__(self, method: str, attempts: int, cause: Optional[BaseException] = None):
        self.method = method
        self.attempts = attempts
        self.cause = cause
        message = f"Chain query '{method}' failed after {attempts} attempt(s)"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"method": self.method, "attempts": self.attempts})
        return data


class RPCTimeout(RPCError):
    """A chain query exceeded its deadline on every attempt."""

    code = "rpc_timeout"

    def __init__(self, method: str, attempts: int, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(method, attempts)
        self.args = (
            f"Chain query '{method}' timed out after {timeout_seconds}s "
            f"({attempts} attempt(s))",
        )


__all__ = [
    "PathError",
    "InvalidScript",
    "InvalidAddress",
    "ArtifactError",
    "NoPermission",
    "InsufficientBalance",
    "ResolutionCancelled",
    "ConfigError",
    "RPCError",
    "RPCTimeout",
]
