"""Exception types raised by the governance oracle."""

from typing import Optional


class OracleError(Exception):
    """Base class for oracle errors."""


class RpcError(OracleError):
    """The node answered with a JSON-RPC error object."""

    def __init__(self, method: str, code: int, message: str):
        super().__init__(f"RPC error {code} calling {method}: {message}")
        self.method = method
        self.code = code


class RpcTransportError(OracleError):
    """The RPC request failed before a JSON-RPC result could be read."""

    def __init__(self, method: str, message: str, status: Optional[int] = None):
        super().__init__(f"RPC transport error calling {method}: {message}")
        self.method = method
        self.status = status


class StoreError(OracleError):
    """The document store rejected or failed a request."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class StoreNotInitializedError(StoreError):
    """A publisher call was made before initialize()."""


class ProposalParseError(OracleError):
    """A governance object's DataString is not a usable proposal payload."""
