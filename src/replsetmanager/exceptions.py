"""Exceptions for the replica set manager."""

from typing import Any


class ReplSetError(Exception):
    """Base exception for replica set manager errors."""

    pass


class ConfigurationError(ReplSetError):
    """Invalid topology or option request, detected before any process starts."""

    pass


class InvalidStateError(ReplSetError):
    """Operation not allowed in the orchestrator's current state."""

    pass


class ProcessStartError(ReplSetError):
    """A node process failed to start or never became reachable."""

    pass


class TransportError(ReplSetError):
    """Could not reach a node (refused, closed or timed out)."""

    pass


class SelectionError(ReplSetError):
    """Role-based node selection found no candidate."""

    pass


class NoServersAvailableError(SelectionError):
    """No node is currently connected."""

    pass


class NoEligibleNodeError(SelectionError):
    """Nodes are connected but none matches the requested role."""

    pass


class AdminCommandError(ReplSetError):
    """The data store rejected an administrative command."""

    code: int
    message: str
    details: dict[str, Any]

    def __init__(self, code: int, message: str, details: dict[str, Any] | None = None) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(f"[{code}] {message}")
