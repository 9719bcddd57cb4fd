"""Async replica set orchestration for test suites."""

import logging
from typing import Any

from replsetmanager.client import AdminClient
from replsetmanager.config import ReplSetOptions
from replsetmanager.exceptions import (
    AdminCommandError,
    ConfigurationError,
    InvalidStateError,
    NoEligibleNodeError,
    NoServersAvailableError,
    ProcessStartError,
    ReplSetError,
    SelectionError,
    TransportError,
)
from replsetmanager.membership import MembershipDocument, MemberRecord, build_membership
from replsetmanager.node_manager import MongodNodeManager, NodeManager
from replsetmanager.orchestrator import NodeHandle, ReplSetOrchestrator, ReplSetState
from replsetmanager.poller import ClusterStatusSnapshot, MemberStatus, wait_for_convergence
from replsetmanager.topology import NodeSpec, NodeStatus, Role, plan_nodes

__all__ = [
    "start_replset",
    "ReplSetOrchestrator",
    "ReplSetOptions",
    "ReplSetState",
    "NodeHandle",
    "NodeManager",
    "MongodNodeManager",
    "AdminClient",
    "NodeSpec",
    "NodeStatus",
    "Role",
    "plan_nodes",
    "MembershipDocument",
    "MemberRecord",
    "build_membership",
    "ClusterStatusSnapshot",
    "MemberStatus",
    "wait_for_convergence",
    "ReplSetError",
    "ConfigurationError",
    "InvalidStateError",
    "ProcessStartError",
    "TransportError",
    "SelectionError",
    "NoServersAvailableError",
    "NoEligibleNodeError",
    "AdminCommandError",
]

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())


async def start_replset(
    options: ReplSetOptions | None = None,
    **overrides: Any,
) -> ReplSetOrchestrator:
    """Start a replica set and wait until it is healthy.

    Args:
        options: Replica set settings; when omitted they are read from the
            environment (see ``ReplSetOptions.from_env``)
        overrides: Option values taking precedence over the environment

    Returns:
        A READY orchestrator; call ``stop()`` when done
    """
    if options is None:
        options = ReplSetOptions.from_env(**overrides)
    orchestrator = ReplSetOrchestrator(options)
    await orchestrator.start()
    return orchestrator
