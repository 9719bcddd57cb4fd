"""Node roles, per-node specs and status."""

import os
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from replsetmanager.config import ReplSetOptions

# replSetGetStatus member state codes
STATE_PRIMARY = 1
STATE_SECONDARY = 2
STATE_ARBITER = 7

ACCEPTED_STATES = frozenset({STATE_PRIMARY, STATE_SECONDARY, STATE_ARBITER})


class Role(StrEnum):
    """Role a node reports for itself."""

    PRIMARY = "primary"
    SECONDARY = "secondary"
    ARBITER = "arbiter"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class NodeSpec:
    """Derived configuration of one provisioned node."""

    index: int
    host: str
    port: int
    dbpath: str | None
    logpath: str | None
    role_hint: Role

    @property
    def address(self) -> str:
        """Node address in "host:port" format."""
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class NodeStatus:
    """Last status a node reported about itself."""

    role: Role = Role.UNKNOWN
    self_address: str | None = None
    primary_address: str | None = None

    @classmethod
    def from_hello(cls, reply: dict[str, Any]) -> "NodeStatus":
        """Build from a ``hello`` (or legacy ``isMaster``) reply."""
        if reply.get("isWritablePrimary") or reply.get("ismaster"):
            role = Role.PRIMARY
        elif reply.get("secondary"):
            role = Role.SECONDARY
        elif reply.get("arbiterOnly"):
            role = Role.ARBITER
        else:
            role = Role.UNKNOWN
        return cls(role=role, self_address=reply.get("me"), primary_address=reply.get("primary"))


def plan_nodes(options: ReplSetOptions) -> list[NodeSpec]:
    """Partition replica set options into one spec per node.

    Node 0 is the intended primary, followed by the secondaries and then the
    arbiters. Ports are assigned sequentially from ``options.start_port``.
    """
    specs: list[NodeSpec] = []
    for index in range(options.num_nodes):
        port = options.start_port + index
        if index == 0:
            role = Role.PRIMARY
        elif index <= options.secondaries:
            role = Role.SECONDARY
        else:
            role = Role.ARBITER

        dbpath = os.path.join(options.dbpath, f"data-{port}") if options.dbpath else None
        logpath = os.path.join(options.logpath, f"data-{port}.log") if options.logpath else None
        specs.append(
            NodeSpec(
                index=index,
                host=options.host,
                port=port,
                dbpath=dbpath,
                logpath=logpath,
                role_hint=role,
            )
        )
    return specs
