"""Pytest configuration for replsetmanager tests."""

import asyncio
import signal as signals
from typing import Any
from unittest.mock import AsyncMock

import pytest

from replsetmanager.config import ReplSetOptions
from replsetmanager.exceptions import TransportError
from replsetmanager.node_manager import NodeManager
from replsetmanager.orchestrator import ReplSetOrchestrator
from replsetmanager.topology import (
    STATE_ARBITER,
    STATE_PRIMARY,
    STATE_SECONDARY,
    NodeSpec,
    NodeStatus,
    Role,
)

STATE_CODES = {
    Role.PRIMARY: STATE_PRIMARY,
    Role.SECONDARY: STATE_SECONDARY,
    Role.ARBITER: STATE_ARBITER,
}
STATE_DOWN = 8


class FakeNodeManager(NodeManager):
    """In-memory node: running flag plus the role the fake cluster assigned."""

    def __init__(self, cluster: "FakeCluster", spec: NodeSpec) -> None:
        self._cluster = cluster
        self._spec = spec
        self.running = False
        self.role = spec.role_hint
        self.fail_start: Exception | None = None
        self.fail_stop: Exception | None = None
        self.fail_refresh: Exception | None = None
        self.start_delay = 0.0
        self.spawned = False
        self.starts = 0
        self.stop_signals: list[int] = []
        self._status = NodeStatus()

    @property
    def spec(self) -> NodeSpec:
        return self._spec

    async def start(self, *, purge: bool = False) -> None:
        self.starts += 1
        if self.start_delay:
            await asyncio.sleep(self.start_delay)
        # The process exists from here on, even if it never answers.
        self.spawned = True
        if self.fail_start is not None:
            raise self.fail_start
        self.running = True

    async def stop(self, *, signal: int = signals.SIGTERM) -> None:
        self.stop_signals.append(signal)
        self.running = False
        self.spawned = False
        if self.fail_stop is not None:
            raise self.fail_stop

    def is_connected(self) -> bool:
        return self.running

    def last_known_status(self) -> NodeStatus:
        return self._status

    async def refresh_status(self) -> NodeStatus:
        if self.fail_refresh is not None:
            self.running = False
            raise self.fail_refresh
        if not self.running:
            raise TransportError(f"{self._spec.address} is down")
        self._status = NodeStatus(
            role=self.role,
            self_address=self._spec.address,
            primary_address=self._cluster.primary_address(),
        )
        return self._status

    def hello(self) -> dict[str, Any]:
        return {
            "isWritablePrimary": self.role is Role.PRIMARY,
            "secondary": self.role is Role.SECONDARY,
            "arbiterOnly": self.role is Role.ARBITER,
            "me": self._spec.address,
            "primary": self._cluster.primary_address(),
            "ok": 1,
        }


class FakeAdminClient:
    """Admin client answering from the fake cluster's node table."""

    def __init__(self, cluster: "FakeCluster", address: str) -> None:
        self._cluster = cluster
        self.address = address
        self.closed = False

    def _node(self) -> FakeNodeManager:
        node = self._cluster.nodes.get(self.address)
        if node is None or not node.running:
            raise TransportError(f"Connection to {self.address} refused")
        return node

    async def connect(self) -> None:
        self._node()

    async def close(self) -> None:
        self.closed = True

    async def __aenter__(self) -> "FakeAdminClient":
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def command(self, document: dict[str, Any], *, database: str = "admin") -> dict[str, Any]:
        node = self._node()
        self._cluster.commands.append((self.address, document))
        name = next(iter(document))

        override = self._cluster.replies.get(name)
        if isinstance(override, Exception):
            raise override
        if override is not None:
            return override

        if name == "hello":
            return node.hello()
        if name == "replSetGetStatus":
            return self._cluster.status()
        return {"ok": 1}

    async def hello(self) -> dict[str, Any]:
        return await self.command({"hello": 1})

    async def repl_set_get_status(self) -> dict[str, Any]:
        return await self.command({"replSetGetStatus": 1})


class FakeCluster:
    """Shared state behind fake managers and clients."""

    def __init__(self) -> None:
        self.nodes: dict[str, FakeNodeManager] = {}
        self.commands: list[tuple[str, dict[str, Any]]] = []
        self.replies: dict[str, Any] = {}
        self.clients: list[FakeAdminClient] = []

    def manager_factory(self, spec: NodeSpec) -> FakeNodeManager:
        manager = FakeNodeManager(self, spec)
        self.nodes[spec.address] = manager
        return manager

    def client_factory(self, address: str) -> FakeAdminClient:
        client = FakeAdminClient(self, address)
        self.clients.append(client)
        return client

    def primary_address(self) -> str | None:
        for address, node in self.nodes.items():
            if node.running and node.role is Role.PRIMARY:
                return address
        return None

    def status(self) -> dict[str, Any]:
        members = [
            {
                "_id": node.spec.index,
                "name": address,
                "state": STATE_CODES.get(node.role, 0) if node.running else STATE_DOWN,
            }
            for address, node in self.nodes.items()
        ]
        return {"set": "rs", "members": members, "ok": 1}

    def commands_named(self, name: str) -> list[tuple[str, dict[str, Any]]]:
        return [(address, doc) for address, doc in self.commands if name in doc]


@pytest.fixture
def fake_cluster() -> FakeCluster:
    """Create an empty fake cluster."""
    return FakeCluster()


@pytest.fixture
def options() -> ReplSetOptions:
    """Three node replica set options: one primary, two secondaries."""
    return ReplSetOptions(start_port=31000, secondaries=2, arbiters=0)


@pytest.fixture
def orchestrator(fake_cluster: FakeCluster, options: ReplSetOptions) -> ReplSetOrchestrator:
    """Create an orchestrator wired to the fake cluster."""
    return ReplSetOrchestrator(
        options,
        manager_factory=fake_cluster.manager_factory,
        client_factory=fake_cluster.client_factory,
        sleep=AsyncMock(),
    )


@pytest.fixture
async def ready_replset(orchestrator: ReplSetOrchestrator) -> ReplSetOrchestrator:
    """An orchestrator that has already been started."""
    await orchestrator.start()
    return orchestrator
