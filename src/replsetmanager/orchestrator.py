"""Replica set lifecycle orchestration for test suites."""

import asyncio
import logging
import signal as signals
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from replsetmanager.client import AdminClient
from replsetmanager.config import ReplSetOptions
from replsetmanager.exceptions import (
    InvalidStateError,
    NoEligibleNodeError,
    NoServersAvailableError,
    ProcessStartError,
    TransportError,
)
from replsetmanager.membership import MembershipDocument, build_membership
from replsetmanager.node_manager import MongodNodeManager, NodeManager
from replsetmanager.poller import ClusterStatusSnapshot, wait_for_convergence
from replsetmanager.topology import NodeSpec, NodeStatus, Role, plan_nodes

logger = logging.getLogger(__name__)

ManagerFactory = Callable[[NodeSpec], NodeManager]
ClientFactory = Callable[[str], AdminClient]


class ReplSetState(StrEnum):
    UNSTARTED = "unstarted"
    STARTING = "starting"
    CONFIGURING = "configuring"
    CONVERGING = "converging"
    READY = "ready"
    DEGRADED = "degraded"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass(eq=False)
class NodeHandle:
    """A provisioned node and the manager owning its process."""

    spec: NodeSpec
    manager: NodeManager
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def address(self) -> str:
        return self.spec.address

    @property
    def connected(self) -> bool:
        return self.manager.is_connected()

    @property
    def status(self) -> NodeStatus:
        """Status the node last reported, as kept by its manager."""
        return self.manager.last_known_status()

    @property
    def role(self) -> Role:
        return self.status.role

    async def refresh(self) -> NodeStatus:
        """Query the node's live status, one query at a time per node."""
        async with self._lock:
            return await self.manager.refresh_status()


class ReplSetOrchestrator:
    """Starts, configures and selectively fails a replica set."""

    def __init__(
        self,
        options: ReplSetOptions | None = None,
        *,
        manager_factory: ManagerFactory | None = None,
        client_factory: ClientFactory | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize orchestrator (does not start anything).

        Args:
            options: Replica set settings, defaults to ``ReplSetOptions()``
            manager_factory: Builds the node manager for each planned node
            client_factory: Builds an admin client for an address
            sleep: Coroutine used between convergence polls
        """
        self._options = options or ReplSetOptions()
        self._client_factory: ClientFactory = client_factory or (
            lambda address: AdminClient(address, timeout=self._options.connect_timeout)
        )
        self._manager_factory: ManagerFactory = manager_factory or self._mongod_manager
        self._sleep = sleep
        self._handles: list[NodeHandle] = []
        self._state = ReplSetState.UNSTARTED
        self._version = 1

    @property
    def options(self) -> ReplSetOptions:
        return self._options

    @property
    def name(self) -> str:
        return self._options.name

    @property
    def state(self) -> ReplSetState:
        return self._state

    @property
    def version(self) -> int:
        """Configuration version used for the next membership document."""
        return self._version

    @property
    def nodes(self) -> tuple[NodeHandle, ...]:
        return tuple(self._handles)

    def _mongod_manager(self, spec: NodeSpec) -> NodeManager:
        opts = self._options
        return MongodNodeManager(
            spec,
            replset_name=opts.name,
            bin=opts.bin,
            server_options=opts.server_options,
            timeout=opts.connect_timeout,
            stop_timeout=opts.stop_timeout,
            startup_attempts=opts.startup_attempts,
            client_factory=self._client_factory,
        )

    def _membership(self, specs: list[NodeSpec]) -> MembershipDocument:
        return build_membership(
            specs,
            secondaries=self._options.secondaries,
            arbiters=self._options.arbiters,
            name=self._options.name,
            version=self._version,
        )

    async def start(self, *, purge: bool | None = None) -> ClusterStatusSnapshot:
        """Provision, initiate and wait for the replica set.

        Node starts run concurrently. The earliest start failure is raised
        once every other start has settled, after which all nodes are
        stopped again. If a node stops answering between convergence and
        the final status refresh, the set comes up DEGRADED instead of READY.

        Args:
            purge: Remove existing data directories first; defaults to the
                ``purge`` option

        Returns:
            The first status snapshot in which every member was healthy
        """
        if self._state not in (ReplSetState.UNSTARTED, ReplSetState.STOPPED):
            raise InvalidStateError(f"Cannot start a replica set that is {self._state}")
        if purge is None:
            purge = self._options.purge

        specs = plan_nodes(self._options)
        document = self._membership(specs)

        self._state = ReplSetState.STARTING
        self._handles = [NodeHandle(spec, self._manager_factory(spec)) for spec in specs]
        logger.info("Starting replica set %r with %d nodes", self.name, len(specs))

        try:
            await self._start_all(purge)

            self._state = ReplSetState.CONFIGURING
            async with self._client_factory(self._handles[0].address) as client:
                logger.info("Initiating replica set %r on %s", self.name, client.address)
                await client.command({"replSetInitiate": document.to_command()})

                self._state = ReplSetState.CONVERGING
                snapshot = await wait_for_convergence(
                    client, interval=self._options.poll_interval, sleep=self._sleep
                )

            await self._gather_refresh(self._handles)
        except BaseException:
            await self._abort_start()
            raise

        self._update_health()
        logger.info("Replica set %r is %s", self.name, self._state)
        return snapshot

    async def _start_all(self, purge: bool) -> None:
        tasks = {
            asyncio.ensure_future(h.manager.start(purge=purge)): h for h in self._handles
        }
        pending = set(tasks)
        first: BaseException | None = None
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in sorted(done, key=lambda t: tasks[t].spec.index):
                    error = task.exception()
                    if error is None:
                        continue
                    logger.warning("Start of node %s failed: %s", tasks[task].address, error)
                    if first is None:
                        first = error
        except BaseException:
            for task in pending:
                task.cancel()
            raise

        if first is None:
            return
        if isinstance(first, ProcessStartError):
            raise first
        raise ProcessStartError(str(first)) from first

    async def _abort_start(self) -> None:
        logger.warning("Start of replica set %r failed, stopping its nodes", self.name)
        # Stopping a node without a process is a no-op; a node may be running
        # even though its manager no longer reports it connected.
        results = await asyncio.gather(
            *(h.manager.stop() for h in self._handles), return_exceptions=True
        )
        _collect_errors(self._handles, results, "cleanup stop")
        self._handles = []
        self._state = ReplSetState.UNSTARTED

    async def stop(self) -> None:
        """Stop every node; all nodes are attempted even if some fail."""
        if self._state not in (ReplSetState.READY, ReplSetState.DEGRADED):
            raise InvalidStateError(f"Cannot stop a replica set that is {self._state}")

        self._state = ReplSetState.STOPPING
        logger.info("Stopping replica set %r", self.name)
        results = await asyncio.gather(
            *(h.manager.stop() for h in self._handles), return_exceptions=True
        )
        self._state = ReplSetState.STOPPED
        _raise_first(_collect_errors(self._handles, results, "stop"))

    async def restart(self, *, purge: bool = False) -> list[NodeHandle]:
        """Start every node that is currently down.

        Returns:
            The handles that were restarted
        """
        self._require_running()
        downed = [h for h in self._handles if not h.connected]
        if downed:
            logger.info("Restarting %d nodes of replica set %r", len(downed), self.name)
            results = await asyncio.gather(
                *(h.manager.start(purge=purge) for h in downed), return_exceptions=True
            )
            errors = _collect_errors(downed, results, "restart")
            self._update_health()
            _raise_first(errors)
        return downed

    async def shutdown(self, role: Role | str, *, signal: int = signals.SIGTERM) -> NodeHandle:
        """Stop one connected node that currently has the given role.

        Args:
            role: Role the node must report right now
            signal: Signal sent to the process; ``-15`` style values are accepted

        Returns:
            The handle of the stopped node
        """
        self._require_running()
        handle = await self._select_by_role(Role(role))
        logger.info("Shutting down %s %s", handle.role, handle.address)
        await handle.manager.stop(signal=signal)
        self._update_health()
        return handle

    async def restart_server(
        self, role: Role | str = Role.SECONDARY, *, purge: bool = False
    ) -> NodeHandle:
        """Start again a downed node whose last known role was ``role``."""
        self._require_running()
        role = Role(role)
        for handle in self._handles:
            if not handle.connected and handle.role is role:
                logger.info("Restarting downed %s %s", role, handle.address)
                await handle.manager.start(purge=purge)
                self._update_health()
                return handle
        raise NoEligibleNodeError(f"No downed {role} node found")

    async def step_down(
        self, *, avoid_election_for: int = 90, force: bool = False
    ) -> dict[str, Any]:
        """Ask the current primary to step down.

        Args:
            avoid_election_for: Seconds the old primary may not be re-elected
            force: Step down even if no secondary is electable

        Returns:
            The server's reply, unmodified
        """
        self._require_running()
        primary = await self.get_primary()
        async with self._client_factory(primary.address) as client:
            logger.info("Stepping down primary %s", primary.address)
            return await client.command(
                {"replSetStepDown": avoid_election_for, "force": force}
            )

    async def is_master(self) -> dict[str, Any]:
        """Return the ``hello`` reply of the first connected node."""
        handle = self._first_connected()
        async with self._client_factory(handle.address) as client:
            return await client.hello()

    async def primary_address(self) -> str | None:
        """Address of the primary according to the first connected node."""
        reply = await self.is_master()
        return reply.get("primary")

    async def get_primary(self) -> NodeHandle:
        """Map the primary address reported by one node back to its handle."""
        address = await self.primary_address()
        for handle in self._handles:
            if address is not None and handle.status.self_address == address:
                if handle.connected:
                    return handle
                break
        raise NoServersAvailableError(f"Primary {address!r} is not a connected node")

    async def get_nodes_by_role(self, role: Role | str) -> list[NodeHandle]:
        """All connected nodes currently reporting ``role``, in node order."""
        role = Role(role)
        connected = self._connected_handles()
        await self._gather_refresh(connected)
        return [h for h in connected if h.connected and h.role is role]

    async def _select_by_role(self, role: Role) -> NodeHandle:
        matches = await self.get_nodes_by_role(role)
        if not matches:
            raise NoEligibleNodeError(f"No connected {role} node found")
        return matches[0]

    async def _gather_refresh(self, handles: Iterable[NodeHandle]) -> None:
        handles = list(handles)
        results = await asyncio.gather(*(h.refresh() for h in handles), return_exceptions=True)
        # A node that drops out mid-refresh is simply no longer connected.
        errors = _collect_errors(handles, results, "status refresh")
        _raise_first([e for e in errors if not isinstance(e, TransportError)])

    def _connected_handles(self) -> list[NodeHandle]:
        connected = [h for h in self._handles if h.connected]
        if not connected:
            raise NoServersAvailableError("No connected nodes")
        return connected

    def _first_connected(self) -> NodeHandle:
        return self._connected_handles()[0]

    def _require_running(self) -> None:
        if self._state not in (ReplSetState.READY, ReplSetState.DEGRADED):
            raise InvalidStateError(f"Replica set {self.name!r} is {self._state}")

    def _update_health(self) -> None:
        if all(h.connected for h in self._handles):
            self._state = ReplSetState.READY
        else:
            self._state = ReplSetState.DEGRADED

    async def __aenter__(self) -> "ReplSetOrchestrator":
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._state in (ReplSetState.READY, ReplSetState.DEGRADED):
            await self.stop()


def _collect_errors(
    handles: list[NodeHandle], results: list[Any], action: str
) -> list[BaseException]:
    errors = []
    for handle, result in zip(handles, results, strict=True):
        if isinstance(result, BaseException):
            logger.warning("%s of node %s failed: %s", action.capitalize(), handle.address, result)
            errors.append(result)
    return errors


def _raise_first(errors: list[BaseException]) -> None:
    if errors:
        raise errors[0]
