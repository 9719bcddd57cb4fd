"""Lifecycle management of individual node processes."""

import asyncio
import contextlib
import logging
import os
import shutil
import signal as signals
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from replsetmanager.client import AdminClient
from replsetmanager.exceptions import ProcessStartError, TransportError
from replsetmanager.retry import retry_with_backoff
from replsetmanager.topology import NodeSpec, NodeStatus

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], AdminClient]


def normalize_signal(signal: int) -> int:
    """Accept ``kill``-style negative signal numbers (``-15``) as well as plain ones."""
    return abs(int(signal))


class NodeManager(ABC):
    """Abstract interface owning the process of one replica set member."""

    @property
    @abstractmethod
    def spec(self) -> NodeSpec:
        """Configuration the node was provisioned with."""
        ...

    @abstractmethod
    async def start(self, *, purge: bool = False) -> None:
        """Start the node and wait until it accepts connections."""
        ...

    @abstractmethod
    async def stop(self, *, signal: int = signals.SIGTERM) -> None:
        """Stop the node with the given signal and wait for it to exit."""
        ...

    async def restart(self, *, purge: bool = False) -> None:
        """Stop the node if it is running, then start it again."""
        await self.stop()
        await self.start(purge=purge)

    @abstractmethod
    def is_connected(self) -> bool:
        """Whether the node was reachable at the last check."""
        ...

    @abstractmethod
    def last_known_status(self) -> NodeStatus:
        """Status from the last successful query."""
        ...

    @abstractmethod
    async def refresh_status(self) -> NodeStatus:
        """Query the node for its current status."""
        ...


class MongodNodeManager(NodeManager):
    """Runs one ``mongod`` process as a replica set member."""

    def __init__(
        self,
        spec: NodeSpec,
        *,
        replset_name: str = "rs",
        bin: str = "mongod",
        server_options: dict[str, Any] | None = None,
        timeout: float = 2.0,
        stop_timeout: float = 10.0,
        startup_attempts: int = 20,
        client_factory: ClientFactory | None = None,
    ) -> None:
        """Initialize manager (does not start the process).

        Args:
            spec: Port and paths of this node
            replset_name: Value passed as ``--replSet``
            bin: mongod executable
            server_options: Extra command line options; True values become
                bare flags, False and None values are left out
            timeout: Admin connection timeout in seconds
            stop_timeout: Seconds to wait after signalling before killing
            startup_attempts: Connection attempts before giving up on start
            client_factory: Builds the admin client for an address
        """
        self._spec = spec
        self._replset_name = replset_name
        self._bin = bin
        self._server_options = dict(server_options or {})
        self._stop_timeout = stop_timeout
        self._startup_attempts = startup_attempts
        self._client_factory: ClientFactory = client_factory or (
            lambda address: AdminClient(address, timeout=timeout)
        )
        self._process: asyncio.subprocess.Process | None = None
        self._connected = False
        self._status = NodeStatus()

    @property
    def spec(self) -> NodeSpec:
        return self._spec

    @property
    def pid(self) -> int | None:
        """Process id of the running node, if any."""
        return self._process.pid if self._process is not None else None

    def command_line(self) -> list[str]:
        """Build the mongod argument vector."""
        args = [
            self._bin,
            "--port",
            str(self._spec.port),
            "--bind_ip",
            self._spec.host,
            "--replSet",
            self._replset_name,
        ]
        if self._spec.dbpath:
            args += ["--dbpath", self._spec.dbpath]
        if self._spec.logpath:
            args += ["--logpath", self._spec.logpath]

        for name, value in self._server_options.items():
            if value is None or value is False:
                continue
            args.append(f"--{name}")
            if value is not True:
                args.append(str(value))
        return args

    def is_connected(self) -> bool:
        return self._connected

    def last_known_status(self) -> NodeStatus:
        return self._status

    async def start(self, *, purge: bool = False) -> None:
        if self._connected:
            return

        if self._process is not None and self._process.returncode is None:
            # Still running but unanswered at the last check: reconnect, never spawn twice.
            logger.info("Node %s is still running, reconnecting", self._spec.address)
        else:
            await self._spawn(purge)

        await self._await_reachable()
        self._connected = True
        await self.refresh_status()
        logger.info("Node %s started (pid %s)", self._spec.address, self.pid)

    async def _spawn(self, purge: bool) -> None:
        await self._prepare_paths(purge)

        args = self.command_line()
        logger.info("Starting node %s: %s", self._spec.address, " ".join(args))
        try:
            self._process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            raise ProcessStartError(f"Could not run {self._bin}: {e}") from e

    async def _await_reachable(self) -> None:
        try:
            await retry_with_backoff(
                self._check_reachable,
                max_attempts=self._startup_attempts,
                base_delay=0.1,
                max_delay=1.0,
                retry_on=(TransportError,),
            )
        except TransportError as e:
            await self._terminate(signals.SIGKILL)
            raise ProcessStartError(f"Node {self._spec.address} never became reachable") from e
        except ProcessStartError:
            self._process = None
            raise

    async def stop(self, *, signal: int = signals.SIGTERM) -> None:
        self._connected = False
        await self._terminate(normalize_signal(signal))

    async def refresh_status(self) -> NodeStatus:
        try:
            async with self._client_factory(self._spec.address) as client:
                reply = await client.hello()
        except TransportError:
            self._connected = False
            raise

        self._status = NodeStatus.from_hello(reply)
        self._connected = True
        return self._status

    async def _check_reachable(self) -> None:
        assert self._process is not None
        if self._process.returncode is not None:
            raise ProcessStartError(
                f"Node {self._spec.address} exited with code {self._process.returncode}"
            )
        async with self._client_factory(self._spec.address):
            pass

    async def _prepare_paths(self, purge: bool) -> None:
        dbpath = self._spec.dbpath
        if dbpath:
            if purge:
                logger.debug("Purging %s", dbpath)
                await asyncio.to_thread(shutil.rmtree, dbpath, ignore_errors=True)
            os.makedirs(dbpath, exist_ok=True)
        if self._spec.logpath:
            os.makedirs(os.path.dirname(self._spec.logpath) or ".", exist_ok=True)

    async def _terminate(self, sig: int) -> None:
        process, self._process = self._process, None
        if process is None or process.returncode is not None:
            return

        logger.info("Stopping node %s with signal %d", self._spec.address, sig)
        with contextlib.suppress(ProcessLookupError):
            process.send_signal(sig)

        try:
            await asyncio.wait_for(process.wait(), timeout=self._stop_timeout)
        except TimeoutError:
            logger.warning("Node %s ignored signal %d, killing it", self._spec.address, sig)
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
