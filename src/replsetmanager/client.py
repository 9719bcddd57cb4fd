"""Administrative client for a single replica set member."""

import logging
from typing import Any

from pymongo import AsyncMongoClient
from pymongo.errors import ConnectionFailure, OperationFailure

from replsetmanager.exceptions import AdminCommandError, TransportError

logger = logging.getLogger(__name__)


class AdminClient:
    """Async connection to one node for administrative commands.

    Always connects directly to the given node, never to the replica set as
    a whole, so commands reach that node even before the set is initiated.
    """

    def __init__(self, address: str, *, timeout: float = 2.0) -> None:
        """Initialize client (does not connect yet).

        Args:
            address: Node address in "host:port" format
            timeout: Connect and server selection timeout in seconds
        """
        self._address = address
        self._timeout = timeout
        self._client: AsyncMongoClient[dict[str, Any]] | None = None

    @property
    def address(self) -> str:
        """Get the node address."""
        return self._address

    @property
    def is_connected(self) -> bool:
        """Check if connected."""
        return self._client is not None

    async def connect(self) -> None:
        """Open the connection and verify the node answers."""
        if self._client is not None:
            return

        host, port_str = self._address.rsplit(":", 1)
        timeout_ms = int(self._timeout * 1000)
        self._client = AsyncMongoClient(
            host,
            int(port_str),
            directConnection=True,
            connectTimeoutMS=timeout_ms,
            serverSelectionTimeoutMS=timeout_ms,
        )

        try:
            await self.command({"ping": 1})
        except Exception:
            await self.close()
            raise

    async def close(self) -> None:
        """Close the connection."""
        if self._client is not None:
            client, self._client = self._client, None
            await client.close()

    async def __aenter__(self) -> "AdminClient":
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _ensure_connected(self) -> AsyncMongoClient[dict[str, Any]]:
        if self._client is None:
            raise TransportError(f"Not connected to {self._address}")
        return self._client

    async def command(self, document: dict[str, Any], *, database: str = "admin") -> dict[str, Any]:
        """Run a command and return the reply.

        Raises:
            AdminCommandError: The node answered with ``ok: 0``
            TransportError: The node could not be reached
        """
        client = self._ensure_connected()
        name = next(iter(document))
        logger.debug("Sending %s to %s", name, self._address)

        try:
            return await client[database].command(document)
        except OperationFailure as e:
            details = e.details or {}
            raise AdminCommandError(
                e.code or 0, details.get("errmsg", str(e)), dict(details)
            ) from e
        except ConnectionFailure as e:
            raise TransportError(f"{name} to {self._address} failed: {e}") from e

    async def hello(self) -> dict[str, Any]:
        """Ask the node who it is and who it thinks is primary."""
        return await self.command({"hello": 1})

    async def repl_set_get_status(self) -> dict[str, Any]:
        """Fetch the replica set status as seen by this node."""
        return await self.command({"replSetGetStatus": 1})
