"""Wait for a replica set to converge on a healthy topology."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Collection
from dataclasses import dataclass, field
from typing import Any

from replsetmanager.client import AdminClient
from replsetmanager.exceptions import AdminCommandError, TransportError
from replsetmanager.topology import ACCEPTED_STATES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MemberStatus:
    """One member as reported by ``replSetGetStatus``."""

    id: int
    name: str
    state: int
    state_str: str = ""
    health: float = 1.0


@dataclass(frozen=True)
class ClusterStatusSnapshot:
    """Result of one status query."""

    ok: bool
    members: tuple[MemberStatus, ...]
    fetched_at: float = field(default_factory=time.time)

    @classmethod
    def from_response(cls, reply: dict[str, Any]) -> "ClusterStatusSnapshot":
        members = tuple(
            MemberStatus(
                id=m.get("_id", position),
                name=m.get("name", ""),
                state=m.get("state", -1),
                state_str=m.get("stateStr", ""),
                health=m.get("health", 1.0),
            )
            for position, m in enumerate(reply.get("members", []))
        )
        return cls(ok=bool(reply.get("ok")), members=members)

    def converged(self, accepted: Collection[int] = ACCEPTED_STATES) -> bool:
        """True when the query succeeded and every member is in an accepted state."""
        return self.ok and bool(self.members) and all(m.state in accepted for m in self.members)


async def wait_for_convergence(
    client: AdminClient,
    *,
    interval: float = 1.0,
    accepted: Collection[int] = ACCEPTED_STATES,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_progress: Callable[[int, ClusterStatusSnapshot | None], None] | None = None,
) -> ClusterStatusSnapshot:
    """Poll ``replSetGetStatus`` until every member is in an accepted state.

    Transport errors and rejected status commands both mean "not ready yet"
    and are retried after ``interval`` seconds. There is no retry budget:
    wrap the call in ``asyncio.timeout`` to bound it.

    Args:
        client: Connected client for one member of the set
        interval: Seconds to wait between polls
        accepted: Member state codes that count as healthy
        sleep: Coroutine used to wait between polls
        on_progress: Called with the attempt number and the snapshot (None
            when the query failed) after every unsuccessful poll

    Returns:
        The first snapshot in which all members were healthy
    """
    attempt = 0
    while True:
        attempt += 1
        snapshot: ClusterStatusSnapshot | None = None
        try:
            snapshot = ClusterStatusSnapshot.from_response(await client.repl_set_get_status())
        except TransportError as e:
            logger.debug("Status query to %s failed: %s", client.address, e)
        except AdminCommandError as e:
            logger.debug("Status command rejected by %s: %s", client.address, e)

        if snapshot is not None and snapshot.converged(accepted):
            logger.info("Replica set is up after %d polls", attempt)
            return snapshot

        logger.info("Waiting for replica set via %s (poll %d)", client.address, attempt)
        if on_progress is not None:
            on_progress(attempt, snapshot)
        await sleep(interval)
