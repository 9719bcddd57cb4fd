"""Replica set membership documents."""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from replsetmanager.exceptions import ConfigurationError
from replsetmanager.topology import NodeSpec


@dataclass(frozen=True)
class MemberRecord:
    """One member entry of a replica set configuration."""

    id: int
    host: str
    arbiter_only: bool = False

    def to_document(self) -> dict[str, Any]:
        doc: dict[str, Any] = {"_id": self.id, "host": self.host}
        if self.arbiter_only:
            doc["arbiterOnly"] = True
        return doc


@dataclass(frozen=True)
class MembershipDocument:
    """Replica set configuration submitted with ``replSetInitiate``."""

    name: str
    version: int
    members: tuple[MemberRecord, ...]

    def to_command(self) -> dict[str, Any]:
        """Render the document in the shape the server expects."""
        return {
            "_id": self.name,
            "version": self.version,
            "members": [member.to_document() for member in self.members],
        }


def build_membership(
    specs: Sequence[NodeSpec],
    *,
    secondaries: int,
    arbiters: int,
    name: str = "rs",
    version: int = 1,
) -> MembershipDocument:
    """Derive a membership document from provisioned nodes.

    Member ids follow list position, so they are always ``0..N-1``. The
    member at id 0 is the primary, the next ``secondaries`` members are
    secondaries and the following ``arbiters`` members are arbiters. Any
    remaining nodes join as ordinary data-bearing members.

    Raises:
        ConfigurationError: No nodes were given, a count is negative, or the
            requested counts do not fit in the nodes after the primary slot.
    """
    if not specs:
        raise ConfigurationError("Cannot build a replica set without nodes")
    if secondaries < 0 or arbiters < 0:
        raise ConfigurationError("Member counts must be non-negative")
    if secondaries + arbiters > len(specs) - 1:
        raise ConfigurationError(
            f"{secondaries} secondaries and {arbiters} arbiters need "
            f"{secondaries + arbiters + 1} nodes, only {len(specs)} provisioned"
        )

    first_arbiter = 1 + secondaries
    members = tuple(
        MemberRecord(
            id=position,
            host=spec.address,
            arbiter_only=first_arbiter <= position < first_arbiter + arbiters,
        )
        for position, spec in enumerate(specs)
    )
    return MembershipDocument(name=name, version=version, members=members)
