"""Replica set options."""

import os
from dataclasses import dataclass, field
from typing import Any

from replsetmanager.exceptions import ConfigurationError

_ENV_STR = {
    "REPLSET_NAME": "name",
    "REPLSET_HOST": "host",
    "MONGOD_BIN": "bin",
    "REPLSET_DBPATH": "dbpath",
    "REPLSET_LOGPATH": "logpath",
}

_ENV_INT = {
    "REPLSET_START_PORT": "start_port",
    "REPLSET_SECONDARIES": "secondaries",
    "REPLSET_ARBITERS": "arbiters",
}


@dataclass(kw_only=True)
class ReplSetOptions:
    """Settings for one replica set.

    Attributes:
        name: Replica set name, also the membership document ``_id``
        host: Interface every node binds to and advertises
        start_port: Port of node 0; node i listens on ``start_port + i``
        secondaries: Number of data-bearing secondaries
        arbiters: Number of arbiters
        bin: Path or name of the mongod executable
        dbpath: Base data directory; each node gets ``data-<port>`` below it
        logpath: Base log directory; each node logs to ``data-<port>.log``
        purge: Remove each node's data directory before the first start
        connect_timeout: Seconds allowed for one admin connection
        poll_interval: Seconds between convergence polls
        stop_timeout: Seconds to wait for a signalled node before killing it
        startup_attempts: Connection attempts allowed before a starting node is declared failed
        server_options: Extra mongod command line options
    """

    name: str = "rs"
    host: str = "localhost"
    start_port: int = 31000
    secondaries: int = 2
    arbiters: int = 0
    bin: str = "mongod"
    dbpath: str | None = None
    logpath: str | None = None
    purge: bool = True
    connect_timeout: float = 2.0
    poll_interval: float = 1.0
    stop_timeout: float = 10.0
    startup_attempts: int = 20
    server_options: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.secondaries < 0 or self.arbiters < 0:
            raise ConfigurationError(
                f"Member counts must be non-negative "
                f"(secondaries={self.secondaries}, arbiters={self.arbiters})"
            )
        if not 0 < self.start_port <= 65535 - self.num_nodes + 1:
            raise ConfigurationError(
                f"Port range {self.start_port}..{self.start_port + self.num_nodes - 1} is invalid"
            )
        if not self.name:
            raise ConfigurationError("Replica set name must not be empty")

    @property
    def num_nodes(self) -> int:
        """Total nodes: the primary plus secondaries and arbiters."""
        return 1 + self.secondaries + self.arbiters

    @classmethod
    def from_env(cls, **overrides: Any) -> "ReplSetOptions":
        """Build options from ``REPLSET_*`` environment variables.

        Keyword overrides take precedence over the environment.
        """
        values: dict[str, Any] = {}
        for var, attr in _ENV_STR.items():
            if var in os.environ:
                values[attr] = os.environ[var]
        for var, attr in _ENV_INT.items():
            if var in os.environ:
                try:
                    values[attr] = int(os.environ[var])
                except ValueError as e:
                    raise ConfigurationError(f"{var} must be an integer") from e
        values.update(overrides)
        return cls(**values)
