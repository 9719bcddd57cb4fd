"""Integration test fixtures for replsetmanager.

These tests start real mongod processes. They are skipped unless a mongod
binary is available (on PATH or via ``MONGOD_BIN``).
"""

import os
import shutil

import pytest

from replsetmanager import ReplSetOptions

MONGOD_BIN = os.environ.get("MONGOD_BIN", "mongod")


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "integration: marks tests as requiring a mongod binary")


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if shutil.which(MONGOD_BIN):
        return
    skip = pytest.mark.skip(reason=f"{MONGOD_BIN} not found")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip)


@pytest.fixture
def replset_options(tmp_path) -> ReplSetOptions:
    """Three node replica set on ports 31000-31002 with throwaway data."""
    return ReplSetOptions(
        bin=MONGOD_BIN,
        start_port=31000,
        secondaries=2,
        dbpath=str(tmp_path / "db"),
        logpath=str(tmp_path / "log"),
        server_options={"oplogSize": 50},
    )
