"""
tests/conftest.py

Pytest configuration and shared fixtures for the Branch Splicer test suite.

Unit tests run entirely against the in-memory workbook. Tests marked
`integration` need a Postgres database in SPLICER_DB_URL and are skipped
without one.
"""

from __future__ import annotations

import logging
import os
from typing import Generator

import pytest

from splicer.config.routing import DEFAULT_ROUTING, RoutingTable, reset_routing_table
from splicer.config.settings import reset_settings
from splicer.core import metrics
from splicer.core.logging import clear_context
from splicer.services.splice import SpliceCoordinator
from splicer.stores.memory import MemoryWorkbook, ThreadLock


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "unit: pure logic tests, no external services")
    config.addinivalue_line(
        "markers", "integration: requires a Postgres database (SPLICER_DB_URL)"
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if os.environ.get("SPLICER_DB_URL"):
        return
    skip_db = pytest.mark.skip(reason="SPLICER_DB_URL not set")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_db)


@pytest.fixture(autouse=True)
def _isolate_state() -> Generator[None, None, None]:
    """Fresh metrics, settings, log context and root handlers for every test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    metrics.reset_for_testing()
    reset_settings()
    reset_routing_table()
    clear_context()
    yield
    reset_settings()
    reset_routing_table()
    clear_context()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def routing() -> RoutingTable:
    return DEFAULT_ROUTING


@pytest.fixture
def workbook() -> MemoryWorkbook:
    return MemoryWorkbook()


@pytest.fixture
def lock(request: pytest.FixtureRequest) -> ThreadLock:
    # A lock name per test keeps tests from sharing the process-wide registry
    return ThreadLock(f"test-{request.node.nodeid}")


@pytest.fixture
def coordinator(
    routing: RoutingTable, workbook: MemoryWorkbook, lock: ThreadLock
) -> SpliceCoordinator:
    return SpliceCoordinator(routing, workbook, lock, lock_timeout_ms=1000, sleep=lambda _: None)
