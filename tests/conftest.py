"""Pytest configuration and fixtures for db_env tests."""

from __future__ import annotations

import struct
import tempfile
from pathlib import Path
from typing import Callable, Generator

import lmdb
import pytest
from prometheus_client import CollectorRegistry

from db_env.application.environment import Environment
from db_env.infrastructure.config import Config, FlushConfig, StorageConfig
from db_env.infrastructure.container import reset_container
from db_env.infrastructure.metrics import MetricsRegistry


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_config(temp_dir: Path) -> Config:
    """Provide a test configuration rooted in a temporary directory."""
    return Config(
        storage=StorageConfig(
            data_dir=temp_dir / "env",
            map_size=16777216,  # 16MB for tests
            sync_mode="nosync",  # Faster for tests
        ),
        flush=FlushConfig(interval_seconds=0.01, idle_seconds=0),
    )


@pytest.fixture
def collector_registry() -> CollectorRegistry:
    """Provide a private Prometheus registry for each test."""
    return CollectorRegistry(auto_describe=True)


@pytest.fixture
def metrics_registry(collector_registry: CollectorRegistry) -> MetricsRegistry:
    """Provide a fresh metrics registry for each test."""
    # Use a separate registry to avoid conflicts between tests
    return MetricsRegistry(registry=collector_registry)


@pytest.fixture
def env(test_config: Config, metrics_registry: MetricsRegistry) -> Generator[Environment, None, None]:
    """Provide an open, durable environment."""
    environment = Environment(test_config, metrics=metrics_registry)
    environment.open()
    yield environment
    environment.flush(shutdown=True)
    environment.close()


@pytest.fixture
def mock_env(test_config: Config, metrics_registry: MetricsRegistry) -> Generator[Environment, None, None]:
    """Provide an open environment in mock (ephemeral) mode."""
    environment = Environment(test_config, metrics=metrics_registry)
    environment.make_mock()
    environment.open()
    yield environment
    environment.close()


@pytest.fixture(autouse=True)
def _fresh_container() -> Generator[None, None, None]:
    """Keep the process-wide container from leaking between tests."""
    reset_container()
    yield
    reset_container()


# LMDB on-disk layout: 16-byte page header (pgno, pad, flags, lower, upper)
# followed by 16-bit node offsets; a branch node starts with its 48-bit
# child page number. Meta pages 0 and 1 hold the main tree root and txn id.
PAGE_HEADER = struct.Struct("<QHHHH")
P_BRANCH = 0x01
META_MAIN_ROOT = 128
META_TXNID = 144


@pytest.fixture
def break_branch_page() -> Callable[[Path], None]:
    """Return a function that points the middle child of an LMDB root page at a missing page."""

    def damage(path: Path) -> None:
        env = lmdb.open(str(path), subdir=False, readonly=True, lock=False)
        try:
            stat = env.stat()
        finally:
            env.close()
        assert stat["depth"] >= 2, "file too small to have branch pages"

        psize = stat["psize"]
        data = bytearray(path.read_bytes())
        meta = max((0, psize), key=lambda off: struct.unpack_from("<Q", data, off + META_TXNID)[0])
        (root,) = struct.unpack_from("<Q", data, meta + META_MAIN_ROOT)

        base = root * psize
        stored, _pad, flags, lower, _upper = PAGE_HEADER.unpack_from(data, base)
        count = (lower - PAGE_HEADER.size) // 2
        assert stored == root and flags & P_BRANCH and count >= 3, "root is not a branch page"

        (node,) = struct.unpack_from("<H", data, base + PAGE_HEADER.size + 2 * (count // 2))
        data[base + node : base + node + 6] = b"\xff" * 6
        path.write_bytes(bytes(data))

    return damage


# Markers for test categories
def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests")
