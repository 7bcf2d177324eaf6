"""Pytest configuration and fixtures for spinup tests."""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Generator

import pytest
from prometheus_client import CollectorRegistry

from spinup.adapters.outbound.local_data_dirs import LocalDataDirectories
from spinup.adapters.outbound.memory_storage import InMemoryStorage
from spinup.adapters.outbound.mock_runtime import MockContainerRuntime
from spinup.application.coordinator import ServerCoordinator
from spinup.domain.services.dispatcher import JobDispatcher
from spinup.domain.services.file_manager import FileManager
from spinup.domain.services.lifecycle import LifecycleStateMachine
from spinup.domain.services.port_allocator import PortAllocator
from spinup.infrastructure.config import (
    Config,
    DispatcherConfig,
    FileManagerConfig,
    LifecycleConfig,
    PortConfig,
)
from spinup.infrastructure.container import Container, build_container
from spinup.infrastructure.metrics import MetricsRegistry
from spinup.ports.outbound import ContainerSpec


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_config(temp_dir: Path) -> Config:
    """Provide a test configuration."""
    return Config(
        ports=PortConfig(floor=30000, ceiling=30100),
        lifecycle=LifecycleConfig(
            data_root=temp_dir / "servers",
            stop_grace_seconds=1,
            delete_stop_grace_seconds=1,
            kill_slack_seconds=1,
        ),
        dispatcher=DispatcherConfig(workers=4),
        files=FileManagerConfig(exec_timeout_seconds=2.0),
    )


@pytest.fixture
def container() -> Generator[Container, None, None]:
    """Provide a fresh DI container."""
    c = Container()
    yield c
    c.clear()


@pytest.fixture
def metrics_registry() -> MetricsRegistry:
    """Provide a fresh metrics registry."""
    registry = CollectorRegistry(auto_describe=True)
    return MetricsRegistry(registry=registry)


@pytest.fixture
def runtime() -> MockContainerRuntime:
    return MockContainerRuntime()


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def data_dirs(temp_dir: Path) -> LocalDataDirectories:
    return LocalDataDirectories(temp_dir / "servers")


@pytest.fixture
def allocator(runtime: MockContainerRuntime, metrics_registry: MetricsRegistry) -> PortAllocator:
    return PortAllocator(
        floor=30000,
        ceiling=30100,
        reserved_sources=[runtime.published_host_ports],
        metrics=metrics_registry,
    )


@pytest.fixture
def state_machine(
    runtime: MockContainerRuntime,
    storage: InMemoryStorage,
    data_dirs: LocalDataDirectories,
    allocator: PortAllocator,
    metrics_registry: MetricsRegistry,
) -> LifecycleStateMachine:
    return LifecycleStateMachine(
        runtime=runtime,
        storage=storage,
        data_dirs=data_dirs,
        allocator=allocator,
        stop_grace_seconds=1,
        delete_stop_grace_seconds=1,
        kill_slack_seconds=1,
        metrics=metrics_registry,
    )


@pytest.fixture
def dispatcher(
    storage: InMemoryStorage,
    state_machine: LifecycleStateMachine,
    metrics_registry: MetricsRegistry,
) -> Generator[JobDispatcher, None, None]:
    """Provide a started dispatcher; shut down after the test."""
    d = JobDispatcher(storage, state_machine, workers=4, metrics=metrics_registry)
    d.start()
    yield d
    d.shutdown(wait=True)


@pytest.fixture
def file_manager(runtime: MockContainerRuntime, metrics_registry: MetricsRegistry) -> FileManager:
    return FileManager(runtime, exec_timeout=2.0, metrics=metrics_registry)


@pytest.fixture
def running_container(runtime: MockContainerRuntime, temp_dir: Path) -> str:
    """Provide a started mock container with an empty /data volume."""
    spec = ContainerSpec(
        image="itzg/minecraft-server:latest",
        name="su_fixture",
        hostname="spinup-fixture",
        data_dir=str(temp_dir / "fixture"),
    )
    ref = runtime.create_container(spec)
    runtime.start(ref)
    runtime.calls.clear()
    return ref


@pytest.fixture
def coordinator(
    test_config: Config,
    runtime: MockContainerRuntime,
    storage: InMemoryStorage,
) -> Generator[ServerCoordinator, None, None]:
    """Provide a fully wired, started coordinator over the mock runtime."""
    c = build_container(
        config=test_config,
        runtime=runtime,
        storage=storage,
        registry=CollectorRegistry(auto_describe=True),
    )
    coord = c.resolve(ServerCoordinator)
    coord.start()
    yield coord
    coord.shutdown(wait=True)
    c.clear()


def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "property: Property-based tests")
    config.addinivalue_line("markers", "security: Security tests")
