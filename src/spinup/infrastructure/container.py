"""Dependency injection container."""

from __future__ import annotations

from typing import Any, Callable, Optional, TypeVar

from prometheus_client import CollectorRegistry

from spinup.infrastructure.config import Config, get_config
from spinup.infrastructure.metrics import MetricsRegistry, get_metrics

T = TypeVar("T")


class Container:
    """Simple dependency injection container."""

    def __init__(self) -> None:
        self._singletons: dict[type, Any] = {}
        self._factories: dict[type, Callable[[Container], Any]] = {}
        self._instances: dict[type, Any] = {}

    def register_singleton(self, interface: type[T], instance: T) -> None:
        """Register a singleton instance."""
        self._singletons[interface] = instance
        self._instances[interface] = instance

    def register_factory(self, interface: type[T], factory: Callable[[Container], T]) -> None:
        """Register a factory function."""
        self._factories[interface] = factory

    def resolve(self, interface: type[T]) -> T:
        """Resolve a dependency."""
        if interface in self._instances:
            return self._instances[interface]
        if interface in self._singletons:
            return self._singletons[interface]
        if interface in self._factories:
            instance = self._factories[interface](self)
            self._instances[interface] = instance
            return instance
        raise KeyError(f"No registration found for {interface}")

    def has(self, interface: type) -> bool:
        """Check if an interface is registered."""
        return interface in self._singletons or interface in self._factories or interface in self._instances

    def clear(self) -> None:
        """Clear all registrations."""
        self._singletons.clear()
        self._factories.clear()
        self._instances.clear()


def build_container(
    config: Optional[Config] = None,
    runtime: Any = None,
    storage: Any = None,
    data_dirs: Any = None,
    registry: Optional[CollectorRegistry] = None,
) -> Container:
    """Wire the orchestration core.

    Args:
        config: Configuration (global config when omitted).
        runtime: ContainerRuntimePort; Docker when omitted.
        storage: StoragePort; in-memory when omitted.
        data_dirs: DataDirectoryPort; local filesystem when omitted.
        registry: Prometheus registry (global metrics when omitted).

    Returns:
        Container resolving every core component by its class.
    """
    from spinup.adapters.outbound.docker_runtime import DockerContainerRuntime
    from spinup.adapters.outbound.local_data_dirs import LocalDataDirectories
    from spinup.adapters.outbound.memory_storage import InMemoryStorage
    from spinup.application.coordinator import ServerCoordinator
    from spinup.domain.services.content_scanner import ContentScanner
    from spinup.domain.services.dispatcher import JobDispatcher
    from spinup.domain.services.file_manager import FileManager
    from spinup.domain.services.lifecycle import LifecycleStateMachine
    from spinup.domain.services.path_policy import PathPolicy
    from spinup.domain.services.port_allocator import PortAllocator, host_socket_probe
    from spinup.ports.outbound import ContainerRuntimePort, DataDirectoryPort, StoragePort

    config = config or get_config()
    container = Container()
    container.register_singleton(Config, config)
    container.register_singleton(
        MetricsRegistry, MetricsRegistry(registry) if registry is not None else get_metrics()
    )

    if runtime is None:
        container.register_factory(
            ContainerRuntimePort,
            lambda c: DockerContainerRuntime(
                base_url=config.docker.base_url,
                timeout=config.docker.timeout,
                exec_read_timeout=config.files.exec_timeout_seconds,
            ),
        )
    else:
        container.register_singleton(ContainerRuntimePort, runtime)
    container.register_singleton(StoragePort, storage if storage is not None else InMemoryStorage())
    container.register_singleton(
        DataDirectoryPort,
        data_dirs if data_dirs is not None else LocalDataDirectories(config.lifecycle.data_root),
    )

    def make_allocator(c: Container) -> PortAllocator:
        sources = [c.resolve(ContainerRuntimePort).published_host_ports] if config.ports.probe_docker else []
        probes = [host_socket_probe()] if config.ports.probe_host_sockets else []
        return PortAllocator(
            floor=config.ports.floor,
            ceiling=config.ports.ceiling,
            reserved_sources=sources,
            probes=probes,
            metrics=c.resolve(MetricsRegistry),
        )

    container.register_factory(PortAllocator, make_allocator)
    container.register_factory(
        LifecycleStateMachine,
        lambda c: LifecycleStateMachine(
            runtime=c.resolve(ContainerRuntimePort),
            storage=c.resolve(StoragePort),
            data_dirs=c.resolve(DataDirectoryPort),
            allocator=c.resolve(PortAllocator),
            stop_grace_seconds=config.lifecycle.stop_grace_seconds,
            delete_stop_grace_seconds=config.lifecycle.delete_stop_grace_seconds,
            kill_slack_seconds=config.lifecycle.kill_slack_seconds,
            metrics=c.resolve(MetricsRegistry),
        ),
    )
    container.register_factory(
        JobDispatcher,
        lambda c: JobDispatcher(
            storage=c.resolve(StoragePort),
            state_machine=c.resolve(LifecycleStateMachine),
            workers=config.dispatcher.workers,
            enqueue_wait_seconds=config.dispatcher.enqueue_wait_seconds,
            default_memory_mb=config.lifecycle.default_memory_mb,
            default_cpu_shares=config.lifecycle.default_cpu_shares,
            metrics=c.resolve(MetricsRegistry),
        ),
    )
    container.register_factory(
        FileManager,
        lambda c: FileManager(
            runtime=c.resolve(ContainerRuntimePort),
            policy=PathPolicy(config.files.protected_names),
            scanner=ContentScanner(),
            max_write_bytes=config.files.max_write_bytes,
            max_read_bytes=config.files.max_read_bytes,
            max_archive_bytes=config.files.max_archive_bytes,
            exec_timeout=config.files.exec_timeout_seconds,
            metrics=c.resolve(MetricsRegistry),
        ),
    )
    container.register_factory(
        ServerCoordinator,
        lambda c: ServerCoordinator(
            storage=c.resolve(StoragePort),
            dispatcher=c.resolve(JobDispatcher),
            file_manager=c.resolve(FileManager),
            allocator=c.resolve(PortAllocator),
            metrics=c.resolve(MetricsRegistry),
        ),
    )
    return container

