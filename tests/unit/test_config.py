"""Unit tests for spinup configuration."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from spinup.infrastructure.config import (
    Config,
    DispatcherConfig,
    DockerConfig,
    FileManagerConfig,
    LifecycleConfig,
    ObservabilityConfig,
    PortConfig,
    ServerConfig,
)


@pytest.mark.unit
class TestPortConfig:
    """Tests for PortConfig."""

    def test_default_values(self):
        """Test default port range."""
        config = PortConfig()
        assert config.floor == 30000
        assert config.ceiling == 40000
        assert config.probe_docker is True
        assert config.probe_host_sockets is False

    def test_floor_above_ceiling_rejected(self):
        """Test that an inverted range fails validation."""
        with pytest.raises(ValidationError):
            PortConfig(floor=40001, ceiling=40000)


@pytest.mark.unit
class TestLifecycleConfig:
    """Tests for LifecycleConfig."""

    def test_default_values(self):
        """Test default lifecycle configuration."""
        config = LifecycleConfig()
        assert config.data_root == Path("/var/lib/spinup/servers")
        assert config.stop_grace_seconds == 15
        assert config.delete_stop_grace_seconds == 10
        assert config.kill_slack_seconds == 5
        assert config.default_memory_mb == 2048
        assert config.default_cpu_shares == 1024


@pytest.mark.unit
class TestDispatcherConfig:
    """Tests for DispatcherConfig."""

    def test_default_values(self):
        """Test default dispatcher configuration."""
        config = DispatcherConfig()
        assert config.workers == 5
        assert config.enqueue_wait_seconds == 0

    def test_zero_workers_rejected(self):
        with pytest.raises(ValidationError):
            DispatcherConfig(workers=0)


@pytest.mark.unit
class TestFileManagerConfig:
    """Tests for FileManagerConfig."""

    def test_default_values(self):
        """Test default file manager limits."""
        config = FileManagerConfig()
        assert config.max_write_bytes == 100 * 1024 * 1024
        assert config.max_read_bytes == 100 * 1024 * 1024
        assert config.max_archive_bytes == 512 * 1024 * 1024
        assert config.exec_timeout_seconds == 30.0
        assert "server.jar" in config.protected_names
        assert "eula.txt" in config.protected_names


@pytest.mark.unit
class TestDockerConfig:
    """Tests for DockerConfig."""

    def test_default_values(self):
        config = DockerConfig()
        assert config.base_url is None
        assert config.timeout == 60


@pytest.mark.unit
class TestServerConfig:
    """Tests for ServerConfig."""

    def test_default_values(self):
        """Test default server configuration."""
        config = ServerConfig()
        assert config.host == "0.0.0.0"
        assert config.port == 8080
        assert config.metrics_port == 8002


@pytest.mark.unit
class TestObservabilityConfig:
    """Tests for ObservabilityConfig."""

    def test_default_values(self):
        """Test default observability configuration."""
        config = ObservabilityConfig()
        assert config.log_level == "INFO"
        assert config.log_format == "json"
        assert config.otel_endpoint is None
        assert config.otel_service_name == "spinup"


@pytest.mark.unit
class TestConfig:
    """Tests for main Config class."""

    def test_default_config(self):
        """Test default configuration."""
        config = Config()
        assert isinstance(config.ports, PortConfig)
        assert isinstance(config.lifecycle, LifecycleConfig)
        assert isinstance(config.dispatcher, DispatcherConfig)
        assert isinstance(config.files, FileManagerConfig)
        assert isinstance(config.docker, DockerConfig)
        assert isinstance(config.server, ServerConfig)
        assert isinstance(config.observability, ObservabilityConfig)

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch):
        """Test nested values read from SPINUP_ environment variables."""
        monkeypatch.setenv("SPINUP_PORTS__FLOOR", "31000")
        monkeypatch.setenv("SPINUP_DISPATCHER__WORKERS", "8")
        config = Config()
        assert config.ports.floor == 31000
        assert config.dispatcher.workers == 8

    def test_ensure_directories(self, temp_dir: Path):
        """Test directory creation."""
        config = Config(lifecycle=LifecycleConfig(data_root=temp_dir / "servers"))
        config.ensure_directories()
        assert config.lifecycle.data_root.exists()


@pytest.mark.unit
class TestContainer:
    """Tests for dependency wiring."""

    def test_factory_resolves_once(self, container):
        calls = []

        def make_config(c):
            calls.append(c)
            return Config()

        container.register_factory(Config, make_config)
        assert container.has(Config)
        assert container.resolve(Config) is container.resolve(Config)
        assert len(calls) == 1

    def test_unregistered(self, container):
        with pytest.raises(KeyError):
            container.resolve(Config)

    def test_build_container_wires_coordinator(self, test_config, runtime, storage):
        from prometheus_client import CollectorRegistry

        from spinup.application.coordinator import ServerCoordinator
        from spinup.infrastructure.container import build_container
        from spinup.ports.outbound import ContainerRuntimePort

        wired = build_container(config=test_config, runtime=runtime, storage=storage, registry=CollectorRegistry())
        assert wired.resolve(ContainerRuntimePort) is runtime
        assert isinstance(wired.resolve(ServerCoordinator), ServerCoordinator)
