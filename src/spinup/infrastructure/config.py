"""Configuration management for the orchestration core."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MiB = 1024 * 1024


class PortConfig(BaseModel):
    """Host port allocation configuration."""

    floor: int = Field(default=30000, ge=1, le=65535, description="Lowest allocatable host port")
    ceiling: int = Field(default=40000, ge=1, le=65535, description="Highest allocatable host port")
    probe_docker: bool = Field(default=True, description="Skip ports published by other containers")
    probe_host_sockets: bool = Field(default=False, description="Skip ports bound on the host")

    @model_validator(mode="after")
    def _check_range(self) -> "PortConfig":
        if self.floor > self.ceiling:
            raise ValueError("port floor must not exceed ceiling")
        return self


class LifecycleConfig(BaseModel):
    """Server lifecycle configuration."""

    data_root: Path = Field(default=Path("/var/lib/spinup/servers"), description="Server data root")
    stop_grace_seconds: int = Field(default=15, ge=0, description="Graceful stop window")
    delete_stop_grace_seconds: int = Field(default=10, ge=0, description="Stop window during delete")
    kill_slack_seconds: int = Field(default=5, ge=0, description="Extra wait before escalating to kill")
    default_memory_mb: int = Field(default=2048, ge=64, description="Default memory cap")
    default_cpu_shares: int = Field(default=1024, ge=2, description="Default CPU shares")


class DispatcherConfig(BaseModel):
    """Job dispatcher configuration."""

    workers: int = Field(default=5, ge=1, description="Worker thread count")
    enqueue_wait_seconds: float = Field(
        default=0, ge=0, description="How long enqueue waits for a busy server"
    )


class FileManagerConfig(BaseModel):
    """In-container file manager configuration."""

    max_write_bytes: int = Field(default=100 * MiB, description="Max single write/upload size")
    max_read_bytes: int = Field(default=100 * MiB, description="Max read/download size")
    max_archive_bytes: int = Field(default=512 * MiB, description="Max decompressed archive size")
    exec_timeout_seconds: float = Field(default=30.0, gt=0, description="Exec stream deadline")
    protected_names: list[str] = Field(
        default_factory=lambda: ["server.jar", "eula.txt", "level.dat", "world"],
        description="File names that may not be written or deleted",
    )


class DockerConfig(BaseModel):
    """Docker daemon configuration."""

    base_url: str | None = Field(default=None, description="Daemon URL (defaults to environment)")
    timeout: int = Field(default=60, ge=1, description="API request timeout")


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, ge=1, le=65535, description="HTTP port")
    metrics_port: int = Field(default=8002, ge=1, le=65535, description="Prometheus metrics port")


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="json")
    otel_endpoint: str | None = Field(default=None)
    otel_service_name: str = Field(default="spinup")


class Config(BaseSettings):
    """Main configuration for the orchestration core."""

    model_config = SettingsConfigDict(
        env_prefix="SPINUP_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    ports: PortConfig = Field(default_factory=PortConfig)
    lifecycle: LifecycleConfig = Field(default_factory=LifecycleConfig)
    dispatcher: DispatcherConfig = Field(default_factory=DispatcherConfig)
    files: FileManagerConfig = Field(default_factory=FileManagerConfig)
    docker: DockerConfig = Field(default_factory=DockerConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    def ensure_directories(self) -> None:
        """Ensure required directories exist."""
        self.lifecycle.data_root.mkdir(parents=True, exist_ok=True)


@lru_cache
def get_config() -> Config:
    """Get the global configuration instance."""
    config = Config()
    config.ensure_directories()
    return config
