"""Outbound adapters - Implementations of outbound port interfaces.

Provides the Docker-backed runtime used in production, plus in-memory and
local implementations for testing and single-host development.
"""

from spinup.adapters.outbound.docker_runtime import (
    DockerContainerRuntime,
    DockerExecStream,
)
from spinup.adapters.outbound.local_data_dirs import LocalDataDirectories
from spinup.adapters.outbound.memory_storage import InMemoryStorage
from spinup.adapters.outbound.mock_runtime import (
    MockContainerRuntime,
    MockContainerState,
    MockExecStream,
)

__all__ = [
    # Runtime
    "DockerContainerRuntime",
    "DockerExecStream",
    "MockContainerRuntime",
    "MockContainerState",
    "MockExecStream",
    # Storage
    "InMemoryStorage",
    # Data directories
    "LocalDataDirectories",
]
