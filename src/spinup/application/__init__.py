"""Application layer for the orchestration core.

Orchestrates domain services to provide the caller-facing surface.
"""

from spinup.application.coordinator import ServerCoordinator

__all__ = [
    "ServerCoordinator",
]
