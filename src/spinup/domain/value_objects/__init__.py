"""Value objects for the orchestration core.

Exports:
    Identifiers:
        - ServerId, JobId, ContainerRef: Type-safe identifiers
        - new_job_id, container_name_for, hostname_for: Factories

    Games:
        - Protocol, PortSpec, GameImage: Game image definitions
        - get_game, list_games: Catalog lookups
"""

from spinup.domain.value_objects.games import (
    GameImage,
    PortSpec,
    Protocol,
    get_game,
    list_games,
)
from spinup.domain.value_objects.identifiers import (
    ContainerRef,
    JobId,
    ServerId,
    container_name_for,
    hostname_for,
    new_job_id,
)

__all__ = [
    "ContainerRef",
    "GameImage",
    "JobId",
    "PortSpec",
    "Protocol",
    "ServerId",
    "container_name_for",
    "get_game",
    "hostname_for",
    "list_games",
    "new_job_id",
]
