"""Container spec construction for game servers."""

from __future__ import annotations

from spinup.domain.entities.server import Server
from spinup.domain.value_objects.games import GameImage
from spinup.domain.value_objects.identifiers import container_name_for, hostname_for
from spinup.ports.outbound import ContainerSpec

LABEL_SERVER_ID = "spinup.server_id"
LABEL_GAME = "spinup.game"


def merged_env(game: GameImage, server: Server) -> dict[str, str]:
    """Game defaults overlaid with the operator's overrides."""
    env = dict(game.env_defaults)
    env.update(server.env)
    return env


def build_container_spec(server: Server, game: GameImage, data_dir: str) -> ContainerSpec:
    """Build the runtime creation request for a server.

    Args:
        server: Server with ports already allocated.
        game: Catalog entry for the server's game.
        data_dir: Host data directory to bind-mount.

    Returns:
        Container spec.
    """
    return ContainerSpec(
        image=game.image,
        name=container_name_for(server.server_id),
        hostname=hostname_for(server.name),
        data_dir=data_dir,
        data_volume=game.data_volume,
        memory_bytes=server.memory_limit_bytes,
        cpu_shares=server.cpu_shares,
        ports=list(server.ports),
        env=merged_env(game, server),
        labels={LABEL_SERVER_ID: server.server_id, LABEL_GAME: game.key},
    )
