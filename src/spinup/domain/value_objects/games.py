"""Built-in game image catalog.

Each entry names the container image, the ports the game listens on inside
the container, the environment it needs to boot unattended (license
acceptance flags and the like) and where its data lives.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from spinup.domain.errors import UnknownGame


class Protocol(Enum):
    """Transport protocol of a published port."""
    TCP = "tcp"
    UDP = "udp"


@dataclass(frozen=True)
class PortSpec:
    """A port a game listens on inside its container."""
    container_port: int
    protocol: Protocol = Protocol.TCP


@dataclass(frozen=True)
class GameImage:
    """Container image definition for one game."""
    key: str
    name: str
    image: str
    ports: tuple[PortSpec, ...]
    env_defaults: dict[str, str] = field(default_factory=dict)
    data_volume: str = "/data"


GAMES: tuple[GameImage, ...] = (
    GameImage(
        key="minecraft-java",
        name="Minecraft (Java)",
        image="itzg/minecraft-server:latest",
        ports=(PortSpec(25565), PortSpec(25575)),
        env_defaults={"EULA": "TRUE", "TYPE": "VANILLA", "VERSION": "LATEST"},
    ),
    GameImage(
        key="minecraft-bedrock",
        name="Minecraft (Bedrock)",
        image="itzg/minecraft-bedrock-server:latest",
        ports=(PortSpec(19132, Protocol.UDP),),
        env_defaults={"EULA": "TRUE"},
    ),
    GameImage(
        key="valheim",
        name="Valheim",
        image="lloesche/valheim-server:latest",
        ports=(PortSpec(2456, Protocol.UDP), PortSpec(2457, Protocol.UDP)),
        env_defaults={"SERVER_NAME": "SpinUp Valheim", "WORLD_NAME": "Dedicated"},
        data_volume="/config",
    ),
    GameImage(
        key="factorio",
        name="Factorio",
        image="factoriotools/factorio:stable",
        ports=(PortSpec(34197, Protocol.UDP),),
        data_volume="/factorio",
    ),
    GameImage(
        key="terraria",
        name="Terraria",
        image="beardedio/terraria:latest",
        ports=(PortSpec(7777),),
        data_volume="/config",
    ),
    GameImage(
        key="rust",
        name="Rust",
        image="didstopia/rust-server:latest",
        ports=(PortSpec(28015, Protocol.UDP), PortSpec(28016)),
        env_defaults={"RUST_SERVER_NAME": "SpinUp Rust"},
        data_volume="/steamcmd/rust",
    ),
    GameImage(
        key="palworld",
        name="Palworld",
        image="thijsvanloef/palworld-server-docker:latest",
        ports=(PortSpec(8211, Protocol.UDP),),
        env_defaults={"PLAYERS": "16", "MULTITHREADING": "true"},
        data_volume="/palworld",
    ),
)

_GAMES_BY_KEY = {game.key: game for game in GAMES}


def get_game(key: str) -> GameImage:
    """Look up a game by key.

    Raises:
        UnknownGame: If the key is not in the catalog.
    """
    try:
        return _GAMES_BY_KEY[key]
    except KeyError:
        raise UnknownGame(f"Unknown game: {key}", game_key=key) from None


def list_games() -> list[GameImage]:
    """All games in catalog order."""
    return list(GAMES)
