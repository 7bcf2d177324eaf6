"""Orchestration core value objects."""

import re
import uuid
from typing import NewType

# Type-safe identifiers
ServerId = NewType('ServerId', str)
JobId = NewType('JobId', str)
ContainerRef = NewType('ContainerRef', str)

CONTAINER_NAME_PREFIX = "su_"

_SLUG_RE = re.compile(r"[^a-z0-9-]+")


def new_job_id() -> JobId:
    """Create a fresh job ID.

    Returns:
        Job ID.
    """
    return JobId(f"job-{uuid.uuid4().hex}")


def container_name_for(server_id: str) -> str:
    """Create the container name for a server.

    Args:
        server_id: Server ID.

    Returns:
        Container name (su_<id>).
    """
    return f"{CONTAINER_NAME_PREFIX}{server_id}"


def hostname_for(server_name: str) -> str:
    """Create a DNS-safe container hostname from a display name.

    Args:
        server_name: Human server name.

    Returns:
        Hostname (spinup-<slug>), at most 63 characters.
    """
    slug = _SLUG_RE.sub("-", server_name.lower()).strip("-") or "server"
    return f"spinup-{slug}"[:63]
