"""Per-server data directories on the local filesystem.

Layout: ``<data_root>/<server_id>/data``. The ``data`` directory is what
gets bind-mounted into the container; everything under
``<data_root>/<server_id>`` belongs to the server and is removed with it.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from spinup.domain.services.path_policy import normalize_path


logger = logging.getLogger(__name__)


class LocalDataDirectories:
    """DataDirectoryPort implementation on the host filesystem.

    Example:
        dirs = LocalDataDirectories(Path("/var/lib/spinup/servers"))
        path = dirs.ensure("srv-1")   # /var/lib/spinup/servers/srv-1/data
    """

    def __init__(self, data_root: Path | str):
        self.data_root = Path(data_root).resolve()

    def _server_root(self, server_id: str) -> Path:
        # Server ids are opaque; keep them from naming anything outside the root
        name = normalize_path(server_id).strip("/")
        if not name or "/" in name:
            raise ValueError(f"Invalid server id for a data directory: {server_id!r}")
        return self.data_root / name

    def path_for(self, server_id: str) -> str:
        return str(self._server_root(server_id) / "data")

    def ensure(self, server_id: str) -> str:
        path = self._server_root(server_id) / "data"
        path.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Ensured data directory {path}")
        return str(path)

    def exists(self, server_id: str) -> bool:
        return (self._server_root(server_id) / "data").is_dir()

    def remove(self, server_id: str) -> None:
        root = self._server_root(server_id)
        if not root.exists():
            return
        shutil.rmtree(root)
        logger.info(f"Removed data directory {root}")
