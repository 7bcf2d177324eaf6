"""Path normalization and protected-name policy for container file access."""

from __future__ import annotations

import posixpath
from typing import Iterable

from spinup.domain.errors import PathTraversal, ProtectedFile

DEFAULT_PROTECTED_NAMES = frozenset({"server.jar", "eula.txt", "level.dat", "world"})


def normalize_path(path: str) -> str:
    """Normalize a caller-supplied container path.

    Backslashes become forward slashes, repeated slashes collapse, ``.``
    segments are dropped, and the result is absolute with no trailing
    slash (except the root itself).

    Args:
        path: Raw path.

    Returns:
        Normalized absolute path.

    Raises:
        PathTraversal: If any segment is ``..``.
    """
    segments = []
    for segment in (path or "").replace("\\", "/").split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            raise PathTraversal(f"Path traversal is not allowed: {path}", path=path)
        segments.append(segment)
    return "/" + "/".join(segments)


def split_path(path: str) -> tuple[str, str]:
    """Split a normalized path into (parent directory, final component)."""
    parent, name = posixpath.split(path)
    return parent or "/", name


def join_path(directory: str, name: str) -> str:
    """Join a normalized directory and a relative name, normalizing the result."""
    return normalize_path(f"{directory}/{name}")


class PathPolicy:
    """Normalizes paths and guards protected file names.

    Args:
        protected_names: Final path components that may not be written or
            deleted. Matching is exact and case-sensitive.
    """

    def __init__(self, protected_names: Iterable[str] = DEFAULT_PROTECTED_NAMES):
        self.protected_names = frozenset(protected_names)

    def normalize(self, path: str) -> str:
        return normalize_path(path)

    def is_protected(self, path: str) -> bool:
        return split_path(path)[1] in self.protected_names

    def check_mutable(self, path: str) -> str:
        """Normalize a path that is about to be written or deleted.

        Raises:
            PathTraversal: If the path escapes upward.
            ProtectedFile: If the final component is protected, or the path
                is the root.
        """
        normalized = normalize_path(path)
        if normalized == "/":
            raise ProtectedFile("Cannot modify the root directory", path=normalized)
        if self.is_protected(normalized):
            raise ProtectedFile(
                f"Cannot modify critical file: {split_path(normalized)[1]}",
                path=normalized,
            )
        return normalized
