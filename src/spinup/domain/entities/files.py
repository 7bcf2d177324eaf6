"""File listing entities."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class FileType(Enum):
    FILE = "file"
    DIRECTORY = "directory"


@dataclass(frozen=True)
class FileInfo:
    """One entry of a container directory listing.

    Produced per call from live container inspection, never persisted.
    """
    name: str
    absolute_path: str
    type: FileType
    size_bytes: int
    modified_at: datetime | None
    permissions: str  # Raw mode string, e.g. "-rw-r--r--"
    link_target: str | None = None

    @property
    def is_directory(self) -> bool:
        return self.type == FileType.DIRECTORY

    @property
    def is_symlink(self) -> bool:
        return self.permissions.startswith("l")

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "path": self.absolute_path,
            "type": self.type.value,
            "size": self.size_bytes,
            "modified": self.modified_at.isoformat() if self.modified_at else None,
            "permissions": self.permissions,
        }
