"""Parser for ``ls -la --time-style=long-iso`` output.

Each entry line has seven fixed columns followed by the name:

    -rw-r--r--  1 minecraft minecraft  123 2025-10-04 14:25 server.properties

Character and block devices print ``major, minor`` in place of the size,
which adds one column. The name is the verbatim remainder of the line, so
names containing spaces survive intact. Symlinks print ``name -> target``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from spinup.domain.entities.files import FileInfo, FileType

LS_TIME_STYLE = "--time-style=long-iso"
_TIME_FORMAT = "%Y-%m-%d %H:%M"
_SKIP_NAMES = frozenset({".", ".."})


def ls_command(path: str) -> list[str]:
    """Argument vector listing one directory."""
    return ["ls", "-la", LS_TIME_STYLE, path]


def _parse_time(date: str, time: str) -> Optional[datetime]:
    try:
        return datetime.strptime(f"{date} {time}", _TIME_FORMAT)
    except ValueError:
        return None


def parse_line(line: str, directory: str) -> Optional[FileInfo]:
    """Parse one entry line.

    Returns:
        The entry, or None for header lines, ``.``/``..`` and lines that do
        not have enough columns.
    """
    if not line.strip() or line.startswith("total "):
        return None

    is_device = line[0] in ("c", "b")
    parts = line.split(None, 8 if is_device else 7)
    if len(parts) < (9 if is_device else 8):
        return None

    if is_device:
        perms, _links, _owner, _group, _major, _minor, date, time, name = parts
        size = 0
    else:
        perms, _links, _owner, _group, size_text, date, time, name = parts
        try:
            size = int(size_text)
        except ValueError:
            return None

    link_target = None
    if perms.startswith("l") and " -> " in name:
        name, link_target = name.split(" -> ", 1)

    if name in _SKIP_NAMES:
        return None

    return FileInfo(
        name=name,
        absolute_path=f"{directory.rstrip('/')}/{name}",
        type=FileType.DIRECTORY if perms.startswith("d") else FileType.FILE,
        size_bytes=size,
        modified_at=_parse_time(date, time),
        permissions=perms,
        link_target=link_target,
    )


def parse_listing(output: str, directory: str) -> list[FileInfo]:
    """Parse a whole listing, preserving the order ``ls`` printed."""
    entries = []
    for line in output.splitlines():
        entry = parse_line(line, directory)
        if entry is not None:
            entries.append(entry)
    return entries
