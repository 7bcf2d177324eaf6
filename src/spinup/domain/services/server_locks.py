"""Per-server job tokens.

A ``ServerLockTable`` is an explicit arena of tokens keyed by server id.
An entry exists only while a token is held or awaited; it is inserted on
``acquire`` and evicted on the ``release`` that leaves it with no waiters,
so the table never grows with the number of servers ever seen.

Tokens are owned by an opaque owner value (the job id) rather than by a
thread: the token is taken by the enqueuing thread and released by the
worker that finishes the job.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Optional


@dataclass
class _Entry:
    owner: Optional[str] = None
    waiters: int = 0


class ServerLockTable:
    """Arena of per-server exclusive tokens.

    Thread Safety:
        A single ``threading.Condition`` guards the whole table. Waiters are
        woken on every release and re-check their own entry.
    """

    def __init__(self) -> None:
        self._entries: dict[str, _Entry] = {}
        self._cond = threading.Condition()

    def acquire(self, server_id: str, owner: str, timeout: Optional[float] = 0) -> bool:
        """Take the token for a server.

        Args:
            server_id: Server to lock.
            owner: Token owner (job id).
            timeout: Seconds to wait; 0 means do not wait, None waits forever.

        Returns:
            True if the token was taken, False on timeout.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            entry = self._entries.setdefault(server_id, _Entry())
            if entry.owner is None:
                entry.owner = owner
                return True

            entry.waiters += 1
            try:
                while entry.owner is not None:
                    remaining = None if deadline is None else deadline - time.monotonic()
                    if remaining is not None and remaining <= 0:
                        return False
                    self._cond.wait(remaining)
                entry.owner = owner
                return True
            finally:
                entry.waiters -= 1
                if entry.owner is None and entry.waiters == 0:
                    self._entries.pop(server_id, None)

    def release(self, server_id: str, owner: str) -> None:
        """Give the token back.

        Raises:
            RuntimeError: If ``owner`` does not hold the token.
        """
        with self._cond:
            entry = self._entries.get(server_id)
            if entry is None or entry.owner != owner:
                raise RuntimeError(f"{owner} does not hold the token for server {server_id}")
            entry.owner = None
            if entry.waiters == 0:
                del self._entries[server_id]
            else:
                self._cond.notify_all()

    def holder(self, server_id: str) -> Optional[str]:
        with self._cond:
            entry = self._entries.get(server_id)
            return entry.owner if entry else None

    def __len__(self) -> int:
        with self._cond:
            return len(self._entries)
