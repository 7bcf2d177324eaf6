"""Minimal content-safety gate.

Not malware detection: a small signature table scanned over the full
payload, with the EICAR test string as the canonical entry.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from spinup.domain.errors import SecurityThreat

EICAR_SIGNATURE = b"X5O!P%@AP[4\\PZX54(P^)7CC)7}$EICAR-STANDARD-ANTIVIRUS-TEST-FILE!$H+H*"


@dataclass(frozen=True)
class Signature:
    name: str
    pattern: bytes


DEFAULT_SIGNATURES: tuple[Signature, ...] = (
    Signature("EICAR-Test-File", EICAR_SIGNATURE),
)


class ContentScanner:
    """Scans payload bytes against a signature table."""

    def __init__(self, signatures: Iterable[Signature] = DEFAULT_SIGNATURES):
        self.signatures = tuple(signatures)

    def find(self, data: bytes | str) -> Optional[Signature]:
        """Return the first matching signature, or None."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        for signature in self.signatures:
            if signature.pattern in data:
                return signature
        return None

    def check(self, data: bytes | str, path: str = "") -> None:
        """Raise if the payload matches any signature.

        Raises:
            SecurityThreat: On a match.
        """
        match = self.find(data)
        if match is not None:
            raise SecurityThreat(
                f"Security threat detected: {match.name}",
                path=path,
                signature=match.name,
            )
