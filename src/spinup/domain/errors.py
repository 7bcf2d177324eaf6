"""Error taxonomy for the orchestration core.

Every error raised by the core carries a stable ``kind`` tag plus a
human-readable message. Callers (the HTTP layer, job records) surface the
pair verbatim, so the tags below are part of the external contract.

Groups:
    - Lifecycle: InvalidTransition, PreconditionFailed, JobConflict
    - Resources: ResourceExhausted
    - File policy: PathTraversal, ProtectedFile, SecurityThreat,
      PayloadTooLarge, ArchiveTooLarge, UnsupportedArchive
    - Lookup: NotFound and its specialisations
    - Runtime: PermissionDenied, ExecTimeout, StreamError,
      RuntimeUnavailable, ContainerNotModified, RuntimeFault
    - Fallback: UnknownError
"""

from __future__ import annotations

from typing import Any, ClassVar


class SpinupError(Exception):
    """Base class for all orchestration core errors."""

    kind: ClassVar[str] = "unknown"

    def __init__(self, message: str = "", **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the ``{kind, message}`` shape exposed to callers."""
        data: dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.context:
            data["context"] = dict(self.context)
        return data


# =============================================================================
# Lifecycle
# =============================================================================


class InvalidTransition(SpinupError):
    """Requested lifecycle operation is illegal for the current status."""

    kind = "invalid_transition"


class PreconditionFailed(InvalidTransition):
    """Operation is legal for the status but a required resource is missing."""

    kind = "precondition_failed"


class JobConflict(SpinupError):
    """Another job is already pending or running for the server."""

    kind = "job_in_progress"


class ResourceExhausted(SpinupError):
    """No free host port is left in the configured range."""

    kind = "resource_exhausted"


# =============================================================================
# File manager policy
# =============================================================================


class PolicyViolation(SpinupError):
    """Base for file-manager policy rejections.

    Always raised locally, before the container runtime is touched.
    """

    kind = "policy_violation"


class PathTraversal(PolicyViolation):
    kind = "path_traversal"


class ProtectedFile(PolicyViolation):
    kind = "protected_file"


class SecurityThreat(PolicyViolation):
    kind = "security_threat"


class PayloadTooLarge(PolicyViolation):
    kind = "payload_too_large"


class ArchiveTooLarge(PolicyViolation):
    kind = "archive_too_large"


class UnsupportedArchive(PolicyViolation):
    kind = "unsupported_archive"


# =============================================================================
# Lookup
# =============================================================================


class NotFound(SpinupError):
    """Container, file, directory or record is absent."""

    kind = "not_found"


class ServerNotFound(NotFound):
    pass


class JobNotFound(NotFound):
    pass


class ContainerNotFound(NotFound):
    pass


class FileNotFound(NotFound):
    pass


class DirectoryNotFound(NotFound):
    pass


class NotAFile(NotFound):
    """Path exists but is a directory where a regular file was expected."""

    kind = "not_a_file"


class UnknownGame(NotFound):
    pass


# =============================================================================
# Runtime
# =============================================================================


class PermissionDenied(SpinupError):
    kind = "permission_denied"


class ExecTimeout(SpinupError):
    """Exec or archive stream produced nothing within the timeout window."""

    kind = "timeout"


class StreamError(SpinupError):
    """Exec stream broke or ended in the middle of a frame."""

    kind = "stream_error"


class RuntimeUnavailable(SpinupError):
    """Container daemon could not be reached."""

    kind = "runtime_unavailable"


class ContainerNotModified(SpinupError):
    """Runtime reported the container was already in the requested state."""

    kind = "not_modified"


class RuntimeFault(SpinupError):
    """Any other error reported by the container daemon."""

    kind = "unknown"


class UnknownError(SpinupError):
    """Wraps an unexpected underlying error with context."""

    kind = "unknown"

    @classmethod
    def wrap(cls, exc: BaseException, context: str) -> "UnknownError":
        err = cls(f"{context}: {exc}")
        err.__cause__ = exc
        return err


def as_spinup_error(exc: BaseException, context: str) -> SpinupError:
    """Return ``exc`` unchanged if already typed, else wrap it."""
    if isinstance(exc, SpinupError):
        return exc
    return UnknownError.wrap(exc, context)
