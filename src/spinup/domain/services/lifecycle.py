"""Server lifecycle state machine.

Drives one server through one lifecycle operation against the container
runtime, the port allocator and the host data directory.

States:
    CREATING -> STOPPED <-> RUNNING
    any non-terminal -> DELETING -> DELETED
    any -> ERROR on unrecoverable failure

Legal source statuses are checked before any side effect, both when a job
is enqueued and again when it executes.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Optional

from spinup.domain.entities.job import Job, JobType
from spinup.domain.entities.server import Server, ServerStatus
from spinup.domain.errors import (
    ContainerNotFound,
    ContainerNotModified,
    DirectoryNotFound,
    InvalidTransition,
    PreconditionFailed,
    SpinupError,
    as_spinup_error,
)
from spinup.domain.services.port_allocator import PortAllocator
from spinup.domain.services.provisioning import build_container_spec
from spinup.domain.value_objects.games import get_game
from spinup.infrastructure.logging import get_logger
from spinup.infrastructure.metrics import MetricsRegistry
from spinup.infrastructure.tracing import trace_span
from spinup.ports.outbound import ContainerRuntimePort, DataDirectoryPort, StoragePort

logger = get_logger(__name__)

ProgressReporter = Callable[[int], None]

S = ServerStatus

LEGAL_SOURCES: dict[JobType, frozenset[ServerStatus]] = {
    JobType.CREATE: frozenset({S.CREATING, S.ERROR}),
    JobType.START: frozenset({S.STOPPED, S.ERROR}),
    JobType.STOP: frozenset({S.RUNNING, S.ERROR}),
    JobType.RESTART: frozenset({S.STOPPED, S.RUNNING, S.ERROR}),
    JobType.DELETE: frozenset({S.CREATING, S.STOPPED, S.RUNNING, S.ERROR}),
}

# Runtime responses that mean "already in the requested state"
BENIGN_ERRORS: dict[str, tuple[type[SpinupError], ...]] = {
    "start": (ContainerNotModified,),
    "stop": (ContainerNotModified,),
    "kill": (ContainerNotModified, ContainerNotFound),
    "restart": (),
    "remove": (ContainerNotFound,),
}

# Pull progress is mapped into this band of the CREATE job
PULL_PROGRESS_START = 25
PULL_PROGRESS_END = 55


def check_transition(server: Server, job_type: JobType) -> None:
    """Reject an operation that is illegal for the server's status.

    Raises:
        InvalidTransition: If the status is not a legal source, or CREATE
            is requested for a server that already has a container.
    """
    allowed = LEGAL_SOURCES[job_type]
    if server.status not in allowed:
        raise InvalidTransition(
            f"Cannot {job_type.value} server {server.server_id} in status {server.status.value}",
            server_id=server.server_id,
            status=server.status.value,
            operation=job_type.value,
        )
    if job_type == JobType.CREATE and server.has_container():
        raise InvalidTransition(
            f"Server {server.server_id} already has a container",
            server_id=server.server_id,
            status=server.status.value,
            operation=job_type.value,
        )


def is_benign(action: str, exc: BaseException) -> bool:
    """Whether a runtime error means the action already took effect."""
    return isinstance(exc, BENIGN_ERRORS.get(action, ()))


class PullProgress:
    """Folds per-layer pull events into one monotonically reported percentage."""

    def __init__(self, report: ProgressReporter):
        self._report = report
        self._layers: dict[str, tuple[int, int]] = {}

    def __call__(self, event: dict[str, Any]) -> None:
        detail = event.get("progressDetail") or {}
        layer = event.get("id")
        total = detail.get("total")
        if not layer or not total:
            return
        self._layers[layer] = (min(detail.get("current", 0), total), total)
        done = sum(c for c, _ in self._layers.values())
        size = sum(t for _, t in self._layers.values())
        band = PULL_PROGRESS_END - PULL_PROGRESS_START
        self._report(PULL_PROGRESS_START + int(band * done / size))


class LifecycleStateMachine:
    """Converges a server's container to the state a job asks for.

    Server status changes are persisted through the storage port as they
    happen. On failure the server is left in ERROR whenever a side effect
    may already have happened; rejections raised before any side effect
    leave it untouched.
    """

    def __init__(
        self,
        runtime: ContainerRuntimePort,
        storage: StoragePort,
        data_dirs: DataDirectoryPort,
        allocator: PortAllocator,
        stop_grace_seconds: int = 15,
        delete_stop_grace_seconds: int = 10,
        kill_slack_seconds: int = 5,
        metrics: Optional[MetricsRegistry] = None,
    ):
        self._runtime = runtime
        self._storage = storage
        self._data_dirs = data_dirs
        self._allocator = allocator
        self.stop_grace_seconds = stop_grace_seconds
        self.delete_stop_grace_seconds = delete_stop_grace_seconds
        self.kill_slack_seconds = kill_slack_seconds
        self._metrics = metrics

    def execute(self, job: Job, report: ProgressReporter) -> dict[str, Any]:
        """Run a job's operation.

        Args:
            job: Running job.
            report: Progress sink; only strictly increasing values stick.

        Returns:
            Job result fields.
        """
        server = self._storage.load_server(job.server_id)
        check_transition(server, job.type)

        if job.type == JobType.CREATE:
            return self.create(server, job.payload, report)
        if job.type == JobType.START:
            return self.start(server, report)
        if job.type == JobType.STOP:
            return self.stop(server, report)
        if job.type == JobType.RESTART:
            return self.restart(server, report)
        return self.delete(server, report)

    # =========================================================================
    # CREATE
    # =========================================================================

    def create(self, server: Server, payload: dict[str, Any], report: ProgressReporter) -> dict[str, Any]:
        """Provision data directory, ports and container.

        Any failure rolls back everything done so far and leaves the server
        in ERROR without a container.
        """
        container_ref: Optional[str] = None
        try:
            game = get_game(server.game_key)

            data_dir = self._data_dirs.ensure(server.server_id)
            server.data_dir = data_dir
            report(10)

            server.ports = self._allocator.allocate_all(
                server.server_id,
                [(p.container_port, p.protocol) for p in game.ports],
                preferred_base=payload.get("port_base"),
            )
            report(20)

            self._pull(game.image, report)

            spec = build_container_spec(server, game, data_dir)
            report(60)

            with trace_span("lifecycle.create_container", {"server.id": server.server_id}):
                container_ref = self._runtime.create_container(spec)
            report(80)

            server.container_ref = container_ref
            server.transition(S.STOPPED)
            self._storage.save_server(server)
            report(95)
        except Exception as e:
            error = as_spinup_error(e, f"CREATE {server.server_id}")
            rollback_errors = self._rollback_create(server, container_ref)
            if rollback_errors:
                error.context["rollback_errors"] = rollback_errors
            logger.error(
                "create_failed",
                server_id=server.server_id,
                error=str(error),
                rollback_errors=rollback_errors,
            )
            if error is e:
                raise
            raise error from e

        logger.info(
            "server_created",
            server_id=server.server_id,
            container=container_ref,
            ports=[p.to_dict() for p in server.ports],
        )
        return {
            "container_ref": container_ref,
            "ports": [p.to_dict() for p in server.ports],
        }

    def _pull(self, image: str, report: ProgressReporter) -> None:
        report(PULL_PROGRESS_START)
        started = time.monotonic()
        with trace_span("lifecycle.pull_image", {"image": image}):
            self._runtime.pull_image(image, on_progress=PullProgress(report))
        if self._metrics is not None:
            self._metrics.image_pull_duration_seconds.observe(time.monotonic() - started)
        report(PULL_PROGRESS_END)

    def _rollback_create(self, server: Server, container_ref: Optional[str]) -> list[str]:
        errors: list[str] = []
        if container_ref is not None:
            try:
                self._runtime.remove(container_ref, force=True)
            except Exception as e:
                if not is_benign("remove", e):
                    errors.append(f"remove container {container_ref}: {e}")

        self._allocator.release(server.server_id)

        try:
            self._data_dirs.remove(server.server_id)
        except Exception as e:
            errors.append(f"remove data directory: {e}")

        server.container_ref = None
        server.ports = []
        server.transition(S.ERROR)
        try:
            self._storage.save_server(server)
        except Exception as e:
            errors.append(f"save server: {e}")
        return errors

    # =========================================================================
    # START / STOP / RESTART
    # =========================================================================

    def start(self, server: Server, report: ProgressReporter) -> dict[str, Any]:
        ref = self._require_container(server, JobType.START)
        if not self._data_dirs.exists(server.server_id):
            raise DirectoryNotFound(
                f"Data directory for server {server.server_id} is missing",
                server_id=server.server_id,
            )
        report(20)

        with self._fail_to_error(server):
            self._tolerate("start", self._runtime.start, ref)
            report(80)
            server.transition(S.RUNNING)
            self._storage.save_server(server)
        report(95)
        logger.info("server_started", server_id=server.server_id, container=ref)
        return {"container_ref": ref}

    def stop(self, server: Server, report: ProgressReporter) -> dict[str, Any]:
        ref = self._require_container(server, JobType.STOP)
        report(20)

        with self._fail_to_error(server):
            killed = self._stop_or_kill(ref, self.stop_grace_seconds)
            report(80)
            server.transition(S.STOPPED)
            self._storage.save_server(server)
        report(95)
        logger.info("server_stopped", server_id=server.server_id, container=ref, killed=killed)
        return {"container_ref": ref, "killed": killed}

    def restart(self, server: Server, report: ProgressReporter) -> dict[str, Any]:
        ref = self._require_container(server, JobType.RESTART)

        with self._fail_to_error(server):
            state = self._runtime.inspect(ref)
        report(10)
        if not state.running:
            logger.info("restart_as_start", server_id=server.server_id, container=ref)
            return self.start(server, report)

        with self._fail_to_error(server):
            self._runtime.restart(ref, self.stop_grace_seconds)
            report(80)
            server.transition(S.RUNNING)
            self._storage.save_server(server)
        report(95)
        logger.info("server_restarted", server_id=server.server_id, container=ref)
        return {"container_ref": ref}

    # =========================================================================
    # DELETE
    # =========================================================================

    def delete(self, server: Server, report: ProgressReporter) -> dict[str, Any]:
        """Tear down container, ports and data.

        Container problems are counted in ``container_errors`` without
        failing the job. A container that is already gone counts once and
        sets ``container_missing``.
        """
        server.transition(S.DELETING)
        self._storage.save_server(server)
        report(10)

        container_errors = 0
        container_missing = False
        ref = server.container_ref
        if ref is not None:
            try:
                state = self._runtime.inspect(ref)
            except ContainerNotFound:
                state = None
                container_missing = True
                container_errors += 1
                logger.warning("container_missing", server_id=server.server_id, container=ref)
            except Exception as e:
                state = None
                container_errors += 1
                logger.warning("container_inspect_failed", server_id=server.server_id, error=str(e))

            if state is not None and state.running:
                try:
                    self._stop_or_kill(ref, self.delete_stop_grace_seconds)
                except Exception as e:
                    logger.warning("container_stop_failed", server_id=server.server_id, error=str(e))
            report(40)

            if not container_missing:
                try:
                    self._runtime.remove(ref, force=True)
                except ContainerNotFound:
                    container_missing = True
                    container_errors += 1
                    logger.warning("container_missing", server_id=server.server_id, container=ref)
                except Exception as e:
                    container_errors += 1
                    logger.warning("container_remove_failed", server_id=server.server_id, error=str(e))
        report(60)

        released = self._allocator.release(server.server_id)
        report(70)

        try:
            self._data_dirs.remove(server.server_id)
        except Exception as e:
            server.transition(S.ERROR)
            self._storage.save_server(server)
            raise as_spinup_error(e, f"remove data directory of {server.server_id}") from e
        report(90)

        server.container_ref = None
        server.ports = []
        server.transition(S.DELETED)
        self._storage.save_server(server)
        report(95)

        logger.info(
            "server_deleted",
            server_id=server.server_id,
            container_errors=container_errors,
            released_ports=released,
        )
        return {
            "container_errors": container_errors,
            "container_missing": container_missing,
            "released_ports": released,
        }

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_container(self, server: Server, job_type: JobType) -> str:
        if server.container_ref is None:
            raise PreconditionFailed(
                f"Cannot {job_type.value} server {server.server_id}: no container",
                server_id=server.server_id,
                operation=job_type.value,
            )
        return server.container_ref

    def _tolerate(self, action: str, fn: Callable[..., Any], *args: Any) -> bool:
        """Call a runtime action; returns False if it was already in effect."""
        try:
            fn(*args)
        except Exception as e:
            if is_benign(action, e):
                logger.info("runtime_benign", action=action, error=str(e))
                return False
            raise
        return True

    def _stop_or_kill(self, ref: str, grace: int) -> bool:
        """Stop a container, escalating to kill if stop hangs.

        Returns:
            True if the container had to be killed.
        """
        outcome: dict[str, BaseException] = {}

        def stopper() -> None:
            try:
                self._tolerate("stop", self._runtime.stop, ref, grace)
            except BaseException as e:
                outcome["error"] = e

        thread = threading.Thread(target=stopper, name=f"stop-{ref[:12]}", daemon=True)
        thread.start()
        thread.join(grace + self.kill_slack_seconds)

        if thread.is_alive():
            logger.warning("stop_timeout_killing", container=ref, grace=grace)
            self._tolerate("kill", self._runtime.kill, ref)
            return True
        if "error" in outcome:
            raise outcome["error"]
        return False

    def _fail_to_error(self, server: Server) -> "_ErrorOnFailure":
        return _ErrorOnFailure(self._storage, server)


class _ErrorOnFailure:
    """Marks the server ERROR if the block raises, then re-raises."""

    def __init__(self, storage: StoragePort, server: Server):
        self._storage = storage
        self._server = server

    def __enter__(self) -> None:
        return None

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc is None or not isinstance(exc, Exception):
            return False
        self._server.transition(S.ERROR)
        try:
            self._storage.save_server(self._server)
        except Exception as e:
            logger.error("server_error_save_failed", server_id=self._server.server_id, error=str(e))
        return False
