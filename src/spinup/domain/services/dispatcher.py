"""Job dispatcher.

Accepts lifecycle jobs, guarantees at most one pending or running job per
server, and runs them on a fixed pool of worker threads. Jobs for
different servers run fully in parallel.

The per-server token is taken when a job is enqueued and released by the
worker once the job is terminal, so an accepted job always owns its
server until it finishes.
"""

from __future__ import annotations

import queue
import threading
import traceback
from typing import Any, Optional

from spinup.domain.entities.job import Job, JobError, JobType
from spinup.domain.entities.server import Server, ServerStatus
from spinup.domain.errors import (
    JobConflict,
    ServerNotFound,
    as_spinup_error,
)
from spinup.domain.services.lifecycle import LifecycleStateMachine, check_transition
from spinup.domain.services.server_locks import ServerLockTable
from spinup.domain.value_objects.games import get_game
from spinup.domain.value_objects.identifiers import new_job_id
from spinup.infrastructure.logging import get_logger, job_context
from spinup.infrastructure.metrics import MetricsRegistry
from spinup.infrastructure.tracing import trace_span
from spinup.ports.inbound import DispatcherStats
from spinup.ports.outbound import StoragePort

logger = get_logger(__name__)

_STOP = object()


class ProgressReporter:
    """Persists job progress, dropping values that do not move forward."""

    def __init__(self, storage: StoragePort, job: Job):
        self._storage = storage
        self._job = job
        self._lock = threading.Lock()

    def __call__(self, progress: int) -> None:
        with self._lock:
            if self._job.advance(progress):
                self._storage.update_job(self._job.job_id, progress=self._job.progress)

    @property
    def progress(self) -> int:
        return self._job.progress


class JobDispatcher:
    """Fixed-size worker pool executing lifecycle jobs.

    Thread Safety:
        ``enqueue_job`` may be called from any thread. Per-server exclusion
        is enforced by the lock table; the queue is a ``queue.Queue``.
    """

    def __init__(
        self,
        storage: StoragePort,
        state_machine: LifecycleStateMachine,
        workers: int = 5,
        enqueue_wait_seconds: float = 0,
        default_memory_mb: int = 2048,
        default_cpu_shares: int = 1024,
        locks: Optional[ServerLockTable] = None,
        metrics: Optional[MetricsRegistry] = None,
    ):
        """Initialize dispatcher.

        Args:
            storage: Record store for servers and jobs.
            state_machine: Executes each job.
            workers: Worker thread count.
            enqueue_wait_seconds: Default time enqueue waits for a busy server.
            default_memory_mb: Memory cap for servers created without one.
            default_cpu_shares: CPU shares for servers created without any.
            locks: Per-server token table.
            metrics: Metrics registry.
        """
        self._storage = storage
        self._state_machine = state_machine
        self._worker_count = workers
        self.enqueue_wait_seconds = enqueue_wait_seconds
        self.default_memory_mb = default_memory_mb
        self.default_cpu_shares = default_cpu_shares
        self._locks = locks or ServerLockTable()
        self._metrics = metrics
        self._queue: queue.Queue = queue.Queue()
        self._threads: list[threading.Thread] = []
        self._done: dict[str, threading.Event] = {}
        self._done_lock = threading.Lock()
        self._running = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start worker threads."""
        if self._running:
            return
        self._running = True
        for i in range(self._worker_count):
            thread = threading.Thread(target=self._worker, name=f"job-worker-{i}", daemon=True)
            thread.start()
            self._threads.append(thread)
        logger.info("dispatcher_started", workers=self._worker_count)

    def shutdown(self, wait: bool = True) -> None:
        """Stop workers after the jobs already queued."""
        if not self._running:
            return
        self._running = False
        for _ in self._threads:
            self._queue.put(_STOP)
        if wait:
            for thread in self._threads:
                thread.join()
        self._threads.clear()
        logger.info("dispatcher_stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    # =========================================================================
    # Enqueue / status
    # =========================================================================

    def enqueue_job(
        self,
        server_id: str,
        job_type: JobType | str,
        payload: Optional[dict[str, Any]] = None,
        wait_timeout: Optional[float] = None,
    ) -> str:
        """Accept a job for a server.

        Args:
            server_id: Target server.
            job_type: Operation to run.
            payload: Operation parameters. For CREATE of a server that does
                not exist yet: ``name``, ``game_key``, and optionally
                ``memory_cap_mb``, ``cpu_shares``, ``env``, ``port_base``.
            wait_timeout: Seconds to wait for another job on the same server
                to finish; defaults to ``enqueue_wait_seconds``.

        Returns:
            Job ID.

        Raises:
            InvalidTransition: Operation is illegal for the server's status.
            JobConflict: Another job stayed active for the whole wait.
            ServerNotFound: Server does not exist (and the job is not CREATE).
        """
        job_type = JobType(job_type.upper() if isinstance(job_type, str) else job_type)
        payload = dict(payload or {})
        timeout = self.enqueue_wait_seconds if wait_timeout is None else wait_timeout
        job = Job(job_id=new_job_id(), server_id=server_id, type=job_type, payload=payload)

        if not self._locks.acquire(server_id, job.job_id, timeout):
            if self._metrics is not None:
                self._metrics.job_conflicts_total.inc()
            active = self._storage.active_job(server_id)
            raise JobConflict(
                f"Server {server_id} already has an active job",
                server_id=server_id,
                active_job_id=active.job_id if active else None,
            )

        try:
            server = self._load_or_register(server_id, job_type, payload)
            check_transition(server, job_type)
            self._storage.create_job(job)
            with self._done_lock:
                self._done[job.job_id] = threading.Event()
        except BaseException:
            self._locks.release(server_id, job.job_id)
            raise

        self._queue.put((job.job_id, server_id))
        self._update_queue_depth()
        logger.info("job_enqueued", job_id=job.job_id, server_id=server_id, job_type=job_type.value)
        return job.job_id

    def get_job_status(self, job_id: str) -> Job:
        """Current job record.

        Raises:
            JobNotFound: If the job does not exist.
        """
        return self._storage.get_job(job_id)

    def wait_for(self, job_id: str, timeout: Optional[float] = None) -> Job:
        """Block until a job is terminal or the timeout passes.

        Returns:
            Latest job record (possibly still active on timeout).
        """
        with self._done_lock:
            event = self._done.get(job_id)
        if event is not None:
            event.wait(timeout)
        return self._storage.get_job(job_id)

    def get_stats(self) -> DispatcherStats:
        return DispatcherStats(
            workers=self._worker_count,
            queued_jobs=self._queue.qsize(),
            busy_servers=len(self._locks),
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _load_or_register(self, server_id: str, job_type: JobType, payload: dict[str, Any]) -> Server:
        try:
            return self._storage.load_server(server_id)
        except ServerNotFound:
            if job_type != JobType.CREATE:
                raise

        game_key = payload.get("game_key", "")
        get_game(game_key)
        server = Server(
            server_id=server_id,
            name=payload.get("name") or server_id,
            game_key=game_key,
            status=ServerStatus.CREATING,
            memory_cap_mb=int(payload.get("memory_cap_mb", self.default_memory_mb)),
            cpu_shares=int(payload.get("cpu_shares", self.default_cpu_shares)),
            env={str(k): str(v) for k, v in (payload.get("env") or {}).items()},
        )
        self._storage.save_server(server)
        logger.info("server_registered", server_id=server_id, game=game_key)
        return server

    def _worker(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._update_queue_depth()
                self._run(*item)
            finally:
                self._queue.task_done()

    def _run(self, job_id: str, server_id: str) -> None:
        try:
            job = self._storage.get_job(job_id)
            with job_context(job.job_id, job.server_id, job.type.value):
                self._execute(job)
        except Exception as e:
            # Storage failed while loading the job or recording the outcome
            logger.exception("job_crashed", job_id=job_id, server_id=server_id, error=str(e))
        finally:
            self._locks.release(server_id, job_id)
            with self._done_lock:
                event = self._done.pop(job_id, None)
            if event is not None:
                event.set()

    def _execute(self, job: Job) -> None:
        job.start()
        self._storage.update_job(job.job_id, status=job.status, started_at=job.started_at)
        logger.info("job_started")
        reporter = ProgressReporter(self._storage, job)

        with trace_span(f"job.{job.type.value.lower()}", {"job.id": job.job_id, "server.id": job.server_id}) as span:
            try:
                result = self._state_machine.execute(job, reporter)
            except Exception as e:
                error = as_spinup_error(e, f"{job.type.value} {job.server_id}")
                job.fail(JobError(
                    kind=error.kind,
                    message=error.message,
                    trace="".join(traceback.format_exception(type(e), e, e.__traceback__)),
                    progress=job.progress,
                    rollback_errors=list(error.context.get("rollback_errors", [])),
                ))
                self._storage.update_job(
                    job.job_id,
                    status=job.status,
                    error=job.error,
                    finished_at=job.finished_at,
                )
                span.set_attribute("job.status", job.status.value)
                logger.error("job_failed", kind=error.kind, error=error.message, progress=job.progress)
            else:
                job.succeed(result)
                self._storage.update_job(
                    job.job_id,
                    status=job.status,
                    progress=job.progress,
                    result=job.result,
                    finished_at=job.finished_at,
                )
                span.set_attribute("job.status", job.status.value)
                logger.info("job_succeeded", duration=job.get_duration_seconds())

        self._record(job)

    def _record(self, job: Job) -> None:
        if self._metrics is None:
            return
        self._metrics.jobs_total.labels(type=job.type.value, status=job.status.value).inc()
        self._metrics.job_duration_seconds.labels(type=job.type.value).observe(job.get_duration_seconds())

    def _update_queue_depth(self) -> None:
        if self._metrics is not None:
            self._metrics.job_queue_depth.set(self._queue.qsize())


__all__ = ["JobDispatcher", "ProgressReporter"]
