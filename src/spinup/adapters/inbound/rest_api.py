"""FastAPI REST adapter for the orchestration core.

Provides HTTP endpoints for lifecycle jobs and in-container file
management. Errors raised by the core are returned as
``{"kind": ..., "message": ...}`` with a status code chosen by kind.

Usage:
    from spinup.adapters.inbound.rest_api import create_app

    app = create_app(coordinator)
    # Run with: uvicorn module:app --host 0.0.0.0 --port 8080
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import FastAPI, Query, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from spinup import __version__
from spinup.application.coordinator import ServerCoordinator
from spinup.domain.entities.job import Job
from spinup.domain.errors import PayloadTooLarge, SpinupError


ERROR_STATUS: dict[str, int] = {
    "invalid_transition": status.HTTP_409_CONFLICT,
    "precondition_failed": status.HTTP_409_CONFLICT,
    "job_in_progress": status.HTTP_409_CONFLICT,
    "not_modified": status.HTTP_409_CONFLICT,
    "resource_exhausted": status.HTTP_503_SERVICE_UNAVAILABLE,
    "runtime_unavailable": status.HTTP_503_SERVICE_UNAVAILABLE,
    "path_traversal": status.HTTP_400_BAD_REQUEST,
    "not_a_file": status.HTTP_400_BAD_REQUEST,
    "protected_file": status.HTTP_403_FORBIDDEN,
    "permission_denied": status.HTTP_403_FORBIDDEN,
    "security_threat": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "payload_too_large": status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
    "archive_too_large": status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
    "unsupported_archive": status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
    "not_found": status.HTTP_404_NOT_FOUND,
    "timeout": status.HTTP_504_GATEWAY_TIMEOUT,
    "stream_error": status.HTTP_502_BAD_GATEWAY,
}


# Pydantic models for request/response serialization


class EnqueueJobRequest(BaseModel):
    """Request to enqueue a lifecycle job."""

    type: str = Field(..., description="CREATE, START, STOP, RESTART or DELETE")
    payload: dict[str, Any] = Field(default_factory=dict, description="Operation parameters")
    wait_timeout: Optional[float] = Field(default=None, ge=0, description="Seconds to wait for a busy server")


class EnqueueJobResponse(BaseModel):
    job_id: str


class JobErrorModel(BaseModel):
    kind: str
    message: str
    progress: int
    rollback_errors: list[str] = Field(default_factory=list)


class JobResponse(BaseModel):
    """Job details response."""

    job_id: str
    server_id: str
    type: str
    status: str
    progress: int
    result: dict[str, Any] = Field(default_factory=dict)
    error: Optional[JobErrorModel] = None


class WriteFileRequest(BaseModel):
    path: str = Field(..., min_length=1)
    content: str


class PathRequest(BaseModel):
    path: str = Field(..., min_length=1)


class ExtractRequest(BaseModel):
    archive_path: str = Field(..., min_length=1)
    destination: Optional[str] = None


class CompressRequest(BaseModel):
    source_paths: list[str] = Field(..., min_length=1)
    archive_path: str = Field(..., min_length=1)
    format: str = Field(default="zip", description="zip or tar.gz")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str = __version__


def _job_response(job: Job) -> JobResponse:
    error = None
    if job.error is not None:
        error = JobErrorModel(
            kind=job.error.kind,
            message=job.error.message,
            progress=job.error.progress,
            rollback_errors=job.error.rollback_errors,
        )
    return JobResponse(
        job_id=job.job_id,
        server_id=job.server_id,
        type=job.type.value,
        status=job.status.value,
        progress=job.progress,
        result=job.result,
        error=error,
    )


async def _read_capped(request: Request, limit: int, path: str) -> bytes:
    """Read a request body, rejecting it as soon as it exceeds ``limit``."""
    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > limit:
        raise PayloadTooLarge(
            f"Upload too large: {declared} bytes (limit {limit})", path=path, size=int(declared)
        )

    chunks: list[bytes] = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > limit:
            raise PayloadTooLarge(f"Upload too large: over {limit} bytes", path=path, size=size)
        chunks.append(chunk)
    return b"".join(chunks)


def create_app(coordinator: ServerCoordinator) -> FastAPI:
    """Create FastAPI application with SpinUp endpoints.

    Args:
        coordinator: Wired server coordinator.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="SpinUp API",
        description="Game server lifecycle orchestration and file management",
        version=__version__,
    )

    @app.exception_handler(SpinupError)
    async def spinup_error_handler(request: Request, exc: SpinupError) -> JSONResponse:
        code = ERROR_STATUS.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
        return JSONResponse(status_code=code, content={"kind": exc.kind, "message": exc.message})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"kind": "bad_request", "message": str(exc)},
        )

    # Health endpoints
    @app.get("/health", response_model=HealthResponse, tags=["System"])
    def health_check():
        """Check service health."""
        return HealthResponse(status="healthy")

    @app.get("/games", tags=["System"])
    def list_games():
        """List the game catalog."""
        return [
            {
                "key": g.key,
                "name": g.name,
                "image": g.image,
                "ports": [{"container_port": p.container_port, "protocol": p.protocol.value} for p in g.ports],
            }
            for g in coordinator.list_games()
        ]

    # Server and job endpoints
    @app.get("/servers", tags=["Servers"])
    def list_servers():
        return [s.to_dict() for s in coordinator.list_servers()]

    @app.get("/servers/{server_id}", tags=["Servers"])
    def get_server(server_id: str):
        return coordinator.get_server(server_id).to_dict()

    @app.post(
        "/servers/{server_id}/jobs",
        response_model=EnqueueJobResponse,
        status_code=status.HTTP_202_ACCEPTED,
        tags=["Jobs"],
    )
    def enqueue_job(server_id: str, request: EnqueueJobRequest):
        """Enqueue a lifecycle job."""
        job_id = coordinator.enqueue_job(server_id, request.type, request.payload, request.wait_timeout)
        return EnqueueJobResponse(job_id=job_id)

    @app.get("/jobs/{job_id}", response_model=JobResponse, tags=["Jobs"])
    def get_job(job_id: str):
        """Get job status."""
        return _job_response(coordinator.get_job_status(job_id))

    # File endpoints
    @app.get("/servers/{server_id}/files", tags=["Files"])
    def list_files(server_id: str, path: str = Query("/")):
        return [f.to_dict() for f in coordinator.list_files(server_id, path)]

    @app.get("/servers/{server_id}/files/content", tags=["Files"])
    def read_file(server_id: str, path: str = Query(..., min_length=1)):
        return {"path": path, "content": coordinator.read_file(server_id, path)}

    @app.put("/servers/{server_id}/files/content", status_code=status.HTTP_204_NO_CONTENT, tags=["Files"])
    def write_file(server_id: str, request: WriteFileRequest):
        coordinator.write_file(server_id, request.path, request.content)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.get("/servers/{server_id}/files/download", tags=["Files"])
    def download_file(server_id: str, path: str = Query(..., min_length=1)):
        data = coordinator.download_file(server_id, path)
        filename = path.rstrip("/").rsplit("/", 1)[-1]
        return Response(
            content=data,
            media_type="application/octet-stream",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @app.post("/servers/{server_id}/files/upload", status_code=status.HTTP_204_NO_CONTENT, tags=["Files"])
    async def upload_file(server_id: str, request: Request, path: str = Query(..., min_length=1)):
        data = await _read_capped(request, coordinator.max_write_bytes, path)
        await run_in_threadpool(coordinator.upload_file, server_id, path, data)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.delete("/servers/{server_id}/files", status_code=status.HTTP_204_NO_CONTENT, tags=["Files"])
    def delete_file(server_id: str, path: str = Query(..., min_length=1)):
        coordinator.delete_file(server_id, path)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.post("/servers/{server_id}/directories", status_code=status.HTTP_201_CREATED, tags=["Files"])
    def create_directory(server_id: str, request: PathRequest):
        coordinator.create_directory(server_id, request.path)
        return {"path": request.path}

    @app.post("/servers/{server_id}/archives/extract", tags=["Files"])
    def extract_archive(server_id: str, request: ExtractRequest):
        created = coordinator.extract_archive(server_id, request.archive_path, request.destination)
        return {"created": created, "count": len(created)}

    @app.post("/servers/{server_id}/archives/compress", status_code=status.HTTP_201_CREATED, tags=["Files"])
    def compress_archive(server_id: str, request: CompressRequest):
        archive = coordinator.compress_archive(
            server_id, request.source_paths, request.archive_path, request.format
        )
        return {"archive_path": archive}

    return app
