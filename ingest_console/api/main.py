"""Console API: launch and observe ingestion jobs."""

import json
from typing import AsyncIterator, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from ..config.settings import Settings
from ..errors import LaunchConflict, TransportError, UnknownJobType
from ..execution import CommandBuilder, ShellHost, resolve_context
from ..jobs import DEFINITIONS, JobController, JobRegistry, get_definition
from ..telemetry import configure_logging, get_logger
from .schemas import (
    ConflictResponse,
    ErrorResponse,
    HealthResponse,
    HistoryResponse,
    LaunchRequest,
    LaunchResponse,
    StatusResponse,
    result_model,
    run_model,
    status_response,
)

logger = get_logger(__name__)

app = FastAPI(
    title="Ingestion Job Console API",
    description="Launch detached ingestion and backfill jobs and follow their progress",
    version="1.0.0",
)

# Global state (initialized on startup)
_settings: Optional[Settings] = None
_registry: Optional[JobRegistry] = None
_controller: Optional[JobController] = None


def build_controller(settings: Settings, registry: JobRegistry) -> JobController:
    """Wire the execution host and registry for the configured context."""
    context = resolve_context(settings.paths.app_path)
    builder = CommandBuilder(context, settings.remote)
    host = ShellHost(builder, settings.paths.app_path, settings.jobs)
    return JobController(host, registry, settings.jobs)


def get_settings() -> Settings:
    """Dependency to get settings."""
    if _settings is None:
        return Settings()
    return _settings


def get_controller() -> JobController:
    """Dependency to get the job controller."""
    if _controller is None:
        raise HTTPException(status_code=503, detail="Job controller not initialized")
    return _controller


@app.on_event("startup")
async def startup_event():
    """Initialize settings, logging, registry and controller."""
    global _settings, _registry, _controller

    _settings = Settings.from_env()
    configure_logging(_settings.logging.level, _settings.logging.json_output)

    _registry = JobRegistry(_settings.paths.registry_db)
    removed = _registry.cleanup_history(_settings.jobs.history_retention_hours)
    _controller = build_controller(_settings, _registry)

    logger.info(
        "console.started",
        context=resolve_context(_settings.paths.app_path).value,
        registry=str(_settings.paths.registry_db),
        history_removed=removed,
    )


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    global _registry

    if _registry:
        _registry.close()


def _check_job_type(job_type: str) -> None:
    try:
        get_definition(job_type)
    except UnknownJobType as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Ingestion Job Console API",
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health", response_model=HealthResponse)
async def health(settings: Settings = Depends(get_settings)):
    """Liveness plus the execution context in use."""
    return HealthResponse(
        status="ok",
        context=resolve_context(settings.paths.app_path).value,
        job_types=[jt.value for jt in DEFINITIONS],
    )


@app.post(
    "/jobs/{job_type}/launch",
    status_code=202,
    response_model=LaunchResponse,
    responses={409: {"model": ConflictResponse}, 502: {"model": ErrorResponse}},
)
async def launch_job(
    job_type: str,
    request: Optional[LaunchRequest] = None,
    controller: JobController = Depends(get_controller),
):
    """
    Launch a job in a detached session.

    Returns 202 as soon as the session exists, 409 with the running job's
    start time if one is already active.
    """
    _check_job_type(job_type)
    params = request.to_params() if request else {}

    try:
        record = await controller.launch(job_type, params)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))
    except LaunchConflict as e:
        body = ConflictResponse(
            error=f"{e.job_type.capitalize()} is already running",
            job_type=e.job_type,
            started_at=e.started_at,
        )
        return JSONResponse(status_code=409, content=body.model_dump(by_alias=True))
    except TransportError as e:
        logger.error("api.launch.transport_error", job_type=job_type, error=str(e))
        return JSONResponse(status_code=502, content={"error": str(e)})

    months = record.params.get("months")
    message = (
        f"Backfill started for {months} months in background session."
        if months is not None
        else f"{record.job_type.value.capitalize()} started in background session."
    )
    return LaunchResponse(
        job_type=record.job_type.value,
        run_id=record.run_id,
        started_at=record.started_at,
        params=record.params,
        message=message,
    )


@app.get(
    "/jobs/{job_type}/status",
    response_model=StatusResponse,
    responses={502: {"model": ErrorResponse}},
)
async def job_status(job_type: str, controller: JobController = Depends(get_controller)):
    """Live status probed from the execution host."""
    _check_job_type(job_type)
    try:
        snapshot = await controller.status(job_type)
    except TransportError as e:
        logger.warning("api.status.transport_error", job_type=job_type, error=str(e))
        return JSONResponse(status_code=502, content={"error": str(e)})
    return status_response(snapshot)


@app.get("/jobs/{job_type}/events")
async def job_events(
    job_type: str,
    interval: Optional[float] = None,
    controller: JobController = Depends(get_controller),
):
    """
    Stream status changes as Server-Sent Events.

    Events:
        status: snapshot, sent whenever it changes
        result: last archived result once the job type is idle (may be null)
        error: transport failure; the stream ends
    """
    _check_job_type(job_type)
    if interval is not None and interval <= 0:
        raise HTTPException(status_code=422, detail="interval must be > 0")

    async def event_generator() -> AsyncIterator[str]:
        last = None
        try:
            async for snapshot in controller.watch(job_type, interval):
                last = snapshot
                data = status_response(snapshot).model_dump(by_alias=True)
                yield "event: status\n"
                yield f"data: {json.dumps(data)}\n\n"

            result = result_model(last.last_result) if last else None
            yield "event: result\n"
            yield f"data: {json.dumps(result.model_dump(by_alias=True) if result else None)}\n\n"
        except TransportError as e:
            yield "event: error\n"
            yield f"data: {json.dumps({'error': str(e)})}\n\n"

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


@app.get("/jobs/history", response_model=HistoryResponse)
async def job_history(
    job_type: Optional[str] = None,
    limit: int = 20,
    controller: JobController = Depends(get_controller),
):
    """Finished runs, most recent first."""
    if job_type is not None:
        _check_job_type(job_type)
    if limit < 1:
        raise HTTPException(status_code=422, detail="limit must be >= 1")
    runs = controller.history(job_type, limit=min(limit, 200))
    return HistoryResponse(runs=[run_model(r) for r in runs])
