"""API routes."""
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from clipforge.api.schemas import (
    ExportCreate,
    ExportResponse,
    HealthResponse,
    PipelineCreate,
    PipelineCreateResponse,
    PipelineStatusResponse,
)
from clipforge.config import settings
from clipforge.media.ffmpeg import check_ffmpeg_available, check_ffprobe_available
from clipforge.models.pipeline import CHAIN
from clipforge.services.pipeline_service import PipelineService
from clipforge.workers.events import COMPLETED, FAILED, EventBus

router = APIRouter()
logger = logging.getLogger(__name__)

STREAM_KEEPALIVE_SECONDS = 15.0


def get_pipeline_service(request: Request) -> PipelineService:
    return request.app.state.pipeline_service


def get_event_bus(request: Request) -> EventBus:
    return request.app.state.runtime.events


def format_sse(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


# =============================================================================
# Health
# =============================================================================

@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Check API health and dependencies."""
    ffmpeg_ok = check_ffmpeg_available()
    ffprobe_ok = check_ffprobe_available()
    runtime = getattr(request.app.state, "runtime", None)
    workers_ok = bool(runtime and runtime.running) or not settings.run_workers

    message = None
    if not (ffmpeg_ok and ffprobe_ok):
        missing = [name for name, ok in (("ffmpeg", ffmpeg_ok), ("ffprobe", ffprobe_ok)) if not ok]
        message = f"Missing dependencies: {', '.join(missing)}"

    return HealthResponse(
        status="healthy" if ffmpeg_ok and ffprobe_ok and workers_ok else "degraded",
        ffmpeg_available=ffmpeg_ok,
        ffprobe_available=ffprobe_ok,
        workers_running=bool(runtime and runtime.running),
        storage_backend=settings.storage_backend,
        message=message,
    )


# =============================================================================
# Pipeline
# =============================================================================

@router.post("/jobs/pipeline", response_model=PipelineCreateResponse)
async def create_pipeline(
    request: PipelineCreate,
    service: PipelineService = Depends(get_pipeline_service),
):
    """Start the pipeline for a source; the same source always returns the same job id."""
    try:
        return await service.create_pipeline(request.sourceRef, meta=request.meta, user_id=request.userId)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/jobs/{job_id}/status", response_model=PipelineStatusResponse)
async def get_pipeline_status(job_id: str, service: PipelineService = Depends(get_pipeline_service)):
    """Aggregated state and progress for a pipeline."""
    status = await service.get_status(job_id)
    if status is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return status


@router.get("/jobs/{job_id}/stream")
async def stream_pipeline_events(
    job_id: str,
    request: Request,
    service: PipelineService = Depends(get_pipeline_service),
    events: EventBus = Depends(get_event_bus),
):
    """
    Server-sent events for every stage of a pipeline.

    Starts with a ``status`` snapshot, then relays ``progress``,
    ``completed`` and ``failed`` events until the chain finishes or fails
    for good.
    """
    status = await service.get_status(job_id)
    if status is None:
        raise HTTPException(status_code=404, detail="Job not found")

    subscription = events.subscribe(root_id=job_id)

    async def event_stream():
        try:
            yield format_sse("status", status)
            if status["state"] in ("completed", "failed"):
                return
            while True:
                if await request.is_disconnected():
                    break
                event = await subscription.get(timeout=STREAM_KEEPALIVE_SECONDS)
                if event is None:
                    yield ": keepalive\n\n"
                    continue
                yield format_sse(event.type, event.to_dict())
                if event.type == COMPLETED and event.stage == CHAIN[-1].value:
                    break
                if event.type == FAILED and not event.will_retry and event.stage != "export":
                    break
        finally:
            events.unsubscribe(subscription)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# =============================================================================
# Export
# =============================================================================

@router.post("/jobs/export", response_model=ExportResponse)
async def create_export(request: ExportCreate, service: PipelineService = Depends(get_pipeline_service)):
    """Queue the upload of one rendered clip."""
    if await service.get_pipeline(request.rootId) is None:
        raise HTTPException(status_code=404, detail="Job not found")
    record = await service.enqueue_export(request.rootId, request.clipId, user_id=request.userId)
    return record.to_dict()


@router.get("/exports/{export_id}", response_model=ExportResponse)
async def get_export(export_id: str, service: PipelineService = Depends(get_pipeline_service)):
    """Current state of one export."""
    record = await service.get_export(export_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Export not found")
    return record.to_dict()
