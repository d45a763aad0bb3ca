"""Pydantic schemas for API requests and responses."""
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


# =============================================================================
# Pipeline Schemas
# =============================================================================

class PipelineCreate(BaseModel):
    """Request to start the pipeline for a source."""
    sourceRef: str = Field(..., min_length=1, description="Video URL, storage:// key or local path")
    meta: Optional[Dict[str, Any]] = Field(None, description="Caller metadata stored with the pipeline")
    userId: Optional[str] = Field(None, description="Owner of the pipeline")


class PipelineCreateResponse(BaseModel):
    """Pipeline creation response."""
    jobId: str
    created: bool


class StageState(BaseModel):
    """State of one chain stage."""
    status: str
    progress: int
    message: Optional[str] = None
    attempts: Optional[int] = None
    error: Optional[str] = None
    errorCode: Optional[str] = None


class PipelineStatusResponse(BaseModel):
    """Aggregated pipeline status."""
    id: str
    state: str
    progress: int
    stages: Dict[str, StageState]


# =============================================================================
# Export Schemas
# =============================================================================

class ExportCreate(BaseModel):
    """Request to publish one clip."""
    rootId: str = Field(..., min_length=1)
    clipId: str = Field(..., min_length=1)
    userId: Optional[str] = None


class ExportResponse(BaseModel):
    """Export record."""
    id: str
    root_id: str
    clip_id: str
    user_id: Optional[str]
    status: str
    history: List[str]
    progress: int
    platform_video_id: Optional[str]
    platform_url: Optional[str]
    error: Optional[str]
    created_at: Optional[str]
    updated_at: Optional[str]


# =============================================================================
# Health
# =============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    ffmpeg_available: bool
    ffprobe_available: bool
    workers_running: bool
    storage_backend: str
    message: Optional[str] = None
