"""Pipeline and stage-job models.

A ``StageJob`` row is the durable queue entry for one unit of stage work.
Its primary key is the idempotency key, so enqueuing the same key twice
finds the existing row instead of creating new work.
"""
import enum
import json
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Enum, Text, Index

from clipforge.db.database import Base


class Stage(str, enum.Enum):
    """Processing stages."""
    INGEST = "ingest"
    TRANSCRIBE = "transcribe"
    SCENES = "scenes"
    RANK = "rank"
    RENDER = "render"
    TEXTS = "texts"
    EXPORT = "export"


# Linear chain; export fans out per clip and is not part of it
CHAIN = [
    Stage.INGEST,
    Stage.TRANSCRIBE,
    Stage.SCENES,
    Stage.RANK,
    Stage.RENDER,
    Stage.TEXTS,
]


def next_stage(stage: Stage):
    """Stage that follows ``stage`` in the chain, or None at the end."""
    if stage not in CHAIN:
        return None
    idx = CHAIN.index(stage)
    return CHAIN[idx + 1] if idx + 1 < len(CHAIN) else None


class StageStatus(str, enum.Enum):
    """Stage job status enumeration."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class PipelineJob(Base):
    """One source video's pipeline run."""

    __tablename__ = "pipeline_jobs"

    root_id = Column(String(64), primary_key=True)
    source_ref = Column(Text, nullable=False)
    user_id = Column(String(255), nullable=True)
    meta = Column(Text, nullable=True)  # JSON string

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<PipelineJob(root_id={self.root_id})>"

    @property
    def meta_dict(self) -> dict:
        return json.loads(self.meta) if self.meta else {}

    def to_dict(self):
        """Convert to dictionary."""
        return {
            "root_id": self.root_id,
            "source_ref": self.source_ref,
            "user_id": self.user_id,
            "meta": self.meta_dict,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class StageJob(Base):
    """Queue entry and state for one stage execution."""

    __tablename__ = "stage_jobs"

    id = Column(String(255), primary_key=True)  # Idempotency key
    root_id = Column(String(64), nullable=False, index=True)
    stage = Column(Enum(Stage), nullable=False)
    status = Column(Enum(StageStatus), default=StageStatus.PENDING, nullable=False)

    # Progress tracking
    progress = Column(Integer, default=0, nullable=False)  # 0 to 100
    message = Column(String(1024), nullable=True)

    # Retry bookkeeping
    attempts = Column(Integer, default=0, nullable=False)
    max_attempts = Column(Integer, default=3, nullable=False)
    available_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Input/results/errors
    payload = Column(Text, nullable=True)  # JSON string
    result = Column(Text, nullable=True)  # JSON string
    error = Column(Text, nullable=True)
    error_code = Column(String(64), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_stage_jobs_claim", "stage", "status", "available_at"),
    )

    def __repr__(self):
        return f"<StageJob(id={self.id}, stage={self.stage}, status={self.status})>"

    @property
    def payload_dict(self) -> dict:
        return json.loads(self.payload) if self.payload else {}

    @property
    def result_dict(self) -> dict:
        return json.loads(self.result) if self.result else {}

    def to_dict(self):
        """Convert to dictionary."""
        return {
            "id": self.id,
            "root_id": self.root_id,
            "stage": self.stage.value,
            "status": self.status.value,
            "progress": self.progress,
            "message": self.message,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "result": self.result_dict,
            "error": self.error,
            "error_code": self.error_code,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
