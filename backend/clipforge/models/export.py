"""Export record model with a forward-only status machine."""
import enum
import json
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Enum, Text

from clipforge.db.database import Base


class ExportStatus(str, enum.Enum):
    """Export status enumeration."""
    QUEUED = "queued"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


TRANSITIONS = {
    ExportStatus.QUEUED: {ExportStatus.UPLOADING, ExportStatus.FAILED},
    ExportStatus.UPLOADING: {ExportStatus.PROCESSING, ExportStatus.FAILED},
    ExportStatus.PROCESSING: {ExportStatus.DONE, ExportStatus.FAILED},
    ExportStatus.DONE: set(),
    ExportStatus.FAILED: set(),
}


class InvalidTransitionError(ValueError):
    """Raised when an export would move backwards or out of a terminal state."""


class ExportRecord(Base):
    """Publishing state for one clip on the video platform."""

    __tablename__ = "export_records"

    id = Column(String(255), primary_key=True)  # export:<rootId>:<clipId>
    root_id = Column(String(64), nullable=False, index=True)
    clip_id = Column(String(64), nullable=False)
    user_id = Column(String(255), nullable=True)

    status = Column(Enum(ExportStatus), default=ExportStatus.QUEUED, nullable=False)
    history = Column(Text, nullable=True)  # JSON list of visited statuses
    progress = Column(Integer, default=0, nullable=False)

    platform_video_id = Column(String(64), nullable=True)
    platform_url = Column(String(1024), nullable=True)
    error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<ExportRecord(id={self.id}, status={self.status})>"

    @property
    def history_list(self) -> list:
        return json.loads(self.history) if self.history else [ExportStatus.QUEUED.value]

    @property
    def is_terminal(self) -> bool:
        return self.status in (ExportStatus.DONE, ExportStatus.FAILED)

    def transition(self, new_status: ExportStatus, error: str = None):
        """Move to ``new_status``; re-entering the current status is a no-op."""
        current = self.status or ExportStatus.QUEUED
        if new_status == current:
            return
        if new_status not in TRANSITIONS[current]:
            raise InvalidTransitionError(
                f"Export {self.id}: cannot move from {current.value} to {new_status.value}"
            )
        self.status = new_status
        self.history = json.dumps(self.history_list + [new_status.value])
        if error:
            self.error = error

    def to_dict(self):
        """Convert to dictionary."""
        return {
            "id": self.id,
            "root_id": self.root_id,
            "clip_id": self.clip_id,
            "user_id": self.user_id,
            "status": self.status.value,
            "history": self.history_list,
            "progress": self.progress,
            "platform_video_id": self.platform_video_id,
            "platform_url": self.platform_url,
            "error": self.error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
