"""Account model for video platform credentials."""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Enum, Text

from clipforge.db.database import Base


class AuthStatus(str, enum.Enum):
    """Account authentication status."""
    NOT_CONNECTED = "not_connected"
    CONNECTED = "connected"
    EXPIRED = "expired"
    ERROR = "error"


class PlatformAccount(Base):
    """A user's connected video platform account (YouTube)."""

    __tablename__ = "platform_accounts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(255), nullable=False, unique=True, index=True)
    channel_id = Column(String(255), nullable=True)

    # Authentication
    auth_status = Column(Enum(AuthStatus), default=AuthStatus.NOT_CONNECTED, nullable=False)
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    token_expires_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    last_upload_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<PlatformAccount(id={self.id}, user_id={self.user_id}, status={self.auth_status})>"

    def to_dict(self):
        """Convert to dictionary. Tokens are never exposed."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "channel_id": self.channel_id,
            "auth_status": self.auth_status.value,
            "token_expires_at": self.token_expires_at.isoformat() if self.token_expires_at else None,
            "last_upload_at": self.last_upload_at.isoformat() if self.last_upload_at else None,
        }
