"""In-process event bus for stage progress.

Subscribers get an ``asyncio.Queue`` filtered by job id, by root id, or
nothing (global). The SSE route subscribes per root and relays events.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

PROGRESS = "progress"
COMPLETED = "completed"
FAILED = "failed"


@dataclass
class StageEvent:
    type: str
    job_id: str
    root_id: str
    stage: str
    progress: int = 0
    message: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    will_retry: bool = False
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict:
        data = {
            "type": self.type,
            "jobId": self.job_id,
            "rootId": self.root_id,
            "stage": self.stage,
            "progress": self.progress,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.message:
            data["message"] = self.message
        if self.result is not None:
            data["result"] = self.result
        if self.error:
            data["error"] = self.error
            data["errorCode"] = self.error_code
            data["willRetry"] = self.will_retry
        return data


class Subscription:
    """A filtered event queue."""

    def __init__(self, job_id: Optional[str] = None, root_id: Optional[str] = None, maxsize: int = 1000):
        self.job_id = job_id
        self.root_id = root_id
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    def matches(self, event: StageEvent) -> bool:
        if self.job_id and event.job_id != self.job_id:
            return False
        if self.root_id and event.root_id != self.root_id:
            return False
        return True

    async def get(self, timeout: Optional[float] = None) -> Optional[StageEvent]:
        """Next event, or None on timeout."""
        try:
            return await asyncio.wait_for(self.queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None


class EventBus:
    """Fan stage events out to matching subscriptions."""

    def __init__(self):
        self._subscriptions: List[Subscription] = []

    def subscribe(self, job_id: Optional[str] = None, root_id: Optional[str] = None) -> Subscription:
        sub = Subscription(job_id=job_id, root_id=root_id)
        self._subscriptions.append(sub)
        return sub

    def unsubscribe(self, sub: Subscription):
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, event: StageEvent):
        for sub in list(self._subscriptions):
            if not sub.matches(event):
                continue
            try:
                sub.queue.put_nowait(event)
            except asyncio.QueueFull:
                # Slow consumer; drop its oldest event
                sub.queue.get_nowait()
                sub.queue.put_nowait(event)
                logger.warning(f"Event queue full for subscription root={sub.root_id} job={sub.job_id}")
