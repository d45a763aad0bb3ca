"""Stage chaining policy.

Handlers announce completion through a ``StageChainer``; which stage runs
next and how it is enqueued is decided here, not in the stages.
"""
import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

from clipforge.models.pipeline import Stage, next_stage
from clipforge.workers.queue import StageQueue, stage_job_id

logger = logging.getLogger(__name__)


def texts_idempotency_key(root_id: str) -> str:
    return f"{root_id}:texts"


class StageChainer(ABC):
    """Decides what happens after a stage finishes for a root."""

    @abstractmethod
    async def on_stage_complete(self, root_id: str, stage: Stage, payload: Optional[dict] = None) -> Optional[str]:
        """
        Trigger the stage after ``stage``.

        Returns:
            The job id of the downstream job, or None at the end of the chain
        """


class QueueChainer(StageChainer):
    """Enqueue the next chain stage directly on the stage queue."""

    def __init__(self, queue: StageQueue, notify: Optional[Callable[[Stage], None]] = None):
        self.queue = queue
        self.notify = notify

    async def on_stage_complete(self, root_id: str, stage: Stage, payload: Optional[dict] = None) -> Optional[str]:
        downstream = next_stage(Stage(stage))
        if downstream is None:
            return None

        body = {"rootId": root_id}
        if downstream == Stage.TEXTS:
            body["idempotencyKey"] = texts_idempotency_key(root_id)
        body.update(payload or {})

        job, created = await self.queue.enqueue(downstream, root_id, body, job_id=stage_job_id(downstream, root_id))
        if created:
            logger.info(f"Chained {stage.value} -> {downstream.value} for {root_id}")
            if self.notify:
                self.notify(downstream)
        else:
            logger.info(f"{downstream.value} already queued for {root_id} ({job.status.value})")
        return job.id
