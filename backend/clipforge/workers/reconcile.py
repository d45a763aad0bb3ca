"""Reconciliation sweep for stalled pipelines.

A stage chains the next one from inside its handler. If the process dies
between the artifact upload and the enqueue, the root stalls. The sweep
looks for completed chain stages without a downstream job and re-triggers
them through the chainer, which is idempotent.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select

from clipforge.models.pipeline import CHAIN, Stage, StageJob, StageStatus, next_stage
from clipforge.workers.chaining import StageChainer
from clipforge.workers.queue import StageQueue

logger = logging.getLogger(__name__)


class Reconciler:
    def __init__(self, queue: StageQueue, chainer: StageChainer, grace_seconds: float = 120.0):
        self.queue = queue
        self.chainer = chainer
        self.grace_seconds = grace_seconds
        self._task: Optional[asyncio.Task] = None

    async def find_stalled(self, now: Optional[datetime] = None) -> List[StageJob]:
        """Completed chain jobs older than the grace period whose next stage never got a job."""
        now = now or datetime.utcnow()
        cutoff = now - timedelta(seconds=self.grace_seconds)

        async with self.queue.session_maker() as session:
            result = await session.execute(
                select(StageJob).where(
                    StageJob.status == StageStatus.COMPLETED,
                    StageJob.stage.in_(CHAIN[:-1]),
                    StageJob.completed_at <= cutoff,
                )
            )
            completed = list(result.scalars().all())
            if not completed:
                return []

            roots = {job.root_id for job in completed}
            existing = await session.execute(
                select(StageJob.root_id, StageJob.stage).where(StageJob.root_id.in_(roots))
            )
            present = {(root_id, stage) for root_id, stage in existing.all()}

        stalled = []
        for job in completed:
            downstream = next_stage(job.stage)
            if job.stage == Stage.RENDER and not job.result_dict.get("clipsGenerated") and not job.result_dict.get("skipped"):
                # Render chains texts only after producing clips
                continue
            if downstream is not None and (job.root_id, downstream) not in present:
                stalled.append(job)
        return stalled

    async def sweep(self) -> int:
        """Re-trigger downstream stages. Returns how many roots were nudged."""
        stalled = await self.find_stalled()
        for job in stalled:
            logger.warning(f"Root {job.root_id} stalled after {job.stage.value}; re-chaining")
            await self.chainer.on_stage_complete(job.root_id, job.stage)
        return len(stalled)

    async def _loop(self, interval: float):
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Reconcile sweep failed")

    def start(self, interval: float):
        if self._task is None:
            self._task = asyncio.create_task(self._loop(interval), name="reconcile")

    async def stop(self):
        if self._task:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
