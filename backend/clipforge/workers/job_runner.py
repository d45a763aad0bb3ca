"""Stage-worker runtime using asyncio.

Each registered stage gets its own pool of worker tasks that claim jobs
from the stage queue, run the handler and settle the job. Handlers chain
the next stage themselves through the context.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from clipforge.errors import PipelineError, error_code
from clipforge.models.pipeline import Stage, StageJob
from clipforge.services.container import StageServices
from clipforge.stages.base import StageContext, StageHandler
from clipforge.workers.chaining import QueueChainer, StageChainer
from clipforge.workers.events import COMPLETED, FAILED, PROGRESS, EventBus, StageEvent
from clipforge.workers.queue import StageQueue
from clipforge.workers.rate_limiter import TokenBucket

logger = logging.getLogger(__name__)


@dataclass
class StageRegistration:
    handler: StageHandler
    concurrency: int = 1
    limiter: Optional[TokenBucket] = None


class StageRuntime:
    """Per-stage worker pools over a StageQueue."""

    def __init__(
        self,
        queue: StageQueue,
        services: StageServices,
        events: Optional[EventBus] = None,
        chainer: Optional[StageChainer] = None,
        poll_interval: float = 1.0,
    ):
        self.queue = queue
        self.services = services
        self.events = events or EventBus()
        self.chainer = chainer or QueueChainer(queue, notify=self.wake)
        self.poll_interval = poll_interval
        self._registrations: Dict[Stage, StageRegistration] = {}
        self._wake_events: Dict[Stage, asyncio.Event] = {}
        self._tasks: List[asyncio.Task] = []
        self._stopping = False

    def register_handler(
        self,
        stage: Stage,
        handler: StageHandler,
        concurrency: int = 1,
        limiter: Optional[TokenBucket] = None,
    ):
        """Register a handler for a stage."""
        stage = Stage(stage)
        self._registrations[stage] = StageRegistration(handler, max(1, concurrency), limiter)
        self._wake_events.setdefault(stage, asyncio.Event())

    @property
    def stages(self) -> List[Stage]:
        return list(self._registrations)

    @property
    def running(self) -> bool:
        return bool(self._tasks) and not self._stopping

    def wake(self, stage: Stage):
        """Nudge idle workers of ``stage`` to poll now."""
        event = self._wake_events.get(Stage(stage))
        if event:
            event.set()

    async def start(self):
        """Spawn worker tasks for every registered stage."""
        recovered = await self.queue.reset_running()
        if recovered:
            logger.warning(f"Requeued {recovered} jobs left running by a previous process")

        self._stopping = False
        for stage, reg in self._registrations.items():
            for idx in range(reg.concurrency):
                task = asyncio.create_task(self._worker(stage, idx), name=f"{stage.value}-worker-{idx}")
                self._tasks.append(task)
        logger.info(
            "Stage workers started: "
            + ", ".join(f"{s.value}x{r.concurrency}" for s, r in self._registrations.items())
        )

    async def _worker(self, stage: Stage, idx: int):
        wake = self._wake_events[stage]
        while not self._stopping:
            try:
                job = await self.queue.claim(stage)
                if job is None:
                    wake.clear()
                    timeout = self.poll_interval
                    due = await self.queue.next_due_in(stage)
                    if due is not None:
                        timeout = max(0.05, min(timeout, due))
                    try:
                        await asyncio.wait_for(wake.wait(), timeout=timeout)
                    except asyncio.TimeoutError:
                        pass
                    continue
                await self.execute(job)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"{stage.value} worker {idx} loop error")
                await asyncio.sleep(self.poll_interval)

    def _context(self, job: StageJob) -> StageContext:
        async def report(progress: int, message: Optional[str] = None):
            stored = await self.queue.update_progress(job.id, progress, message)
            if stored:
                self.events.publish(StageEvent(
                    type=PROGRESS,
                    job_id=job.id,
                    root_id=job.root_id,
                    stage=job.stage.value,
                    progress=int(progress),
                    message=message,
                ))

        return StageContext(
            job_id=job.id,
            root_id=job.root_id,
            stage=job.stage,
            payload=job.payload_dict,
            services=self.services,
            attempt=job.attempts,
            max_attempts=job.max_attempts,
            chainer=self.chainer,
            reporter=report,
        )

    async def execute(self, job: StageJob) -> Optional[dict]:
        """
        Run one claimed job and settle it.

        Returns:
            The handler result, or None if the attempt failed
        """
        reg = self._registrations.get(job.stage)
        if reg is None:
            raise ValueError(f"No handler registered for stage: {job.stage}")

        if reg.limiter:
            waited = await reg.limiter.acquire()
            if waited > 0:
                logger.debug(f"{job.id} waited {waited:.2f}s for rate limit")

        ctx = self._context(job)
        logger.info(f"Running {job.id} (attempt {job.attempts}/{job.max_attempts})")

        try:
            result = await reg.handler(ctx)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            settled, delay = await self.queue.fail(job.id, e)
            will_retry = delay is not None
            if will_retry:
                logger.warning(f"{job.id} failed, retrying in {delay:.1f}s: {e}")
            else:
                logger.error(f"{job.id} failed permanently: {e}", exc_info=not isinstance(e, PipelineError))
            self.events.publish(StageEvent(
                type=FAILED,
                job_id=job.id,
                root_id=job.root_id,
                stage=job.stage.value,
                progress=settled.progress if settled else 0,
                error=str(e),
                error_code=error_code(e),
                will_retry=will_retry,
            ))
            return None

        await self.queue.complete(job.id, result)
        logger.info(f"{job.id} completed successfully")
        self.events.publish(StageEvent(
            type=COMPLETED,
            job_id=job.id,
            root_id=job.root_id,
            stage=job.stage.value,
            progress=100,
            result=result,
        ))
        return result

    async def run_next(self, stage: Stage) -> Optional[StageJob]:
        """Claim and run one due job of ``stage`` inline."""
        job = await self.queue.claim(stage)
        if job is None:
            return None
        await self.execute(job)
        return job

    async def drain(self, max_jobs: int = 1000, max_wait: float = 600.0) -> int:
        """
        Run jobs inline until the queue has nothing pending.

        Waits for delayed retries that fall due within ``max_wait`` seconds.

        Returns:
            Number of jobs executed
        """
        processed = 0
        while processed < max_jobs:
            ran = False
            for stage in self.stages:
                job = await self.run_next(stage)
                if job is not None:
                    ran = True
                    processed += 1
            if ran:
                continue

            dues = [d for d in [await self.queue.next_due_in(s) for s in self.stages] if d is not None]
            if not dues or min(dues) > max_wait:
                break
            await asyncio.sleep(min(dues))
        return processed

    async def shutdown(self):
        """Cancel all worker tasks."""
        self._stopping = True
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Stage workers stopped")
