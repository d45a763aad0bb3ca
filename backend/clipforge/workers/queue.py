"""Durable stage queue on top of the ``stage_jobs`` table."""
import json
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import and_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from clipforge.errors import PipelineError, error_code, is_retryable
from clipforge.models.pipeline import Stage, StageJob, StageStatus

logger = logging.getLogger(__name__)


def stage_job_id(stage: Stage, root_id: str) -> str:
    """Default idempotency key for a chain stage of a root."""
    return f"{Stage(stage).value}:{root_id}"


def compute_backoff(
    attempt: int,
    base_ms: int,
    max_ms: int,
    retry_after: Optional[float] = None,
) -> float:
    """
    Seconds to wait before the next attempt.

    ``base * 2^(attempt-1)`` capped at ``max``; a provider hint in seconds
    wins when it asks for longer.
    """
    delay_ms = min(max_ms, base_ms * (2 ** max(0, attempt - 1)))
    delay = delay_ms / 1000.0
    if retry_after:
        delay = max(delay, float(retry_after))
    return delay


class StageQueue:
    """Enqueue, claim and settle stage jobs."""

    def __init__(
        self,
        session_maker: async_sessionmaker,
        max_attempts: int = 3,
        backoff_base_ms: int = 2000,
        backoff_max_ms: int = 300_000,
    ):
        self.session_maker = session_maker
        self.max_attempts = max_attempts
        self.backoff_base_ms = backoff_base_ms
        self.backoff_max_ms = backoff_max_ms

    async def enqueue(
        self,
        stage: Stage,
        root_id: str,
        payload: Optional[dict] = None,
        job_id: Optional[str] = None,
        max_attempts: Optional[int] = None,
    ) -> Tuple[StageJob, bool]:
        """
        Insert a job unless one with the same key exists.

        Returns:
            (job, created)
        """
        stage = Stage(stage)
        job_id = job_id or stage_job_id(stage, root_id)
        body = dict(payload or {})
        body.setdefault("rootId", root_id)

        async with self.session_maker() as session:
            existing = await session.get(StageJob, job_id)
            if existing:
                return existing, False

            job = StageJob(
                id=job_id,
                root_id=root_id,
                stage=stage,
                status=StageStatus.PENDING,
                payload=json.dumps(body),
                max_attempts=max_attempts or self.max_attempts,
                available_at=datetime.utcnow(),
            )
            session.add(job)
            try:
                await session.commit()
            except IntegrityError:
                # Lost an insert race on the same key
                await session.rollback()
                existing = await session.get(StageJob, job_id)
                return existing, False

        logger.info(f"Enqueued {job_id}")
        return job, True

    async def get(self, job_id: str) -> Optional[StageJob]:
        async with self.session_maker() as session:
            return await session.get(StageJob, job_id)

    async def list_for_root(self, root_id: str) -> List[StageJob]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(StageJob).where(StageJob.root_id == root_id).order_by(StageJob.created_at)
            )
            return list(result.scalars().all())

    async def claim(self, stage: Stage) -> Optional[StageJob]:
        """
        Take the oldest due pending job of ``stage``.

        The status flip is a conditional update, so two workers can never
        claim the same row.
        """
        now = datetime.utcnow()
        async with self.session_maker() as session:
            for _ in range(3):
                result = await session.execute(
                    select(StageJob.id)
                    .where(and_(
                        StageJob.stage == Stage(stage),
                        StageJob.status == StageStatus.PENDING,
                        StageJob.available_at <= now,
                    ))
                    .order_by(StageJob.available_at, StageJob.created_at)
                    .limit(1)
                )
                job_id = result.scalar_one_or_none()
                if job_id is None:
                    return None

                claimed = await session.execute(
                    update(StageJob)
                    .where(and_(StageJob.id == job_id, StageJob.status == StageStatus.PENDING))
                    .values(
                        status=StageStatus.RUNNING,
                        attempts=StageJob.attempts + 1,
                        started_at=now,
                        message="Starting...",
                    )
                )
                await session.commit()
                if claimed.rowcount == 1:
                    return await session.get(StageJob, job_id, populate_existing=True)
            return None

    async def update_progress(self, job_id: str, progress: int, message: Optional[str] = None) -> bool:
        """Raise progress; lower values are ignored. Returns True if stored."""
        progress = int(min(100, max(0, progress)))
        values = {"progress": progress}
        if message:
            values["message"] = message[:1024]
        async with self.session_maker() as session:
            result = await session.execute(
                update(StageJob)
                .where(and_(StageJob.id == job_id, StageJob.progress <= progress))
                .values(**values)
            )
            await session.commit()
            return result.rowcount == 1

    async def complete(self, job_id: str, result: Optional[dict] = None) -> Optional[StageJob]:
        async with self.session_maker() as session:
            job = await session.get(StageJob, job_id)
            if not job:
                return None
            job.status = StageStatus.COMPLETED
            job.progress = 100
            job.message = "Completed successfully"
            job.completed_at = datetime.utcnow()
            job.error = None
            job.error_code = None
            job.result = json.dumps(result) if result is not None else None
            await session.commit()
            return job

    async def fail(self, job_id: str, exc: BaseException) -> Tuple[Optional[StageJob], Optional[float]]:
        """
        Record a failure and decide whether to retry.

        Returns:
            (job, delay) where delay is the backoff in seconds when the job
            was requeued, or None when the failure is terminal
        """
        message = exc.message if isinstance(exc, PipelineError) else str(exc)
        async with self.session_maker() as session:
            job = await session.get(StageJob, job_id)
            if not job:
                return None, None

            job.error = message
            job.error_code = error_code(exc)

            if is_retryable(exc) and job.attempts < job.max_attempts:
                delay = compute_backoff(
                    job.attempts,
                    self.backoff_base_ms,
                    self.backoff_max_ms,
                    getattr(exc, "retry_after", None),
                )
                job.status = StageStatus.PENDING
                job.available_at = datetime.utcnow() + timedelta(seconds=delay)
                job.message = f"Retrying in {delay:.1f}s: {message}"[:1024]
                await session.commit()
                return job, delay

            job.status = StageStatus.FAILED
            job.message = f"Failed: {message}"[:1024]
            job.completed_at = datetime.utcnow()
            await session.commit()
            return job, None

    async def retry(self, job_id: str) -> Optional[StageJob]:
        """Make a failed job pending again with a fresh attempt budget."""
        async with self.session_maker() as session:
            job = await session.get(StageJob, job_id)
            if not job or job.status != StageStatus.FAILED:
                return job
            job.status = StageStatus.PENDING
            job.attempts = 0
            job.progress = 0
            job.available_at = datetime.utcnow()
            job.completed_at = None
            job.message = "Requeued"
            await session.commit()
            return job

    async def reset_running(self) -> int:
        """Return jobs left RUNNING by a dead process to the queue."""
        async with self.session_maker() as session:
            result = await session.execute(
                update(StageJob)
                .where(StageJob.status == StageStatus.RUNNING)
                .values(status=StageStatus.PENDING, available_at=datetime.utcnow(), message="Recovered after restart")
            )
            await session.commit()
            return result.rowcount or 0

    async def next_due_in(self, stage: Stage) -> Optional[float]:
        """Seconds until the earliest pending job of ``stage`` becomes due."""
        async with self.session_maker() as session:
            result = await session.execute(
                select(StageJob.available_at)
                .where(and_(StageJob.stage == Stage(stage), StageJob.status == StageStatus.PENDING))
                .order_by(StageJob.available_at)
                .limit(1)
            )
            available_at = result.scalar_one_or_none()
        if available_at is None:
            return None
        return max(0.0, (available_at - datetime.utcnow()).total_seconds())
