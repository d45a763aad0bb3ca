"""Pipeline intake, status and export fan-out."""
import hashlib
import json
import logging
from typing import Callable, List, Optional

from sqlalchemy import select

from clipforge.models.export import ExportRecord, ExportStatus
from clipforge.models.pipeline import CHAIN, PipelineJob, Stage, StageJob, StageStatus
from clipforge.stages.export import export_job_id
from clipforge.workers.queue import StageQueue, stage_job_id

logger = logging.getLogger(__name__)


def root_id_for(source_ref: str) -> str:
    """Deterministic root id: the same source always maps to the same root."""
    return hashlib.sha1(source_ref.strip().encode("utf-8")).hexdigest()[:16]


def aggregate_state(jobs: List[StageJob]) -> dict:
    """
    Fold the chain's stage jobs into one pipeline state.

    ``state`` is one of pending, running, completed or failed; progress is
    the mean over all chain stages, with stages not yet enqueued at 0.
    """
    by_stage = {job.stage: job for job in jobs if job.stage in CHAIN}
    total = 0
    stages = {}
    for stage in CHAIN:
        job = by_stage.get(stage)
        if job is None:
            stages[stage.value] = {"status": "waiting", "progress": 0}
            continue
        progress = 100 if job.status == StageStatus.COMPLETED else job.progress
        total += progress
        stages[stage.value] = {
            "status": job.status.value,
            "progress": progress,
            "message": job.message,
            "attempts": job.attempts,
            "error": job.error,
            "errorCode": job.error_code,
        }

    statuses = [job.status for job in by_stage.values()]
    last = by_stage.get(CHAIN[-1])
    if StageStatus.FAILED in statuses:
        state = "failed"
    elif last is not None and last.status == StageStatus.COMPLETED:
        state = "completed"
    elif any(s in (StageStatus.RUNNING, StageStatus.COMPLETED) for s in statuses):
        state = "running"
    else:
        state = "pending"

    return {
        "state": state,
        "progress": 100 if state == "completed" else int(total / len(CHAIN)),
        "stages": stages,
    }


class PipelineService:
    """Service for pipeline operations."""

    def __init__(self, queue: StageQueue, notify: Optional[Callable[[Stage], None]] = None):
        self.queue = queue
        self.session_maker = queue.session_maker
        self.notify = notify

    async def create_pipeline(self, source_ref: str, meta: Optional[dict] = None, user_id: Optional[str] = None) -> dict:
        """
        Register a source and enqueue ingest.

        Re-submitting the same source returns the existing root and does
        not enqueue new work.

        Returns:
            ``{"jobId", "created"}``
        """
        source_ref = (source_ref or "").strip()
        if not source_ref:
            raise ValueError("sourceRef is required")
        root_id = root_id_for(source_ref)

        async with self.session_maker() as session:
            pipeline = await session.get(PipelineJob, root_id)
            if pipeline is None:
                session.add(PipelineJob(
                    root_id=root_id,
                    source_ref=source_ref,
                    user_id=user_id,
                    meta=json.dumps(meta) if meta else None,
                ))
                await session.commit()

        _, created = await self.queue.enqueue(
            Stage.INGEST,
            root_id,
            {"sourceRef": source_ref, "meta": meta or {}},
            job_id=stage_job_id(Stage.INGEST, root_id),
        )
        if created:
            logger.info(f"Pipeline {root_id} created for {source_ref}")
            if self.notify:
                self.notify(Stage.INGEST)
        else:
            logger.info(f"Pipeline {root_id} already exists, reusing")
        return {"jobId": root_id, "created": created}

    async def get_pipeline(self, root_id: str) -> Optional[PipelineJob]:
        async with self.session_maker() as session:
            return await session.get(PipelineJob, root_id)

    async def get_status(self, root_id: str) -> Optional[dict]:
        """Aggregated status for a root, or None if it does not exist."""
        pipeline = await self.get_pipeline(root_id)
        jobs = await self.queue.list_for_root(root_id)
        if pipeline is None and not jobs:
            return None
        return {"id": root_id, **aggregate_state(jobs)}

    async def enqueue_export(self, root_id: str, clip_id: str, user_id: Optional[str] = None) -> ExportRecord:
        """Create the export record in ``queued`` and enqueue its job; idempotent per clip."""
        record_id = export_job_id(root_id, clip_id)

        async with self.session_maker() as session:
            record = await session.get(ExportRecord, record_id)
            if record is None:
                record = ExportRecord(
                    id=record_id,
                    root_id=root_id,
                    clip_id=clip_id,
                    user_id=user_id,
                    status=ExportStatus.QUEUED,
                )
                session.add(record)
                await session.commit()

        payload = {"clipId": clip_id, "exportId": record_id}
        if user_id:
            payload["userId"] = user_id
        _, created = await self.queue.enqueue(Stage.EXPORT, root_id, payload, job_id=record_id)
        if created and self.notify:
            self.notify(Stage.EXPORT)
        return record

    async def get_export(self, export_id: str) -> Optional[ExportRecord]:
        async with self.session_maker() as session:
            return await session.get(ExportRecord, export_id)

    async def list_exports(self, root_id: str) -> List[ExportRecord]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(ExportRecord).where(ExportRecord.root_id == root_id).order_by(ExportRecord.created_at)
            )
            return list(result.scalars().all())
