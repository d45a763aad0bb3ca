"""Tests for the stage queue, worker runtime, chaining and reconciliation."""
from datetime import datetime, timedelta

import pytest

from clipforge.errors import ErrorCode, RetryableError, UnrecoverableError
from clipforge.models.pipeline import CHAIN, Stage, StageJob, StageStatus, next_stage
from clipforge.workers.chaining import QueueChainer, texts_idempotency_key
from clipforge.workers.events import COMPLETED, FAILED, PROGRESS, EventBus, StageEvent
from clipforge.workers.job_runner import StageRuntime
from clipforge.workers.queue import StageQueue, compute_backoff, stage_job_id
from clipforge.workers.rate_limiter import TokenBucket, build_limiter
from clipforge.workers.reconcile import Reconciler


class _FakeClock:
    def __init__(self):
        self.now = 0.0
        self.slept = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.slept.append(seconds)
        self.now += seconds


@pytest.fixture
def queue(session_maker):
    return StageQueue(session_maker, max_attempts=3, backoff_base_ms=0, backoff_max_ms=0)


@pytest.fixture
def runtime(queue, services):
    return StageRuntime(queue, services, poll_interval=0.01)


def _chaining_handler(calls):
    async def handler(ctx):
        calls.append((ctx.stage, ctx.payload))
        await ctx.progress(50, "halfway")
        await ctx.chain()
        return {"stage": ctx.stage.value}
    return handler


# =============================================================================
# Queue
# =============================================================================

class TestStageQueue:
    """Dedup, claim, progress and failure bookkeeping."""

    @pytest.mark.asyncio
    async def test_enqueue_same_key_is_noop(self, queue):
        first, created = await queue.enqueue(Stage.INGEST, "root1", {"sourceRef": "a.mp4"})
        second, created_again = await queue.enqueue(Stage.INGEST, "root1", {"sourceRef": "b.mp4"})

        assert created and not created_again
        assert first.id == second.id == "ingest:root1"
        assert second.payload_dict["sourceRef"] == "a.mp4"
        assert len(await queue.list_for_root("root1")) == 1

    @pytest.mark.asyncio
    async def test_claim_marks_running_once(self, queue):
        await queue.enqueue(Stage.RANK, "root1")
        job = await queue.claim(Stage.RANK)
        assert job.status == StageStatus.RUNNING
        assert job.attempts == 1
        assert await queue.claim(Stage.RANK) is None
        assert await queue.claim(Stage.SCENES) is None

    @pytest.mark.asyncio
    async def test_progress_is_monotonic(self, queue):
        job, _ = await queue.enqueue(Stage.RENDER, "root1")
        assert await queue.update_progress(job.id, 50, "half")
        assert not await queue.update_progress(job.id, 30, "back")
        stored = await queue.get(job.id)
        assert stored.progress == 50
        assert stored.message == "half"

    @pytest.mark.asyncio
    async def test_retryable_failure_requeues_with_backoff(self, session_maker):
        queue = StageQueue(session_maker, max_attempts=3, backoff_base_ms=2000, backoff_max_ms=60000)
        await queue.enqueue(Stage.TRANSCRIBE, "root1")
        job = await queue.claim(Stage.TRANSCRIBE)

        settled, delay = await queue.fail(job.id, RetryableError(ErrorCode.UPSTREAM_UNAVAILABLE, "503"))
        assert delay == pytest.approx(2.0)
        assert settled.status == StageStatus.PENDING
        assert settled.available_at > datetime.utcnow()
        # Not due yet
        assert await queue.claim(Stage.TRANSCRIBE) is None
        assert await queue.next_due_in(Stage.TRANSCRIBE) > 0

    @pytest.mark.asyncio
    async def test_unrecoverable_failure_is_terminal(self, queue):
        await queue.enqueue(Stage.TRANSCRIBE, "root1")
        job = await queue.claim(Stage.TRANSCRIBE)
        settled, delay = await queue.fail(job.id, UnrecoverableError(ErrorCode.NO_TRANSCRIPT_SEGMENTS, "empty"))
        assert delay is None
        assert settled.status == StageStatus.FAILED
        assert settled.error_code == ErrorCode.NO_TRANSCRIPT_SEGMENTS

    @pytest.mark.asyncio
    async def test_failed_job_can_be_retried(self, queue):
        await queue.enqueue(Stage.SCENES, "root1")
        job = await queue.claim(Stage.SCENES)
        await queue.fail(job.id, UnrecoverableError(ErrorCode.UPSTREAM_TRANSCRIPT_MISSING, "missing"))
        retried = await queue.retry(job.id)
        assert retried.status == StageStatus.PENDING
        assert retried.attempts == 0

    @pytest.mark.asyncio
    async def test_reset_running_requeues_orphans(self, queue):
        await queue.enqueue(Stage.RENDER, "root1")
        await queue.claim(Stage.RENDER)
        assert await queue.reset_running() == 1
        assert (await queue.get("render:root1")).status == StageStatus.PENDING

    def test_backoff_doubles_and_caps(self):
        assert compute_backoff(1, 2000, 300_000) == 2.0
        assert compute_backoff(3, 2000, 300_000) == 8.0
        assert compute_backoff(20, 2000, 300_000) == 300.0
        assert compute_backoff(1, 2000, 300_000, retry_after=30) == 30.0


# =============================================================================
# Runtime
# =============================================================================

class TestStageRuntime:
    """Handler execution, classification and events."""

    @pytest.mark.asyncio
    async def test_success_completes_and_publishes(self, queue, runtime):
        calls = []
        runtime.register_handler(Stage.INGEST, _chaining_handler(calls))
        sub = runtime.events.subscribe(root_id="root1")
        await queue.enqueue(Stage.INGEST, "root1", {"sourceRef": "a.mp4"})

        job = await runtime.run_next(Stage.INGEST)

        stored = await queue.get(job.id)
        assert stored.status == StageStatus.COMPLETED
        assert stored.progress == 100
        assert stored.result_dict == {"stage": "ingest"}
        types = [sub.queue.get_nowait().type for _ in range(sub.queue.qsize())]
        assert types == [PROGRESS, COMPLETED]

    @pytest.mark.asyncio
    async def test_retryable_error_retries_until_attempts_run_out(self, queue, runtime):
        attempts = []

        async def flaky(ctx):
            attempts.append(ctx.attempt)
            raise RetryableError(ErrorCode.UPSTREAM_UNAVAILABLE, "timeout")

        runtime.register_handler(Stage.TRANSCRIBE, flaky)
        sub = runtime.events.subscribe(job_id="transcribe:root1")
        await queue.enqueue(Stage.TRANSCRIBE, "root1")

        await runtime.drain(max_wait=1.0)

        assert attempts == [1, 2, 3]
        assert (await queue.get("transcribe:root1")).status == StageStatus.FAILED
        events = [sub.queue.get_nowait() for _ in range(sub.queue.qsize())]
        assert [e.will_retry for e in events] == [True, True, False]
        assert all(e.type == FAILED for e in events)

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_retryable(self, queue, runtime):
        async def broken(ctx):
            raise OSError("disk hiccup")

        runtime.register_handler(Stage.SCENES, broken)
        await queue.enqueue(Stage.SCENES, "root1")
        await runtime.run_next(Stage.SCENES)
        job = await queue.get("scenes:root1")
        assert job.status == StageStatus.PENDING
        assert job.error_code == ErrorCode.INTERNAL

    @pytest.mark.asyncio
    async def test_unrecoverable_error_fails_first_time(self, queue, runtime):
        attempts = []

        async def no_segments(ctx):
            attempts.append(ctx.attempt)
            raise UnrecoverableError(ErrorCode.NO_TRANSCRIPT_SEGMENTS, "No segments")

        runtime.register_handler(Stage.SCENES, no_segments)
        await queue.enqueue(Stage.SCENES, "root1")
        await runtime.drain(max_wait=1.0)

        assert attempts == [1]
        job = await queue.get("scenes:root1")
        assert job.status == StageStatus.FAILED
        assert job.error == "No segments"

    @pytest.mark.asyncio
    async def test_drain_runs_the_whole_chain(self, queue, runtime):
        calls = []
        for stage in CHAIN:
            runtime.register_handler(stage, _chaining_handler(calls))
        await queue.enqueue(Stage.INGEST, "root1", {"sourceRef": "a.mp4"})

        processed = await runtime.drain(max_wait=1.0)

        assert processed == len(CHAIN)
        assert [stage for stage, _ in calls] == CHAIN
        jobs = await queue.list_for_root("root1")
        assert {j.id for j in jobs} == {stage_job_id(s, "root1") for s in CHAIN}
        assert all(j.status == StageStatus.COMPLETED for j in jobs)
        texts_payload = dict(calls)[Stage.TEXTS]
        assert texts_payload["idempotencyKey"] == texts_idempotency_key("root1")

    @pytest.mark.asyncio
    async def test_limiter_is_consulted(self, queue, runtime):
        clock = _FakeClock()
        limiter = TokenBucket(1, 1.0, clock=clock, sleep=clock.sleep)
        runtime.register_handler(Stage.RANK, _chaining_handler([]), limiter=limiter)
        await queue.enqueue(Stage.RANK, "root1")
        await queue.enqueue(Stage.RANK, "root2")

        await runtime.run_next(Stage.RANK)
        await runtime.run_next(Stage.RANK)

        assert clock.slept == [pytest.approx(1.0)]

    @pytest.mark.asyncio
    async def test_unregistered_stage_raises(self, queue, runtime):
        await queue.enqueue(Stage.EXPORT, "root1")
        job = await queue.claim(Stage.EXPORT)
        with pytest.raises(ValueError):
            await runtime.execute(job)


# =============================================================================
# Rate limiter, events, chaining, reconciliation
# =============================================================================

class TestRateLimiter:
    """Token bucket."""

    @pytest.mark.asyncio
    async def test_waits_when_bucket_is_empty(self):
        clock = _FakeClock()
        bucket = TokenBucket(2, 1.0, clock=clock, sleep=clock.sleep)
        assert await bucket.acquire() == 0.0
        assert await bucket.acquire() == 0.0
        assert await bucket.acquire() == pytest.approx(0.5)

    def test_refills_over_time(self):
        clock = _FakeClock()
        bucket = TokenBucket(1, 2.0, clock=clock, sleep=clock.sleep)
        assert bucket.try_acquire()
        assert not bucket.try_acquire()
        clock.now = 2.0
        assert bucket.try_acquire()

    def test_build_limiter_disabled(self):
        assert build_limiter(0, 1000) is None
        assert build_limiter(10, 1000).rate == 10.0


class TestEventBus:
    """Filtered fan-out."""

    @pytest.mark.asyncio
    async def test_subscriptions_filter_by_root_and_job(self):
        bus = EventBus()
        by_root = bus.subscribe(root_id="r1")
        by_job = bus.subscribe(job_id="rank:r2")
        everything = bus.subscribe()

        bus.publish(StageEvent(type=PROGRESS, job_id="rank:r1", root_id="r1", stage="rank", progress=10))
        bus.publish(StageEvent(type=COMPLETED, job_id="rank:r2", root_id="r2", stage="rank", progress=100))

        assert (await by_root.get(timeout=0.1)).job_id == "rank:r1"
        assert await by_root.get(timeout=0.01) is None
        assert (await by_job.get(timeout=0.1)).root_id == "r2"
        assert everything.queue.qsize() == 2

        bus.unsubscribe(by_root)
        assert bus.subscriber_count == 2

    def test_event_dict_is_camel_case(self):
        event = StageEvent(
            type=FAILED, job_id="j", root_id="r", stage="render",
            error="boom", error_code="RENDER_NO_CLIPS", will_retry=True,
        )
        data = event.to_dict()
        assert data["jobId"] == "j"
        assert data["errorCode"] == "RENDER_NO_CLIPS"
        assert data["willRetry"] is True


class TestChainingAndReconcile:
    """Next-stage enqueue and stalled-root recovery."""

    def test_chain_order(self):
        assert next_stage(Stage.INGEST) == Stage.TRANSCRIBE
        assert next_stage(Stage.RENDER) == Stage.TEXTS
        assert next_stage(Stage.TEXTS) is None
        assert next_stage(Stage.EXPORT) is None

    @pytest.mark.asyncio
    async def test_chainer_is_idempotent(self, queue):
        woken = []
        chainer = QueueChainer(queue, notify=woken.append)
        first = await chainer.on_stage_complete("root1", Stage.SCENES)
        second = await chainer.on_stage_complete("root1", Stage.SCENES)
        assert first == second == "rank:root1"
        assert woken == [Stage.RANK]
        assert await chainer.on_stage_complete("root1", Stage.TEXTS) is None

    @pytest.mark.asyncio
    async def test_sweep_rechains_stalled_root(self, queue):
        await queue.enqueue(Stage.SCENES, "root1")
        job = await queue.claim(Stage.SCENES)
        await queue.complete(job.id, {"count": 10})
        async with queue.session_maker() as session:
            stored = await session.get(StageJob, job.id)
            stored.completed_at = datetime.utcnow() - timedelta(minutes=10)
            await session.commit()

        reconciler = Reconciler(queue, QueueChainer(queue), grace_seconds=60)
        stalled = await reconciler.find_stalled()
        assert [j.id for j in stalled] == ["scenes:root1"]

        assert await reconciler.sweep() == 1
        assert (await queue.get("rank:root1")).status == StageStatus.PENDING
        assert await reconciler.find_stalled() == []

    @pytest.mark.asyncio
    async def test_render_without_clips_is_not_rechained(self, queue):
        await queue.enqueue(Stage.RENDER, "root1")
        job = await queue.claim(Stage.RENDER)
        await queue.complete(job.id, {"success": False, "clipsGenerated": 0})
        reconciler = Reconciler(queue, QueueChainer(queue), grace_seconds=0)
        assert await reconciler.find_stalled(now=datetime.utcnow() + timedelta(seconds=1)) == []
