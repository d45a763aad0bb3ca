"""Render stage: vertical clips with burned-in subtitles and thumbnails."""
import asyncio
import logging
import math
import os
import time
from pathlib import Path
from typing import List, Optional

from clipforge.errors import ErrorCode, PipelineError, RetryableError, UnrecoverableError
from clipforge.media.ffmpeg import FFmpegError, RenderOptions, generate_thumbnail, render_vertical_clip
from clipforge.media.subtitles import build_ass
from clipforge.pipeline.transcript import Segment, Transcript
from clipforge.stages.base import StageContext

logger = logging.getLogger(__name__)


def batch_size_for(total: int, configured: int = 3) -> int:
    return max(1, min(configured, total))


def threads_per_clip(batch_size: int, cpu_count: Optional[int] = None) -> int:
    cpu_count = cpu_count or os.cpu_count() or 1
    return max(1, cpu_count // max(1, batch_size))


def scaled_progress(index: int, total: int, clip_progress: float) -> int:
    """Map one clip's 0-100 progress into its slice of the stage's 0-90 window."""
    base = math.floor(index / total * 90)
    span = math.ceil(90 / total)
    return min(89, base + math.floor(clip_progress / 100 * span))


async def render_clip(
    ctx: StageContext,
    source_path: Path,
    segments: List[Segment],
    item: dict,
    index: int,
    total: int,
    threads: int,
    options: RenderOptions,
    workdir: Path,
) -> dict:
    """
    Render, thumbnail and upload one clip, retrying the render on failure.

    Render and upload failures are reported in the returned dict; anything
    else propagates to handle_render, which isolates it from sibling clips.
    """
    settings = ctx.settings
    clip_id = item["id"]
    start = float(item["start"])
    end = float(item["end"])
    duration = max(0.0, end - start)
    clip_dir = workdir / clip_id
    clip_dir.mkdir(parents=True, exist_ok=True)
    video_path = clip_dir / f"{clip_id}.mp4"
    thumb_path = clip_dir / f"{clip_id}.jpg"

    async def on_progress(p: float):
        await ctx.progress(scaled_progress(index, total, p), f"Rendering {clip_id} ({index + 1}/{total})")

    max_attempts = settings.render_max_retries + 1
    last_error = None
    for attempt in range(1, max_attempts + 1):
        try:
            ass_path = clip_dir / f"{clip_id}_attempt{attempt}.ass"
            ass_path.write_text(
                build_ass(
                    segments, start, end,
                    width=options.width,
                    height=options.height,
                    font=options.font,
                    font_size=options.font_size,
                    margin_v=options.margin_v,
                ),
                encoding="utf-8",
            )
            await render_vertical_clip(
                source_path, video_path, start, duration, ass_path, options,
                threads=threads, progress_callback=on_progress,
            )
            last_error = None
            break
        except FFmpegError as e:
            last_error = e
            logger.warning(f"Render of {clip_id} failed (attempt {attempt}/{max_attempts}): {e.message[-300:]}")
            if attempt < max_attempts:
                delay_ms = settings.render_retry_delay_ms * (2 ** (attempt - 1))
                await asyncio.sleep(delay_ms / 1000)

    if last_error is not None:
        return {"clipId": clip_id, "success": False, "error": last_error.message[-500:]}

    has_thumbnail = True
    try:
        await generate_thumbnail(
            video_path, thumb_path, min(1.0, duration / 2),
            width=settings.thumbnail_width, height=settings.thumbnail_height,
        )
    except FFmpegError as e:
        has_thumbnail = False
        logger.warning(f"Thumbnail for {clip_id} failed, proceeding without: {e.message[-200:]}")

    try:
        await ctx.store.upload_file(ctx.keys.clip_video(clip_id), video_path, "video/mp4")
        if has_thumbnail:
            await ctx.store.upload_file(ctx.keys.clip_thumbnail(clip_id), thumb_path, "image/jpeg")
    except (OSError, PipelineError) as e:
        logger.error(f"Upload of {clip_id} failed: {e}")
        return {"clipId": clip_id, "success": False, "error": f"Upload failed: {e}"}

    logger.info(f"Clip {clip_id} rendered ({index + 1}/{total}, {duration:.1f}s)")
    return {
        "clipId": clip_id,
        "success": True,
        "duration": round(duration, 3),
        "videoKey": ctx.keys.clip_video(clip_id),
        "thumbnailKey": ctx.keys.clip_thumbnail(clip_id) if has_thumbnail else None,
    }


async def resolve_items(ctx: StageContext) -> List[dict]:
    """Clips to render: a single targeted clip or the whole ranked selection."""
    payload = ctx.payload
    clip_id = payload.get("clipId")
    if clip_id and isinstance(payload.get("start"), (int, float)) and isinstance(payload.get("end"), (int, float)):
        return [{"id": clip_id, "start": float(payload["start"]), "end": float(payload["end"])}]

    rank = await ctx.load_json(ctx.keys.rank, ErrorCode.UPSTREAM_RANK_MISSING)
    items = rank.get("items") or []
    if clip_id:
        items = [i for i in items if i.get("id") == clip_id]
        if not items:
            raise UnrecoverableError(ErrorCode.UPSTREAM_CLIP_MISSING, f"Clip {clip_id} is not in the ranking")
    return items


async def handle_render(ctx: StageContext) -> dict:
    """
    Render every selected clip in parallel batches.

    Skips work when clips already exist for the root and no single clip was
    targeted. Chains texts once at least one clip succeeded.
    """
    settings = ctx.settings
    keys = ctx.keys
    started = time.monotonic()
    targeted = bool(ctx.payload.get("clipId"))

    logger.info(f"Render started for {ctx.root_id}")

    if not targeted:
        existing = await ctx.store.list(keys.clips_prefix, limit=1)
        if existing:
            logger.info(f"Skipping render for {ctx.root_id}: clips already exist")
            await ctx.progress(95, "Clips already rendered")
            await ctx.chain()
            return {
                "success": True,
                "skipped": True,
                "clipsGenerated": 0,
                "clipsFailed": 0,
                "results": [],
                "elapsedMs": int((time.monotonic() - started) * 1000),
            }

    items = await resolve_items(ctx)
    if not items:
        raise UnrecoverableError(ErrorCode.RENDER_NO_CLIPS, "No clips to render")

    transcript = Transcript.from_dict(await ctx.load_json(keys.transcript, ErrorCode.UPSTREAM_TRANSCRIPT_MISSING))
    options = RenderOptions.from_settings(settings)
    total = len(items)
    batch = batch_size_for(total, settings.render_batch_size)
    threads = threads_per_clip(batch)
    results = []

    with ctx.workspace() as workdir:
        source_path = await ctx.download(keys.source, workdir / "source.mp4", ErrorCode.UPSTREAM_SOURCE_MISSING)
        await ctx.progress(2, f"Rendering {total} clips...")

        for offset in range(0, total, batch):
            group = items[offset:offset + batch]
            outcomes = await asyncio.gather(*[
                render_clip(ctx, source_path, transcript.segments, item, offset + i, total, threads, options, workdir)
                for i, item in enumerate(group)
            ], return_exceptions=True)
            for item, outcome in zip(group, outcomes):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    logger.error(f"Render of {item['id']} aborted: {outcome!r}")
                    outcome = {"clipId": item["id"], "success": False, "error": str(outcome)[-500:] or repr(outcome)}
                results.append(outcome)

    succeeded = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]
    elapsed_ms = int((time.monotonic() - started) * 1000)
    logger.info(
        f"Render finished for {ctx.root_id}: {len(succeeded)} ok, {len(failed)} failed in {elapsed_ms}ms"
    )

    if not succeeded:
        raise RetryableError(ErrorCode.RENDER_NO_CLIPS, f"All {total} clip renders failed")

    await ctx.progress(95, "Clips uploaded")
    await ctx.chain()

    return {
        "success": True,
        "clipsGenerated": len(succeeded),
        "clipsFailed": len(failed),
        "results": results,
        "elapsedMs": elapsed_ms,
    }
