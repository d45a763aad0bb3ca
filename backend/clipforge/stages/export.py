"""Export stage: publish one rendered clip to YouTube.

Record status moves ``queued -> uploading -> processing -> done``, or to
``failed`` from any non-terminal state. Authorization problems fail the
record immediately; transient errors fail it only on the final attempt.
"""
import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select

from clipforge.clients.youtube import VideoMetadata
from clipforge.errors import (
    AuthorizationError,
    ErrorCode,
    UnrecoverableError,
    is_retryable,
)
from clipforge.models.account import AuthStatus, PlatformAccount
from clipforge.models.export import ExportRecord, ExportStatus
from clipforge.stages.base import StageContext

logger = logging.getLogger(__name__)

UPLOAD_PROGRESS_START = 10
UPLOAD_PROGRESS_END = 85


def export_job_id(root_id: str, clip_id: str) -> str:
    return f"export:{root_id}:{clip_id}"


def hashtags_to_tags(hashtags: str, limit: int = 50) -> List[str]:
    """Platform tags from a hashtag line: no ``#``, deduped case-insensitively."""
    seen = set()
    tags = []
    for token in (hashtags or "").split():
        tag = token.lstrip("#").strip()
        if not tag or tag.lower() in seen:
            continue
        seen.add(tag.lower())
        tags.append(tag)
        if len(tags) >= limit:
            break
    return tags


def upload_progress(uploaded: int, total: int) -> int:
    frac = uploaded / total if total else 1.0
    span = UPLOAD_PROGRESS_END - UPLOAD_PROGRESS_START
    return min(UPLOAD_PROGRESS_END, int(UPLOAD_PROGRESS_START + frac * span))


# =============================================================================
# Record helpers
# =============================================================================

async def ensure_record(ctx: StageContext, record_id: str, clip_id: str, user_id: Optional[str]) -> ExportRecord:
    async with ctx.services.session_maker() as session:
        record = await session.get(ExportRecord, record_id)
        if record is None:
            record = ExportRecord(
                id=record_id,
                root_id=ctx.root_id,
                clip_id=clip_id,
                user_id=user_id,
                status=ExportStatus.QUEUED,
            )
            session.add(record)
            await session.commit()
        return record


async def update_record(ctx: StageContext, record_id: str, status: Optional[ExportStatus] = None, **changes) -> ExportRecord:
    async with ctx.services.session_maker() as session:
        record = await session.get(ExportRecord, record_id)
        if status is not None:
            record.transition(status, error=changes.pop("error", None))
        for field, value in changes.items():
            setattr(record, field, value)
        await session.commit()
        return record


async def fail_record(ctx: StageContext, record_id: str, message: str):
    async with ctx.services.session_maker() as session:
        record = await session.get(ExportRecord, record_id)
        if record is None or record.is_terminal:
            return
        record.transition(ExportStatus.FAILED, error=message)
        await session.commit()
    logger.info(f"Export {record_id} marked failed: {message}")


# =============================================================================
# Credentials
# =============================================================================

async def resolve_access_token(ctx: StageContext, user_id: Optional[str]) -> str:
    """
    Access token for the user's channel, refreshed when expired.

    Falls back to the service-level refresh token when the user has no
    connected account.
    """
    youtube = ctx.services.youtube
    now = datetime.utcnow()

    async with ctx.services.session_maker() as session:
        account = None
        if user_id:
            result = await session.execute(select(PlatformAccount).where(PlatformAccount.user_id == user_id))
            account = result.scalar_one_or_none()

        if (
            account
            and account.access_token
            and account.token_expires_at
            and account.token_expires_at > now + timedelta(seconds=60)
        ):
            return account.access_token

        refresh_token = (account.refresh_token if account else None) or ctx.settings.youtube_refresh_token
        try:
            grant = await youtube.refresh_access_token(refresh_token)
        except AuthorizationError as e:
            if account and e.code == ErrorCode.UNAUTHORIZED:
                account.auth_status = AuthStatus.EXPIRED
                await session.commit()
            raise

        if account:
            account.access_token = grant.access_token
            account.token_expires_at = now + timedelta(seconds=grant.expires_in)
            account.auth_status = AuthStatus.CONNECTED
            await session.commit()
        return grant.access_token


# =============================================================================
# Upload and polling
# =============================================================================

async def upload_clip(ctx: StageContext, record_id: str, access_token: str, clip_id: str, workdir) -> str:
    """Upload video and thumbnail; returns the platform video id."""
    settings = ctx.settings
    youtube = ctx.services.youtube
    keys = ctx.keys

    video_path = await ctx.download(keys.clip_video(clip_id), workdir / f"{clip_id}.mp4", ErrorCode.UPSTREAM_CLIP_MISSING)
    title = (await ctx.store.get_text(keys.title(clip_id))).strip() if await ctx.store.exists(keys.title(clip_id)) else clip_id
    description = (
        (await ctx.store.get_text(keys.description(clip_id))).strip()
        if await ctx.store.exists(keys.description(clip_id)) else ""
    )
    hashtags = (await ctx.store.get_text(keys.hashtags(clip_id))) if await ctx.store.exists(keys.hashtags(clip_id)) else ""

    metadata = VideoMetadata(
        title=title or clip_id,
        description=description,
        tags=hashtags_to_tags(hashtags),
        category_id=settings.export_category_id,
        privacy_status=settings.export_privacy_status,
    )

    await update_record(ctx, record_id, ExportStatus.UPLOADING, progress=UPLOAD_PROGRESS_START)
    await ctx.progress(UPLOAD_PROGRESS_START, "Uploading...")

    file_size = video_path.stat().st_size
    upload_url = await youtube.start_resumable_upload(access_token, metadata, file_size)

    async def on_bytes(uploaded: int, total: int):
        await ctx.progress(upload_progress(uploaded, total), f"Uploaded {uploaded}/{total} bytes")

    video = await youtube.upload_file(upload_url, video_path, progress_callback=on_bytes)
    video_id = video.get("id")
    if not video_id:
        raise UnrecoverableError(ErrorCode.UPLOAD_FAILED, "Upload finished without a video id")

    await update_record(
        ctx, record_id, ExportStatus.PROCESSING,
        platform_video_id=video_id,
        platform_url=f"https://www.youtube.com/shorts/{video_id}",
        progress=UPLOAD_PROGRESS_END,
    )
    await ctx.progress(UPLOAD_PROGRESS_END, "Upload complete, processing...")
    logger.info(f"Uploaded {clip_id} as {video_id}")

    thumb_key = keys.clip_thumbnail(clip_id)
    try:
        if await ctx.store.exists(thumb_key):
            size = await ctx.store.size(thumb_key)
            if size <= settings.export_thumbnail_max_bytes:
                thumb_path = await ctx.store.download_file(thumb_key, workdir / f"{clip_id}.jpg")
                await youtube.set_thumbnail(access_token, video_id, thumb_path)
            else:
                logger.info(f"Thumbnail for {clip_id} is {size} bytes; over the platform cap, skipped")
    except Exception as e:
        logger.warning(f"Thumbnail for {video_id} not set: {e}")

    return video_id


async def poll_processing(ctx: StageContext, record_id: str, access_token: str, video_id: str) -> ExportStatus:
    """
    Wait for the platform to finish processing.

    Returns DONE when processed, or PROCESSING if the timeout passed first.
    """
    settings = ctx.settings
    youtube = ctx.services.youtube
    deadline = time.monotonic() + settings.export_poll_timeout_seconds

    while True:
        status = await youtube.get_processing_status(access_token, video_id)
        if status.is_processed:
            await update_record(ctx, record_id, ExportStatus.DONE, progress=100)
            return ExportStatus.DONE
        if status.is_failed:
            raise UnrecoverableError(
                ErrorCode.PLATFORM_REJECTED,
                f"Platform rejected {video_id}: {status.failure_reason or status.upload_status}",
            )
        if time.monotonic() >= deadline:
            logger.info(f"{video_id} still processing after {settings.export_poll_timeout_seconds:.0f}s")
            return ExportStatus.PROCESSING
        await asyncio.sleep(settings.export_poll_interval_seconds)
        await ctx.progress(90, f"Platform status: {status.processing_status or status.upload_status}")


async def handle_export(ctx: StageContext) -> dict:
    """Upload one clip and track its export record through the state machine."""
    clip_id = ctx.payload.get("clipId")
    if not clip_id:
        raise UnrecoverableError(ErrorCode.INVALID_PAYLOAD, "clipId is required")
    user_id = ctx.payload.get("userId")
    record_id = ctx.payload.get("exportId") or export_job_id(ctx.root_id, clip_id)

    record = await ensure_record(ctx, record_id, clip_id, user_id)
    if record.status == ExportStatus.DONE:
        return {"exportId": record_id, "status": record.status.value, "videoId": record.platform_video_id}

    logger.info(f"Export started: {record_id} (status {record.status.value}, attempt {ctx.attempt})")

    try:
        access_token = await resolve_access_token(ctx, user_id)

        if record.status == ExportStatus.PROCESSING and record.platform_video_id:
            video_id = record.platform_video_id
            logger.info(f"Resuming {record_id} at polling for {video_id}")
        else:
            with ctx.workspace() as workdir:
                video_id = await upload_clip(ctx, record_id, access_token, clip_id, workdir)

        final_status = await poll_processing(ctx, record_id, access_token, video_id)
    except Exception as e:
        if not is_retryable(e) or ctx.is_final_attempt:
            await fail_record(ctx, record_id, str(e))
        raise

    logger.info(f"Export {record_id} finished with status {final_status.value}")
    return {
        "exportId": record_id,
        "status": final_status.value,
        "videoId": video_id,
        "url": f"https://www.youtube.com/shorts/{video_id}",
    }
