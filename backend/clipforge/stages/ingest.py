"""Ingest stage: fetch the source video, probe it and extract audio."""
import logging
import shutil
from pathlib import Path

from clipforge.errors import ErrorCode, UnrecoverableError
from clipforge.media.ffmpeg import extract_audio, get_video_info
from clipforge.media.ytdlp import download_video, get_video_info_ytdlp, is_remote_url
from clipforge.stages.base import StageContext

logger = logging.getLogger(__name__)

STORAGE_SCHEME = "storage://"


async def fetch_source(ctx: StageContext, source_ref: str, workdir: Path) -> tuple:
    """
    Materialize the source locally.

    Returns:
        (local_path, title)
    """
    if is_remote_url(source_ref):
        remote_info = await get_video_info_ytdlp(source_ref)

        async def on_download(progress: float, message: str):
            await ctx.progress(5 + progress * 0.5, message)

        path = await download_video(source_ref, workdir, "source", progress_callback=on_download)
        return path, remote_info.get("title")

    if source_ref.startswith(STORAGE_SCHEME):
        key = source_ref[len(STORAGE_SCHEME):]
        path = await ctx.download(key, workdir / "source.mp4", ErrorCode.SOURCE_NOT_FOUND)
        return path, Path(key).stem

    local = Path(source_ref).expanduser()
    if not local.is_file():
        raise UnrecoverableError(ErrorCode.SOURCE_NOT_FOUND, f"Source file not found: {source_ref}")
    target = workdir / f"source{local.suffix or '.mp4'}"
    shutil.copyfile(local, target)
    return target, local.stem


async def handle_ingest(ctx: StageContext) -> dict:
    """
    Download or copy the source, validate its length, extract 16 kHz mono audio.

    Writes ``source.mp4``, ``media/audio.wav`` and ``media/info.json``, then
    chains transcribe.
    """
    settings = ctx.settings
    store = ctx.store
    keys = ctx.keys
    source_ref = (ctx.payload.get("sourceRef") or "").strip()
    if not source_ref:
        raise UnrecoverableError(ErrorCode.INVALID_PAYLOAD, "sourceRef is required")

    logger.info(f"Ingest started for {ctx.root_id}: {source_ref}")

    if await store.exists(keys.media_info) and await store.exists(keys.audio):
        info = await store.get_json(keys.media_info)
        logger.info(f"Ingest artifacts already present for {ctx.root_id}, skipping")
        await ctx.progress(100, "Source already ingested")
        await ctx.chain()
        return {"rootId": ctx.root_id, "duration": info.get("duration"), "skipped": True}

    await ctx.progress(2, "Fetching source...")

    with ctx.workspace() as workdir:
        source_path, title = await fetch_source(ctx, source_ref, workdir)
        await ctx.progress(60, "Probing media...")

        video_info = await get_video_info(source_path)
        if video_info.duration < settings.min_source_seconds:
            raise UnrecoverableError(
                ErrorCode.VIDEO_TOO_SHORT,
                f"Source is {video_info.duration:.0f}s; at least {settings.min_source_seconds:.0f}s required",
            )
        if video_info.duration > settings.max_source_seconds:
            raise UnrecoverableError(
                ErrorCode.AUDIO_TOO_LONG,
                f"Source is {video_info.duration:.0f}s; at most {settings.max_source_seconds:.0f}s supported",
            )

        await ctx.progress(65, "Extracting audio...")
        audio_path = await extract_audio(source_path, workdir / "audio.wav")

        await ctx.progress(75, "Uploading source...")
        await store.upload_file(keys.source, source_path, "video/mp4")
        await ctx.progress(90, "Uploading audio...")
        await store.upload_file(keys.audio, audio_path, "audio/wav")

        info = {
            **video_info.to_dict(),
            "title": title,
            "sourceRef": source_ref,
        }
        await store.put_json(keys.media_info, info)

    await ctx.progress(98, "Source ready")
    await ctx.chain()

    logger.info(f"Ingest completed for {ctx.root_id}: {video_info.duration:.1f}s")
    return {"rootId": ctx.root_id, "duration": video_info.duration, "title": title}
