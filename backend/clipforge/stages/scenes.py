"""Scenes stage: boundary detection and candidate windows."""
import logging
from datetime import datetime

from clipforge.errors import ErrorCode, UnrecoverableError
from clipforge.media.ffmpeg import detect_silences, read_wav_samples
from clipforge.pipeline.scenes import build_semantic_windows, segment_scenes, semantic_boundaries
from clipforge.pipeline.transcript import Transcript
from clipforge.stages.base import StageContext

logger = logging.getLogger(__name__)


async def handle_scenes(ctx: StageContext) -> dict:
    """
    Build scene candidates from silences, semantic shifts and sentence ends.

    Writes ``scenes/scenes.json`` and chains rank.
    """
    config = ctx.services.scene_config
    keys = ctx.keys

    logger.info(f"Scenes started for {ctx.root_id}")
    await ctx.progress(5, "Loading transcript...")

    transcript = Transcript.from_dict(await ctx.load_json(keys.transcript, ErrorCode.UPSTREAM_TRANSCRIPT_MISSING))
    if not transcript.segments:
        raise UnrecoverableError(ErrorCode.NO_TRANSCRIPT_SEGMENTS, "No segments in transcript")
    total = transcript.end_time
    await ctx.progress(10, "Detecting silences...")

    with ctx.workspace() as workdir:
        audio_path = await ctx.download(keys.audio, workdir / "audio.wav", ErrorCode.UPSTREAM_SOURCE_MISSING)
        samples, sample_rate = read_wav_samples(audio_path)
        silences = detect_silences(
            samples,
            sample_rate,
            threshold_db=config.silence_threshold_db,
            min_duration=config.silence_min_duration,
        )
        del samples
    logger.info(f"Found {len(silences)} silences")
    await ctx.progress(35, "Analyzing topic shifts...")

    windows = build_semantic_windows(
        transcript.segments, total, window=config.semantic_window, overlap=config.semantic_overlap
    )
    semantic = []
    if len(windows) > 1:
        vectors = await ctx.services.embeddings.embed([w.text for w in windows])
        semantic = semantic_boundaries(windows, vectors, threshold=config.semantic_threshold)
    logger.info(f"Found {len(semantic)} semantic boundaries over {len(windows)} windows")
    await ctx.progress(60, "Building candidates...")

    candidates = segment_scenes(transcript.segments, total, silences, semantic, config)
    await ctx.progress(90, "Uploading scenes...")

    await ctx.store.put_json(keys.scenes, {
        "rootId": ctx.root_id,
        "createdAt": datetime.utcnow().isoformat(),
        "config": config.to_dict(),
        "candidates": [c.to_dict() for c in candidates],
    })

    await ctx.chain()
    logger.info(
        f"Scenes completed for {ctx.root_id}: {len(candidates)} candidates, "
        f"top score {candidates[0].score if candidates else 0:.2f}"
    )
    return {
        "rootId": ctx.root_id,
        "count": len(candidates),
        "top3": [c.id for c in candidates[:3]],
    }
