"""Transcribe stage: speech-to-text over chunked audio."""
import logging
import wave
from pathlib import Path

from clipforge.errors import ErrorCode, UnrecoverableError
from clipforge.media.ffmpeg import split_audio
from clipforge.media.subtitles import build_srt, build_vtt
from clipforge.pipeline.transcript import Segment, Transcript, normalize_segments
from clipforge.stages.base import StageContext

logger = logging.getLogger(__name__)


def wav_duration(path: Path) -> float:
    with wave.open(str(path), "rb") as wav:
        rate = wav.getframerate()
        return wav.getnframes() / float(rate) if rate else 0.0


async def handle_transcribe(ctx: StageContext) -> dict:
    """
    Transcribe ``media/audio.wav`` chunk by chunk.

    Segment times are offset by each chunk's start, then sorted, cleaned and
    clamped to the media duration.
    """
    settings = ctx.settings
    client = ctx.services.transcription
    keys = ctx.keys

    logger.info(f"Transcribe started for {ctx.root_id}")
    await ctx.progress(2, "Loading audio...")

    with ctx.workspace() as workdir:
        audio_path = await ctx.download(keys.audio, workdir / "audio.wav", ErrorCode.UPSTREAM_SOURCE_MISSING)
        duration = wav_duration(audio_path)
        if duration > settings.transcribe_max_audio_seconds:
            raise UnrecoverableError(
                ErrorCode.AUDIO_TOO_LONG,
                f"Audio is {duration:.0f}s; limit is {settings.transcribe_max_audio_seconds:.0f}s",
            )

        if duration > settings.transcribe_chunk_seconds:
            chunks = await split_audio(audio_path, workdir / "chunks", settings.transcribe_chunk_seconds)
        else:
            chunks = [(audio_path, 0.0)]
        logger.info(f"Transcribing {len(chunks)} chunk(s), {duration:.0f}s of audio")
        await ctx.progress(10, f"Transcribing {len(chunks)} chunk(s)...")

        segments = []
        language = None
        for idx, (chunk_path, offset) in enumerate(chunks):
            result = await client.transcribe(chunk_path)
            language = language or result.get("language")
            for seg in result["segments"]:
                segments.append(Segment(seg["start"] + offset, seg["end"] + offset, seg["text"]))
            await ctx.progress(10 + (idx + 1) / len(chunks) * 75, f"Transcribed chunk {idx + 1}/{len(chunks)}")

    segments = normalize_segments(segments, duration or None)
    if not segments:
        raise UnrecoverableError(ErrorCode.NO_TRANSCRIPT_SEGMENTS, "No transcript segments found")

    transcript = Transcript(language=language or "unknown", segments=segments, duration=duration or None)

    await ctx.progress(90, "Uploading transcript...")
    await ctx.store.put_json(keys.transcript, transcript.to_dict())
    await ctx.store.put_text(keys.srt, build_srt(segments), "application/x-subrip")
    await ctx.store.put_text(keys.vtt, build_vtt(segments), "text/vtt")

    await ctx.chain()
    logger.info(f"Transcribe completed for {ctx.root_id}: {len(segments)} segments ({transcript.language})")
    return {
        "rootId": ctx.root_id,
        "language": transcript.language,
        "segments": len(segments),
        "duration": transcript.end_time,
    }
