"""FFmpeg and ffprobe utilities."""
import asyncio
import json
import logging
import shutil
import wave
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Tuple

import numpy as np

from clipforge.config import settings
from clipforge.errors import ErrorCode, RetryableError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], Awaitable[None]]


@dataclass
class VideoInfo:
    """Video metadata container."""
    duration: float
    width: int
    height: int
    fps: float
    video_codec: str
    audio_codec: Optional[str]
    format_name: str
    bit_rate: Optional[int]

    def to_dict(self) -> dict:
        return {
            "duration": self.duration,
            "width": self.width,
            "height": self.height,
            "fps": self.fps,
            "video_codec": self.video_codec,
            "audio_codec": self.audio_codec,
            "format_name": self.format_name,
            "bit_rate": self.bit_rate,
        }


class FFmpegError(RetryableError):
    """FFmpeg related error."""

    def __init__(self, message: str):
        super().__init__(ErrorCode.TRANSCODE_FAILED, message)


def check_ffmpeg_available() -> bool:
    """Check if ffmpeg is available."""
    return shutil.which(settings.ffmpeg_path) is not None


def check_ffprobe_available() -> bool:
    """Check if ffprobe is available."""
    return shutil.which(settings.ffprobe_path) is not None


async def get_video_info(video_path: str | Path) -> VideoInfo:
    """
    Get video metadata using ffprobe.

    Raises:
        FFmpegError: If ffprobe fails or there is no video stream
    """
    video_path = Path(video_path)
    if not video_path.exists():
        raise FFmpegError(f"Video file not found: {video_path}")

    cmd = [
        settings.ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        str(video_path)
    ]

    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE
    )
    stdout, stderr = await proc.communicate()

    if proc.returncode != 0:
        raise FFmpegError(f"ffprobe failed: {stderr.decode(errors='ignore')[:500]}")

    try:
        data = json.loads(stdout.decode())
    except json.JSONDecodeError as e:
        raise FFmpegError(f"Failed to parse ffprobe output: {e}")

    video_stream = None
    audio_stream = None
    for stream in data.get("streams", []):
        if stream.get("codec_type") == "video" and video_stream is None:
            video_stream = stream
        elif stream.get("codec_type") == "audio" and audio_stream is None:
            audio_stream = stream

    if not video_stream:
        raise FFmpegError("No video stream found")

    # Parse frame rate
    fps_str = video_stream.get("r_frame_rate", "30/1")
    if "/" in fps_str:
        num, den = fps_str.split("/")
        fps = float(num) / float(den) if float(den) > 0 else 30.0
    else:
        fps = float(fps_str)

    duration = float(data.get("format", {}).get("duration", 0) or 0)
    if duration == 0:
        duration = float(video_stream.get("duration", 0) or 0)

    return VideoInfo(
        duration=duration,
        width=int(video_stream.get("width", 0)),
        height=int(video_stream.get("height", 0)),
        fps=fps,
        video_codec=video_stream.get("codec_name", "unknown"),
        audio_codec=audio_stream.get("codec_name") if audio_stream else None,
        format_name=data.get("format", {}).get("format_name", "unknown"),
        bit_rate=int(data.get("format", {}).get("bit_rate", 0) or 0) or None
    )


async def run_ffmpeg(
    args: List[str],
    duration: Optional[float] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> None:
    """
    Run ffmpeg with ``-progress pipe:1`` and report 0-100 progress.

    The subprocess is killed on any early exit, including cancellation
    and a failing progress callback.

    Raises:
        FFmpegError: On non-zero exit
    """
    cmd = [settings.ffmpeg_path, "-y", "-hide_banner", "-nostdin", *args]
    if duration and progress_callback:
        cmd[1:1] = ["-progress", "pipe:1", "-nostats"]

    logger.debug(f"Running: {' '.join(cmd)}")
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE
    )

    async def _read_progress():
        last_progress = 0
        while True:
            line = await proc.stdout.readline()
            if not line:
                break
            line_str = line.decode("utf-8", errors="ignore").strip()
            if progress_callback and duration and line_str.startswith("out_time_ms="):
                try:
                    out_time_us = int(line_str.split("=")[1])
                except (ValueError, IndexError):
                    continue
                progress = min(100, (out_time_us / 1_000_000 / duration) * 100)
                if progress - last_progress >= 1:
                    await progress_callback(progress)
                    last_progress = progress

    try:
        # Drain stderr concurrently so a chatty encoder never blocks on a full pipe
        _, stderr = await asyncio.gather(_read_progress(), proc.stderr.read())
        await proc.wait()
    finally:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()

    if proc.returncode != 0:
        tail = stderr.decode("utf-8", errors="ignore")[-1000:]
        raise FFmpegError(f"ffmpeg exited with {proc.returncode}: {tail}")


async def extract_audio(video_path: Path, output_path: Path, sample_rate: int = 16000) -> Path:
    """Extract mono 16-bit PCM WAV audio."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    await run_ffmpeg([
        "-i", str(video_path),
        "-vn",  # No video
        "-ac", "1",  # Mono
        "-ar", str(sample_rate),
        "-c:a", "pcm_s16le",
        str(output_path),
    ])
    return output_path


async def split_audio(
    audio_path: Path,
    output_dir: Path,
    chunk_seconds: int,
) -> List[Tuple[Path, float]]:
    """
    Split a WAV file into fixed-length chunks.

    Returns:
        List of (chunk_path, offset_seconds) in playback order
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    await run_ffmpeg([
        "-i", str(audio_path),
        "-f", "segment",
        "-segment_time", str(chunk_seconds),
        "-c", "copy",
        str(output_dir / "chunk_%03d.wav"),
    ])
    chunks = sorted(output_dir.glob("chunk_*.wav"))
    if not chunks:
        raise FFmpegError("Audio split produced no chunks")
    return [(path, float(idx * chunk_seconds)) for idx, path in enumerate(chunks)]


def read_wav_samples(wav_path: Path) -> Tuple[np.ndarray, int]:
    """Load a 16-bit PCM WAV as mono float samples in [-1, 1]."""
    with wave.open(str(wav_path), "rb") as wav:
        sample_rate = wav.getframerate()
        channels = wav.getnchannels()
        if wav.getsampwidth() != 2:
            raise FFmpegError(f"Unsupported sample width in {wav_path}")
        raw = wav.readframes(wav.getnframes())

    samples = np.frombuffer(raw, dtype="<i2").astype(np.float32) / 32768.0
    if channels > 1:
        samples = samples[: len(samples) - len(samples) % channels].reshape(-1, channels).mean(axis=1)
    return samples, sample_rate


def detect_silences(
    samples: np.ndarray,
    sample_rate: int,
    threshold_db: float = -35.0,
    min_duration: float = 0.3,
    frame_seconds: float = 0.02,
) -> List[Tuple[float, float]]:
    """
    Find spans whose loudness stays below ``threshold_db`` dBFS.

    Returns:
        List of (start, end) seconds for spans of at least ``min_duration``
    """
    frame_len = max(1, int(sample_rate * frame_seconds))
    num_frames = len(samples) // frame_len
    if num_frames == 0:
        return []

    frames = samples[: num_frames * frame_len].reshape(num_frames, frame_len)
    rms = np.sqrt(np.mean(frames.astype(np.float64) ** 2, axis=1))
    rms_db = 20 * np.log10(np.maximum(rms, 1e-10))
    quiet = rms_db < threshold_db

    silences = []
    run_start = None
    for idx, is_quiet in enumerate(quiet):
        if is_quiet and run_start is None:
            run_start = idx
        elif not is_quiet and run_start is not None:
            silences.append((run_start, idx))
            run_start = None
    if run_start is not None:
        silences.append((run_start, num_frames))

    result = []
    for start_idx, end_idx in silences:
        start = start_idx * frame_seconds
        end = end_idx * frame_seconds
        if end - start >= min_duration:
            result.append((round(start, 3), round(end, 3)))
    return result


def _round_even(value: int) -> int:
    """Encoders want even frame dimensions."""
    value = int(value)
    return value if value % 2 == 0 else value - 1


def _escape_filter_value(value: str) -> str:
    """Escape a path used as a filter option value."""
    return (
        str(value)
        .replace("\\", "\\\\")
        .replace(":", "\\:")
        .replace("'", "\\'")
        .replace(",", "\\,")
    )


def _build_vertical_base_filter(width: int, height: int, mode: str) -> Tuple[str, str]:
    """
    Build the part of the filter graph that produces a vertical frame.

    Modes:
        crop: scale to fill the frame, centre-crop the overflow
        fit_blur: fit the whole frame over a blurred, stretched copy

    Returns:
        (filtergraph, output_label)
    """
    width = _round_even(width)
    height = _round_even(height)
    if mode == "fit_blur":
        graph = (
            f"[0:v]split=2[bgsrc][fgsrc];"
            f"[bgsrc]scale={width}:{height}:force_original_aspect_ratio=increase,"
            f"crop={width}:{height},boxblur=luma_radius=min(h\\,w)/20:luma_power=1"
            f":chroma_radius=min(h\\,w)/20:chroma_power=1[bg];"
            f"[fgsrc]scale={width}:{height}:force_original_aspect_ratio=decrease[fg];"
            f"[bg][fg]overlay=(W-w)/2:(H-h)/2,setsar=1[vbase]"
        )
    else:
        graph = (
            f"[0:v]scale={width}:{height}:force_original_aspect_ratio=increase,"
            f"crop={width}:{height},setsar=1[vbase]"
        )
    return graph, "vbase"


@dataclass
class RenderOptions:
    """Encoding and styling options for vertical clips."""
    width: int = 1080
    height: int = 1920
    mode: str = "crop"
    font: str = "Inter"
    font_size: int = 48
    margin_v: int = 60
    fps: int = 30
    preset: str = "veryfast"
    video_bitrate: str = "4M"
    video_maxrate: str = "6M"
    video_bufsize: str = "8M"
    audio_bitrate: str = "96k"
    loudnorm: str = "loudnorm=I=-14:LRA=11:TP=-1.5"
    fonts_dir: Optional[Path] = None
    extra_args: List[str] = field(default_factory=list)

    @classmethod
    def from_settings(cls, s) -> "RenderOptions":
        return cls(
            width=s.vertical_width,
            height=s.vertical_height,
            mode=s.render_mode,
            font=s.render_font,
            font_size=s.render_font_size,
            margin_v=s.render_margin_v,
            fps=s.render_fps,
            preset=s.render_preset,
            video_bitrate=s.render_video_bitrate,
            video_maxrate=s.render_video_maxrate,
            video_bufsize=s.render_video_bufsize,
            audio_bitrate=s.render_audio_bitrate,
            fonts_dir=s.fonts_dir,
        )


def build_render_filter(subtitles_path: Optional[Path], options: RenderOptions) -> str:
    """Vertical frame, optional burned-in subtitles, constant frame rate; output label ``vout``."""
    graph, label = _build_vertical_base_filter(options.width, options.height, options.mode)
    chain = []
    if subtitles_path is not None:
        style = (
            f"Alignment=2,FontName={options.font},FontSize={options.font_size},"
            f"Outline=2,Shadow=0,PrimaryColour=&H00FFFFFF&,OutlineColour=&H00000000&,"
            f"MarginV={options.margin_v}"
        )
        sub = f"subtitles=filename='{_escape_filter_value(subtitles_path)}'"
        if options.fonts_dir:
            sub += f":fontsdir='{_escape_filter_value(options.fonts_dir)}'"
        sub += f":force_style='{style}'"
        chain.append(sub)
    chain.append(f"fps={options.fps}")
    return f"{graph};[{label}]{','.join(chain)}[vout]"


def build_render_args(
    source_path: Path,
    output_path: Path,
    start: float,
    duration: float,
    subtitles_path: Optional[Path],
    options: RenderOptions,
    threads: int = 1,
) -> List[str]:
    """Arguments for one vertical clip render (without the ffmpeg binary)."""
    return [
        "-ss", f"{start:.3f}",
        "-t", f"{duration:.3f}",
        "-i", str(source_path),
        "-filter_complex", build_render_filter(subtitles_path, options),
        "-map", "[vout]",
        "-map", "0:a:0?",
        "-af", options.loudnorm,
        "-c:v", "libx264",
        "-preset", options.preset,
        "-profile:v", "high",
        "-pix_fmt", "yuv420p",
        "-b:v", options.video_bitrate,
        "-maxrate", options.video_maxrate,
        "-bufsize", options.video_bufsize,
        "-g", str(options.fps),
        "-threads", str(max(1, threads)),
        "-c:a", "aac",
        "-b:a", options.audio_bitrate,
        "-ac", "2",
        "-ar", "48000",
        "-movflags", "+faststart",
        "-avoid_negative_ts", "make_zero",
        *options.extra_args,
        str(output_path),
    ]


async def render_vertical_clip(
    source_path: Path,
    output_path: Path,
    start: float,
    duration: float,
    subtitles_path: Optional[Path],
    options: RenderOptions,
    threads: int = 1,
    progress_callback: Optional[ProgressCallback] = None,
) -> Path:
    """
    Render one vertical clip with burned subtitles and normalized loudness.

    Raises:
        FFmpegError: If encoding fails or produces an empty file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    args = build_render_args(
        source_path, output_path, start, duration, subtitles_path, options, threads
    )
    await run_ffmpeg(args, duration=duration, progress_callback=progress_callback)

    if not output_path.exists() or output_path.stat().st_size == 0:
        raise FFmpegError(f"Render produced no output: {output_path}")
    return output_path


async def generate_thumbnail(
    video_path: str | Path,
    output_path: str | Path,
    timestamp: float,
    width: int = None,
    height: int = None
) -> Path:
    """
    Generate a thumbnail from a video at a specific timestamp.

    Returns:
        Path to generated thumbnail
    """
    video_path = Path(video_path)
    output_path = Path(output_path)

    width = width or settings.thumbnail_width
    height = height or settings.thumbnail_height

    output_path.parent.mkdir(parents=True, exist_ok=True)

    await run_ffmpeg([
        "-ss", f"{timestamp:.3f}",
        "-i", str(video_path),
        "-frames:v", "1",
        "-vf", f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
               f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2",
        "-q:v", "3",
        str(output_path)
    ])

    if not output_path.exists():
        raise FFmpegError(f"Thumbnail generation failed: {output_path}")
    return output_path
