"""yt-dlp utilities for downloading remote sources."""
import asyncio
import json
import logging
import re
from pathlib import Path
from typing import Awaitable, Callable, Optional

from clipforge.config import settings
from clipforge.errors import ErrorCode, RetryableError, UnrecoverableError

logger = logging.getLogger(__name__)

VIDEO_EXTENSIONS = ("mp4", "mkv", "webm", "mov")

# Messages after which retrying cannot help
_PERMANENT_MARKERS = (
    "Video unavailable",
    "Private video",
    "This video has been removed",
    "Unsupported URL",
    "members-only",
)


class YtdlpError(RetryableError):
    """yt-dlp related error."""

    def __init__(self, message: str):
        super().__init__(ErrorCode.DOWNLOAD_FAILED, message)


def is_remote_url(ref: str) -> bool:
    return bool(re.match(r"^https?://", ref.strip(), re.IGNORECASE))


def _raise_for_output(output: str, context: str):
    if any(marker in output for marker in _PERMANENT_MARKERS):
        raise UnrecoverableError(ErrorCode.SOURCE_NOT_FOUND, f"{context}: {output.strip()[-300:]}")
    raise YtdlpError(f"{context}: {output.strip()[-500:]}")


async def get_video_info_ytdlp(url: str) -> dict:
    """Get remote video metadata without downloading."""
    cmd = [
        settings.ytdlp_path,
        "--dump-json",
        "--no-download",
        "--no-playlist",
        url
    ]

    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE
    )
    stdout, stderr = await proc.communicate()

    if proc.returncode != 0:
        _raise_for_output(stderr.decode(errors="ignore"), "Failed to get video info")

    try:
        return json.loads(stdout.decode())
    except json.JSONDecodeError as e:
        raise YtdlpError(f"Failed to parse video info: {e}")


async def download_video(
    url: str,
    output_dir: Path,
    filename: str = "source",
    progress_callback: Optional[Callable[[float, str], Awaitable[None]]] = None
) -> Path:
    """
    Download a video with best quality, merged to MP4.

    Args:
        url: Video URL
        output_dir: Directory to save the video
        filename: Base filename without extension
        progress_callback: Optional async callback(progress: float, message: str)

    Returns:
        Path to downloaded video file
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    # Clean up any partial downloads first
    for partial in list(output_dir.glob("*.part")) + list(output_dir.glob("*.ytdl")):
        partial.unlink(missing_ok=True)

    output_template = str(output_dir / f"{filename}.%(ext)s")

    # bv* requires a video stream, so audio-only formats are never picked
    cmd = [
        settings.ytdlp_path,
        "-f", "bv*[ext=mp4]+ba[ext=m4a]/bv*[ext=mp4]+ba/bv*+ba/bv*",
        "--merge-output-format", "mp4",
        "-o", output_template,
        "--no-playlist",
        "--progress",
        "--newline",
        "--force-overwrites",
        url
    ]

    logger.info(f"Running yt-dlp for {url}")

    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT
    )

    merged_path: Optional[Path] = None
    output_lines = []

    try:
        while True:
            line = await proc.stdout.readline()
            if not line:
                break

            line_str = line.decode("utf-8", errors="ignore").strip()
            output_lines.append(line_str)

            if progress_callback:
                # "[download]  50.0% of 123.45MiB"
                progress_match = re.search(r"\[download\]\s+(\d+\.?\d*)%", line_str)
                if progress_match:
                    progress = float(progress_match.group(1))
                    await progress_callback(progress * 0.9, f"Downloading: {progress:.1f}%")
                elif "[Merger]" in line_str:
                    await progress_callback(92, "Merging video and audio...")

            merge_match = re.search(r'Merging formats into "(.+)"', line_str)
            if merge_match:
                merged_path = Path(merge_match.group(1))

        await proc.wait()
    except asyncio.CancelledError:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise

    if proc.returncode != 0:
        logger.error("yt-dlp failed with output:\n" + "\n".join(output_lines[-20:]))
        _raise_for_output("\n".join(output_lines[-5:]), "Download failed")

    if merged_path and merged_path.exists():
        return merged_path

    for ext in VIDEO_EXTENSIONS:
        candidate = output_dir / f"{filename}.{ext}"
        if candidate.exists() and candidate.stat().st_size > 1000:
            return candidate

    logger.error(f"No video file found in {output_dir}. Contents: {list(output_dir.iterdir())}")
    raise YtdlpError("Download completed but video file not found")
