"""Speech-to-text client (OpenAI-compatible ``/audio/transcriptions``)."""
import logging
import time
from pathlib import Path
from typing import Optional

from clipforge.clients.http import ServiceClient
from clipforge.errors import ErrorCode, RetryableError

logger = logging.getLogger(__name__)


class TranscriptionClient(ServiceClient):
    """
    Transcribes audio files into timestamped segments.

    Example:
        client = TranscriptionClient.from_settings(settings)
        result = await client.transcribe(Path("chunk_000.wav"))
        # {"language": "en", "duration": 900.0, "segments": [{"start", "end", "text"}]}
    """

    service_name = "transcription"

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        model: str = "whisper-1",
        default_language: Optional[str] = None,
        timeout: float = 600.0,
    ):
        super().__init__(base_url, api_key=api_key, timeout=timeout)
        self.model = model
        self.default_language = default_language

    @classmethod
    def from_settings(cls, settings) -> "TranscriptionClient":
        return cls(
            base_url=settings.openai_base_url,
            api_key=settings.openai_api_key,
            model=settings.transcribe_model,
            default_language=settings.transcribe_language,
            timeout=max(settings.http_timeout_seconds, 600.0),
        )

    async def transcribe(self, file_path: Path, language: Optional[str] = None) -> dict:
        """
        Transcribe one audio file.

        Args:
            file_path: Path to the audio file
            language: Optional language hint (default: from settings)

        Returns:
            Dict with ``language``, ``duration`` and ``segments``
        """
        file_path = Path(file_path)
        language = language or self.default_language

        data = {"model": self.model, "response_format": "verbose_json"}
        if language:
            data["language"] = language

        file_size_mb = file_path.stat().st_size / 1024 / 1024
        logger.info(f"Transcribing: {file_path.name} ({file_size_mb:.1f} MB)")
        start_time = time.time()

        payload = await self.request_json(
            "POST",
            "audio/transcriptions",
            files={"file": (file_path.name, file_path.read_bytes(), "audio/wav")},
            data=data,
        )

        segments = payload.get("segments")
        if not isinstance(segments, list):
            raise RetryableError(
                ErrorCode.UPSTREAM_BAD_RESPONSE, "Transcription response has no segments list"
            )

        result = {
            "language": payload.get("language") or language or "unknown",
            "duration": float(payload.get("duration") or 0.0),
            "segments": [
                {
                    "start": float(seg.get("start", 0.0)),
                    "end": float(seg.get("end", 0.0)),
                    "text": str(seg.get("text", "")).strip(),
                }
                for seg in segments
            ],
        }

        elapsed = time.time() - start_time
        logger.info(
            f"Transcription complete: {len(result['segments'])} segments, "
            f"duration: {result['duration']:.0f}s, elapsed: {elapsed:.1f}s"
        )
        return result
