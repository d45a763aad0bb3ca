"""Application configuration."""
from pathlib import Path
from typing import Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8"
    )

    # App settings
    app_name: str = "ClipForge"
    debug: bool = False
    log_level: str = "INFO"

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000
    run_workers: bool = True  # Start stage workers inside the API process

    # Database
    database_url: str = "sqlite+aiosqlite:///./data/clipforge.db"

    # Data directories
    data_dir: Path = Path("./data")
    work_dir: Path = Path("./data/work")  # Per-job temp directories

    # Object storage
    storage_backend: Literal["local", "gcs"] = "local"
    storage_root: Path = Path("./data/storage")
    gcs_bucket: str = "clipforge-media"

    # Stage-worker runtime
    workers_concurrency: int = 2
    ingest_concurrency: Optional[int] = None
    transcribe_concurrency: Optional[int] = None
    scenes_concurrency: Optional[int] = None
    rank_concurrency: Optional[int] = None
    render_concurrency: Optional[int] = None
    texts_concurrency: Optional[int] = None
    export_concurrency: Optional[int] = None
    job_attempts: int = 3
    backoff_base_ms: int = 2000
    backoff_max_ms: int = 300_000
    rate_limit_max: int = 10  # Jobs per interval for AI-bound stages
    rate_limit_interval_ms: int = 1000
    youtube_rate_limit_max: int = 10
    youtube_rate_limit_interval_ms: int = 1000
    poll_interval_seconds: float = 1.0
    reconcile_interval_seconds: float = 60.0
    reconcile_grace_seconds: float = 120.0

    # Binaries
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    ytdlp_path: str = "yt-dlp"

    # Ingest
    min_source_seconds: float = 600.0
    max_source_seconds: float = 4 * 3600.0

    # Speech-to-text / embeddings / generation (OpenAI-compatible HTTP APIs)
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    transcribe_model: str = "whisper-1"
    transcribe_language: Optional[str] = None
    transcribe_chunk_seconds: int = 900
    transcribe_max_audio_seconds: float = 4 * 3600.0
    embeddings_model: str = "text-embedding-3-small"
    texts_model: str = "gpt-4o-mini"
    texts_tone: str = "direct, energetic"
    texts_language: str = "en"
    texts_hashtag_max: int = 12
    blog_min_words: int = 800
    blog_max_words: int = 1200
    http_timeout_seconds: float = 120.0

    # Render settings
    render_mode: Literal["crop", "fit_blur"] = "crop"
    render_font: str = "Inter"
    render_font_size: int = 48
    render_margin_v: int = 60
    render_fps: int = 30
    render_preset: str = "veryfast"
    render_video_bitrate: str = "4M"
    render_video_maxrate: str = "6M"
    render_video_bufsize: str = "8M"
    render_audio_bitrate: str = "96k"
    render_max_retries: int = 2
    render_retry_delay_ms: int = 1000
    render_batch_size: int = 3
    fonts_dir: Optional[Path] = None
    vertical_width: int = 1080
    vertical_height: int = 1920

    # Thumbnail settings
    thumbnail_width: int = 540
    thumbnail_height: int = 960

    # Export (YouTube)
    youtube_client_id: str = ""
    youtube_client_secret: str = ""
    youtube_refresh_token: str = ""  # Service-level credential when no user account exists
    export_privacy_status: str = "unlisted"
    export_category_id: str = "22"
    export_poll_interval_seconds: float = 4.0
    export_poll_timeout_seconds: float = 480.0
    export_thumbnail_max_bytes: int = 2_000_000

    # Cache
    cache_ttl_seconds: float = 3600.0
    cache_max_entries: int = 2048

    # Frontend
    frontend_url: str = "http://localhost:5173"

    def concurrency_for(self, stage: str) -> int:
        """Worker count for a stage, falling back to the shared default."""
        override = getattr(self, f"{stage}_concurrency", None)
        return max(1, override if override else self.workers_concurrency)


settings = Settings()

# Ensure directories exist
settings.data_dir.mkdir(parents=True, exist_ok=True)
settings.work_dir.mkdir(parents=True, exist_ok=True)
