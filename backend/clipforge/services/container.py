"""Shared collaborators handed to every stage handler."""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from clipforge.clients import EmbeddingsClient, TextGenerationClient, TranscriptionClient, YouTubeClient
from clipforge.pipeline.config import RankConfig, SceneConfig, TextLimits
from clipforge.services.cache import TTLCache
from clipforge.storage import ObjectStore, build_object_store


@dataclass
class StageServices:
    settings: object
    store: ObjectStore
    session_maker: async_sessionmaker
    transcription: Optional[TranscriptionClient] = None
    embeddings: Optional[EmbeddingsClient] = None
    textgen: Optional[TextGenerationClient] = None
    youtube: Optional[YouTubeClient] = None
    cache: Optional[TTLCache] = None
    work_dir: Path = Path("./data/work")
    scene_config: SceneConfig = field(default_factory=SceneConfig)
    rank_config: RankConfig = field(default_factory=RankConfig)
    text_limits: TextLimits = field(default_factory=TextLimits)


def build_services(settings, session_maker: async_sessionmaker, store: Optional[ObjectStore] = None) -> StageServices:
    """Wire clients, cache and storage from settings."""
    cache = TTLCache(max_entries=settings.cache_max_entries, ttl_seconds=settings.cache_ttl_seconds)
    return StageServices(
        settings=settings,
        store=store or build_object_store(settings),
        session_maker=session_maker,
        transcription=TranscriptionClient.from_settings(settings),
        embeddings=EmbeddingsClient.from_settings(settings, cache=cache),
        textgen=TextGenerationClient.from_settings(settings),
        youtube=YouTubeClient.from_settings(settings),
        cache=cache,
        work_dir=Path(settings.work_dir),
        rank_config=RankConfig(),
        text_limits=TextLimits(
            hashtag_max=settings.texts_hashtag_max,
            blog_min_words=settings.blog_min_words,
            blog_max_words=settings.blog_max_words,
        ),
    )
