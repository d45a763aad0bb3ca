"""Stage handler registration."""
from typing import Dict

from clipforge.models.pipeline import Stage
from clipforge.stages.base import StageHandler
from clipforge.stages.export import handle_export
from clipforge.stages.ingest import handle_ingest
from clipforge.stages.rank import handle_rank
from clipforge.stages.render import handle_render
from clipforge.stages.scenes import handle_scenes
from clipforge.stages.texts import handle_texts
from clipforge.stages.transcribe import handle_transcribe
from clipforge.workers.rate_limiter import build_limiter

HANDLERS: Dict[Stage, StageHandler] = {
    Stage.INGEST: handle_ingest,
    Stage.TRANSCRIBE: handle_transcribe,
    Stage.SCENES: handle_scenes,
    Stage.RANK: handle_rank,
    Stage.RENDER: handle_render,
    Stage.TEXTS: handle_texts,
    Stage.EXPORT: handle_export,
}

# Stages that call the AI providers share the provider rate limit
AI_STAGES = {Stage.TRANSCRIBE, Stage.SCENES, Stage.RANK, Stage.TEXTS}


def register_all(runtime, settings):
    """Register every stage handler on ``runtime`` with its concurrency and limiter."""
    for stage, handler in HANDLERS.items():
        limiter = None
        if stage in AI_STAGES:
            limiter = build_limiter(settings.rate_limit_max, settings.rate_limit_interval_ms)
        elif stage == Stage.EXPORT:
            limiter = build_limiter(settings.youtube_rate_limit_max, settings.youtube_rate_limit_interval_ms)
        runtime.register_handler(
            stage,
            handler,
            concurrency=settings.concurrency_for(stage.value),
            limiter=limiter,
        )
