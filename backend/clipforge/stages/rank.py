"""Rank stage: score candidates and pick a diverse final set."""
import logging
from datetime import datetime

from clipforge.errors import ErrorCode, UnrecoverableError
from clipforge.pipeline.rank import embedding_texts, rank_items, score_candidates
from clipforge.pipeline.scenes import SceneCandidate
from clipforge.pipeline.transcript import Transcript
from clipforge.stages.base import StageContext

logger = logging.getLogger(__name__)


async def handle_rank(ctx: StageContext) -> dict:
    """Write ``rank/rank.json`` with 8-12 items (fewer if candidates are scarce) and chain render."""
    config = ctx.services.rank_config
    keys = ctx.keys

    logger.info(f"Rank started for {ctx.root_id}")
    await ctx.progress(0, "Loading candidates...")

    scenes = await ctx.load_json(keys.scenes, ErrorCode.UPSTREAM_SCENES_MISSING)
    transcript = Transcript.from_dict(await ctx.load_json(keys.transcript, ErrorCode.UPSTREAM_TRANSCRIPT_MISSING))
    raw_candidates = scenes.get("candidates")
    if not isinstance(raw_candidates, list):
        raise UnrecoverableError(ErrorCode.UPSTREAM_SCENES_MISSING, "scenes.json has no candidates list")

    candidates = [SceneCandidate.from_dict(c) for c in raw_candidates]
    await ctx.progress(10, "Computing features...")

    items = score_candidates(candidates, transcript.segments, config)
    if not items:
        raise UnrecoverableError(ErrorCode.UPSTREAM_SCENES_MISSING, "No candidates within duration bounds")
    await ctx.progress(40, "Embedding candidates...")

    vectors = await ctx.services.embeddings.embed(embedding_texts(items, config))
    await ctx.progress(70, "Selecting diverse clips...")

    selected = rank_items(items, vectors, config)

    await ctx.progress(90, "Uploading ranking...")
    await ctx.store.put_json(keys.rank, {
        "rootId": ctx.root_id,
        "generatedAt": datetime.utcnow().isoformat(),
        "criteria": {
            "target": config.target_duration,
            "cpsMax": config.cps_ok_max,
            "config": config.to_dict(),
        },
        "items": [i.to_dict() for i in selected],
    })

    await ctx.chain()
    logger.info(f"Rank completed for {ctx.root_id}: {len(selected)} of {len(items)} selected")
    return {
        "rootId": ctx.root_id,
        "count": len(selected),
        "top3": [i.id for i in selected[:3]],
    }
