"""Texts stage: per-clip title/description/hashtags plus one blog post."""
import json
import logging
from typing import List

from clipforge.errors import ErrorCode, PipelineError, UnrecoverableError
from clipforge.pipeline.texts import (
    BLOG_SCHEMA,
    CLIP_TEXT_SCHEMA,
    ClipText,
    blog_prompt,
    clip_prompt,
    clip_system_prompt,
    enforce_limits,
    fallback_clip_text,
    sanitize_blog,
)
from clipforge.pipeline.transcript import Transcript, head_excerpt, text_in_range
from clipforge.stages.base import StageContext

logger = logging.getLogger(__name__)


async def write_clip_text(ctx: StageContext, clip_id: str, text: ClipText) -> dict:
    keys = ctx.keys
    await ctx.store.put_text(keys.title(clip_id), text.title + "\n")
    await ctx.store.put_text(keys.description(clip_id), text.description.strip() + "\n", "text/markdown")
    await ctx.store.put_text(keys.hashtags(clip_id), " ".join(text.hashtags) + "\n")
    return {
        "clipId": clip_id,
        "titleKey": keys.title(clip_id),
        "descriptionKey": keys.description(clip_id),
        "hashtagsKey": keys.hashtags(clip_id),
    }


async def generate_clip_text(ctx: StageContext, item: dict, index: int, transcript: Transcript) -> ClipText:
    """Generated copy for one clip, or deterministic copy if generation fails."""
    settings = ctx.settings
    limits = ctx.services.text_limits
    clip_id = item["id"]
    start, end = float(item["start"]), float(item["end"])
    duration = max(0.0, end - start)

    base_text = text_in_range(transcript.segments, start, end)
    excerpt = item.get("excerpt") or head_excerpt(base_text, 240)
    if not base_text and not excerpt:
        logger.warning(f"No transcript text for {clip_id}, using fallback copy")
        return fallback_clip_text(index, duration, limits=limits)

    try:
        raw = await ctx.services.textgen.generate_json(
            clip_prompt(clip_id, duration, excerpt, base_text),
            CLIP_TEXT_SCHEMA,
            system=clip_system_prompt(settings.texts_tone, settings.texts_language),
        )
    except PipelineError as e:
        logger.warning(f"Text generation failed for {clip_id}, using fallback copy: {e}")
        return fallback_clip_text(index, duration, excerpt, limits)

    return enforce_limits(
        raw.get("title") or "",
        raw.get("description") or "",
        raw.get("hashtags") or [],
        duration=duration,
        max_tags=limits.hashtag_max,
        limits=limits,
    )


def blog_insights(items: List[dict], transcript: Transcript, top_min: int, top_max: int) -> List[dict]:
    count = max(top_min, min(top_max, len(items)))
    insights = []
    for rank, item in enumerate(items[:count], start=1):
        start, end = float(item["start"]), float(item["end"])
        insights.append({
            "rank": rank,
            "clipId": item["id"],
            "start": start,
            "end": end,
            "duration": round(end - start, 2),
            "excerpt": item.get("excerpt") or head_excerpt(text_in_range(transcript.segments, start, end), 260),
            "reasons": item.get("reasons") or [],
        })
    return insights


async def handle_texts(ctx: StageContext) -> dict:
    """
    Generate copy for the first 12 ranked clips and a blog post with SEO fields.

    With an idempotency key, an existing completion marker short-circuits
    the stage and returns the stored references. The marker is written last.
    """
    settings = ctx.settings
    limits = ctx.services.text_limits
    keys = ctx.keys
    idempotency_key = ctx.payload.get("idempotencyKey")

    logger.info(f"Texts started for {ctx.root_id}")
    await ctx.progress(2, "Checking previous output...")

    if idempotency_key and await ctx.store.exists(keys.texts_marker(idempotency_key)):
        refs = json.loads(await ctx.store.get_text(keys.texts_marker(idempotency_key)))
        logger.info(f"Texts already generated for {ctx.root_id} ({idempotency_key})")
        return {**refs, "skipped": True}

    rank = await ctx.load_json(keys.rank, ErrorCode.UPSTREAM_RANK_MISSING)
    transcript = Transcript.from_dict(await ctx.load_json(keys.transcript, ErrorCode.UPSTREAM_TRANSCRIPT_MISSING))
    items = (rank.get("items") or [])[: limits.clips_max]
    if not items:
        raise UnrecoverableError(ErrorCode.UPSTREAM_RANK_MISSING, "rank.json has no items")
    await ctx.progress(10, f"Writing copy for {len(items)} clips...")

    outputs = []
    for idx, item in enumerate(items):
        text = await generate_clip_text(ctx, item, idx, transcript)
        outputs.append(await write_clip_text(ctx, item["id"], text))
        await ctx.progress(10 + (idx + 1) / len(items) * 60, f"Copy ready for {item['id']}")

    await ctx.progress(70, "Writing blog post...")
    insights = blog_insights(items, transcript, limits.blog_top_min, limits.blog_top_max)
    raw_blog = await ctx.services.textgen.generate_json(
        blog_prompt(insights, settings.texts_tone, settings.texts_language, limits.blog_min_words, limits.blog_max_words),
        BLOG_SCHEMA,
    )
    blog = sanitize_blog(raw_blog, limits)
    word_count = len(blog.markdown.split())
    if word_count < limits.blog_min_words:
        logger.warning(f"Blog for {ctx.root_id} is short: {word_count} words")

    await ctx.store.put_text(keys.blog, blog.markdown + "\n", "text/markdown")
    await ctx.store.put_json(keys.seo, blog.seo_dict())
    await ctx.progress(95, "Blog ready")

    refs = {
        "rootId": ctx.root_id,
        "items": outputs,
        "blogKey": keys.blog,
        "seoKey": keys.seo,
    }
    if idempotency_key:
        await ctx.store.put_text(keys.texts_marker(idempotency_key), json.dumps(refs), "application/json")

    logger.info(f"Texts completed for {ctx.root_id}: {len(outputs)} clips, blog {word_count} words")
    return refs
