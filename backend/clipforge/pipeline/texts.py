"""Copy limits, prompts and fallbacks for generated clip texts."""
import json
import re
import unicodedata
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .config import TextLimits

CLIP_TEXT_SCHEMA = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "title": {"type": "string"},
        "description": {"type": "string"},
        "hashtags": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["title", "description", "hashtags"],
}

BLOG_SCHEMA = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "blogMarkdown": {"type": "string"},
        "slug": {"type": "string"},
        "seoTitle": {"type": "string"},
        "metaDescription": {"type": "string"},
    },
    "required": ["blogMarkdown", "slug", "seoTitle", "metaDescription"],
}


@dataclass
class ClipText:
    title: str
    description: str
    hashtags: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"title": self.title, "description": self.description, "hashtags": list(self.hashtags)}


@dataclass
class BlogPost:
    markdown: str
    slug: str
    seo_title: str
    meta_description: str

    def seo_dict(self) -> dict:
        return {"slug": self.slug, "seoTitle": self.seo_title, "metaDescription": self.meta_description}


def _strip_accents(value: str) -> str:
    normalized = unicodedata.normalize("NFKD", value)
    return "".join(c for c in normalized if not unicodedata.combining(c))


def strip_markdown(text: str) -> str:
    """Plain text from simple Markdown (headings, emphasis, links, code, lists)."""
    text = re.sub(r"```.*?```", " ", text, flags=re.DOTALL)
    text = re.sub(r"!\[([^\]]*)\]\([^)]*\)", r"\1", text)
    text = re.sub(r"\[([^\]]*)\]\([^)]*\)", r"\1", text)
    text = re.sub(r"^\s{0,3}#{1,6}\s*", "", text, flags=re.MULTILINE)
    text = re.sub(r"^\s*[-*+>]\s+", "", text, flags=re.MULTILINE)
    text = re.sub(r"[*_`~]+", "", text)
    return re.sub(r"\s+", " ", text).strip()


def slugify(value: str, max_length: int = 80) -> str:
    """URL slug: lowercase ASCII words joined by dashes."""
    value = _strip_accents(strip_markdown(value or ""))[:max_length].lower()
    value = re.sub(r"[\s_]+", "-", value)
    value = re.sub(r"[^\w\-]", "", value)
    value = re.sub(r"-+", "-", value)
    return value.strip("-_")


def cut_at_word(text: str, limit: int) -> str:
    """Cut ``text`` to ``limit`` characters at a word boundary; a single long word is hard-cut."""
    text = text.strip()
    if len(text) <= limit:
        return text
    cut = text[:limit]
    if text[limit] == " ":
        return cut.strip()
    last_space = cut.rfind(" ")
    if last_space > 0:
        cut = cut[:last_space]
    return cut.strip()


def truncate_title(title: str, limits: Optional[TextLimits] = None) -> str:
    limits = limits or TextLimits()
    return cut_at_word(title or "", limits.title_max)


def truncate_description(description: str, limits: Optional[TextLimits] = None) -> str:
    limits = limits or TextLimits()
    return (description or "").strip()[: limits.description_max].rstrip()


def normalize_hashtag(tag: str, banned: Optional[List[str]] = None) -> str:
    """
    ``#Tag`` with only ASCII letters, digits and underscores.

    Returns an empty string for empty or banned tags.
    """
    if banned is None:
        banned = TextLimits().banned_tags
    value = _strip_accents(str(tag or "").strip()).lstrip("#")
    value = re.sub(r"[^A-Za-z0-9_]", "", value)
    if not value or value.lower() in banned:
        return ""
    return f"#{value}"


def normalize_hashtags(
    tags: List[str],
    duration: Optional[float] = None,
    max_tags: Optional[int] = None,
    limits: Optional[TextLimits] = None,
) -> List[str]:
    """
    Normalize, dedupe case-insensitively, cap and pad a hashtag list.

    Clips of at most ``shorts_max_duration`` seconds get the shorts tag
    first. The cap is clamped to [hashtag_min, hashtag_ceiling].
    """
    limits = limits or TextLimits()
    cap = limits.hashtag_max if max_tags is None else max_tags
    cap = max(limits.hashtag_min, min(cap, limits.hashtag_ceiling))

    normalized = [t for t in (normalize_hashtag(tag, limits.banned_tags) for tag in tags or []) if t]
    if duration is not None and duration <= limits.shorts_max_duration:
        if not any(t.lower() == limits.shorts_tag.lower() for t in normalized):
            normalized.insert(0, limits.shorts_tag)

    seen = set()
    result = []
    for tag in normalized:
        key = tag.lower()
        if key in seen:
            continue
        seen.add(key)
        result.append(tag)
        if len(result) >= cap:
            break

    for pad in limits.pad_tags:
        if len(result) >= limits.hashtag_min:
            break
        if pad.lower() not in seen:
            seen.add(pad.lower())
            result.append(pad)
    return result


def enforce_limits(
    title: str,
    description: str,
    hashtags: List[str],
    duration: Optional[float] = None,
    max_tags: Optional[int] = None,
    limits: Optional[TextLimits] = None,
) -> ClipText:
    limits = limits or TextLimits()
    return ClipText(
        title=truncate_title(title, limits),
        description=truncate_description(description, limits),
        hashtags=normalize_hashtags(
            hashtags if isinstance(hashtags, list) else [], duration, max_tags, limits
        ),
    )


def fallback_clip_text(index: int, duration: float, excerpt: str = "", limits: Optional[TextLimits] = None) -> ClipText:
    """Deterministic copy used when generation fails."""
    limits = limits or TextLimits()
    excerpt = (excerpt or "").strip(". ")
    if excerpt:
        title = cut_at_word(excerpt, 60)
    else:
        title = f"Highlight #{index + 1}"
    lines = []
    if excerpt:
        lines.extend([f"\"{excerpt}\"", ""])
    lines.extend([
        "Highlights:",
        f"- Clip {index + 1} of the selected moments",
        f"- Duration: {round(duration)} seconds",
        "",
        "Watch the full video for more context.",
    ])
    return enforce_limits(title, "\n".join(lines), ["#highlights", "#clips"], duration, limits=limits)


# =============================================================================
# Blog
# =============================================================================

def truncate_blog(markdown: str, max_words: int, overrun: int = 80) -> str:
    """Keep at most ``max_words + overrun`` words."""
    markdown = (markdown or "").strip()
    words = markdown.split()
    if len(words) <= max_words + overrun:
        return markdown
    return " ".join(words[: max_words + overrun])


def sanitize_blog(raw: Dict, limits: Optional[TextLimits] = None) -> BlogPost:
    """Apply word, slug and SEO limits to a generated blog response."""
    limits = limits or TextLimits()
    markdown = truncate_blog(raw.get("blogMarkdown") or "", limits.blog_max_words, limits.blog_overrun_words)
    first_line = markdown.split("\n")[0] if markdown else ""

    slug = slugify(raw.get("slug") or "", limits.slug_max) or slugify(first_line, limits.slug_max) or "post"

    seo_title = (raw.get("seoTitle") or "").strip() or strip_markdown(first_line)
    seo_title = cut_at_word(seo_title, limits.seo_title_max)

    meta = (raw.get("metaDescription") or "").strip() or strip_markdown(markdown)
    meta = cut_at_word(meta, limits.meta_description_max)

    return BlogPost(markdown=markdown, slug=slug, seo_title=seo_title, meta_description=meta)


# =============================================================================
# Prompts
# =============================================================================

def clip_system_prompt(tone: str, language: str) -> str:
    return "\n".join([
        "You write short hook-driven titles, objective descriptions and relevant hashtags "
        "for short-form video. Follow platform limits strictly.",
        f"Tone: {tone}. Language: {language}.",
    ])


def clip_prompt(clip_id: str, duration: float, excerpt: str, base_text: str) -> str:
    return "\n".join([
        f"Clip {clip_id}:",
        "- TITLE (<=100 chars) with a hook; no empty clickbait; use numbers when they help.",
        "- DESCRIPTION: one or two strong sentences on the first line, then 3 value bullets and a short call to action.",
        f"- HASHTAGS: 3 to 12, unique, no spaces or accents; put the 3 to 5 main ones first. durationSec={round(duration, 1)}.",
        "",
        "Clip context:",
        f"- Excerpt: {json.dumps(excerpt, ensure_ascii=False)}",
        f"- Transcript: {json.dumps(base_text[:1200], ensure_ascii=False)}",
        "",
        'Respond strictly as JSON: {"title": string, "description": string, "hashtags": string[]}',
    ])


def blog_prompt(insights: List[dict], tone: str, language: str, min_words: int, max_words: int) -> str:
    return "\n".join([
        f"Write ONE blog draft in Markdown, {min_words} to {max_words} words, in {language}, "
        "based on the best clips below.",
        "Structure: an H1 title, a short introduction, H2 sections per theme or clip "
        f"(H3 for steps or lists), and a conclusion with a call to action. Avoid repetition. Style: {tone}.",
        "Also produce SEO fields: a short slug, seoTitle (<=70 chars) and metaDescription (150 to 160 chars).",
        "",
        "Selected clips:",
        json.dumps(insights, ensure_ascii=False, indent=2),
        "",
        "Respond as JSON with keys: blogMarkdown, slug, seoTitle, metaDescription",
    ])
