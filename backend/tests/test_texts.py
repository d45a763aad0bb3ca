"""Tests for clip copy limits and blog sanitizing."""
import pytest

from clipforge.pipeline.config import TextLimits
from clipforge.pipeline.texts import (
    cut_at_word,
    enforce_limits,
    fallback_clip_text,
    normalize_hashtag,
    normalize_hashtags,
    sanitize_blog,
    slugify,
    strip_markdown,
    truncate_blog,
    truncate_title,
)


# =============================================================================
# Hashtags
# =============================================================================

class TestHashtags:
    """Normalization, dedupe, banned terms and padding."""

    def test_banned_and_duplicates_removed_then_padded(self):
        tags = normalize_hashtags(["#Cool!", "cool", "  dica  "], max_tags=5)
        assert "#dica" in tags
        assert len(tags) >= 3
        lowered = [t.lower() for t in tags]
        assert len(lowered) == len(set(lowered))
        assert "#cool" not in lowered
        assert all(t.lower().lstrip("#") not in TextLimits().banned_tags for t in tags)

    def test_strips_symbols_and_accents(self):
        assert normalize_hashtag("#Dicas de Programação!") == "#DicasdeProgramacao"
        assert normalize_hashtag("my_tag") == "#my_tag"
        assert normalize_hashtag("!!!") == ""

    def test_cap_is_applied(self):
        tags = normalize_hashtags([f"tag{i}" for i in range(20)], max_tags=5)
        assert tags == ["#tag0", "#tag1", "#tag2", "#tag3", "#tag4"]

    def test_cap_is_clamped_to_minimum(self):
        tags = normalize_hashtags(["a", "b", "c", "d"], max_tags=1)
        assert len(tags) == 3

    def test_shorts_tag_prepended_for_short_clips(self):
        tags = normalize_hashtags(["python", "tips", "code"], duration=45)
        assert tags[0] == "#Shorts"

    def test_shorts_tag_not_duplicated(self):
        tags = normalize_hashtags(["#shorts", "python", "tips"], duration=45)
        assert sum(1 for t in tags if t.lower() == "#shorts") == 1

    def test_no_shorts_tag_for_long_or_unknown_duration(self):
        assert "#Shorts" not in normalize_hashtags(["python", "tips", "code"], duration=75)
        assert "#Shorts" not in normalize_hashtags(["python", "tips", "code"])


# =============================================================================
# Titles and descriptions
# =============================================================================

class TestLimits:
    """Hard limits on titles and descriptions."""

    def test_long_title_cut_at_word_boundary(self):
        words = ["insight", "habits", "productivity", "morning", "routine", "focus"]
        title = ""
        i = 0
        while len(title) < 140:
            title += words[i % len(words)] + " "
            i += 1
        title = title[:140]
        assert len(title) == 140

        cut = truncate_title(title)
        assert len(cut) <= 100
        assert title.startswith(cut)
        assert title[len(cut)] == " "

    def test_short_title_untouched(self):
        assert truncate_title("  A short title  ") == "A short title"

    def test_cut_without_spaces_is_hard(self):
        assert cut_at_word("x" * 150, 100) == "x" * 100

    def test_early_space_preferred_over_mid_word_cut(self):
        title = "Short " + "x" * 120
        assert truncate_title(title) == "Short"
        assert cut_at_word("Why " + "y" * 80, 60) == "Why"

    def test_cut_landing_on_space_keeps_full_limit(self):
        title = "a" * 100 + " tail words"
        assert truncate_title(title) == "a" * 100

    def test_enforce_limits_caps_description(self):
        text = enforce_limits("Title", "d" * 6000, ["python", "tips", "code"], duration=80)
        assert len(text.description) == 5000
        assert text.hashtags == ["#python", "#tips", "#code"]

    def test_enforce_limits_ignores_non_list_hashtags(self):
        text = enforce_limits("Title", "Body", "not-a-list")
        assert len(text.hashtags) == 3

    def test_fallback_copy_is_deterministic(self):
        first = fallback_clip_text(2, 42.0, "A quick tip about focus. And more.")
        second = fallback_clip_text(2, 42.0, "A quick tip about focus. And more.")
        assert first == second
        assert first.hashtags[0] == "#Shorts"
        assert "42 seconds" in first.description

    def test_fallback_without_excerpt(self):
        text = fallback_clip_text(0, 70.0)
        assert text.title == "Highlight #1"


# =============================================================================
# Blog
# =============================================================================

class TestBlog:
    """Blog truncation and SEO fields."""

    def test_overrun_is_truncated_softly(self):
        text = " ".join(["word"] * 1500)
        assert len(truncate_blog(text, 1200, 80).split()) == 1280
        assert truncate_blog("short post", 1200) == "short post"

    def test_seo_fields_within_limits(self):
        raw = {
            "blogMarkdown": "# Ten Lessons From a Long Talk\n\n" + "Body text here. " * 300,
            "slug": "",
            "seoTitle": "A really long SEO title that keeps going well beyond the seventy character limit",
            "metaDescription": "",
        }
        post = sanitize_blog(raw)
        assert post.slug == "ten-lessons-from-a-long-talk"
        assert len(post.seo_title) <= 70
        assert 0 < len(post.meta_description) <= 160
        assert set(post.seo_dict()) == {"slug", "seoTitle", "metaDescription"}

    def test_slugify(self):
        assert slugify("Dicas de Programação: Parte 1!") == "dicas-de-programacao-parte-1"
        assert len(slugify("word " * 40, 80)) <= 80

    def test_strip_markdown(self):
        assert strip_markdown("## Title with [link](http://x) and **bold**") == "Title with link and bold"

    @pytest.mark.parametrize("raw", [{}, {"blogMarkdown": ""}])
    def test_empty_blog_gets_placeholder_slug(self, raw):
        assert sanitize_blog(raw).slug == "post"
