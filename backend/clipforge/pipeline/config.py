"""Policy configuration for scene segmentation, ranking and text limits.

Weights and thresholds are tuning knobs, not algorithmic necessities;
each config serializes into the artifact it produced.
"""
from dataclasses import asdict, dataclass, field
from typing import List, Tuple

# Keyword vocabularies cover English and Portuguese sources
HOOK_WORDS = [
    "how", "why", "what", "secret", "mistake", "never", "always", "truth",
    "como", "por que", "porque", "segredo", "erro", "nunca", "verdade",
]
LIST_WORDS = [
    "tip", "tips", "step", "steps", "list", "top", "first", "second", "third",
    "dica", "dicas", "passo", "lista", "primeiro", "segundo", "terceiro",
]
ACTION_WORDS = [
    "try", "stop", "start", "do", "use", "learn", "avoid", "watch",
    "faça", "pare", "comece", "use", "aprenda", "evite", "veja",
]


@dataclass
class SceneConfig:
    """Configuration for scene segmentation."""

    # Silence analysis
    silence_threshold_db: float = -35.0
    silence_min_duration: float = 0.3

    # Semantic windows
    semantic_window: float = 15.0
    semantic_overlap: float = 0.25
    semantic_threshold: float = 0.85
    semantic_padding: float = 0.4  # Shift semantic cuts past the word in flight

    # Sentence ends
    sentence_tolerance: float = 0.75

    # Consolidation
    consolidation_tolerance: float = 1.0

    # Duration constraints
    min_duration: float = 30.0
    max_duration: float = 90.0
    target_duration: float = 55.0

    # Candidate counts
    max_candidates: int = 16
    min_candidates: int = 8
    fallback_min_duration: float = 30.0  # Floor for evenly spaced fallback windows

    # Excerpt
    excerpt_chars: int = 200

    # Heuristic score
    optimum_wps: float = 2.5
    w_density: float = 0.35
    w_question: float = 0.10
    w_exclaim: float = 0.05
    w_digits: float = 0.15
    digits_norm: int = 5
    keyword_unit: float = 0.05
    keyword_cap: float = 0.20
    w_duration: float = 0.10
    forced_cut_penalty: float = 0.05
    out_of_range_penalty: float = 0.10
    long_threshold: float = 85.0
    short_threshold: float = 35.0

    hook_words: List[str] = field(default_factory=lambda: list(HOOK_WORDS))
    list_words: List[str] = field(default_factory=lambda: list(LIST_WORDS))
    action_words: List[str] = field(default_factory=lambda: list(ACTION_WORDS))

    def to_dict(self) -> dict:
        """Convert config to dictionary for serialization."""
        return asdict(self)


@dataclass
class RankConfig:
    """Configuration for ranking and diversity selection."""

    # Duration
    min_duration: float = 30.0
    max_duration: float = 90.0
    target_duration: float = 55.0
    short_penalty_scale: float = 5.0  # Exponential fall-off below min_duration
    long_penalty_scale: float = 10.0  # Exponential fall-off above max_duration

    # Selection size
    top_k: int = 12
    min_select: int = 8
    quality_floor: float = 0.0  # Base score needed beyond the first min_select picks

    # Hook
    hook_window: float = 10.0

    # Impact weights
    w_hook: float = 0.25
    w_density: float = 0.20
    w_cps: float = 0.15
    w_length: float = 0.15
    w_keyword: float = 0.15
    w_structure: float = 0.10
    w_gap: float = 0.20

    # Feature parameters
    optimum_wps: float = 2.5
    cps_comfort: float = 17.0
    cps_span: float = 5.0
    cps_ok_max: float = 20.0
    gap_threshold: float = 1.0
    gap_long: float = 2.0
    gap_unit: float = 0.05
    gap_cap: float = 0.20
    keyword_cap: float = 0.20

    # Diversity
    novelty_weight: float = 0.25
    novelty_max_weight: float = 0.7
    novelty_mean_weight: float = 0.3
    similarity_penalties: List[Tuple[float, float]] = field(
        default_factory=lambda: [(0.96, 0.25), (0.94, 0.15), (0.90, 0.08)]
    )
    primary_threshold: float = 0.94
    relaxed_threshold: float = 0.96
    embed_chars: int = 1000

    structure_words: List[str] = field(default_factory=lambda: [
        "first", "second", "third", "step", "next", "then", "finally", "number",
        "primeiro", "segundo", "terceiro", "passo", "depois", "próximo", "finalmente",
    ])
    tip_words: List[str] = field(default_factory=lambda: [
        "tip", "step", "list", "top", "trick", "secret",
        "dica", "passo", "lista", "truque", "segredo",
    ])

    def to_dict(self) -> dict:
        """Convert config to dictionary for serialization."""
        return asdict(self)


@dataclass
class TextLimits:
    """Hard limits applied to generated copy."""

    title_max: int = 100
    description_max: int = 5000
    hashtag_min: int = 3
    hashtag_max: int = 12
    hashtag_ceiling: int = 60
    banned_tags: List[str] = field(default_factory=lambda: ["video", "cool", "follow"])
    pad_tags: List[str] = field(default_factory=lambda: ["#clips", "#highlights", "#shortsfeed"])
    shorts_tag: str = "#Shorts"
    shorts_max_duration: float = 60.0
    clips_max: int = 12
    blog_min_words: int = 800
    blog_max_words: int = 1200
    blog_overrun_words: int = 80
    blog_top_min: int = 5
    blog_top_max: int = 8
    seo_title_max: int = 70
    meta_description_max: int = 160
    slug_max: int = 80

    def to_dict(self) -> dict:
        return asdict(self)
