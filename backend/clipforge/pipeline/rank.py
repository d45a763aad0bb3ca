"""Candidate ranking and diversity selection.

Each scene candidate gets an impact score from transcript features; a
greedy pass over embeddings then trades score against novelty so the
final selection does not repeat itself.
"""
import logging
import math
import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .config import RankConfig
from .scenes import SceneCandidate
from .similarity import cosine_matrix
from .transcript import Segment, overlapping, text_in_range

logger = logging.getLogger(__name__)

PRIMARY = "primary"
RELAXED = "relaxed"
FORCED = "forced"

HOOK_PATTERNS = [
    # Questions
    re.compile(r"\b(how|why|what|which|when|where|como|por que|qual|quando|onde)\b", re.IGNORECASE),
    # Numbers and lists
    re.compile(r"\b\d+\b"),
    # Second person
    re.compile(r"\b(you|your|você|seu|sua)\b", re.IGNORECASE),
    # Curiosity and negativity
    re.compile(r"\b(secret|trick|mistake|nobody|segredo|truque|erro)\b", re.IGNORECASE),
]
CTA_PATTERN = re.compile(r"(subscribe|smash.*like|follow me|my channel|inscreva|deixa.*like|segue|canal)", re.IGNORECASE)
NUMBER_PATTERN = re.compile(r"\b\d+\b")


@dataclass
class RankedItem:
    """A scene candidate with ranking features attached."""
    id: str
    start: float
    end: float
    excerpt: str = ""
    text: str = ""
    text_head: str = ""
    scene_score: float = 0.0
    hook: float = 0.0
    cps_avg: float = 0.0
    cps_p95: float = 0.0
    density: float = 0.0
    readability: float = 0.0
    length: float = 0.0
    keyword: float = 0.0
    structure: float = 0.0
    gap_penalty: float = 0.0
    base_score: float = 0.0
    novelty: float = 1.0
    max_similarity: float = 0.0
    final_score: float = 0.0
    admission: str = ""
    reasons: List[str] = field(default_factory=list)

    @property
    def duration(self) -> float:
        return self.end - self.start

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "start": round(self.start, 3),
            "end": round(self.end, 3),
            "duration": round(self.duration, 3),
            "score": round(self.final_score, 4),
            "baseScore": round(self.base_score, 4),
            "novelty": round(self.novelty, 4),
            "hook": round(self.hook, 4),
            "cps": {"avg": round(self.cps_avg, 2), "p95": round(self.cps_p95, 2)},
            "admission": self.admission,
            "reasons": list(self.reasons),
            "excerpt": self.excerpt,
        }


# =============================================================================
# Features
# =============================================================================

def compute_cps(segments: List[Segment], start: float, end: float) -> Tuple[float, float]:
    """
    Characters per second over [start, end].

    Each segment contributes its characters in proportion to how much of it
    overlaps the window. The 95th percentile is weighted by overlap duration.

    Returns:
        (average, p95)
    """
    window = end - start
    if window <= 0:
        return 0.0, 0.0

    total_chars = 0.0
    rates = []
    for seg in segments:
        ov_start = max(seg.start, start)
        ov_end = min(seg.end, end)
        if ov_start >= ov_end or seg.duration <= 0:
            continue
        ov_duration = ov_end - ov_start
        chars = len(seg.text) * (ov_duration / seg.duration)
        total_chars += chars
        rates.append((chars / ov_duration, ov_duration))

    avg = total_chars / window
    p95 = avg
    if rates:
        rates.sort(key=lambda r: r[0])
        target = window * 0.95
        accumulated = 0.0
        for rate, duration in rates:
            accumulated += duration
            if accumulated >= target:
                p95 = rate
                break
    return avg, p95


def hook_score(text: str) -> float:
    """Share of hook pattern categories present, minus one for an early call to action."""
    score = sum(1 for pattern in HOOK_PATTERNS if pattern.search(text))
    if CTA_PATTERN.search(text):
        score -= 1
    return max(0, score) / len(HOOK_PATTERNS)


def has_question_hook(text: str) -> bool:
    return bool(HOOK_PATTERNS[0].search(text)) or "?" in text


def silence_penalty(segments: List[Segment], start: float, end: float, config: Optional[RankConfig] = None) -> float:
    """Penalty in [0, gap_cap] for caption gaps inside the window."""
    config = config or RankConfig()
    inside = sorted(overlapping(segments, start, end), key=lambda s: s.start)
    if len(inside) <= 1:
        return 0.0

    gaps = 0
    max_gap = 0.0
    for prev, cur in zip(inside, inside[1:]):
        gap = cur.start - prev.end
        if gap > config.gap_threshold:
            gaps += 1
            max_gap = max(max_gap, gap)

    penalty = config.gap_unit * gaps + (config.gap_unit if max_gap > config.gap_long else 0.0)
    return min(config.gap_cap, penalty)


def keyword_boost(text: str, config: Optional[RankConfig] = None) -> float:
    """Boost in [0, keyword_cap] for numbers and tip/list vocabulary."""
    config = config or RankConfig()
    boost = 0.0
    if NUMBER_PATTERN.search(text):
        boost += 0.1
    lower = text.lower()
    if any(re.search(r"\b" + re.escape(w) + r"\b", lower) for w in config.tip_words):
        boost += 0.1
    return min(config.keyword_cap, boost)


def structure_score(text: str, config: RankConfig) -> float:
    lower = text.lower()
    hits = sum(len(re.findall(r"\b" + re.escape(w) + r"\b", lower)) for w in config.structure_words)
    return min(hits, 2) / 2


def density_score(text: str, duration: float, config: RankConfig) -> float:
    if duration <= 0:
        return 0.0
    wps = len(text.split()) / duration
    return max(0.0, 1.0 - abs(wps - config.optimum_wps) / config.optimum_wps)


def readability_score(cps_avg: float, config: RankConfig) -> float:
    return min(1.0, max(0.0, 1.0 - (cps_avg - config.cps_comfort) / config.cps_span))


def length_score(duration: float, config: RankConfig) -> float:
    """
    Closeness to the target duration.

    Outside [min, max] the edge value decays exponentially, faster for
    clips that are too short than for clips that are too long.
    """
    def closeness(d: float) -> float:
        return max(0.0, 1.0 - abs(d - config.target_duration) / config.target_duration)

    if duration < config.min_duration:
        return closeness(config.min_duration) * math.exp(
            -(config.min_duration - duration) / config.short_penalty_scale
        )
    if duration > config.max_duration:
        return closeness(config.max_duration) * math.exp(
            -(duration - config.max_duration) / config.long_penalty_scale
        )
    return closeness(duration)


def impact_score(item: RankedItem, config: RankConfig) -> float:
    keyword = item.keyword / config.keyword_cap if config.keyword_cap else 0.0
    gap = item.gap_penalty / config.gap_cap if config.gap_cap else 0.0
    return (
        config.w_hook * item.hook
        + config.w_density * item.density
        + config.w_cps * item.readability
        + config.w_length * item.length
        + config.w_keyword * keyword
        + config.w_structure * item.structure
        - config.w_gap * gap
    )


def score_candidates(
    candidates: List[SceneCandidate],
    segments: List[Segment],
    config: Optional[RankConfig] = None,
) -> List[RankedItem]:
    """
    Filter candidates by duration and compute per-candidate features.

    Returns:
        Valid items sorted by base score descending
    """
    config = config or RankConfig()
    items = []

    for cand in candidates:
        if cand.duration < config.min_duration or cand.duration > config.max_duration:
            continue

        text = text_in_range(segments, cand.start, cand.end)
        head = text_in_range(segments, cand.start, min(cand.start + config.hook_window, cand.end))
        cps_avg, cps_p95 = compute_cps(segments, cand.start, cand.end)

        item = RankedItem(
            id=cand.id,
            start=cand.start,
            end=cand.end,
            excerpt=cand.excerpt,
            text=text,
            text_head=head,
            scene_score=cand.score,
            hook=hook_score(head),
            cps_avg=cps_avg,
            cps_p95=cps_p95,
            density=density_score(text, cand.duration, config),
            readability=readability_score(cps_avg, config),
            length=length_score(cand.duration, config),
            keyword=keyword_boost(text, config),
            structure=structure_score(text, config),
            gap_penalty=silence_penalty(segments, cand.start, cand.end, config),
        )
        item.base_score = impact_score(item, config)
        item.final_score = item.base_score
        items.append(item)

    items.sort(key=lambda i: i.base_score, reverse=True)
    logger.info(f"{len(items)} of {len(candidates)} candidates within duration bounds")
    return items


# =============================================================================
# Diversity selection
# =============================================================================

def similarity_penalty(max_sim: float, config: RankConfig) -> float:
    for threshold, penalty in sorted(config.similarity_penalties, reverse=True):
        if max_sim >= threshold:
            return penalty
    return 0.0


def select_diverse(
    items: List[RankedItem],
    vectors: Sequence[Sequence[float]],
    config: Optional[RankConfig] = None,
) -> List[RankedItem]:
    """
    Greedy novelty-aware selection.

    Items are visited in base-score order. The first ``min_select`` items are
    always admitted; those whose maximum similarity to the selection exceeds
    ``primary_threshold`` are tagged forced. Past that, items are admitted up
    to ``top_k`` only within ``primary_threshold``. If fewer than
    ``min_select`` were admitted within the threshold, a second pass retries
    the rest under ``relaxed_threshold``. Beyond the first ``min_select``
    picks an item must also reach ``quality_floor``.

    Args:
        items: Output of score_candidates
        vectors: One embedding per item, same order
        config: Ranking policy

    Returns:
        Selected items sorted by final score descending (not yet normalized)
    """
    config = config or RankConfig()
    if len(items) != len(vectors):
        raise ValueError(f"Expected {len(items)} vectors, got {len(vectors)}")
    if not items:
        return []

    order = sorted(range(len(items)), key=lambda i: items[i].base_score, reverse=True)
    sims = cosine_matrix(list(vectors))
    selected: List[int] = []

    def admit(idx: int, admission: str):
        item = items[idx]
        if selected:
            row = sims[idx, selected]
            max_sim = float(np.max(row))
            mean_sim = float(np.mean(row))
        else:
            max_sim = mean_sim = 0.0
        item.max_similarity = max_sim
        item.novelty = 1.0 - (config.novelty_max_weight * max_sim + config.novelty_mean_weight * mean_sim)
        item.final_score = (
            item.base_score + config.novelty_weight * item.novelty - similarity_penalty(max_sim, config)
        )
        item.admission = admission
        selected.append(idx)

    def max_sim_to_selected(idx: int) -> float:
        if not selected:
            return 0.0
        return float(np.max(sims[idx, selected]))

    def passes_floor(idx: int) -> bool:
        return len(selected) < config.min_select or items[idx].base_score >= config.quality_floor

    within_threshold = 0
    for idx in order:
        if len(selected) >= config.top_k:
            break
        if max_sim_to_selected(idx) <= config.primary_threshold and passes_floor(idx):
            admit(idx, PRIMARY)
            within_threshold += 1
        elif len(selected) < config.min_select:
            admit(idx, FORCED)

    if within_threshold < config.min_select:
        for idx in order:
            if len(selected) >= config.top_k:
                break
            if (
                idx not in selected
                and max_sim_to_selected(idx) <= config.relaxed_threshold
                and passes_floor(idx)
            ):
                admit(idx, RELAXED)

    counts = {kind: sum(1 for i in selected if items[i].admission == kind) for kind in (PRIMARY, RELAXED, FORCED)}
    logger.info(f"Selected {len(selected)} of {len(items)} items {counts}")

    result = [items[i] for i in selected]
    result.sort(key=lambda i: i.final_score, reverse=True)
    return result


def normalize_scores(items: List[RankedItem]) -> List[RankedItem]:
    """Min-max normalize final scores to [0, 1]; a flat set maps to 1."""
    if not items:
        return items
    scores = [i.final_score for i in items]
    low, high = min(scores), max(scores)
    for item in items:
        item.final_score = 1.0 if high - low <= 1e-12 else (item.final_score - low) / (high - low)
    return items


def build_reasons(item: RankedItem, config: RankConfig) -> List[str]:
    reasons = []
    if has_question_hook(item.text_head):
        reasons.append("hook:question")
    if NUMBER_PATTERN.search(item.text_head):
        reasons.append("hook:numbers")
    if item.cps_avg <= config.cps_ok_max:
        reasons.append("cps:ok")
    if abs(item.duration - config.target_duration) <= 10:
        reasons.append("len:ideal")

    if item.novelty > 0.8:
        reasons.append("diversity:high")
    elif item.novelty < 0.3:
        reasons.append("diversity:low")

    if item.gap_penalty == 0:
        reasons.append("gaps:none")
    elif item.gap_penalty < 0.1:
        reasons.append("gaps:some")
    else:
        reasons.append("gaps:many")

    if item.admission == RELAXED:
        reasons.append("admit:relaxed")
    elif item.admission == FORCED:
        reasons.append("admit:forced")
    return reasons


def embedding_texts(items: List[RankedItem], config: Optional[RankConfig] = None) -> List[str]:
    config = config or RankConfig()
    return [(i.text or i.excerpt)[: config.embed_chars] for i in items]


def rank_items(
    items: List[RankedItem],
    vectors: Sequence[Sequence[float]],
    config: Optional[RankConfig] = None,
) -> List[RankedItem]:
    """Select, normalize and explain. Returns items sorted by normalized score."""
    config = config or RankConfig()
    selected = normalize_scores(select_diverse(items, vectors, config))
    for item in selected:
        item.reasons = build_reasons(item, config)
    selected.sort(key=lambda i: i.final_score, reverse=True)
    return selected
