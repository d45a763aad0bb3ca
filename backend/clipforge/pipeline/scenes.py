"""Scene segmentation.

Turns a transcript plus silence analysis into candidate clip windows:

1. Collect boundary points from silences, semantic shifts and sentence ends
2. Consolidate nearby boundaries, keeping the union of their reasons
3. Walk the timeline greedily, cutting at the best boundary in range
4. Top up with evenly spaced windows when too few candidates result
5. Score every candidate heuristically
"""
import logging
import math
import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from .config import SceneConfig
from .similarity import cosine_similarity
from .transcript import Segment, middle_excerpt, sentence_boundaries, text_in_range

logger = logging.getLogger(__name__)

SILENCE = "silence_boundary"
SEMANTIC = "semantic_shift"
SENTENCE = "sentence_end"
FORCED = "forced_cut"
FALLBACK = "fallback_window"

# Higher wins when several boundaries are in range
REASON_PRIORITY = {
    SEMANTIC: 3,
    SENTENCE: 2,
    SILENCE: 1,
}


@dataclass
class Boundary:
    """A consolidated cut point."""
    time: float
    reasons: List[str] = field(default_factory=list)

    @property
    def priority(self) -> int:
        return max((REASON_PRIORITY.get(r, 0) for r in self.reasons), default=0)

    def to_dict(self) -> dict:
        return {"time": round(self.time, 3), "reasons": list(self.reasons)}


@dataclass
class SemanticWindow:
    start: float
    end: float
    text: str

    @property
    def center(self) -> float:
        return (self.start + self.end) / 2


@dataclass
class SceneCandidate:
    """A candidate clip window."""
    id: str
    start: float
    end: float
    score: float = 0.0
    reasons: List[str] = field(default_factory=list)
    excerpt: str = ""

    @property
    def duration(self) -> float:
        return self.end - self.start

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "start": round(self.start, 3),
            "end": round(self.end, 3),
            "duration": round(self.duration, 3),
            "score": round(self.score, 4),
            "reasons": list(self.reasons),
            "excerpt": self.excerpt,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SceneCandidate":
        return cls(
            id=str(data["id"]),
            start=float(data["start"]),
            end=float(data["end"]),
            score=float(data.get("score", 0.0)),
            reasons=list(data.get("reasons", [])),
            excerpt=data.get("excerpt", ""),
        )


# =============================================================================
# Boundary sources
# =============================================================================

def silence_points(silences: Sequence[Tuple[float, float]]) -> List[float]:
    """Both edges of every silence are usable cut points."""
    points = []
    for start, end in silences:
        points.append(float(start))
        if end is not None:
            points.append(float(end))
    return points


def build_semantic_windows(
    segments: List[Segment],
    total_duration: float,
    window: float = 15.0,
    overlap: float = 0.25,
) -> List[SemanticWindow]:
    """Fixed-size overlapping windows over the transcript text."""
    step = window * (1 - overlap)
    if step <= 0 or total_duration <= window:
        return []

    windows = []
    t = 0.0
    while t + window <= total_duration:
        windows.append(SemanticWindow(t, t + window, text_in_range(segments, t, t + window)))
        t += step
    return windows


def semantic_boundaries(
    windows: List[SemanticWindow],
    vectors: List[Sequence[float]],
    threshold: float = 0.85,
) -> List[float]:
    """
    Midpoints between adjacent windows whose embeddings diverge.

    Args:
        windows: Windows from build_semantic_windows
        vectors: One embedding per window, same order
        threshold: Cosine similarity below which topics are considered to shift
    """
    if len(windows) != len(vectors):
        raise ValueError(f"Expected {len(windows)} vectors, got {len(vectors)}")

    points = []
    for i in range(len(windows) - 1):
        similarity = cosine_similarity(vectors[i], vectors[i + 1])
        if similarity < threshold:
            points.append((windows[i].center + windows[i + 1].center) / 2)
    return points


# =============================================================================
# Consolidation
# =============================================================================

def _merge_close(boundaries: List[Boundary], tolerance: float) -> List[Boundary]:
    merged: List[Boundary] = []
    for b in sorted(boundaries, key=lambda x: x.time):
        if merged and b.time - merged[-1].time < tolerance:
            for reason in b.reasons:
                if reason not in merged[-1].reasons:
                    merged[-1].reasons.append(reason)
        else:
            merged.append(Boundary(b.time, list(b.reasons)))
    return merged


def consolidate_boundaries(
    silence: List[float],
    semantic: List[float],
    sentence: List[float],
    tolerance: float = 1.0,
    semantic_padding: float = 0.4,
    total_duration: Optional[float] = None,
) -> List[Boundary]:
    """
    Merge boundary points from all sources.

    Points closer than ``tolerance`` collapse into the earliest one with the
    union of their reasons. Semantic cuts are then pushed forward by
    ``semantic_padding`` and the result is merged once more.
    """
    raw = (
        [Boundary(t, [SILENCE]) for t in silence]
        + [Boundary(t, [SEMANTIC]) for t in semantic]
        + [Boundary(t, [SENTENCE]) for t in sentence]
    )
    merged = _merge_close(raw, tolerance)

    for b in merged:
        if SEMANTIC in b.reasons:
            b.time += semantic_padding
            if total_duration is not None:
                b.time = min(b.time, total_duration)

    return _merge_close(merged, tolerance)


# =============================================================================
# Segmentation
# =============================================================================

def greedy_segments(
    boundaries: List[Boundary],
    total_duration: float,
    min_duration: float = 30.0,
    max_duration: float = 90.0,
    max_count: int = 16,
) -> List[Tuple[float, float, List[str]]]:
    """
    Cut the timeline from t=0 at the best boundary in [t+min, t+max].

    Among boundaries in range the highest priority class wins, earliest
    within that class. Without one the cut is forced at t+max (or the end of
    the video). A tail shorter than min_duration is dropped.
    """
    usable = sorted((b for b in boundaries if 0 < b.time <= total_duration), key=lambda b: b.time)
    segments = []
    t0 = 0.0

    while t0 < total_duration and len(segments) < max_count:
        in_range = [b for b in usable if t0 + min_duration <= b.time <= t0 + max_duration]

        if in_range:
            best = max(in_range, key=lambda b: (b.priority, -b.time))
            seg_end = best.time
            reasons = list(best.reasons)
        else:
            seg_end = min(t0 + max_duration, total_duration)
            reasons = [FORCED]

        if seg_end - t0 >= min_duration:
            segments.append((t0, seg_end, reasons))
        elif seg_end <= t0:
            break

        t0 = seg_end

    return segments


def fallback_segments(
    total_duration: float,
    count: int,
    min_duration: float,
    max_duration: float,
    target_duration: float,
) -> List[Tuple[float, float, List[str]]]:
    """Evenly spaced windows tiling the video."""
    if count <= 0 or total_duration < min_duration:
        return []

    length = max(min_duration, min(target_duration, max_duration, total_duration / count))
    n = int(total_duration // length)
    return [(i * length, (i + 1) * length, [FALLBACK]) for i in range(n)]


def merge_non_overlapping(
    primary: List[Tuple[float, float, List[str]]],
    extra: List[Tuple[float, float, List[str]]],
) -> List[Tuple[float, float, List[str]]]:
    """
    Union of both sets with overlaps dropped.

    Windows are taken earliest-ending first, primary before extra on ties.
    """
    tagged = [(s, e, r, 0) for s, e, r in primary] + [(s, e, r, 1) for s, e, r in extra]
    tagged.sort(key=lambda x: (x[1], x[3], x[0]))

    kept = []
    last_end = -math.inf
    for start, end, reasons, _ in tagged:
        if start >= last_end - 1e-6:
            kept.append((start, end, reasons))
            last_end = end
    kept.sort(key=lambda x: x[0])
    return kept


# =============================================================================
# Scoring
# =============================================================================

def _count_keywords(text_lower: str, words: List[str]) -> int:
    count = 0
    for word in words:
        count += len(re.findall(r"\b" + re.escape(word) + r"\b", text_lower))
    return count


def score_candidate(text: str, duration: float, reasons: List[str], config: SceneConfig) -> float:
    """Heuristic engagement score clamped to [0, 1]."""
    if duration <= 0:
        return 0.0

    words = len(text.split())
    wps = words / duration
    density = max(0.0, 1.0 - abs(wps - config.optimum_wps) / config.optimum_wps)

    score = config.w_density * density
    if "?" in text:
        score += config.w_question
    if "!" in text:
        score += config.w_exclaim
    digits = len(re.findall(r"\d", text))
    score += config.w_digits * min(digits / config.digits_norm, 1.0)

    lower = text.lower()
    keyword_hits = sum(
        _count_keywords(lower, vocab)
        for vocab in (config.hook_words, config.list_words, config.action_words)
    )
    score += min(keyword_hits * config.keyword_unit, config.keyword_cap)

    closeness = max(0.0, 1.0 - abs(duration - config.target_duration) / config.target_duration)
    score += config.w_duration * closeness

    if FORCED in reasons:
        score -= config.forced_cut_penalty
    if duration > config.long_threshold or duration < config.short_threshold:
        score -= config.out_of_range_penalty

    return max(0.0, min(1.0, score))


def segment_scenes(
    segments: List[Segment],
    total_duration: float,
    silences: Sequence[Tuple[float, float]],
    semantic: List[float],
    config: Optional[SceneConfig] = None,
) -> List[SceneCandidate]:
    """
    Build scored scene candidates.

    Args:
        segments: Normalized transcript segments
        total_duration: Media duration in seconds
        silences: (start, end) silence spans from audio analysis
        semantic: Semantic-shift times from semantic_boundaries
        config: Segmentation policy

    Returns:
        Candidates sorted by score descending
    """
    config = config or SceneConfig()

    sentence = sentence_boundaries(segments, tolerance=config.sentence_tolerance)
    silence = silence_points(silences)
    logger.info(
        f"Boundary points: {len(silence)} silence, {len(semantic)} semantic, {len(sentence)} sentence"
    )

    boundaries = consolidate_boundaries(
        silence,
        semantic,
        sentence,
        tolerance=config.consolidation_tolerance,
        semantic_padding=config.semantic_padding,
        total_duration=total_duration,
    )
    logger.info(f"Consolidated to {len(boundaries)} boundaries")

    windows = greedy_segments(
        boundaries,
        total_duration,
        min_duration=config.min_duration,
        max_duration=config.max_duration,
        max_count=config.max_candidates,
    )

    if len(windows) < config.min_candidates:
        extra = fallback_segments(
            total_duration,
            config.min_candidates,
            min_duration=config.fallback_min_duration,
            max_duration=config.max_duration,
            target_duration=config.target_duration,
        )
        merged = merge_non_overlapping(windows, extra)
        if len(merged) > len(windows):
            logger.info(f"Fallback pass raised candidates from {len(windows)} to {len(merged)}")
            windows = merged[: config.max_candidates]

    candidates = []
    for idx, (start, end, reasons) in enumerate(windows, start=1):
        text = text_in_range(segments, start, end)
        candidates.append(SceneCandidate(
            id=f"sc_{idx:04d}",
            start=start,
            end=end,
            score=score_candidate(text, end - start, reasons, config),
            reasons=reasons,
            excerpt=middle_excerpt(text, config.excerpt_chars),
        ))

    candidates.sort(key=lambda c: c.score, reverse=True)
    logger.info(f"Created {len(candidates)} scene candidates")
    return candidates
