"""Tests for scene segmentation."""
import pytest

from clipforge.pipeline.config import SceneConfig
from clipforge.pipeline.scenes import (
    FALLBACK,
    FORCED,
    SEMANTIC,
    SENTENCE,
    SILENCE,
    Boundary,
    SceneCandidate,
    build_semantic_windows,
    consolidate_boundaries,
    fallback_segments,
    greedy_segments,
    merge_non_overlapping,
    score_candidate,
    segment_scenes,
    semantic_boundaries,
)
from clipforge.pipeline.transcript import Segment, sentence_boundaries


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def long_transcript():
    """Ten minutes of 5-second sentences."""
    segments = []
    for i in range(120):
        start = i * 5.0
        segments.append(Segment(start, start + 5.0, f"Here is point number {i} about the topic."))
    return segments


# =============================================================================
# Boundaries
# =============================================================================

class TestBoundaries:
    """Boundary sources and consolidation."""

    def test_close_boundaries_collapse_with_union_of_reasons(self):
        merged = consolidate_boundaries(
            silence=[10.0],
            semantic=[],
            sentence=[10.6],
            tolerance=1.0,
        )
        assert len(merged) == 1
        assert merged[0].time == pytest.approx(10.0)
        assert set(merged[0].reasons) == {SILENCE, SENTENCE}

    def test_distant_boundaries_stay_separate(self):
        merged = consolidate_boundaries(silence=[10.0], semantic=[], sentence=[12.5], tolerance=1.0)
        assert [b.time for b in merged] == [pytest.approx(10.0), pytest.approx(12.5)]

    def test_semantic_cuts_are_padded(self):
        merged = consolidate_boundaries(silence=[], semantic=[20.0], sentence=[], semantic_padding=0.4)
        assert merged[0].time == pytest.approx(20.4)
        assert merged[0].reasons == [SEMANTIC]

    def test_padded_semantic_cut_merges_with_neighbour(self):
        merged = consolidate_boundaries(silence=[], semantic=[20.0], sentence=[21.2], semantic_padding=0.4)
        assert len(merged) == 1
        assert set(merged[0].reasons) == {SEMANTIC, SENTENCE}

    def test_priority_prefers_semantic(self):
        assert Boundary(1.0, [SILENCE, SEMANTIC]).priority > Boundary(1.0, [SENTENCE]).priority
        assert Boundary(1.0, [SENTENCE]).priority > Boundary(1.0, [SILENCE]).priority

    def test_sentence_ends_interpolate_inside_segment(self):
        segs = [Segment(0.0, 10.0, "First half. Second half.")]
        times = sentence_boundaries(segs, tolerance=0.1)
        assert len(times) == 2
        assert times[0] == pytest.approx(10.0 * len("First half.") / len(segs[0].text))
        assert times[1] == pytest.approx(10.0)

    def test_semantic_boundary_at_window_midpoint(self):
        segs = [Segment(0.0, 60.0, "words")]
        windows = build_semantic_windows(segs, 60.0, window=15.0, overlap=0.25)
        assert windows[0].start == 0.0
        assert windows[1].start == pytest.approx(11.25)

        vectors = [[1.0, 0.0]] * len(windows)
        vectors[2] = [0.0, 1.0]
        points = semantic_boundaries(windows, vectors, threshold=0.85)
        assert points[0] == pytest.approx((windows[1].center + windows[2].center) / 2)

    def test_semantic_boundaries_require_one_vector_per_window(self):
        windows = build_semantic_windows([Segment(0.0, 60.0, "x")], 60.0)
        with pytest.raises(ValueError):
            semantic_boundaries(windows, [[1.0]])


# =============================================================================
# Segmentation
# =============================================================================

class TestSegmentation:
    """Greedy walk, fallback and scoring."""

    def test_greedy_prefers_higher_priority_in_range(self):
        boundaries = [
            Boundary(35.0, [SILENCE]),
            Boundary(50.0, [SEMANTIC]),
            Boundary(60.0, [SENTENCE]),
        ]
        segments = greedy_segments(boundaries, 100.0, min_duration=30, max_duration=90)
        assert segments[0][:2] == (0.0, 50.0)
        assert segments[0][2] == [SEMANTIC]

    def test_greedy_forces_cut_without_boundary(self):
        segments = greedy_segments([], 200.0, min_duration=30, max_duration=90)
        assert segments[0] == (0.0, 90.0, [FORCED])
        assert segments[1] == (90.0, 180.0, [FORCED])
        # 20s tail is too short to keep
        assert len(segments) == 2

    def test_fallback_tiles_evenly(self):
        windows = fallback_segments(600.0, 8, min_duration=30, max_duration=90, target_duration=55)
        assert len(windows) == 10
        assert all(end - start == pytest.approx(55.0) for start, end, _ in windows)
        assert windows[0][2] == [FALLBACK]

    def test_merge_drops_overlaps(self):
        primary = [(0.0, 90.0, [FORCED])]
        extra = [(0.0, 55.0, [FALLBACK]), (55.0, 110.0, [FALLBACK]), (110.0, 165.0, [FALLBACK])]
        merged = merge_non_overlapping(primary, extra)
        for (s1, e1, _), (s2, e2, _) in zip(merged, merged[1:]):
            assert s2 >= e1
        # Earliest-ending window wins, so the forced 0-90 cut is displaced
        assert [(s, e) for s, e, _ in merged] == [(0.0, 55.0), (55.0, 110.0), (110.0, 165.0)]

    def test_all_candidates_within_duration_bounds(self, long_transcript):
        config = SceneConfig()
        silences = [(t, t + 0.5) for t in range(40, 600, 47)]
        candidates = segment_scenes(long_transcript, 600.0, silences, [], config)

        assert config.min_candidates <= len(candidates) <= config.max_candidates
        for c in candidates:
            assert config.min_duration - 1e-6 <= c.duration <= config.max_duration + 1e-6

    def test_candidates_do_not_overlap(self, long_transcript):
        candidates = segment_scenes(long_transcript, 600.0, [], [], SceneConfig())
        ordered = sorted(candidates, key=lambda c: c.start)
        for a, b in zip(ordered, ordered[1:]):
            assert b.start >= a.end - 1e-6

    def test_candidates_sorted_by_score_with_chronological_ids(self, long_transcript):
        candidates = segment_scenes(long_transcript, 600.0, [], [], SceneConfig())
        scores = [c.score for c in candidates]
        assert scores == sorted(scores, reverse=True)
        by_time = sorted(candidates, key=lambda c: c.start)
        assert [c.id for c in by_time] == [f"sc_{i:04d}" for i in range(1, len(by_time) + 1)]

    def test_short_video_yields_no_candidates(self):
        segs = [Segment(0.0, 20.0, "Too short to cut.")]
        assert segment_scenes(segs, 20.0, [], [], SceneConfig()) == []

    def test_score_is_clamped(self):
        config = SceneConfig()
        text = "Why? " * 200 + "1234567890 secret tip step first "
        assert score_candidate(text, 55.0, [SENTENCE], config) <= 1.0
        assert score_candidate("", 120.0, [FORCED], config) == 0.0

    def test_candidate_dict_roundtrip_keeps_fields(self):
        c = SceneCandidate("sc_0001", 1.0, 41.5, 0.5, [SILENCE], "text")
        data = c.to_dict()
        assert data["duration"] == 40.5
        assert SceneCandidate.from_dict(data) == c
