"""Transcript model and text helpers."""
import re
from dataclasses import dataclass, field
from typing import List, Optional

SENTENCE_END = re.compile(r"[.!?…]+[\"')\]]*(?=\s|$)")


@dataclass
class Segment:
    """One timestamped transcript segment."""
    start: float
    end: float
    text: str

    @property
    def duration(self) -> float:
        return self.end - self.start

    def to_dict(self) -> dict:
        return {"start": round(self.start, 3), "end": round(self.end, 3), "text": self.text}


@dataclass
class Transcript:
    """Speech-to-text output for a whole source."""
    language: str
    segments: List[Segment] = field(default_factory=list)
    duration: Optional[float] = None

    @property
    def end_time(self) -> float:
        """Media duration if known, else the last segment end."""
        if self.duration:
            return self.duration
        return max((s.end for s in self.segments), default=0.0)

    @property
    def text(self) -> str:
        return " ".join(s.text for s in self.segments).strip()

    def to_dict(self) -> dict:
        return {
            "language": self.language,
            "duration": self.duration,
            "text": self.text,
            "segments": [s.to_dict() for s in self.segments],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Transcript":
        return cls(
            language=data.get("language") or "unknown",
            segments=[
                Segment(float(s["start"]), float(s["end"]), str(s.get("text", "")))
                for s in data.get("segments", [])
            ],
            duration=data.get("duration"),
        )


def normalize_segments(segments: List[Segment], media_duration: Optional[float] = None) -> List[Segment]:
    """
    Sort segments and enforce ``start < end <= media_duration``.

    Segments with empty text or no remaining duration are dropped.
    """
    cleaned = []
    for seg in sorted(segments, key=lambda s: (s.start, s.end)):
        text = re.sub(r"\s+", " ", seg.text or "").strip()
        start = max(0.0, seg.start)
        end = seg.end
        if media_duration is not None:
            end = min(end, media_duration)
        if not text or end <= start:
            continue
        cleaned.append(Segment(start, end, text))
    return cleaned


def overlapping(segments: List[Segment], start: float, end: float) -> List[Segment]:
    return [s for s in segments if max(s.start, start) < min(s.end, end)]


def text_in_range(segments: List[Segment], start: float, end: float) -> str:
    """Concatenated text of segments overlapping [start, end]."""
    return re.sub(r"\s+", " ", " ".join(s.text for s in overlapping(segments, start, end))).strip()


def middle_excerpt(text: str, max_chars: int = 200) -> str:
    """The middle ``max_chars`` of ``text``, framed with ellipses when cut."""
    if len(text) <= max_chars:
        return text
    offset = (len(text) - max_chars) // 2
    return "..." + text[offset:offset + max_chars] + "..."


def head_excerpt(text: str, max_chars: int = 220) -> str:
    """Leading excerpt cut at a word boundary."""
    text = re.sub(r"\s+", " ", text).strip()
    if len(text) <= max_chars:
        return text
    cut = text[:max_chars]
    last_space = cut.rfind(" ")
    return (cut[:last_space] if last_space > 40 else cut).strip() + "…"


def sentence_boundaries(segments: List[Segment], tolerance: float = 0.75) -> List[float]:
    """
    Timestamps where sentences end.

    Each end is placed by linear interpolation of its character offset
    within the source segment, then near-duplicates are collapsed.
    """
    times = []
    for seg in segments:
        length = len(seg.text)
        if length == 0 or seg.end <= seg.start:
            continue
        for match in SENTENCE_END.finditer(seg.text):
            times.append(seg.start + seg.duration * (match.end() / length))

    deduped: List[float] = []
    for t in sorted(times):
        if not deduped or t - deduped[-1] >= tolerance:
            deduped.append(t)
    return deduped
