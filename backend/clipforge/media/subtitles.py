"""Subtitle track builders (ASS for burn-in, SRT/VTT sidecars)."""
from typing import List

from clipforge.pipeline.transcript import Segment


def format_ass_time(t: float) -> str:
    """Seconds to ``H:MM:SS.cc``."""
    total_cs = int(round(max(0.0, t) * 100))
    hours, rem = divmod(total_cs, 360000)
    minutes, rem = divmod(rem, 6000)
    seconds, centis = divmod(rem, 100)
    return f"{hours}:{minutes:02d}:{seconds:02d}.{centis:02d}"


def _format_clock(t: float, separator: str) -> str:
    total_ms = int(round(max(0.0, t) * 1000))
    hours, rem = divmod(total_ms, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    seconds, millis = divmod(rem, 1000)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}{separator}{millis:03d}"


def format_srt_time(t: float) -> str:
    return _format_clock(t, ",")


def format_vtt_time(t: float) -> str:
    return _format_clock(t, ".")


def _escape_ass_text(text: str) -> str:
    text = text.strip().replace("\r\n", "\n").replace("\n", "\\N")
    # Braces start override blocks in ASS
    return text.replace("{", "(").replace("}", ")")


def clip_events(segments: List[Segment], start: float, end: float) -> List[Segment]:
    """Segments overlapping [start, end], rebased to clip-relative time."""
    events = []
    for seg in segments:
        if max(seg.start, start) >= min(seg.end, end):
            continue
        events.append(Segment(
            start=max(0.0, seg.start - start),
            end=max(0.01, min(seg.end, end) - start),
            text=seg.text,
        ))
    events.sort(key=lambda s: s.start)
    return events


def build_ass(
    segments: List[Segment],
    start: float,
    end: float,
    width: int = 1080,
    height: int = 1920,
    font: str = "Inter",
    font_size: int = 48,
    margin_v: int = 60,
) -> str:
    """ASS subtitle script for the clip window [start, end]."""
    header = (
        "[Script Info]\n"
        "ScriptType: v4.00+\n"
        f"PlayResX: {width}\n"
        f"PlayResY: {height}\n"
        "ScaledBorderAndShadow: yes\n"
        "WrapStyle: 2\n"
        "YCbCr Matrix: TV.601\n"
        "\n"
        "[V4+ Styles]\n"
        "Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, OutlineColour, "
        "BackColour, Bold, Italic, Underline, StrikeOut, ScaleX, ScaleY, Spacing, Angle, "
        "BorderStyle, Outline, Shadow, Alignment, MarginL, MarginR, MarginV, Encoding\n"
        # White text, black outline, bottom-centre
        f"Style: Default,{font},{font_size},&H00FFFFFF,&H00FFFFFF,&H00000000,&H00000000,"
        f"0,0,0,0,100,100,0,0,1,2,0,2,60,60,{margin_v},0\n"
        "\n"
        "[Events]\n"
        "Format: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text\n"
    )
    lines = [
        f"Dialogue: 0,{format_ass_time(ev.start)},{format_ass_time(ev.end)},"
        f"Default,,0,0,{margin_v},,{_escape_ass_text(ev.text)}"
        for ev in clip_events(segments, start, end)
        if ev.text.strip()
    ]
    return header + "\n".join(lines) + "\n"


def build_srt(segments: List[Segment]) -> str:
    blocks = []
    for idx, seg in enumerate(segments, start=1):
        blocks.append(
            f"{idx}\n{format_srt_time(seg.start)} --> {format_srt_time(seg.end)}\n{seg.text.strip()}\n"
        )
    return "\n".join(blocks)


def build_vtt(segments: List[Segment]) -> str:
    blocks = ["WEBVTT\n"]
    for seg in segments:
        blocks.append(f"{format_vtt_time(seg.start)} --> {format_vtt_time(seg.end)}\n{seg.text.strip()}\n")
    return "\n".join(blocks)
