"""Tests for vertical framing, render arguments and audio analysis."""
import os
import stat
from pathlib import Path

import numpy as np
import pytest

from clipforge.config import settings
from clipforge.media import ffmpeg as ffmpeg_module
from clipforge.media.ffmpeg import (
    RenderOptions,
    _build_vertical_base_filter,
    _escape_filter_value,
    _round_even,
    build_render_args,
    build_render_filter,
    detect_silences,
    run_ffmpeg,
)


def test_round_even():
    assert _round_even(1080) == 1080
    assert _round_even(1081) == 1080


def test_build_vertical_base_filter_crop():
    filtergraph, label = _build_vertical_base_filter(1080, 1920, "crop")
    assert "scale=1080:1920:force_original_aspect_ratio=increase" in filtergraph
    assert "crop=1080:1920" in filtergraph
    assert label == "vbase"


def test_build_vertical_base_filter_blur():
    filtergraph, label = _build_vertical_base_filter(1080, 1920, "fit_blur")
    assert "boxblur" in filtergraph
    assert "overlay" in filtergraph
    assert label == "vbase"


def test_build_vertical_base_filter_odd_size_rounded():
    filtergraph, _ = _build_vertical_base_filter(721, 1281, "crop")
    assert "crop=720:1280" in filtergraph


def test_render_filter_burns_subtitles_with_style():
    options = RenderOptions(font="Inter", font_size=52, margin_v=80)
    graph = build_render_filter(Path("/tmp/work/sc_0001.ass"), options)
    assert "subtitles=filename='/tmp/work/sc_0001.ass'" in graph
    assert "FontSize=52" in graph
    assert "MarginV=80" in graph
    assert graph.endswith("[vout]")


def test_render_filter_without_subtitles():
    graph = build_render_filter(None, RenderOptions(fps=25))
    assert "subtitles" not in graph
    assert "[vbase]fps=25[vout]" in graph


def test_escape_filter_value():
    assert _escape_filter_value("C:\\clips\\a,b.ass") == "C\\:\\\\clips\\\\a\\,b.ass"


def test_render_args_seek_duration_and_loudness():
    args = build_render_args(Path("in.mp4"), Path("out.mp4"), 12.5, 45.0, None, RenderOptions(), threads=4)
    assert args[:4] == ["-ss", "12.500", "-t", "45.000"]
    assert args[args.index("-threads") + 1] == "4"
    assert args[args.index("-af") + 1].startswith("loudnorm")
    assert args[-1] == "out.mp4"


def test_detect_silences_finds_quiet_span():
    sr = 16000
    loud = 0.5 * np.sin(np.linspace(0, 2 * np.pi * 440, sr))
    quiet = np.zeros(sr // 2)
    samples = np.concatenate([loud, quiet, loud]).astype(np.float32)

    silences = detect_silences(samples, sr, threshold_db=-35, min_duration=0.3)
    assert len(silences) == 1
    start, end = silences[0]
    assert abs(start - 1.0) < 0.05
    assert abs(end - 1.5) < 0.05


def test_detect_silences_ignores_short_gaps():
    sr = 16000
    loud = 0.5 * np.ones(sr)
    samples = np.concatenate([loud, np.zeros(sr // 10), loud]).astype(np.float32)
    assert detect_silences(samples, sr, min_duration=0.3) == []


@pytest.mark.asyncio
async def test_run_ffmpeg_kills_encoder_when_progress_callback_fails(tmp_path, monkeypatch):
    pid_file = tmp_path / "encoder.pid"
    script = tmp_path / "fake-ffmpeg.sh"
    script.write_text(
        "#!/bin/sh\n"
        f"echo $$ > '{pid_file}'\n"
        "echo out_time_ms=5000000\n"
        "exec sleep 30\n"
    )
    script.chmod(script.stat().st_mode | stat.S_IEXEC)
    monkeypatch.setattr(ffmpeg_module, "settings", settings.model_copy(update={"ffmpeg_path": str(script)}))

    async def failing_progress(percent):
        raise RuntimeError("progress store unavailable")

    with pytest.raises(RuntimeError):
        await run_ffmpeg(["-i", "in.mp4", "out.mp4"], duration=10.0, progress_callback=failing_progress)

    pid = int(pid_file.read_text().strip())
    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)
