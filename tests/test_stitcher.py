import logging

import pytest

from clipchain.services.stitcher import (
    Transition,
    build_crossfade_graph,
    crossfade_offsets,
    encoding_profile,
    stitched_duration,
)
from clipchain.utils.exceptions import StitchError

from .conftest import RecordingStitcher


def make_clips(tmp_path, count):
    paths = []
    for i in range(count):
        path = tmp_path / f"clip-{i}.mp4"
        path.write_bytes(b"clip")
        paths.append(str(path))
    return paths


def test_offsets_follow_the_shortened_timeline():
    assert crossfade_offsets(4, 8, 1.5) == [6.5, 13.0, 19.5]
    assert crossfade_offsets(2, 8, 1.5) == [6.5]
    assert crossfade_offsets(1, 8, 1.5) == []


def test_offsets_reject_overlap_longer_than_clip():
    with pytest.raises(ValueError):
        crossfade_offsets(3, 4, 4)


@pytest.mark.parametrize("count, expected", [(1, 8.0), (2, 14.5), (3, 21.0), (8, 53.5)])
def test_stitched_duration(count, expected):
    assert stitched_duration(count, 8, 1.5) == pytest.approx(expected)


def test_two_clip_graph():
    graph = build_crossfade_graph(2, 8, 1.5)

    assert "[v0][v1]xfade=transition=dissolve:duration=1.5:offset=6.5[vx1]" in graph.filter_complex
    assert "[a0][a1]acrossfade=d=1.5:c1=exp:c2=exp[ax1]" in graph.filter_complex
    assert graph.video_label == "vx1"
    assert graph.audio_label == "ax1"


def test_three_clip_graph_chains_running_labels():
    graph = build_crossfade_graph(3, 8, 1.5, transition=Transition.FADE)

    assert "[vx1][v2]xfade=transition=fade:duration=1.5:offset=13[vx2]" in graph.filter_complex
    assert "[ax1][a2]acrossfade" in graph.filter_complex
    assert graph.video_label == "vx2"


def test_graph_normalises_every_input():
    graph = build_crossfade_graph(5, 8, 1.5)

    for i in range(5):
        assert f"[{i}:v]trim=duration=8" in graph.filter_complex
        assert f"[{i}:a]atrim=duration=8" in graph.filter_complex
    assert graph.filter_complex.count("xfade=") == 4


def test_silent_graph_has_no_audio_chain():
    graph = build_crossfade_graph(3, 8, 1.5, has_audio=False)

    assert "acrossfade" not in graph.filter_complex
    assert ":a]" not in graph.filter_complex
    assert graph.audio_label is None


def test_encoding_profile_gets_cheaper_with_more_clips():
    small, medium, large = encoding_profile(2), encoding_profile(5), encoding_profile(8)

    assert small.crf < medium.crf < large.crf
    assert small.preset == "medium"
    assert large.preset == "veryfast"


async def test_single_clip_is_returned_unchanged(settings, tmp_path):
    stitcher = RecordingStitcher(settings)
    [clip] = make_clips(tmp_path, 1)

    result = await stitcher.stitch([clip], 8, str(tmp_path / "out.mp4"))

    assert result.path == clip
    assert result.transition == Transition.NONE
    assert stitcher.commands == []


async def test_transition_command_maps_final_labels(settings, tmp_path):
    stitcher = RecordingStitcher(settings)
    clips = make_clips(tmp_path, 3)
    output = str(tmp_path / "out.mp4")

    result = await stitcher.stitch(clips, 8, output)

    [cmd] = stitcher.commands
    assert cmd.count("-i") == 3
    assert cmd[cmd.index("-map") + 1] == "[vx2]"
    assert "[ax2]" in cmd
    assert cmd[-1] == output
    assert result.transition == Transition.DISSOLVE
    assert result.duration == pytest.approx(21.0)
    assert not result.degraded


async def test_fade_fallback_keeps_duration(settings, tmp_path):
    stitcher = RecordingStitcher(settings, fail_transitions={"dissolve"})
    clips = make_clips(tmp_path, 3)

    result = await stitcher.stitch(clips, 8, str(tmp_path / "out.mp4"))

    assert result.transition == Transition.FADE
    assert result.duration == pytest.approx(21.0)
    assert result.degraded
    assert len(stitcher.commands) == 2


async def test_short_chain_fails_when_both_transitions_fail(settings, tmp_path):
    stitcher = RecordingStitcher(settings, fail_transitions={"dissolve", "fade"})
    clips = make_clips(tmp_path, 3)

    with pytest.raises(StitchError) as exc_info:
        await stitcher.stitch(clips, 8, str(tmp_path / "out.mp4"))

    assert exc_info.value.details["clip_count"] == 3


async def test_long_chain_falls_back_to_concat(settings, tmp_path):
    stitcher = RecordingStitcher(settings, fail_transitions={"dissolve", "fade"})
    clips = make_clips(tmp_path, 5)
    output = tmp_path / "out.mp4"

    result = await stitcher.stitch(clips, 8, str(output))

    assert result.transition == Transition.CONCAT
    assert result.duration == pytest.approx(40.0)
    concat_cmd = stitcher.commands[-1]
    assert "-f" in concat_cmd and "concat" in concat_cmd
    assert concat_cmd[concat_cmd.index("-c") + 1] == "copy"
    listing = (tmp_path / "out_concat.txt").read_text().splitlines()
    assert len(listing) == 5
    assert listing[0].startswith("file '")


class CopyFailingStitcher(RecordingStitcher):
    def _run_ffmpeg(self, cmd, duration, progress_callback=None):
        if "concat" in cmd and "copy" in cmd:
            self.commands.append(cmd)
            raise StitchError("copy failed", clip_count=0)
        super()._run_ffmpeg(cmd, duration, progress_callback)


async def test_concat_reencodes_when_stream_copy_fails(settings, tmp_path, caplog):
    stitcher = CopyFailingStitcher(settings, fail_transitions={"dissolve", "fade"})
    clips = make_clips(tmp_path, 5)

    with caplog.at_level(logging.WARNING, logger="clipchain"):
        result = await stitcher.stitch(clips, 8, str(tmp_path / "out.mp4"))

    assert result.transition == Transition.CONCAT
    assert "libx264" in stitcher.commands[-1]
    assert "Concat stream copy failed, re-encoding" in caplog.text
    assert "re-encode failed" not in caplog.text


async def test_concat_reports_failed_reencode(settings, tmp_path, caplog):
    stitcher = RecordingStitcher(settings, fail_transitions={"dissolve", "fade"}, fail_concat=True)
    clips = make_clips(tmp_path, 5)

    with caplog.at_level(logging.WARNING, logger="clipchain"):
        with pytest.raises(StitchError):
            await stitcher.stitch(clips, 8, str(tmp_path / "out.mp4"))

    assert caplog.text.count("Concat stream copy failed, re-encoding") == 1
    assert "Concat re-encode failed" in caplog.text


async def test_empty_input_is_an_error(settings, tmp_path):
    with pytest.raises(StitchError):
        await RecordingStitcher(settings).stitch([], 8, str(tmp_path / "out.mp4"))
