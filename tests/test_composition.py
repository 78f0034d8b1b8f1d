from __future__ import annotations

from pathlib import Path

import pytest

from videomute.errors import InvalidRangeError, NoAudioTrackError, NoVideoTrackError, TrackInsertFailedError
from videomute.models import FullMute, PartialMute, SourceAsset
from videomute.mute.composition import build_composition, build_passthrough_composition


def _asset(path: Path, duration: float = 60.0) -> SourceAsset:
    return SourceAsset(path=path, duration_seconds=duration)


def test_full_mute_keeps_only_the_video_track(video_file: Path, make_probe) -> None:
    composition, ramp_plan = build_composition(FullMute(_asset(video_file)), probe=make_probe())

    assert ramp_plan is None
    assert [track.kind for track in composition.tracks] == ["video"]
    assert not composition.has_audio
    assert composition.ffmpeg_map_args() == ["-map", "0:0"]
    assert composition.video_tracks[0].duration_seconds == 60.0


def test_full_mute_works_without_source_audio(video_file: Path, make_probe) -> None:
    composition, _ = build_composition(FullMute(_asset(video_file)), probe=make_probe(audio=False))

    assert [track.kind for track in composition.tracks] == ["video"]


def test_partial_mute_keeps_video_and_audio_with_a_ramp(video_file: Path, make_probe) -> None:
    request = PartialMute(_asset(video_file), start_seconds=10.0, end_seconds=20.0)

    composition, ramp_plan = build_composition(request, probe=make_probe())

    assert [track.kind for track in composition.tracks] == ["video", "audio"]
    assert composition.ffmpeg_map_args() == ["-map", "0:0", "-map", "0:1"]
    assert ramp_plan is not None
    assert len(ramp_plan.segments) == 3


def test_cover_art_stream_is_not_used_as_video(video_file: Path, make_probe) -> None:
    composition, _ = build_composition(FullMute(_asset(video_file)), probe=make_probe(cover_art=True))

    assert composition.video_tracks[0].stream_index == 1
    assert composition.video_tracks[0].codec_name == "h264"


def test_source_without_video_is_rejected(video_file: Path, make_probe) -> None:
    with pytest.raises(NoVideoTrackError):
        build_composition(FullMute(_asset(video_file)), probe=make_probe(video=False))


def test_partial_mute_needs_an_audio_track(video_file: Path, make_probe) -> None:
    request = PartialMute(_asset(video_file), start_seconds=1.0, end_seconds=2.0)

    with pytest.raises(NoAudioTrackError):
        build_composition(request, probe=make_probe(audio=False))


@pytest.mark.parametrize(("start", "end"), [(5.0, 5.0), (20.0, 10.0), (50.0, 61.0), (1.0, 1.05)])
def test_invalid_range_fails_before_probing(video_file: Path, make_probe, start: float, end: float) -> None:
    probe = make_probe()
    request = PartialMute(_asset(video_file), start_seconds=start, end_seconds=end)

    with pytest.raises(InvalidRangeError):
        build_composition(request, probe=probe)

    assert probe.calls == []


def test_minimum_mute_duration_is_accepted(video_file: Path, make_probe) -> None:
    request = PartialMute(_asset(video_file), start_seconds=1.0, end_seconds=1.1)

    _, ramp_plan = build_composition(request, probe=make_probe())

    assert ramp_plan is not None


def test_zero_length_asset_cannot_be_inserted(video_file: Path, make_probe) -> None:
    with pytest.raises(TrackInsertFailedError):
        build_composition(FullMute(_asset(video_file, duration=0.0)), probe=make_probe())


def test_probe_failure_surfaces_as_track_insert_failure(video_file: Path) -> None:
    def _broken_probe(media_path: Path, ffprobe_binary: str = "ffprobe") -> dict:
        raise RuntimeError("ffprobe failed while probing media file")

    with pytest.raises(TrackInsertFailedError, match="ffprobe failed"):
        build_composition(FullMute(_asset(video_file)), probe=_broken_probe)


def test_passthrough_composition_keeps_audio_when_present(video_file: Path, metadata_builder) -> None:
    composition = build_passthrough_composition(metadata_builder(video_file, duration=12.5), 12.5)

    assert [track.kind for track in composition.tracks] == ["video", "audio"]
    assert composition.source_path == video_file.resolve()
    assert composition.duration_seconds == 12.5
