from __future__ import annotations

from pathlib import Path

import pytest

from videomute.errors import EncodeFailedError, TrackInsertFailedError
from videomute.export.encoder import EXPORT_PRESET_COMPATIBLE, EncoderState
from videomute.export.jobs import ExportJobManager
from videomute.export.reencode import CompatibilityReencoder


def test_reencode_exports_compatible_copy(video_file: Path, tmp_path: Path, fake_encoder_factory, make_probe) -> None:
    factory = fake_encoder_factory(auto_finish=EncoderState.COMPLETED)
    manager = ExportJobManager(factory, tmp_path / "out")
    reencoder = CompatibilityReencoder(manager, probe=make_probe(duration=8.0))

    output = reencoder(video_file)

    assert output.exists()
    assert output.suffix == ".mp4"
    assert output.name.startswith("exported_video_")
    encoder = factory.encoders[0]
    assert encoder.preset == EXPORT_PRESET_COMPATIBLE
    assert encoder.ramp_plan is None
    assert [track.kind for track in encoder.composition.tracks] == ["video", "audio"]
    assert encoder.composition.duration_seconds == 8.0


def test_failed_reencode_raises_the_job_error(video_file: Path, tmp_path: Path, fake_encoder_factory, make_probe) -> None:
    factory = fake_encoder_factory(auto_finish=EncoderState.FAILED, message="unknown encoder 'libx264'")
    manager = ExportJobManager(factory, tmp_path / "out")
    reencoder = CompatibilityReencoder(manager, probe=make_probe())

    with pytest.raises(EncodeFailedError, match="libx264"):
        reencoder(video_file)

    assert list((tmp_path / "out").iterdir()) == []


def test_unprobeable_source_cannot_be_reencoded(video_file: Path, tmp_path: Path, fake_encoder_factory) -> None:
    def _broken_probe(media_path: Path, ffprobe_binary: str = "ffprobe") -> dict:
        raise RuntimeError("ffprobe returned invalid JSON output.")

    reencoder = CompatibilityReencoder(ExportJobManager(fake_encoder_factory(), tmp_path), probe=_broken_probe)

    with pytest.raises(TrackInsertFailedError, match="invalid JSON"):
        reencoder(video_file)
