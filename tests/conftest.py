from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Callable

import pytest

from videomute.export.encoder import EncoderState
from videomute.models import Composition
from videomute.mute.ramp import VolumeRampPlan


class FakeEncoder:
    """In-memory encoder driven by the test instead of by ffmpeg."""

    def __init__(
        self,
        composition: Composition,
        ramp_plan: VolumeRampPlan | None,
        output_path: Path,
        preset: str,
        *,
        auto_finish: EncoderState | None = None,
        message: str | None = None,
    ) -> None:
        self.composition = composition
        self.ramp_plan = ramp_plan
        self.output_path = output_path
        self.preset = preset
        self.progress = 0.0
        self.started = threading.Event()
        self.cancelled = threading.Event()
        self._auto_finish = auto_finish
        self._message = message
        self._on_finish: Callable[[EncoderState, str | None], None] | None = None

    def start(self, on_finish: Callable[[EncoderState, str | None], None]) -> None:
        self._on_finish = on_finish
        self.started.set()
        if self._auto_finish is not None:
            threading.Thread(target=self.finish, args=(self._auto_finish, self._message), daemon=True).start()

    def cancel(self) -> None:
        self.cancelled.set()

    def finish(self, state: EncoderState = EncoderState.COMPLETED, message: str | None = None) -> None:
        assert self._on_finish is not None
        if state == EncoderState.COMPLETED:
            self.output_path.write_bytes(b"muted")
        else:
            # a failed ffmpeg run leaves a partial file behind
            self.output_path.write_bytes(b"partial")
        self._on_finish(state, message)


class FakeEncoderFactory:
    def __init__(
        self,
        *,
        auto_finish: EncoderState | None = None,
        message: str | None = None,
        setup_error: Exception | None = None,
    ) -> None:
        self.auto_finish = auto_finish
        self.message = message
        self.setup_error = setup_error
        self.encoders: list[FakeEncoder] = []
        self._lock = threading.Lock()

    def __call__(
        self,
        composition: Composition,
        ramp_plan: VolumeRampPlan | None,
        output_path: Path,
        preset: str,
    ) -> FakeEncoder:
        if self.setup_error is not None:
            raise self.setup_error
        encoder = FakeEncoder(
            composition,
            ramp_plan,
            output_path,
            preset,
            auto_finish=self.auto_finish,
            message=self.message,
        )
        with self._lock:
            self.encoders.append(encoder)
        return encoder


def build_metadata(
    media_path: str | Path,
    *,
    duration: float | None = 60.0,
    video: bool = True,
    audio: bool = True,
    cover_art: bool = False,
) -> dict[str, Any]:
    streams: list[dict[str, Any]] = []
    if cover_art:
        streams.append({"index": len(streams), "codec_type": "video", "codec_name": "mjpeg", "attached_pic": True})
    if video:
        streams.append(
            {
                "index": len(streams),
                "codec_type": "video",
                "codec_name": "h264",
                "duration_seconds": duration,
                "attached_pic": False,
            }
        )
    if audio:
        streams.append(
            {
                "index": len(streams),
                "codec_type": "audio",
                "codec_name": "aac",
                "duration_seconds": duration,
                "attached_pic": False,
            }
        )
    return {
        "status": "ok",
        "media_path": str(Path(media_path).expanduser().resolve()),
        "format": {"duration_seconds": duration},
        "streams": streams,
        "audio_stream_count": sum(1 for stream in streams if stream["codec_type"] == "audio"),
        "video_stream_count": sum(1 for stream in streams if stream["codec_type"] == "video"),
    }


@pytest.fixture
def fake_encoder_factory() -> type[FakeEncoderFactory]:
    return FakeEncoderFactory


@pytest.fixture
def make_probe() -> Callable[..., Callable[..., dict[str, Any]]]:
    """Build an ffprobe stand-in that reports fixed streams for any path."""

    def _make(**kwargs: Any) -> Callable[..., dict[str, Any]]:
        calls: list[Path] = []

        def _probe(media_path: str | Path, ffprobe_binary: str = "ffprobe") -> dict[str, Any]:
            calls.append(Path(media_path))
            return build_metadata(media_path, **kwargs)

        _probe.calls = calls  # type: ignore[attr-defined]
        return _probe

    return _make


@pytest.fixture
def video_file(tmp_path: Path) -> Path:
    path = tmp_path / "clip.mov"
    path.write_bytes(b"source video bytes")
    return path


@pytest.fixture
def metadata_builder() -> Callable[..., dict[str, Any]]:
    return build_metadata
