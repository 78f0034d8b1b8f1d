from __future__ import annotations

import enum
import math
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, Union

from videomute.errors import InvalidRangeError, MuteError, describe_error

MIN_MUTE_SECONDS = 0.1


@dataclass(frozen=True, slots=True)
class SourceAsset:
    """An input media file and its probed duration."""

    path: Path
    duration_seconds: float

    def __post_init__(self) -> None:
        if not math.isfinite(self.duration_seconds) or self.duration_seconds < 0:
            raise ValueError(f"Invalid asset duration: {self.duration_seconds}")


@dataclass(frozen=True, slots=True)
class FullMute:
    """Drop the audio entirely."""

    asset: SourceAsset


@dataclass(frozen=True, slots=True)
class PartialMute:
    """Silence ``[start_seconds, end_seconds]`` and keep the rest of the audio."""

    asset: SourceAsset
    start_seconds: float
    end_seconds: float

    def validate(self, min_mute_seconds: float = MIN_MUTE_SECONDS) -> None:
        start, end = self.start_seconds, self.end_seconds
        duration = self.asset.duration_seconds
        if not (math.isfinite(start) and math.isfinite(end)):
            raise InvalidRangeError(f"Mute range must be finite, got [{start}, {end}]")
        if start < 0 or end <= start or end > duration:
            raise InvalidRangeError(
                f"Mute range [{start:.3f}, {end:.3f}] must satisfy 0 <= start < end <= {duration:.3f}"
            )
        # small tolerance so 0.1 typed by a user is not rejected as 0.09999...
        if (end - start) + 1e-9 < min_mute_seconds:
            raise InvalidRangeError(f"Mute duration must be at least {min_mute_seconds} seconds")


MuteRequest = Union[FullMute, PartialMute]


@dataclass(frozen=True, slots=True)
class Track:
    kind: Literal["video", "audio"]
    stream_index: int
    codec_name: str | None
    start_seconds: float
    duration_seconds: float


@dataclass(frozen=True, slots=True)
class Composition:
    """Single output timeline assembled from one source asset."""

    source_path: Path
    duration_seconds: float
    tracks: tuple[Track, ...]

    @property
    def video_tracks(self) -> list[Track]:
        return [track for track in self.tracks if track.kind == "video"]

    @property
    def audio_tracks(self) -> list[Track]:
        return [track for track in self.tracks if track.kind == "audio"]

    @property
    def has_audio(self) -> bool:
        return bool(self.audio_tracks)

    def ffmpeg_map_args(self) -> list[str]:
        args: list[str] = []
        for track in self.tracks:
            args.extend(["-map", f"0:{track.stream_index}"])
        return args


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}


@dataclass(slots=True)
class ExportJob:
    """Mutable state of one export; owned by the job manager."""

    id: str
    output_path: Path
    duration_seconds: float
    status: JobStatus = JobStatus.PENDING
    progress: float = 0.0
    error: MuteError | None = None
    _done: threading.Event = field(default_factory=threading.Event, repr=False, compare=False)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the job reaches a terminal state."""

        return self._done.wait(timeout)


@dataclass(slots=True)
class ProcessOutcome:
    """What a caller learns about one mute job once it is over."""

    source_path: Path
    output_path: Path | None = None
    error: MuteError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.output_path is not None

    @property
    def message(self) -> str:
        return describe_error(self.error)


@dataclass(slots=True)
class BatchResult:
    succeeded_count: int = 0
    failed_count: int = 0
    output_paths: list[Path] = field(default_factory=list)
    errors: list[ProcessOutcome] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "succeeded_count": self.succeeded_count,
            "failed_count": self.failed_count,
            "output_paths": [str(path) for path in self.output_paths],
            "errors": [
                {"source_path": str(outcome.source_path), "message": outcome.message}
                for outcome in self.errors
            ],
        }


@dataclass(frozen=True, slots=True)
class SaveOperation:
    operation_id: str
    path: Path


@dataclass(slots=True)
class SaveResult:
    path: Path
    asset_id: str | None = None
    error: MuteError | None = None
    used_fallback: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def message(self) -> str:
        return describe_error(self.error)


@dataclass(slots=True)
class SaveSummary:
    saved_count: int = 0
    failed_count: int = 0
    results: list[SaveResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "saved_count": self.saved_count,
            "failed_count": self.failed_count,
            "results": [
                {
                    "path": str(result.path),
                    "ok": result.ok,
                    "asset_id": result.asset_id,
                    "used_fallback": result.used_fallback,
                    "message": result.message or None,
                }
                for result in self.results
            ],
        }
