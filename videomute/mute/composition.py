from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable

from videomute.errors import NoAudioTrackError, NoVideoTrackError, TrackInsertFailedError
from videomute.ingest.probe import probe_media
from videomute.models import Composition, FullMute, MuteRequest, PartialMute, Track
from videomute.mute.ramp import DEFAULT_FADE_SECONDS, VolumeRampPlan, build_ramp_plan

logger = logging.getLogger(__name__)

ProbeFn = Callable[..., dict[str, Any]]


def build_composition(
    request: MuteRequest,
    *,
    probe: ProbeFn = probe_media,
    ffprobe_binary: str = "ffprobe",
    fade_seconds: float = DEFAULT_FADE_SECONDS,
    min_mute_seconds: float = 0.1,
) -> tuple[Composition, VolumeRampPlan | None]:
    """Assemble the output timeline for a mute request.

    Full mute keeps only the video track, so the output is silent whatever the
    source audio looks like. Partial mute keeps video and audio and returns the
    volume envelope to apply to the audio track during export.
    """

    if isinstance(request, PartialMute):
        # an invalid range must never produce a composition
        request.validate(min_mute_seconds)

    asset = request.asset
    metadata = _probe_source(asset.path, probe=probe, ffprobe_binary=ffprobe_binary)
    duration = asset.duration_seconds

    video_stream = _first_video_stream(metadata)
    if video_stream is None:
        raise NoVideoTrackError(f"No decodable video stream in {asset.path}")

    tracks = [_insert_track(video_stream, "video", duration)]
    ramp_plan: VolumeRampPlan | None = None

    if isinstance(request, PartialMute):
        audio_stream = _first_stream(metadata, "audio")
        if audio_stream is None:
            raise NoAudioTrackError(f"No audio stream in {asset.path}; use a full mute instead")
        tracks.append(_insert_track(audio_stream, "audio", duration))
        ramp_plan = build_ramp_plan(
            duration,
            request.start_seconds,
            request.end_seconds,
            fade_seconds=fade_seconds,
        )
    elif not isinstance(request, FullMute):
        raise TypeError(f"Unsupported mute request: {type(request).__name__}")

    composition = Composition(
        source_path=asset.path,
        duration_seconds=duration,
        tracks=tuple(tracks),
    )
    logger.debug(
        "Built composition for %s with %d track(s)%s",
        asset.path.name,
        len(composition.tracks),
        f" and {len(ramp_plan.segments)} ramp segment(s)" if ramp_plan else "",
    )
    return composition, ramp_plan


def build_passthrough_composition(
    metadata: dict[str, Any],
    duration: float,
) -> Composition:
    """Composition that keeps the first video and, when present, the first audio track."""

    video_stream = _first_video_stream(metadata)
    if video_stream is None:
        raise NoVideoTrackError(f"No decodable video stream in {metadata.get('media_path')}")
    tracks = [_insert_track(video_stream, "video", duration)]
    audio_stream = _first_stream(metadata, "audio")
    if audio_stream is not None:
        tracks.append(_insert_track(audio_stream, "audio", duration))
    return Composition(
        source_path=Path(metadata["media_path"]),
        duration_seconds=duration,
        tracks=tuple(tracks),
    )


def _probe_source(path: Path, *, probe: ProbeFn, ffprobe_binary: str) -> dict[str, Any]:
    try:
        return probe(path, ffprobe_binary=ffprobe_binary)
    except (FileNotFoundError, RuntimeError) as exc:
        raise TrackInsertFailedError(str(exc)) from exc


def _first_video_stream(metadata: dict[str, Any]) -> dict[str, Any] | None:
    for stream in metadata.get("streams", []):
        if stream.get("codec_type") != "video":
            continue
        # cover art shows up as a video stream but has no timeline to copy
        if stream.get("attached_pic") or not stream.get("codec_name"):
            continue
        return stream
    return None


def _first_stream(metadata: dict[str, Any], codec_type: str) -> dict[str, Any] | None:
    for stream in metadata.get("streams", []):
        if stream.get("codec_type") == codec_type:
            return stream
    return None


def _insert_track(stream: dict[str, Any], kind: str, duration: float) -> Track:
    stream_index = stream.get("index")
    if stream_index is None:
        raise TrackInsertFailedError(f"{kind} stream has no index")
    if duration <= 0:
        raise TrackInsertFailedError(f"Cannot insert {kind} track over an empty time range")
    return Track(
        kind=kind,  # type: ignore[arg-type]
        stream_index=int(stream_index),
        codec_name=stream.get("codec_name"),
        start_seconds=0.0,
        duration_seconds=duration,
    )
