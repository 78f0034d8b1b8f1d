from __future__ import annotations

import json
import subprocess
from pathlib import Path
from typing import Any

SHARED_LIBRARY_MARKER = "error while loading shared libraries"


def probe_media(media_path: str | Path, ffprobe_binary: str = "ffprobe") -> dict[str, Any]:
    """Probe media metadata via ffprobe and normalize the streams we care about."""

    source_path = Path(media_path).expanduser().resolve()
    if not source_path.exists():
        raise FileNotFoundError(f"Media file not found: {source_path}")

    ffprobe_payload = _run_ffprobe(source_path, ffprobe_binary=ffprobe_binary)
    return _normalize_probe_payload(source_path, ffprobe_payload)


def media_duration_seconds(metadata: dict[str, Any]) -> float:
    """Container duration, falling back to the longest stream when the container has none."""

    duration = metadata.get("format", {}).get("duration_seconds")
    if duration is None:
        stream_durations = [
            stream["duration_seconds"]
            for stream in metadata.get("streams", [])
            if stream.get("duration_seconds") is not None
        ]
        duration = max(stream_durations) if stream_durations else None
    if duration is None:
        raise RuntimeError(f"ffprobe reported no duration for {metadata.get('media_path')}")
    return float(duration)


def _run_ffprobe(media_path: Path, ffprobe_binary: str = "ffprobe") -> dict[str, Any]:
    command = [
        ffprobe_binary,
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_format",
        "-show_streams",
        str(media_path),
    ]

    try:
        completed = subprocess.run(
            command,
            check=True,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError as exc:
        raise RuntimeError(
            "ffprobe executable was not found. Install FFmpeg so ffprobe is available on PATH."
        ) from exc
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        if SHARED_LIBRARY_MARKER in stderr:
            raise RuntimeError(
                "ffprobe is installed but failed to start because required shared libraries are missing. "
                f"ffprobe stderr: {stderr}"
            ) from exc
        details = f" ffprobe stderr: {stderr}" if stderr else ""
        raise RuntimeError(
            f"ffprobe failed while probing media file: {media_path}.{details}"
        ) from exc

    try:
        return json.loads(completed.stdout)
    except json.JSONDecodeError as exc:
        raise RuntimeError("ffprobe returned invalid JSON output.") from exc


def _normalize_probe_payload(media_path: Path, payload: dict[str, Any]) -> dict[str, Any]:
    stream_entries = payload.get("streams", [])
    format_entry = payload.get("format", {})

    streams = [_normalize_stream(stream) for stream in stream_entries]

    return {
        "status": "ok",
        "media_path": str(media_path),
        "format": {
            "format_name": format_entry.get("format_name"),
            "format_long_name": format_entry.get("format_long_name"),
            "duration_seconds": _to_float(format_entry.get("duration")),
            "size_bytes": _to_int(format_entry.get("size")),
            "bit_rate": _to_int(format_entry.get("bit_rate")),
        },
        "streams": streams,
        "audio_stream_count": sum(1 for stream in streams if stream["codec_type"] == "audio"),
        "video_stream_count": sum(1 for stream in streams if stream["codec_type"] == "video"),
    }


def _normalize_stream(stream: dict[str, Any]) -> dict[str, Any]:
    disposition = stream.get("disposition", {}) or {}
    return {
        "index": stream.get("index"),
        "codec_type": stream.get("codec_type"),
        "codec_name": stream.get("codec_name"),
        "sample_rate": _to_int(stream.get("sample_rate")),
        "channels": _to_int(stream.get("channels")),
        "width": _to_int(stream.get("width")),
        "height": _to_int(stream.get("height")),
        "avg_frame_rate": stream.get("avg_frame_rate"),
        "duration_seconds": _to_float(stream.get("duration")),
        "attached_pic": bool(disposition.get("attached_pic", 0)),
    }


def _to_float(raw_value: Any) -> float | None:
    if raw_value in (None, "N/A", ""):
        return None
    return float(raw_value)


def _to_int(raw_value: Any) -> int | None:
    if raw_value in (None, "N/A", ""):
        return None
    return int(raw_value)
