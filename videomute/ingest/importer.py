from __future__ import annotations

import logging
import shutil
import uuid
from pathlib import Path
from typing import Any, Callable

from videomute.ingest.probe import media_duration_seconds, probe_media
from videomute.models import SourceAsset

logger = logging.getLogger(__name__)


def import_video(
    video_path: str | Path,
    scratch_dir: str | Path = "data/scratch",
    *,
    ffprobe_binary: str = "ffprobe",
    probe: Callable[..., dict[str, Any]] = probe_media,
) -> SourceAsset:
    """Copy a user-selected video into scratch storage and report its duration."""

    source_path = Path(video_path).expanduser().resolve()
    if not source_path.exists():
        raise FileNotFoundError(f"Video file not found: {source_path}")

    import_dir = Path(scratch_dir).expanduser().resolve() / "imports"
    import_dir.mkdir(parents=True, exist_ok=True)
    copy_path = import_dir / f"{source_path.stem}_{uuid.uuid4().hex}{source_path.suffix}"
    shutil.copy2(source_path, copy_path)

    try:
        metadata = probe(copy_path, ffprobe_binary=ffprobe_binary)
        duration = media_duration_seconds(metadata)
    except Exception:
        copy_path.unlink(missing_ok=True)
        raise

    logger.info("Imported %s as %s (%.3fs)", source_path.name, copy_path.name, duration)
    return SourceAsset(path=copy_path, duration_seconds=duration)


def load_asset(
    video_path: str | Path,
    *,
    ffprobe_binary: str = "ffprobe",
    probe: Callable[..., dict[str, Any]] = probe_media,
) -> SourceAsset:
    """Describe a video in place, without copying it."""

    metadata = probe(video_path, ffprobe_binary=ffprobe_binary)
    return SourceAsset(
        path=Path(metadata["media_path"]),
        duration_seconds=media_duration_seconds(metadata),
    )
