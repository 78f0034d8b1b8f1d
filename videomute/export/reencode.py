from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable

from videomute.errors import EncodeFailedError, TrackInsertFailedError
from videomute.export.encoder import EXPORT_PRESET_COMPATIBLE
from videomute.export.jobs import ExportJobManager
from videomute.ingest.probe import media_duration_seconds, probe_media
from videomute.models import JobStatus
from videomute.mute.composition import build_passthrough_composition

logger = logging.getLogger(__name__)


class CompatibilityReencoder:
    """Re-encode a file to H.264/AAC MP4 through a fresh export job."""

    def __init__(
        self,
        manager: ExportJobManager,
        *,
        probe: Callable[..., dict[str, Any]] = probe_media,
        ffprobe_binary: str = "ffprobe",
    ) -> None:
        self._manager = manager
        self._probe = probe
        self._ffprobe_binary = ffprobe_binary

    def __call__(self, source: Path) -> Path:
        try:
            metadata = self._probe(source, ffprobe_binary=self._ffprobe_binary)
            duration = media_duration_seconds(metadata)
        except (FileNotFoundError, RuntimeError) as exc:
            raise TrackInsertFailedError(str(exc)) from exc

        composition = build_passthrough_composition(metadata, duration)
        logger.info("Re-encoding %s for library compatibility", source.name)
        job = self._manager.export_and_wait(
            composition,
            preset=EXPORT_PRESET_COMPATIBLE,
            file_prefix="exported_video",
        )
        if job.status != JobStatus.COMPLETED:
            raise job.error or EncodeFailedError(f"Re-encode of {source.name} ended as {job.status.value}")
        return job.output_path
