"""
Export job lifecycle.

Every job moves PENDING -> RUNNING -> {COMPLETED, FAILED, CANCELLED} exactly
once. All status and progress changes, registry edits and progress callbacks
happen under one coordination lock, so a cancel that has been accepted is
never followed by a progress or completion signal for the same job.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from videomute.errors import EncodeFailedError, ExportCancelledError, ExportSetupError, MuteError
from videomute.export.encoder import (
    EXPORT_PRESET_COMPATIBLE,
    EXPORT_PRESET_HIGHEST,
    Encoder,
    EncoderFactory,
    EncoderState,
)
from videomute.models import Composition, ExportJob, JobStatus
from videomute.mute.ramp import VolumeRampPlan

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 0.1
DEFAULT_SUFFIXES = {EXPORT_PRESET_HIGHEST: ".mov", EXPORT_PRESET_COMPATIBLE: ".mp4"}

ProgressCallback = Callable[[ExportJob], None]
CompletionCallback = Callable[[ExportJob], None]


@dataclass(slots=True)
class _ActiveJob:
    job: ExportJob
    encoder: Encoder
    on_progress: ProgressCallback | None
    on_complete: CompletionCallback | None
    stop_sampling: threading.Event = field(default_factory=threading.Event)


class ExportJobManager:
    """Submit compositions to an encoder and track each export to a terminal state."""

    def __init__(
        self,
        encoder_factory: EncoderFactory,
        output_dir: str | Path,
        *,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        suffixes: dict[str, str] | None = None,
        file_prefix: str = "muted_video",
    ) -> None:
        self._encoder_factory = encoder_factory
        self._output_dir = Path(output_dir).expanduser().resolve()
        self._poll_interval = max(float(poll_interval_seconds), 0.001)
        self._suffixes = {**DEFAULT_SUFFIXES, **(suffixes or {})}
        self._file_prefix = file_prefix
        self._lock = threading.RLock()
        self._active: dict[str, _ActiveJob] = {}

    @property
    def output_dir(self) -> Path:
        return self._output_dir

    def active_job_ids(self) -> list[str]:
        with self._lock:
            return list(self._active)

    def get(self, job_id: str) -> ExportJob | None:
        with self._lock:
            entry = self._active.get(job_id)
            return entry.job if entry else None

    def submit(
        self,
        composition: Composition,
        ramp_plan: VolumeRampPlan | None = None,
        *,
        preset: str = EXPORT_PRESET_HIGHEST,
        on_progress: ProgressCallback | None = None,
        on_complete: CompletionCallback | None = None,
        file_prefix: str | None = None,
    ) -> ExportJob:
        """Start an export and return its job handle.

        Encoder setup failures raise ``ExportSetupError`` right away; they are
        never retried here. Every later outcome, including failures, is
        delivered through ``on_complete`` exactly once.
        """

        job_id = uuid.uuid4().hex
        suffix = self._suffixes.get(preset)
        if suffix is None:
            raise ExportSetupError(f"Unsupported export preset: {preset}")
        output_path = self._output_dir / f"{file_prefix or self._file_prefix}_{job_id}{suffix}"

        try:
            self._output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ExportSetupError(f"Cannot create output directory {self._output_dir}: {exc}") from exc
        if output_path.exists():
            raise ExportSetupError(f"Refusing to overwrite existing file {output_path}")

        try:
            encoder = self._encoder_factory(composition, ramp_plan, output_path, preset)
        except Exception as exc:
            logger.error("Export setup failed for %s: %s", composition.source_path, exc)
            raise ExportSetupError(str(exc)) from exc

        job = ExportJob(id=job_id, output_path=output_path, duration_seconds=composition.duration_seconds)
        entry = _ActiveJob(job=job, encoder=encoder, on_progress=on_progress, on_complete=on_complete)

        # registered before the encode starts so cancel() can always find it
        with self._lock:
            job.status = JobStatus.RUNNING
            self._active[job_id] = entry

        logger.info("Export job %s started for %s (%s preset)", job_id, composition.source_path.name, preset)
        threading.Thread(
            target=self._sample_progress,
            args=(entry,),
            name=f"export-progress-{job_id[:8]}",
            daemon=True,
        ).start()
        try:
            encoder.start(lambda state, message: self._on_encoder_finished(entry, state, message))
        except Exception as exc:
            with self._lock:
                self._settle(entry, JobStatus.FAILED, ExportSetupError(str(exc)))
            _remove_partial_output(output_path)
            job._done.set()
            logger.error("Encoder for export job %s failed to start: %s", job_id, exc)
            raise ExportSetupError(str(exc)) from exc
        return job

    def export_and_wait(
        self,
        composition: Composition,
        ramp_plan: VolumeRampPlan | None = None,
        *,
        preset: str = EXPORT_PRESET_HIGHEST,
        file_prefix: str | None = None,
        timeout: float | None = None,
    ) -> ExportJob:
        """Submit and block until the job is terminal (or ``timeout`` elapses)."""

        job = self.submit(composition, ramp_plan, preset=preset, file_prefix=file_prefix)
        if not job.wait(timeout):
            self.cancel(job.id)
            job.wait()
        return job

    def cancel(self, job_id: str) -> bool:
        """Cancel one running job. Returns False when it is unknown or already terminal."""

        with self._lock:
            entry = self._active.get(job_id)
            if entry is None or entry.job.status.is_terminal:
                return False
            self._settle(entry, JobStatus.CANCELLED, ExportCancelledError())

        logger.info("Export job %s cancelled", job_id)
        entry.encoder.cancel()
        self._finalize(entry)
        return True

    def cancel_all(self) -> int:
        """Cancel every active job and stop every progress sampler."""

        with self._lock:
            job_ids = list(self._active)
        cancelled = sum(1 for job_id in job_ids if self.cancel(job_id))
        if cancelled:
            logger.info("Cancelled %d active export job(s)", cancelled)
        return cancelled

    def _sample_progress(self, entry: _ActiveJob) -> None:
        while not entry.stop_sampling.wait(self._poll_interval):
            with self._lock:
                if entry.job.status != JobStatus.RUNNING:
                    return
                fraction = min(max(float(entry.encoder.progress), 0.0), 1.0)
                if fraction <= entry.job.progress:
                    continue
                entry.job.progress = fraction
                self._publish_progress(entry)

    def _on_encoder_finished(self, entry: _ActiveJob, state: EncoderState, message: str | None) -> None:
        job_id = entry.job.id
        with self._lock:
            late = entry.job.status.is_terminal
            if not late:
                if state == EncoderState.COMPLETED:
                    entry.job.progress = 1.0
                    self._publish_progress(entry)
                    self._settle(entry, JobStatus.COMPLETED, None)
                elif state == EncoderState.CANCELLED:
                    self._settle(entry, JobStatus.CANCELLED, ExportCancelledError())
                else:
                    self._settle(entry, JobStatus.FAILED, EncodeFailedError(message))

        if late:
            logger.debug("Ignoring late encoder result %s for job %s", state.value, job_id)
            # the encoder may have kept writing after the job was cancelled
            if entry.job.status != JobStatus.COMPLETED:
                _remove_partial_output(entry.job.output_path)
            return

        if entry.job.status == JobStatus.COMPLETED:
            logger.info("Export job %s completed: %s", job_id, entry.job.output_path)
        elif entry.job.status == JobStatus.FAILED:
            logger.error("Export job %s failed: %s", job_id, message)
        self._finalize(entry)

    def _settle(self, entry: _ActiveJob, status: JobStatus, error: MuteError | None) -> None:
        # caller holds self._lock
        entry.job.status = status
        entry.job.error = error
        entry.stop_sampling.set()
        self._active.pop(entry.job.id, None)

    def _finalize(self, entry: _ActiveJob) -> None:
        job = entry.job
        try:
            if job.status != JobStatus.COMPLETED:
                _remove_partial_output(job.output_path)
            if entry.on_complete is not None:
                try:
                    entry.on_complete(job)
                except Exception:
                    logger.exception("Completion callback failed for export job %s", job.id)
        finally:
            job._done.set()

    def _publish_progress(self, entry: _ActiveJob) -> None:
        if entry.on_progress is None:
            return
        try:
            entry.on_progress(entry.job)
        except Exception:
            logger.exception("Progress callback failed for export job %s", entry.job.id)


def _remove_partial_output(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Failed to remove partial output %s: %s", path, exc)
