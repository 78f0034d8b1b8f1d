from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Iterable, Sequence

from videomute.config import Settings
from videomute.errors import ExportCancelledError, MuteError
from videomute.export.batch import BatchCompleteFn, BatchHandle, BatchOrchestrator, EachProgressFn
from videomute.export.encoder import (
    EXPORT_PRESET_COMPATIBLE,
    EXPORT_PRESET_HIGHEST,
    EncoderFactory,
    ffmpeg_encoder_factory,
    output_suffix,
)
from videomute.export.jobs import ExportJobManager
from videomute.export.reencode import CompatibilityReencoder
from videomute.ingest.probe import probe_media
from videomute.library.base import AuthorizationStatus, MediaLibrary
from videomute.library.folder import FolderLibrary
from videomute.library.writer import LibraryWriter, SaveCallback, SummaryCallback
from videomute.models import (
    ExportJob,
    FullMute,
    JobStatus,
    MuteRequest,
    PartialMute,
    ProcessOutcome,
    SaveResult,
    SaveSummary,
    SourceAsset,
)
from videomute.mute.composition import build_composition

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]
OutcomeCallback = Callable[[ProcessOutcome], None]


class MutePipeline:
    """Entry point used by the CLI (or any UI) to mute videos and save them.

    Composition and encoder start-up run on the processing pool; library saves
    run on the save pool. Both pools are passed in, or built from settings by
    ``from_settings``.
    """

    def __init__(
        self,
        *,
        manager: ExportJobManager,
        writer: LibraryWriter,
        processing_executor: Executor,
        probe: Callable[..., dict[str, Any]] = probe_media,
        ffprobe_binary: str = "ffprobe",
        fade_seconds: float = 0.1,
        min_mute_seconds: float = 0.1,
        owned_executors: Sequence[Executor] = (),
    ) -> None:
        self.manager = manager
        self.writer = writer
        self._processing = processing_executor
        self._probe = probe
        self._ffprobe_binary = ffprobe_binary
        self._fade_seconds = fade_seconds
        self._min_mute_seconds = min_mute_seconds
        self._owned_executors = list(owned_executors)
        self._batches = BatchOrchestrator(self._process_for_batch)
        self._lock = threading.RLock()
        self._generation = 0
        self._closed = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        library: MediaLibrary | None = None,
        prompt: Callable[[], bool] | None = None,
        encoder_factory: EncoderFactory | None = None,
        probe: Callable[..., dict[str, Any]] = probe_media,
    ) -> "MutePipeline":
        export = settings.export
        manager = ExportJobManager(
            encoder_factory or ffmpeg_encoder_factory(export),
            settings.pipeline.output_dir,
            poll_interval_seconds=settings.pipeline.poll_interval_seconds,
            suffixes={
                EXPORT_PRESET_HIGHEST: output_suffix(EXPORT_PRESET_HIGHEST, export),
                EXPORT_PRESET_COMPATIBLE: output_suffix(EXPORT_PRESET_COMPATIBLE, export),
            },
        )
        processing = ThreadPoolExecutor(
            max_workers=max(settings.pipeline.processing_workers, 1),
            thread_name_prefix="mute-processing",
        )
        saving = ThreadPoolExecutor(
            max_workers=max(settings.pipeline.save_workers, 1),
            thread_name_prefix="mute-save",
        )
        if library is None:
            library = FolderLibrary(
                settings.library.root,
                accepted_suffixes=settings.library.accepted_suffixes,
                default_status=AuthorizationStatus(settings.library.authorization),
                prompt=prompt,
            )
        writer = LibraryWriter(
            library,
            settings.pipeline.scratch_dir,
            reencoder=CompatibilityReencoder(manager, probe=probe, ffprobe_binary=export.ffprobe_binary),
            max_file_bytes=settings.library.max_file_bytes,
            executor=saving,
        )
        return cls(
            manager=manager,
            writer=writer,
            processing_executor=processing,
            probe=probe,
            ffprobe_binary=export.ffprobe_binary,
            fade_seconds=settings.pipeline.fade_seconds,
            min_mute_seconds=settings.pipeline.min_mute_seconds,
            owned_executors=[processing, saving],
        )

    @property
    def is_processing(self) -> bool:
        return bool(self.manager.active_job_ids())

    def process_full_mute(
        self,
        asset: SourceAsset,
        on_progress: ProgressCallback | None = None,
        on_complete: OutcomeCallback | None = None,
    ) -> Future[ProcessOutcome]:
        return self.process_request(FullMute(asset), on_progress, on_complete)

    def process_partial_mute(
        self,
        asset: SourceAsset,
        start_seconds: float,
        end_seconds: float,
        on_progress: ProgressCallback | None = None,
        on_complete: OutcomeCallback | None = None,
    ) -> Future[ProcessOutcome]:
        request = PartialMute(asset, start_seconds=start_seconds, end_seconds=end_seconds)
        return self.process_request(request, on_progress, on_complete)

    def process_request(
        self,
        request: MuteRequest,
        on_progress: ProgressCallback | None = None,
        on_complete: OutcomeCallback | None = None,
    ) -> Future[ProcessOutcome]:
        outcome_future: Future[ProcessOutcome] = Future()

        def _deliver(outcome: ProcessOutcome) -> None:
            if on_complete is not None:
                try:
                    on_complete(outcome)
                except Exception:
                    logger.exception("Completion callback failed for %s", outcome.source_path)
            outcome_future.set_result(outcome)

        with self._lock:
            generation = self._generation
            closed = self._closed
        if closed:
            _deliver(ProcessOutcome(source_path=request.asset.path, error=ExportCancelledError("pipeline is closed")))
            return outcome_future

        self._processing.submit(self._compose_and_export, request, generation, on_progress, _deliver)
        return outcome_future

    def process_batch(
        self,
        items: Iterable[SourceAsset | MuteRequest],
        on_each_progress: EachProgressFn | None = None,
        on_batch_complete: BatchCompleteFn | None = None,
    ) -> BatchHandle:
        requests = [FullMute(item) if isinstance(item, SourceAsset) else item for item in items]
        logger.info("Starting batch of %d video(s)", len(requests))
        return self._batches.run(requests, on_each_progress, on_batch_complete)

    def save_to_library(self, path: str | Path, on_complete: SaveCallback | None = None) -> Future[SaveResult]:
        return self.writer.save_async(path, on_complete)

    def save_many_to_library(
        self,
        paths: Iterable[str | Path],
        on_summary: SummaryCallback | None = None,
    ) -> Future[SaveSummary]:
        return self.writer.save_many(paths, on_summary)

    def cancel_all(self) -> None:
        """Cancel running exports and every request still queued or composing."""

        with self._lock:
            self._generation += 1
        self.manager.cancel_all()
        self.writer.cancel_all()

    def close(self) -> None:
        with self._lock:
            self._closed = True
        self.cancel_all()
        for executor in self._owned_executors:
            executor.shutdown(wait=True)

    def __enter__(self) -> "MutePipeline":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _process_for_batch(
        self,
        request: MuteRequest,
        on_progress: ProgressCallback,
        on_complete: OutcomeCallback,
    ) -> None:
        self.process_request(request, on_progress, on_complete)

    def _compose_and_export(
        self,
        request: MuteRequest,
        generation: int,
        on_progress: ProgressCallback | None,
        deliver: OutcomeCallback,
    ) -> None:
        source_path = request.asset.path
        try:
            composition, ramp_plan = build_composition(
                request,
                probe=self._probe,
                ffprobe_binary=self._ffprobe_binary,
                fade_seconds=self._fade_seconds,
                min_mute_seconds=self._min_mute_seconds,
            )

            def _job_progress(job: ExportJob) -> None:
                if on_progress is not None:
                    on_progress(job.progress)

            def _job_complete(job: ExportJob) -> None:
                if job.status == JobStatus.COMPLETED:
                    deliver(ProcessOutcome(source_path=source_path, output_path=job.output_path))
                else:
                    deliver(ProcessOutcome(source_path=source_path, error=job.error))

            # registered under the lock, so cancel_all either sees this job or this check sees the cancel
            with self._lock:
                if generation != self._generation:
                    raise ExportCancelledError(f"{source_path.name} was cancelled before its export started")
                self.manager.submit(
                    composition,
                    ramp_plan,
                    on_progress=_job_progress,
                    on_complete=_job_complete,
                )
        except MuteError as exc:
            logger.error("Could not process %s: %s", source_path.name, exc)
            deliver(ProcessOutcome(source_path=source_path, error=exc))
        except Exception as exc:
            logger.exception("Unexpected failure while processing %s", source_path.name)
            outcome = ProcessOutcome(source_path=source_path, error=MuteError(str(exc)))
            deliver(outcome)
