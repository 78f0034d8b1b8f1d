"""
Write exported videos into a media library.

One save runs: dedup guard, preflight (exists / readable / size ceiling),
permission gate, safe scratch copy, commit, and at most one fallback that
re-encodes to a compatible format and commits again. The dedup entry and
every temporary file are released on all exit paths.
"""

from __future__ import annotations

import logging
import os
import shutil
import threading
import uuid
from concurrent.futures import Executor, Future
from pathlib import Path
from typing import Callable, Iterable

from videomute.errors import (
    AccessDeniedError,
    AccessPendingError,
    CommitFailedError,
    DuplicateOperationError,
    FallbackExhaustedError,
    FileTooLargeError,
    SaveCancelledError,
    SaveError,
    SaveFileNotFoundError,
    UnsupportedFormatError,
)
from videomute.export.batch import CountDownLatch
from videomute.library.base import (
    GRANTED_STATUSES,
    REFUSED_STATUSES,
    AuthorizationStatus,
    MediaLibrary,
)
from videomute.models import SaveOperation, SaveResult, SaveSummary

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_BYTES = 500 * 1024 * 1024

Reencoder = Callable[[Path], Path]
SaveCallback = Callable[[SaveResult], None]
SummaryCallback = Callable[[SaveSummary], None]


class LibraryWriter:
    def __init__(
        self,
        library: MediaLibrary,
        scratch_dir: str | Path,
        *,
        reencoder: Reencoder | None = None,
        max_file_bytes: int = DEFAULT_MAX_FILE_BYTES,
        executor: Executor | None = None,
    ) -> None:
        self._library = library
        self._scratch_dir = Path(scratch_dir).expanduser().resolve()
        self._reencoder = reencoder
        self._max_file_bytes = max_file_bytes
        self._executor = executor
        self._lock = threading.Lock()
        self._operations: dict[str, SaveOperation] = {}
        self._generation = 0

    def active_operations(self) -> list[SaveOperation]:
        with self._lock:
            return list(self._operations.values())

    def save(self, path: str | Path) -> SaveResult:
        """Save one file into the library. Failures are returned, not raised."""

        source = Path(path).expanduser().resolve()
        operation = self._begin(source)
        if operation is None:
            logger.warning("Save already in progress for %s", source)
            return SaveResult(path=source, error=DuplicateOperationError(str(source)))

        try:
            result = self._save(source)
        finally:
            self._end(operation)

        if result.ok:
            logger.info("Saved %s to library as %s", source.name, result.asset_id)
        else:
            logger.error("Failed to save %s: %s", source.name, result.error)
        return result

    def save_async(self, path: str | Path, on_complete: SaveCallback | None = None) -> Future[SaveResult]:
        """Run ``save`` on the save pool and report through ``on_complete``."""

        with self._lock:
            generation = self._generation

        def _run() -> SaveResult:
            if generation != self._generation:
                result = SaveResult(path=Path(path), error=SaveCancelledError(str(path)))
            else:
                try:
                    result = self.save(path)
                except Exception as exc:
                    logger.exception("Save of %s failed unexpectedly", path)
                    result = SaveResult(path=Path(path), error=CommitFailedError(str(exc)))
            if on_complete is not None:
                try:
                    on_complete(result)
                except Exception:
                    logger.exception("Save callback failed for %s", path)
            return result

        if self._executor is not None:
            return self._executor.submit(_run)

        future: Future[SaveResult] = Future()
        future.set_result(_run())
        return future

    def save_many(
        self,
        paths: Iterable[str | Path],
        on_summary: SummaryCallback | None = None,
    ) -> Future[SaveSummary]:
        """Save every path independently and summarise the outcome.

        One item's failure never blocks or cancels another's save.
        """

        path_list = list(paths)
        summary = SaveSummary()
        summary_future: Future[SaveSummary] = Future()
        lock = threading.Lock()

        def _all_done() -> None:
            logger.info("Saved %d video(s), %d failed", summary.saved_count, summary.failed_count)
            if on_summary is not None:
                on_summary(summary)
            summary_future.set_result(summary)

        latch = CountDownLatch(len(path_list), _all_done)

        def _record(result: SaveResult) -> None:
            with lock:
                summary.results.append(result)
                if result.ok:
                    summary.saved_count += 1
                else:
                    summary.failed_count += 1
            latch.count_down()

        for path in path_list:
            self.save_async(path, _record)
        latch.release_if_empty()
        return summary_future

    def cancel_all(self) -> None:
        """Drop saves still queued on the save pool.

        Saves that already started run to completion and keep their dedup
        entries until they finish.
        """

        with self._lock:
            self._generation += 1

    def _begin(self, source: Path) -> SaveOperation | None:
        with self._lock:
            if any(operation.path == source for operation in self._operations.values()):
                return None
            operation = SaveOperation(operation_id=uuid.uuid4().hex, path=source)
            self._operations[operation.operation_id] = operation
            return operation

    def _end(self, operation: SaveOperation) -> None:
        with self._lock:
            self._operations.pop(operation.operation_id, None)

    def _save(self, source: Path) -> SaveResult:
        try:
            return self._run_steps(source)
        except Exception as exc:
            # libraries and prompts may raise anything; a save still returns a result
            logger.exception("Unexpected failure while saving %s", source.name)
            return SaveResult(path=source, error=CommitFailedError(str(exc)))

    def _run_steps(self, source: Path) -> SaveResult:
        try:
            # cheap checks first: no permission prompt for a file we would reject anyway
            self._preflight(source)
            self._authorize()
        except SaveError as exc:
            return SaveResult(path=source, error=exc)

        try:
            asset_id = self._commit(source)
        except UnsupportedFormatError as exc:
            if self._reencoder is None:
                return SaveResult(path=source, error=exc)
            return self._save_with_fallback(source, self._reencoder, exc)
        except SaveError as exc:
            return SaveResult(path=source, error=exc)
        return SaveResult(path=source, asset_id=asset_id)

    def _preflight(self, source: Path) -> None:
        if not source.is_file():
            raise SaveFileNotFoundError(f"Video file not found: {source}")
        if not os.access(source, os.R_OK):
            raise SaveFileNotFoundError(f"Cannot access video file: {source}")
        try:
            size = source.stat().st_size
        except OSError as exc:
            raise SaveFileNotFoundError(f"Cannot access video file: {source}") from exc
        if size > self._max_file_bytes:
            raise FileTooLargeError(
                f"{source.name} is {size} bytes; the limit is {self._max_file_bytes} bytes"
            )

    def _authorize(self) -> None:
        status = self._library.authorization_status()
        if status == AuthorizationStatus.NOT_DETERMINED:
            status = self._library.request_authorization()
        if status in GRANTED_STATUSES:
            return
        if status in REFUSED_STATUSES:
            raise AccessDeniedError(f"Library authorization is {status.value}")
        raise AccessPendingError("Library authorization has not been granted yet")

    def _commit(self, path: Path) -> str:
        staged = self._safe_copy(path)
        try:
            return self._library.create_asset_from_file(staged)
        except OSError as exc:
            raise CommitFailedError(str(exc)) from exc
        finally:
            if staged != path:
                _remove_quietly(staged)

    def _safe_copy(self, source: Path) -> Path:
        target = self._scratch_dir / f"save_{uuid.uuid4().hex}{source.suffix}"
        try:
            self._scratch_dir.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)
            if not os.access(target, os.R_OK):
                raise OSError(f"scratch copy {target} is not readable")
        except OSError as exc:
            logger.warning("Could not stage %s in scratch (%s); committing the original", source.name, exc)
            _remove_quietly(target)
            return source
        return target

    def _save_with_fallback(self, source: Path, reencoder: Reencoder, cause: UnsupportedFormatError) -> SaveResult:
        logger.warning("Library rejected %s (%s); re-encoding to a compatible format", source.name, cause)

        reencoded: Path | None = None
        try:
            reencoded = reencoder(source)
            asset_id = self._commit(reencoded)
        except Exception as exc:
            return SaveResult(
                path=source,
                error=FallbackExhaustedError(f"{cause}; after re-encode: {exc}"),
                used_fallback=True,
            )
        finally:
            if reencoded is not None:
                _remove_quietly(reencoded)
        return SaveResult(path=source, asset_id=asset_id, used_fallback=True)


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Failed to clean up temporary file %s: %s", path, exc)
