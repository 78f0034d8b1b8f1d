from __future__ import annotations

import logging
import threading
from functools import partial
from typing import Callable, Sequence

from videomute.errors import ExportSetupError, MuteError
from videomute.models import BatchResult, MuteRequest, ProcessOutcome

logger = logging.getLogger(__name__)

ProgressFn = Callable[[float], None]
OutcomeFn = Callable[[ProcessOutcome], None]
ProcessFn = Callable[[MuteRequest, ProgressFn, OutcomeFn], None]
EachProgressFn = Callable[[int, float], None]
BatchCompleteFn = Callable[[BatchResult], None]


class CountDownLatch:
    """Join barrier: fires ``on_zero`` once, after ``count`` calls to ``count_down``."""

    def __init__(self, count: int, on_zero: Callable[[], None] | None = None) -> None:
        if count < 0:
            raise ValueError("count must be >= 0")
        self._count = count
        self._on_zero = on_zero
        self._lock = threading.Lock()
        self._fired = False
        self._released = threading.Event()

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    def count_down(self) -> None:
        with self._lock:
            if self._count == 0:
                return
            self._count -= 1
            fire = self._count == 0 and not self._fired
            self._fired = self._fired or fire
        if fire:
            self._release()

    def release_if_empty(self) -> None:
        with self._lock:
            fire = self._count == 0 and not self._fired
            self._fired = self._fired or fire
        if fire:
            self._release()

    def wait(self, timeout: float | None = None) -> bool:
        return self._released.wait(timeout)

    def _release(self) -> None:
        try:
            if self._on_zero is not None:
                self._on_zero()
        finally:
            self._released.set()


class BatchHandle:
    """Caller-side view of a running batch."""

    def __init__(self, size: int, result: BatchResult, latch: CountDownLatch) -> None:
        self.size = size
        self.result = result
        self._latch = latch

    @property
    def done(self) -> bool:
        return self._latch.wait(0)

    def wait(self, timeout: float | None = None) -> BatchResult | None:
        if not self._latch.wait(timeout):
            return None
        return self.result


class BatchOrchestrator:
    """Fan out one export per request and join on all of them.

    No concurrency cap is applied and a failed job never aborts the others;
    jobs may finish in any order.
    """

    def __init__(self, process: ProcessFn) -> None:
        self._process = process

    def run(
        self,
        requests: Sequence[MuteRequest],
        on_each_progress: EachProgressFn | None = None,
        on_batch_complete: BatchCompleteFn | None = None,
    ) -> BatchHandle:
        result = BatchResult()
        lock = threading.Lock()

        def _batch_complete() -> None:
            logger.info(
                "Batch finished: %d succeeded, %d failed",
                result.succeeded_count,
                result.failed_count,
            )
            if on_batch_complete is not None:
                on_batch_complete(result)

        latch = CountDownLatch(len(requests), _batch_complete)
        handle = BatchHandle(len(requests), result, latch)

        def _on_complete(outcome: ProcessOutcome) -> None:
            with lock:
                if outcome.ok and outcome.output_path is not None:
                    result.succeeded_count += 1
                    result.output_paths.append(outcome.output_path)
                else:
                    result.failed_count += 1
                    result.errors.append(outcome)
            latch.count_down()

        def _on_progress(index: int, fraction: float) -> None:
            if on_each_progress is not None:
                on_each_progress(index, fraction)

        for index, request in enumerate(requests):
            try:
                self._process(request, partial(_on_progress, index), _on_complete)
            except Exception as exc:
                logger.exception("Batch item %d could not be started", index)
                error = exc if isinstance(exc, MuteError) else ExportSetupError(str(exc))
                _on_complete(ProcessOutcome(source_path=request.asset.path, error=error))

        latch.release_if_empty()
        return handle
