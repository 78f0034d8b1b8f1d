from __future__ import annotations

import threading
from pathlib import Path

from videomute.errors import EncodeFailedError, ExportSetupError
from videomute.export.batch import BatchOrchestrator, CountDownLatch
from videomute.models import BatchResult, FullMute, ProcessOutcome, SourceAsset


def _requests(tmp_path: Path, count: int) -> list[FullMute]:
    return [FullMute(SourceAsset(path=tmp_path / f"clip{index}.mov", duration_seconds=5.0)) for index in range(count)]


class _DeferredProcess:
    """Collects started items so the test decides when and how each one finishes."""

    def __init__(self) -> None:
        self.pending: list[tuple[FullMute, object, object]] = []

    def __call__(self, request, on_progress, on_complete) -> None:
        self.pending.append((request, on_progress, on_complete))

    def succeed(self, index: int) -> None:
        request, on_progress, on_complete = self.pending[index]
        on_progress(1.0)
        on_complete(ProcessOutcome(source_path=request.asset.path, output_path=request.asset.path.with_suffix(".out.mov")))

    def fail(self, index: int) -> None:
        request, _, on_complete = self.pending[index]
        on_complete(ProcessOutcome(source_path=request.asset.path, error=EncodeFailedError("boom")))


def test_batch_counts_successes_and_failures_in_any_order(tmp_path: Path) -> None:
    process = _DeferredProcess()
    finished: list[BatchResult] = []
    progress: list[tuple[int, float]] = []

    handle = BatchOrchestrator(process).run(
        _requests(tmp_path, 4),
        on_each_progress=lambda index, fraction: progress.append((index, fraction)),
        on_batch_complete=finished.append,
    )

    assert len(process.pending) == 4
    assert not handle.done

    process.fail(3)
    process.succeed(2)
    process.succeed(1)
    assert finished == []
    process.fail(0)

    assert handle.done
    result = handle.wait(1.0)
    assert result is not None
    assert finished == [result]
    assert result.succeeded_count == 2
    assert result.failed_count == 2
    assert sorted(path.name for path in result.output_paths) == ["clip1.out.mov", "clip2.out.mov"]
    assert sorted(outcome.source_path.name for outcome in result.errors) == ["clip0.mov", "clip3.mov"]
    assert sorted(progress) == [(1, 1.0), (2, 1.0)]


def test_empty_batch_completes_immediately(tmp_path: Path) -> None:
    finished: list[BatchResult] = []

    handle = BatchOrchestrator(_DeferredProcess()).run([], on_batch_complete=finished.append)

    assert handle.done
    assert finished == [BatchResult()]


def test_item_that_cannot_start_counts_as_a_failure(tmp_path: Path) -> None:
    calls = {"count": 0}

    def _process(request, on_progress, on_complete) -> None:
        calls["count"] += 1
        if calls["count"] == 1:
            raise RuntimeError("pool is shut down")
        on_complete(ProcessOutcome(source_path=request.asset.path, output_path=tmp_path / "ok.mov"))

    handle = BatchOrchestrator(_process).run(_requests(tmp_path, 2))

    result = handle.wait(1.0)
    assert result is not None
    assert result.succeeded_count == 1
    assert result.failed_count == 1
    assert isinstance(result.errors[0].error, ExportSetupError)


def test_batch_joins_outcomes_from_worker_threads(tmp_path: Path) -> None:
    def _process(request, on_progress, on_complete) -> None:
        def _work() -> None:
            on_progress(0.5)
            on_complete(ProcessOutcome(source_path=request.asset.path, output_path=request.asset.path))

        threading.Thread(target=_work).start()

    handle = BatchOrchestrator(_process).run(_requests(tmp_path, 25))

    result = handle.wait(5.0)
    assert result is not None
    assert result.succeeded_count == 25
    assert result.failed_count == 0


def test_latch_fires_once() -> None:
    fired: list[int] = []
    latch = CountDownLatch(2, lambda: fired.append(1))

    latch.release_if_empty()
    latch.count_down()
    assert fired == []
    latch.count_down()
    latch.count_down()
    latch.release_if_empty()

    assert fired == [1]
    assert latch.wait(0)
    assert latch.count == 0
