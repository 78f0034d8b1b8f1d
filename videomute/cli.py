from __future__ import annotations

import json
import logging
from pathlib import Path
from time import perf_counter
from typing import Any, Callable, TypeVar

import typer

from videomute.batches.store import BatchStore
from videomute.config import Settings, load_settings
from videomute.errors import MuteError, describe_error
from videomute.ingest.importer import import_video, load_asset
from videomute.ingest.probe import probe_media
from videomute.logging_config import configure_logging
from videomute.models import ProcessOutcome, SaveResult, SourceAsset
from videomute.mute.ramp import build_ramp_plan
from videomute.pipeline import MutePipeline

app = typer.Typer(help="Mute all or part of a video's audio and save the result to a media library.")
config_app = typer.Typer(help="Configuration commands.")
ingest_app = typer.Typer(help="Import and inspect source videos.")
batch_app = typer.Typer(help="Run and manage batches of full mutes.")

app.add_typer(config_app, name="config")
app.add_typer(ingest_app, name="ingest")
app.add_typer(batch_app, name="batch")

logger = logging.getLogger(__name__)

T = TypeVar("T")

CLI_ERRORS = (MuteError, RuntimeError, ValueError, FileNotFoundError, KeyError)


def _config_option() -> Any:
    return typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="VIDEO_MUTE_CONFIG",
        help="Path to YAML configuration file.",
    )


def _bootstrap(config_path: Path) -> Settings:
    settings = load_settings(config_path)
    configure_logging(settings.logging)
    logger.debug("Loaded runtime settings from %s", config_path)
    return settings


def _confirm_library_access() -> bool:
    return typer.confirm("Allow videomute to add videos to the media library?", default=False, err=True)


def _build_pipeline(settings: Settings) -> MutePipeline:
    return MutePipeline.from_settings(settings, prompt=_confirm_library_access)


def _load_source(video_path: str, settings: Settings) -> SourceAsset:
    return load_asset(video_path, ffprobe_binary=settings.export.ffprobe_binary)


def _run_with_progress(label: str, work: Callable[[], T]) -> T:
    typer.echo(f"{label}...", err=True)
    started_at = perf_counter()
    try:
        result = work()
    except Exception:
        elapsed = perf_counter() - started_at
        typer.echo(f"{label} failed after {elapsed:.1f}s", err=True)
        raise
    elapsed = perf_counter() - started_at
    typer.echo(f"{label} done in {elapsed:.1f}s", err=True)
    return result


def _progress_printer(label: str) -> Callable[[float], None]:
    def _print(fraction: float) -> None:
        typer.echo(f"{label} {fraction:.0%}", err=True)

    return _print


def _error_text(error: BaseException | None) -> str:
    message = describe_error(error)
    detail = getattr(error, "detail", None)
    return f"{message}: {detail}" if detail and detail != message else message


def _fail(exc: BaseException) -> typer.Exit:
    if isinstance(exc, MuteError):
        text = _error_text(exc)
    elif isinstance(exc, KeyError) and exc.args:
        text = str(exc.args[0])
    else:
        text = str(exc)
    logger.error("Command failed: %s", text)
    typer.echo(f"Error: {text}", err=True)
    return typer.Exit(code=1)


def _save_payload(result: SaveResult) -> dict[str, Any]:
    return {
        "path": str(result.path),
        "ok": result.ok,
        "asset_id": result.asset_id,
        "used_fallback": result.used_fallback,
        "message": _error_text(result.error) if result.error else None,
    }


def _finish_mute(pipeline: MutePipeline, outcome: ProcessOutcome, save: bool) -> dict[str, Any]:
    if not outcome.ok or outcome.output_path is None:
        raise outcome.error or MuteError()

    payload: dict[str, Any] = {
        "status": "ok",
        "source_path": str(outcome.source_path),
        "output_path": str(outcome.output_path),
    }
    if save:
        result = pipeline.save_to_library(outcome.output_path).result()
        payload["library"] = _save_payload(result)
        if not result.ok:
            raise result.error or MuteError()
    return payload


@config_app.command("show")
def show_config(config_path: Path = _config_option()) -> None:
    """Print resolved runtime configuration."""

    settings = _bootstrap(config_path)
    typer.echo(json.dumps(settings.model_dump(mode="json"), indent=2))


@ingest_app.command("probe")
def probe(video_path: str, config_path: Path = _config_option()) -> None:
    """Run ffprobe on a video and print the normalized metadata as JSON."""

    settings = _bootstrap(config_path)
    try:
        result = probe_media(video_path, ffprobe_binary=settings.export.ffprobe_binary)
    except CLI_ERRORS as exc:
        raise _fail(exc) from exc
    logger.info("Probe completed for %s", video_path)
    typer.echo(json.dumps(result, indent=2))


@ingest_app.command("import")
def ingest_import(video_path: str, config_path: Path = _config_option()) -> None:
    """Copy a video into scratch storage and print its working path and duration."""

    settings = _bootstrap(config_path)
    try:
        asset = import_video(
            video_path,
            settings.pipeline.scratch_dir,
            ffprobe_binary=settings.export.ffprobe_binary,
        )
    except CLI_ERRORS as exc:
        raise _fail(exc) from exc
    typer.echo(json.dumps({"path": str(asset.path), "duration_seconds": asset.duration_seconds}, indent=2))


@app.command("mute")
def mute(
    video_path: str,
    save: bool = typer.Option(False, "--save", help="Save the muted video to the media library."),
    config_path: Path = _config_option(),
) -> None:
    """Remove the whole audio track from a video."""

    settings = _bootstrap(config_path)
    try:
        asset = _load_source(video_path, settings)
        with _build_pipeline(settings) as pipeline:
            outcome = _run_with_progress(
                "Muting video",
                lambda: pipeline.process_full_mute(asset, _progress_printer("Muting")).result(),
            )
            payload = _finish_mute(pipeline, outcome, save)
    except CLI_ERRORS as exc:
        raise _fail(exc) from exc
    typer.echo(json.dumps(payload, indent=2))


@app.command("mute-segment")
def mute_segment(
    video_path: str,
    start: float = typer.Option(..., "--start", help="Start of the silenced range in seconds."),
    end: float = typer.Option(..., "--end", help="End of the silenced range in seconds."),
    save: bool = typer.Option(False, "--save", help="Save the muted video to the media library."),
    config_path: Path = _config_option(),
) -> None:
    """Silence one time range of a video's audio, with short fades on either side."""

    settings = _bootstrap(config_path)
    try:
        asset = _load_source(video_path, settings)
        with _build_pipeline(settings) as pipeline:
            outcome = _run_with_progress(
                f"Muting {start:.2f}s-{end:.2f}s",
                lambda: pipeline.process_partial_mute(
                    asset,
                    start,
                    end,
                    _progress_printer("Muting"),
                ).result(),
            )
            payload = _finish_mute(pipeline, outcome, save)
            payload["volume_ramp"] = build_ramp_plan(
                asset.duration_seconds,
                start,
                end,
                fade_seconds=settings.pipeline.fade_seconds,
            ).to_dict()
    except CLI_ERRORS as exc:
        raise _fail(exc) from exc
    typer.echo(json.dumps(payload, indent=2))


@batch_app.command("run")
def batch_run(
    video_paths: list[str] = typer.Argument(..., help="Videos to mute."),
    name: str | None = typer.Option(None, "--name", help="Batch name. Defaults to 'Batch N'."),
    save: bool = typer.Option(False, "--save", help="Save every muted video to the media library."),
    config_path: Path = _config_option(),
) -> None:
    """Fully mute every video in one batch and record the outputs."""

    settings = _bootstrap(config_path)
    store = BatchStore(settings.batches.store_path)
    total = len(video_paths)

    def _each_progress(index: int, fraction: float) -> None:
        typer.echo(f"[{index + 1}/{total}] {fraction:.0%}", err=True)

    try:
        assets = [_load_source(path, settings) for path in video_paths]
        batch_id = store.create_batch(name, total)
        with _build_pipeline(settings) as pipeline:
            handle = pipeline.process_batch(assets, _each_progress)
            result = _run_with_progress(f"Muting {total} video(s)", handle.wait)
            if result is None:
                raise RuntimeError("Batch did not finish")
            store.append_output_paths(batch_id, list(result.output_paths))
            payload: dict[str, Any] = {"batch_id": batch_id, **result.to_dict()}
            if save and result.output_paths:
                summary = pipeline.save_many_to_library(result.output_paths).result()
                payload["library"] = summary.to_dict()
    except CLI_ERRORS as exc:
        raise _fail(exc) from exc

    typer.echo(json.dumps(payload, indent=2))
    if result.failed_count:
        typer.echo(f"Error: {result.failed_count} of {total} video(s) failed", err=True)
        raise typer.Exit(code=1)


@batch_app.command("list")
def batch_list(config_path: Path = _config_option()) -> None:
    """List recorded batches, newest first."""

    settings = _bootstrap(config_path)
    try:
        records = BatchStore(settings.batches.store_path).list_batches()
    except CLI_ERRORS as exc:
        raise _fail(exc) from exc
    typer.echo(
        json.dumps(
            [
                {
                    "batch_id": record.batch_id,
                    "name": record.name,
                    "video_count": record.video_count,
                    "created_at": record.created_at,
                    "output_paths": record.output_paths,
                }
                for record in records
            ],
            indent=2,
        )
    )


@batch_app.command("delete")
def batch_delete(batch_id: str, config_path: Path = _config_option()) -> None:
    """Delete a batch record and its output files."""

    settings = _bootstrap(config_path)
    try:
        leftovers = BatchStore(settings.batches.store_path).delete_batch(batch_id)
    except CLI_ERRORS as exc:
        raise _fail(exc) from exc
    typer.echo(json.dumps({"batch_id": batch_id, "deleted": True, "leftover_paths": leftovers}, indent=2))


@app.command("save")
def save(video_path: str, config_path: Path = _config_option()) -> None:
    """Save one video file to the media library."""

    settings = _bootstrap(config_path)
    try:
        with _build_pipeline(settings) as pipeline:
            result = pipeline.save_to_library(video_path).result()
    except CLI_ERRORS as exc:
        raise _fail(exc) from exc

    typer.echo(json.dumps(_save_payload(result), indent=2))
    if not result.ok:
        raise _fail(result.error or MuteError())


@app.command("save-all")
def save_all(
    video_paths: list[str] = typer.Argument(..., help="Videos to save."),
    config_path: Path = _config_option(),
) -> None:
    """Save several video files to the media library and report counts."""

    settings = _bootstrap(config_path)
    try:
        with _build_pipeline(settings) as pipeline:
            summary = pipeline.save_many_to_library(video_paths).result()
    except CLI_ERRORS as exc:
        raise _fail(exc) from exc

    typer.echo(json.dumps(summary.to_dict(), indent=2))
    if summary.failed_count:
        typer.echo(f"Error: {summary.failed_count} of {len(video_paths)} video(s) could not be saved", err=True)
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
