"""
FFmpeg-backed encoder used by the export job manager.

The encoder runs ffmpeg with ``-progress pipe:1`` so progress arrives as
``key=value`` lines on stdout. A reader thread folds those lines into a
fractional progress value; the job manager samples it on its own timer.
"""

from __future__ import annotations

import enum
import logging
import shutil
import subprocess
import threading
from collections import deque
from pathlib import Path
from typing import Callable, Protocol

from videomute.config import ExportSettings
from videomute.models import Composition
from videomute.mute.ramp import VolumeRampPlan

logger = logging.getLogger(__name__)

EXPORT_PRESET_HIGHEST = "highest"
EXPORT_PRESET_COMPATIBLE = "compatible"
PRESETS = {EXPORT_PRESET_HIGHEST, EXPORT_PRESET_COMPATIBLE}

STDERR_TAIL_LINES = 20


class EncoderState(str, enum.Enum):
    EXPORTING = "exporting"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


FinishCallback = Callable[[EncoderState, "str | None"], None]


class Encoder(Protocol):
    """What the job manager needs from an asynchronous encoder."""

    output_path: Path

    @property
    def progress(self) -> float: ...

    def start(self, on_finish: FinishCallback) -> None: ...

    def cancel(self) -> None: ...


EncoderFactory = Callable[[Composition, "VolumeRampPlan | None", Path, str], Encoder]


def output_suffix(preset: str, settings: ExportSettings) -> str:
    if preset == EXPORT_PRESET_COMPATIBLE:
        return f".{settings.compatible_container.lstrip('.')}"
    return f".{settings.container.lstrip('.')}"


def build_ffmpeg_command(
    composition: Composition,
    ramp_plan: VolumeRampPlan | None,
    output_path: Path,
    preset: str,
    settings: ExportSettings,
) -> list[str]:
    """Build the ffmpeg command line that renders ``composition`` to ``output_path``."""

    if preset not in PRESETS:
        raise ValueError(f"Unsupported export preset: {preset}")
    if ramp_plan is not None and not composition.has_audio:
        raise ValueError("A volume ramp needs an audio track in the composition.")

    command = [
        settings.ffmpeg_binary,
        "-hide_banner",
        "-nostdin",
        "-v",
        "error",
        # refuse to overwrite; output names are unique per job
        "-n",
        "-i",
        str(composition.source_path),
        *composition.ffmpeg_map_args(),
    ]

    if preset == EXPORT_PRESET_HIGHEST:
        command.extend(["-c:v", "copy"])
    else:
        command.extend(
            [
                "-c:v",
                settings.compatible_video_codec,
                "-crf",
                str(settings.compatible_crf),
                "-preset",
                "medium",
                "-pix_fmt",
                "yuv420p",
            ]
        )

    if not composition.has_audio:
        command.append("-an")
    elif ramp_plan is not None:
        command.extend(
            [
                "-af",
                f"volume='{ramp_plan.to_volume_expression()}':eval=frame",
                "-c:a",
                settings.audio_codec,
                "-b:a",
                settings.audio_bitrate,
            ]
        )
    elif preset == EXPORT_PRESET_COMPATIBLE:
        command.extend(["-c:a", "aac", "-b:a", settings.compatible_audio_bitrate])
    else:
        command.extend(["-c:a", "copy"])

    if settings.faststart:
        command.extend(["-movflags", "+faststart"])

    command.extend(["-progress", "pipe:1", "-nostats", str(output_path)])
    return command


def parse_progress_seconds(line: str) -> float | None:
    """Extract the encoded position from one ``-progress`` line."""

    key, _, value = line.strip().partition("=")
    if not value or value == "N/A":
        return None
    try:
        if key == "out_time_us":
            return int(value) / 1_000_000
        # ffmpeg reports microseconds under out_time_ms as well
        if key == "out_time_ms":
            return int(value) / 1_000_000
        if key == "out_time":
            hours, minutes, seconds = value.split(":")
            return int(hours) * 3600 + int(minutes) * 60 + float(seconds)
    except ValueError:
        return None
    return None


class FfmpegEncoder:
    """Run one ffmpeg process and expose its progress as a fraction in ``[0, 1]``."""

    def __init__(
        self,
        composition: Composition,
        ramp_plan: VolumeRampPlan | None,
        output_path: Path,
        preset: str,
        settings: ExportSettings,
    ) -> None:
        if shutil.which(settings.ffmpeg_binary) is None:
            raise RuntimeError(
                "ffmpeg executable was not found. Install FFmpeg so ffmpeg is available on PATH."
            )
        self.output_path = output_path
        self._duration = composition.duration_seconds
        self._command = build_ffmpeg_command(composition, ramp_plan, output_path, preset, settings)
        self._grace_seconds = settings.terminate_grace_seconds
        self._process: subprocess.Popen[str] | None = None
        self._progress = 0.0
        self._cancelled = threading.Event()
        self._stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        self._lock = threading.Lock()
        self._stderr_thread: threading.Thread | None = None

    @property
    def command(self) -> list[str]:
        return list(self._command)

    @property
    def progress(self) -> float:
        with self._lock:
            return self._progress

    def start(self, on_finish: FinishCallback) -> None:
        try:
            process = self._spawn()
        except OSError as exc:
            on_finish(EncoderState.FAILED, f"ffmpeg failed to start: {exc}")
            return
        if process is None:
            logger.info("Export to %s was cancelled before ffmpeg started", self.output_path.name)
            on_finish(EncoderState.CANCELLED, None)
            return

        self._stderr_thread = threading.Thread(
            target=self._drain_stderr,
            args=(process,),
            name=f"ffmpeg-stderr-{process.pid}",
            daemon=True,
        )
        self._stderr_thread.start()
        threading.Thread(
            target=self._watch,
            args=(process, on_finish),
            name=f"ffmpeg-watch-{process.pid}",
            daemon=True,
        ).start()

    def _spawn(self) -> subprocess.Popen[str] | None:
        # cancel() takes the same lock, so it either sees the process or stops the spawn
        with self._lock:
            if self._cancelled.is_set():
                return None
            logger.info("Starting ffmpeg: %s", " ".join(self._command))
            self._process = subprocess.Popen(
                self._command,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
            return self._process

    def cancel(self) -> None:
        with self._lock:
            self._cancelled.set()
            process = self._process
        if process is None or process.poll() is not None:
            return
        logger.info("Sending SIGTERM to ffmpeg PID %s", process.pid)
        try:
            process.terminate()
        except ProcessLookupError:
            return
        timer = threading.Timer(self._grace_seconds, self._kill_if_alive, args=(process,))
        timer.daemon = True
        timer.start()

    def _kill_if_alive(self, process: subprocess.Popen[str]) -> None:
        if process.poll() is None:
            logger.warning("ffmpeg PID %s did not terminate, sending SIGKILL", process.pid)
            try:
                process.kill()
            except ProcessLookupError:
                pass

    def _watch(self, process: subprocess.Popen[str], on_finish: FinishCallback) -> None:
        for line in process.stdout or ():
            position = parse_progress_seconds(line)
            if position is None or self._duration <= 0:
                continue
            fraction = min(max(position / self._duration, 0.0), 1.0)
            with self._lock:
                self._progress = max(self._progress, fraction)

        exit_code = process.wait()
        if self._stderr_thread is not None:
            self._stderr_thread.join(timeout=1.0)
        logger.info("ffmpeg PID %s exited with code %s", process.pid, exit_code)

        if self._cancelled.is_set():
            on_finish(EncoderState.CANCELLED, None)
        elif exit_code == 0 and self.output_path.is_file():
            on_finish(EncoderState.COMPLETED, None)
        elif exit_code == 0:
            on_finish(EncoderState.FAILED, "ffmpeg exited cleanly but did not create the output file")
        else:
            stderr = "\n".join(self._stderr_tail).strip()
            on_finish(EncoderState.FAILED, stderr or f"ffmpeg exited with code {exit_code}")

    def _drain_stderr(self, process: subprocess.Popen[str]) -> None:
        for line in process.stderr or ():
            stripped = line.strip()
            if stripped:
                self._stderr_tail.append(stripped)


def ffmpeg_encoder_factory(settings: ExportSettings) -> EncoderFactory:
    def _factory(
        composition: Composition,
        ramp_plan: VolumeRampPlan | None,
        output_path: Path,
        preset: str,
    ) -> Encoder:
        return FfmpegEncoder(composition, ramp_plan, output_path, preset, settings)

    return _factory
