from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

DEFAULT_CONFIG_PATH = Path("configs/default.yaml")
ENV_PREFIX = "VIDEO_MUTE_"


class PipelineSettings(BaseModel):
    output_dir: Path = Path("data/outputs")
    scratch_dir: Path = Path("data/scratch")
    fade_seconds: float = 0.1
    min_mute_seconds: float = 0.1
    poll_interval_seconds: float = 0.1
    processing_workers: int = 2
    save_workers: int = 2


class ExportSettings(BaseModel):
    ffmpeg_binary: str = "ffmpeg"
    ffprobe_binary: str = "ffprobe"
    container: str = "mov"
    audio_codec: str = "aac"
    audio_bitrate: str = "320k"
    faststart: bool = True
    compatible_container: str = "mp4"
    compatible_video_codec: str = "libx264"
    compatible_crf: int = 18
    compatible_audio_bitrate: str = "192k"
    terminate_grace_seconds: float = 5.0


class LibrarySettings(BaseModel):
    root: Path = Path("data/library")
    max_file_bytes: int = 500 * 1024 * 1024
    accepted_suffixes: list[str] = Field(default_factory=lambda: [".mp4", ".mov", ".m4v"])
    authorization: str = "not_determined"


class BatchSettings(BaseModel):
    store_path: Path = Path("data/batches.json")


class LoggingSettings(BaseModel):
    level: str = "INFO"


class Settings(BaseModel):
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    export: ExportSettings = Field(default_factory=ExportSettings)
    library: LibrarySettings = Field(default_factory=LibrarySettings)
    batches: BatchSettings = Field(default_factory=BatchSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load typed settings from YAML with environment-variable overrides."""

    resolved_path = Path(
        config_path
        or os.getenv(f"{ENV_PREFIX}CONFIG")
        or DEFAULT_CONFIG_PATH
    )
    raw_config: dict[str, Any] = {}
    if resolved_path.exists():
        raw_config = yaml.safe_load(resolved_path.read_text(encoding="utf-8")) or {}
    data = Settings.model_validate(raw_config).model_dump(mode="python")

    for key, raw_value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue

        suffix = key[len(ENV_PREFIX) :]
        if suffix == "CONFIG":
            continue

        path = [part.lower() for part in suffix.split("__")]
        _apply_override(data, path, raw_value)

    return Settings.model_validate(data)


def _apply_override(data: dict[str, Any], path: list[str], raw_value: str) -> None:
    current: Any = data
    for segment in path[:-1]:
        if not isinstance(current, dict) or segment not in current:
            return
        current = current[segment]

    if not isinstance(current, dict):
        return

    final_key = path[-1]
    if final_key not in current:
        return

    current[final_key] = _coerce_value(raw_value, current[final_key])


def _coerce_value(raw_value: str, existing_value: Any) -> Any:
    if isinstance(existing_value, bool):
        return raw_value.lower() in {"1", "true", "yes", "on"}
    if isinstance(existing_value, int) and not isinstance(existing_value, bool):
        return int(raw_value)
    if isinstance(existing_value, float):
        return float(raw_value)
    if isinstance(existing_value, list | dict):
        return json.loads(raw_value)
    if isinstance(existing_value, Path):
        return Path(raw_value)
    return raw_value
