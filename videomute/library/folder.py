from __future__ import annotations

import json
import logging
import os
import shutil
import threading
import uuid
from pathlib import Path
from typing import Callable, Iterable

from videomute.errors import CommitFailedError, UnsupportedFormatError
from videomute.library.base import AuthorizationStatus

logger = logging.getLogger(__name__)

AUTHORIZATION_FILE = ".authorization.json"
INCOMING_DIR = ".incoming"
DEFAULT_ACCEPTED_SUFFIXES = (".mp4", ".mov", ".m4v")


class FolderLibrary:
    """Media library backed by a directory.

    Authorization is persisted next to the assets, so an answer given once
    (granted or denied) sticks until the file is removed. Assets are staged in
    a hidden incoming directory and renamed into place, which keeps every
    commit atomic.
    """

    def __init__(
        self,
        root: str | Path,
        *,
        accepted_suffixes: Iterable[str] = DEFAULT_ACCEPTED_SUFFIXES,
        default_status: AuthorizationStatus = AuthorizationStatus.NOT_DETERMINED,
        prompt: Callable[[], bool] | None = None,
    ) -> None:
        self.root = Path(root).expanduser().resolve()
        self.accepted_suffixes = {_normalize_suffix(suffix) for suffix in accepted_suffixes}
        self._default_status = default_status
        self._prompt = prompt
        self._lock = threading.Lock()

    @property
    def authorization_path(self) -> Path:
        return self.root / AUTHORIZATION_FILE

    def authorization_status(self) -> AuthorizationStatus:
        path = self.authorization_path
        if not path.exists():
            return self._default_status
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            return AuthorizationStatus(payload["status"])
        except (OSError, json.JSONDecodeError, KeyError, ValueError) as exc:
            logger.warning("Ignoring unreadable authorization file %s (%s)", path, exc)
            return self._default_status

    def request_authorization(self) -> AuthorizationStatus:
        with self._lock:
            status = self.authorization_status()
            if status != AuthorizationStatus.NOT_DETERMINED:
                return status
            if self._prompt is None:
                return AuthorizationStatus.NOT_DETERMINED

            granted = bool(self._prompt())
            status = AuthorizationStatus.AUTHORIZED if granted else AuthorizationStatus.DENIED
            self.set_authorization(status)
            logger.info("Library authorization answered: %s", status.value)
            return status

    def set_authorization(self, status: AuthorizationStatus) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        self.authorization_path.write_text(
            json.dumps({"status": status.value}, indent=2, sort_keys=True),
            encoding="utf-8",
        )

    def create_asset_from_file(self, path: Path) -> str:
        source = Path(path)
        suffix = source.suffix.lower()
        if suffix not in self.accepted_suffixes:
            raise UnsupportedFormatError(
                f"{source.name}: container {suffix or '(none)'} is not one of {sorted(self.accepted_suffixes)}"
            )
        if not source.is_file():
            raise CommitFailedError(f"Cannot read {source}")

        asset_id = uuid.uuid4().hex
        incoming_dir = self.root / INCOMING_DIR
        staged_path = incoming_dir / f"{asset_id}.partial"
        final_path = self.root / f"{asset_id}{suffix}"

        try:
            incoming_dir.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, staged_path)
            os.replace(staged_path, final_path)
        except OSError as exc:
            staged_path.unlink(missing_ok=True)
            raise CommitFailedError(f"Failed to write {source.name} into library: {exc}") from exc

        logger.info("Library asset %s created from %s", asset_id, source.name)
        return asset_id

    def list_assets(self) -> list[Path]:
        if not self.root.exists():
            return []
        return sorted(
            entry
            for entry in self.root.iterdir()
            if entry.is_file() and entry.suffix.lower() in self.accepted_suffixes
        )


def _normalize_suffix(suffix: str) -> str:
    suffix = suffix.lower()
    return suffix if suffix.startswith(".") else f".{suffix}"
