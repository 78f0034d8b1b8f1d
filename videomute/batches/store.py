from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BatchRecord:
    batch_id: str
    name: str
    video_count: int
    created_at: str
    output_paths: list[str] = field(default_factory=list)


class BatchStore:
    """Batch metadata persisted as one JSON document keyed by creation timestamp."""

    def __init__(self, store_path: str | Path) -> None:
        self.store_path = Path(store_path).expanduser().resolve()
        self._lock = threading.Lock()

    def create_batch(self, name: str | None, video_count: int) -> str:
        with self._lock:
            records = self._load()
            now = datetime.now(timezone.utc)
            batch_id = now.strftime("%Y%m%dT%H%M%S%fZ")
            suffix = 1
            while batch_id in records:
                batch_id = f"{now.strftime('%Y%m%dT%H%M%S%fZ')}-{suffix}"
                suffix += 1

            records[batch_id] = BatchRecord(
                batch_id=batch_id,
                name=name or f"Batch {len(records) + 1}",
                video_count=int(video_count),
                created_at=now.isoformat(),
            )
            self._save(records)
        logger.info("Created batch %s", batch_id)
        return batch_id

    def append_output_paths(self, batch_id: str, paths: list[str | Path]) -> BatchRecord:
        with self._lock:
            records = self._load()
            record = self._require(records, batch_id)
            record.output_paths.extend(str(path) for path in paths)
            self._save(records)
            return record

    def delete_batch(self, batch_id: str) -> list[str]:
        """Delete the record and its output files; returns paths that could not be removed."""

        with self._lock:
            records = self._load()
            record = self._require(records, batch_id)
            leftovers: list[str] = []
            for raw_path in record.output_paths:
                try:
                    Path(raw_path).unlink(missing_ok=True)
                except OSError as exc:
                    logger.warning("Failed to delete batch output %s: %s", raw_path, exc)
                    leftovers.append(raw_path)
            del records[batch_id]
            self._save(records)
        logger.info("Deleted batch %s", batch_id)
        return leftovers

    def get(self, batch_id: str) -> BatchRecord | None:
        with self._lock:
            return self._load().get(batch_id)

    def list_batches(self) -> list[BatchRecord]:
        with self._lock:
            records = self._load()
        return sorted(
            records.values(),
            key=lambda record: (record.created_at, record.batch_id),
            reverse=True,
        )

    def _require(self, records: dict[str, BatchRecord], batch_id: str) -> BatchRecord:
        record = records.get(batch_id)
        if record is None:
            raise KeyError(f"Unknown batch id: {batch_id}")
        return record

    def _load(self) -> dict[str, BatchRecord]:
        if not self.store_path.exists():
            return {}
        payload = json.loads(self.store_path.read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            raise ValueError(f"Batch store {self.store_path} must contain a JSON object.")
        return {batch_id: _record_from_dict(row) for batch_id, row in payload.items()}

    def _save(self, records: dict[str, BatchRecord]) -> None:
        self.store_path.parent.mkdir(parents=True, exist_ok=True)
        payload = {batch_id: asdict(record) for batch_id, record in records.items()}
        tmp_path = self.store_path.with_suffix(self.store_path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        tmp_path.replace(self.store_path)


def _record_from_dict(row: dict[str, Any]) -> BatchRecord:
    return BatchRecord(
        batch_id=str(row["batch_id"]),
        name=str(row["name"]),
        video_count=int(row["video_count"]),
        created_at=str(row["created_at"]),
        output_paths=[str(path) for path in row.get("output_paths", [])],
    )
