"""
Local File Storage

Snapshot and audit persistence on the local filesystem.

Snapshot writes go to a temporary sibling file first and are moved over
the real file with Path.replace, so a crash mid-write leaves the previous
snapshot intact.
"""

import json
from datetime import date
from pathlib import Path
from typing import Any, Optional

from vaultledger.models.audit import AuditEvent
from vaultledger.services.storage.interface import (
    AuditStorageInterface,
    CorruptDataError,
    SnapshotStorageInterface,
    StorageError,
)


def _atomic_write_json(path: Path, payload: Any) -> None:
    temp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with temp_path.open("w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2, ensure_ascii=False)
            handle.flush()
        temp_path.replace(path)
    except OSError as exc:
        raise StorageError(f"Unable to write to {path}") from exc


class JSONFileSnapshotStorage(SnapshotStorageInterface):
    """Keeps the snapshot document in a single JSON file."""

    def __init__(self, path: Path):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def describe(self) -> str:
        return str(self._path)

    def load(self) -> Optional[dict[str, Any]]:
        if not self._path.exists():
            return None
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except json.JSONDecodeError as exc:
            raise CorruptDataError(f"Corrupted JSON data in {self._path}") from exc
        except OSError as exc:
            raise StorageError(f"Unable to read from {self._path}") from exc

        if not isinstance(payload, dict):
            raise CorruptDataError(f"Expected an object in {self._path}")
        return payload

    def save(self, document: dict[str, Any]) -> None:
        _atomic_write_json(self._path, document)


def export_snapshot(
    document: dict[str, Any],
    directory: Path,
    prefix: str = "vault_snapshot",
    on_date: Optional[date] = None,
) -> Path:
    """
    Write a date-stamped copy of a snapshot document.

    The file is named <prefix>_YYYY-MM-DD.json; a second export on the
    same day overwrites the first.

    Returns:
        Path of the written file
    """
    stamp = (on_date or date.today()).isoformat()
    path = Path(directory) / f"{prefix}_{stamp}.json"
    _atomic_write_json(path, document)
    return path


class JSONLinesAuditStorage(AuditStorageInterface):
    """Appends one JSON object per audit event to a .jsonl file."""

    def __init__(self, path: Path):
        self._path = Path(path)

    def append_event(self, event: AuditEvent) -> bool:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as handle:
                handle.write(event.model_dump_json())
                handle.write("\n")
        except OSError as exc:
            raise StorageError(f"Unable to append to {self._path}") from exc
        return True

    def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        if not self._path.exists():
            return []
        try:
            lines = self._path.read_text(encoding="utf-8").splitlines()
        except OSError as exc:
            raise StorageError(f"Unable to read from {self._path}") from exc

        events = []
        for line in reversed(lines):
            if not line.strip():
                continue
            events.append(AuditEvent.model_validate_json(line))
            if len(events) >= limit:
                break
        return events
