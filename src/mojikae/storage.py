from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Iterable, Mapping, Protocol

_STATE_DIR_ENV = "MOJIKAE_STATE_DIR"
STORAGE_FILENAME = "storage.json"


class StorageError(OSError):
    """Raised when the persisted state cannot be read or written."""


class KeyValueStorage(Protocol):
    def get(self, keys: Iterable[str]) -> dict[str, object]: ...

    def set(self, values: Mapping[str, object]) -> None: ...


def state_dir() -> Path:
    env_dir = os.environ.get(_STATE_DIR_ENV)
    if env_dir:
        return Path(env_dir).expanduser()
    return Path.home() / ".local" / "share" / "mojikae"


def default_storage_path(directory: Path | None = None) -> Path:
    return (directory or state_dir()) / STORAGE_FILENAME


class MemoryStorage:
    def __init__(self, initial: Mapping[str, object] | None = None) -> None:
        self._records: dict[str, object] = dict(initial or {})

    def get(self, keys: Iterable[str]) -> dict[str, object]:
        return {key: self._records[key] for key in keys if key in self._records}

    def set(self, values: Mapping[str, object]) -> None:
        self._records.update(values)


class JsonFileStorage:
    """
    Key-value records kept in a single JSON object on disk.

    Each ``set`` rewrites the whole file through a temporary sibling so a
    reader never observes a half-written record.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def _read_all(self) -> dict[str, object]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise StorageError(f"Failed to read storage file: {self.path}") from exc
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StorageError(f"Storage file is not valid JSON: {self.path}") from exc
        if not isinstance(payload, dict):
            raise StorageError(f"Storage file must contain a JSON object: {self.path}")
        return payload

    def get(self, keys: Iterable[str]) -> dict[str, object]:
        records = self._read_all()
        return {key: records[key] for key in keys if key in records}

    def set(self, values: Mapping[str, object]) -> None:
        try:
            records = self._read_all()
        except StorageError:
            records = {}
        records.update(values)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                dir=str(self.path.parent),
            )
        except OSError as exc:
            raise StorageError(f"Failed to prepare storage file: {self.path}") from exc
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(records, fh, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            raise StorageError(f"Failed to write storage file: {self.path}") from exc


__all__ = [
    "JsonFileStorage",
    "KeyValueStorage",
    "MemoryStorage",
    "STORAGE_FILENAME",
    "StorageError",
    "default_storage_path",
    "state_dir",
]
