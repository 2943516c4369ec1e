from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Iterable, Mapping

try:
    from importlib import resources
except ImportError:  # pragma: no cover
    import importlib_resources as resources  # type: ignore

from .logging_utils import debug_log
from .storage import KeyValueStorage, StorageError

USER_DICT_KEY = "userDict"
DELETED_KEYS_KEY = "deletedKeys"
BASE_DICT_FILENAME = "dict.json"
_BASE_DICT_ENV = "MOJIKAE_BASE_DICT"


class LoadError(RuntimeError):
    """Raised when the bundled base dictionary cannot be loaded."""


class ValidationError(ValueError):
    """Raised when an entry has a blank cipher or decoded value."""


class DictionaryImportError(ValueError):
    """Raised when an import payload is not a JSON object."""


def _validated_mapping(payload: object, source: str) -> dict[str, str]:
    if not isinstance(payload, dict):
        raise LoadError(f"{source} must contain a JSON object.")
    mapping: dict[str, str] = {}
    for key, value in payload.items():
        if not isinstance(key, str) or not isinstance(value, str):
            raise LoadError(f"{source} contains a non-string entry: {key!r}")
        mapping[key] = value
    return mapping


def load_base_dictionary(path: Path | None = None) -> dict[str, str]:
    if path is None:
        env_path = os.environ.get(_BASE_DICT_ENV)
        if env_path:
            path = Path(env_path).expanduser()
    try:
        if path is not None:
            source = str(path)
            raw = path.read_text(encoding="utf-8")
        else:
            source = BASE_DICT_FILENAME
            raw = resources.files("mojikae.data").joinpath(BASE_DICT_FILENAME).read_text("utf-8")
    except (FileNotFoundError, ModuleNotFoundError, OSError) as exc:
        raise LoadError(f"Base dictionary not found: {path or BASE_DICT_FILENAME}") from exc
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise LoadError(f"Base dictionary is not valid JSON: {source}") from exc
    return _validated_mapping(payload, source)


def merge_layers(
    base: Mapping[str, str],
    user: Mapping[str, str],
    suppressed: Iterable[str],
) -> dict[str, str]:
    """
    Effective mapping: ``(base minus suppressed) | user``.

    A user entry always wins, including over a suppressed base key.
    Base keys keep their order; user-only keys follow in insertion order.
    """
    hidden = set(suppressed)
    merged: dict[str, str] = {}
    for key, value in base.items():
        if key in user:
            merged[key] = user[key]
        elif key not in hidden:
            merged[key] = value
    for key, value in user.items():
        merged.setdefault(key, value)
    return merged


def filter_entries(merged: Mapping[str, str], query: str = "") -> list[tuple[str, str]]:
    entries = list(merged.items())
    if not query:
        return entries
    return [(cipher, decoded) for cipher, decoded in entries if query in cipher or query in decoded]


def count_label(count: int) -> str:
    return f"{count} 文字"


def list_status(shown: int, total: int, filtered: bool) -> str:
    if filtered:
        return f"{shown} / {total} 件表示"
    return f"{total} 件"


class DictionaryStore:
    """
    Three-layer character dictionary: bundled base, user overrides, and
    suppressed base keys. The merged view is recomputed on every read.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        base: Mapping[str, str] | None = None,
        *,
        base_path: Path | None = None,
    ) -> None:
        self.storage = storage
        self._base_path = base_path
        self._base: dict[str, str] = dict(base) if base is not None else {}
        self._base_loaded = base is not None
        self._user: dict[str, str] = {}
        self._suppressed: list[str] = []

    @classmethod
    def open(cls, storage: KeyValueStorage, base_path: Path | None = None) -> DictionaryStore:
        store = cls(storage, base_path=base_path)
        store.load()
        return store

    @property
    def base(self) -> dict[str, str]:
        return dict(self._base)

    @property
    def user(self) -> dict[str, str]:
        return dict(self._user)

    @property
    def suppressed(self) -> list[str]:
        return list(self._suppressed)

    def load(self) -> tuple[dict[str, str], dict[str, str], list[str]]:
        if not self._base_loaded:
            self._base = load_base_dictionary(self._base_path)
            self._base_loaded = True
        try:
            records = self.storage.get([USER_DICT_KEY, DELETED_KEYS_KEY])
        except StorageError as exc:
            debug_log(f"storage unreadable, starting with empty user layer: {exc}")
            records = {}
        user_raw = records.get(USER_DICT_KEY)
        if isinstance(user_raw, dict):
            self._user = {
                key: value
                for key, value in user_raw.items()
                if isinstance(key, str) and isinstance(value, str)
            }
        else:
            self._user = {}
        deleted_raw = records.get(DELETED_KEYS_KEY)
        if isinstance(deleted_raw, list):
            seen: set[str] = set()
            self._suppressed = []
            for key in deleted_raw:
                if isinstance(key, str) and key not in seen:
                    seen.add(key)
                    self._suppressed.append(key)
        else:
            self._suppressed = []
        debug_log(
            f"loaded base={len(self._base)} user={len(self._user)} suppressed={len(self._suppressed)}"
        )
        return self.base, self.user, self.suppressed

    def merged(self) -> dict[str, str]:
        return merge_layers(self._base, self._user, self._suppressed)

    def _commit(self, user: dict[str, str], suppressed: list[str] | None = None) -> None:
        # Layers change only after storage accepted the write.
        values: dict[str, object] = {USER_DICT_KEY: dict(user)}
        if suppressed is not None:
            values[DELETED_KEYS_KEY] = list(suppressed)
        self.storage.set(values)
        self._user = user
        if suppressed is not None:
            self._suppressed = suppressed

    def set_entry(self, cipher: str, decoded: str) -> None:
        cipher = (cipher or "").strip()
        decoded = (decoded or "").strip()
        if not cipher:
            raise ValidationError("cipher must not be blank.")
        if not decoded:
            raise ValidationError("decoded value must not be blank.")
        user = dict(self._user)
        user[cipher] = decoded
        suppressed = [key for key in self._suppressed if key != cipher]
        self._commit(user, suppressed)
        debug_log(f"set {cipher!r} -> {decoded!r}")

    def remove_entry(self, cipher: str) -> bool:
        user = dict(self._user)
        suppressed = list(self._suppressed)
        changed = False
        if cipher in user:
            del user[cipher]
            changed = True
        if cipher in self._base and cipher not in suppressed:
            suppressed.append(cipher)
            changed = True
        if changed:
            self._commit(user, suppressed)
            debug_log(f"removed {cipher!r}")
        return changed

    def import_entries(self, raw: object) -> int:
        if not isinstance(raw, Mapping):
            raise DictionaryImportError("Import payload must be a JSON object.")
        user = dict(self._user)
        count = 0
        for key, value in raw.items():
            if isinstance(key, str) and isinstance(value, str):
                user[key] = value
                count += 1
        self._commit(user)
        debug_log(f"imported {count} entries")
        return count


__all__ = [
    "DELETED_KEYS_KEY",
    "DictionaryImportError",
    "DictionaryStore",
    "LoadError",
    "USER_DICT_KEY",
    "ValidationError",
    "count_label",
    "filter_entries",
    "list_status",
    "load_base_dictionary",
    "merge_layers",
]
