from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Mapping

from .dictionary import DictionaryImportError

EXPORT_PREFIX = "decoder_dict_"
EXPORT_STATUS = "エクスポートしました"
IMPORT_FAILED_STATUS = "インポートに失敗しました"


def parse_import_text(text: str) -> dict[str, str]:
    """Parse an import file, dropping pairs whose key or value is not a string."""
    try:
        payload = json.loads(text)
    except (TypeError, json.JSONDecodeError) as exc:
        raise DictionaryImportError("Import file is not valid JSON.") from exc
    if not isinstance(payload, dict):
        raise DictionaryImportError("Import file must contain a JSON object.")
    return {
        key: value
        for key, value in payload.items()
        if isinstance(key, str) and isinstance(value, str)
    }


def import_status(count: int) -> str:
    return f"{count} 件インポートしました"


def export_filename(now: datetime | None = None) -> str:
    stamp = (now or datetime.now()).strftime("%Y%m%d%H%M%S")
    return f"{EXPORT_PREFIX}{stamp}.json"


def export_text(mapping: Mapping[str, str]) -> str:
    return json.dumps(dict(mapping), ensure_ascii=False, indent=2)


def write_export(mapping: Mapping[str, str], directory: Path, now: datetime | None = None) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / export_filename(now)
    path.write_text(export_text(mapping), encoding="utf-8")
    return path


__all__ = [
    "EXPORT_STATUS",
    "IMPORT_FAILED_STATUS",
    "export_filename",
    "export_text",
    "import_status",
    "parse_import_text",
    "write_export",
]
