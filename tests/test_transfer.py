from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

import pytest

from mojikae.dictionary import DictionaryImportError
from mojikae.transfer import (
    export_filename,
    export_text,
    import_status,
    parse_import_text,
    write_export,
)


def test_parse_import_text_drops_non_string_values() -> None:
    text = json.dumps({"a": "b", "x": 1, "y": None, "z": ["c"]})
    assert parse_import_text(text) == {"a": "b"}


@pytest.mark.parametrize("text", ["{not json", "[]", '"亜"', ""])
def test_parse_import_text_rejects_malformed_payloads(text: str) -> None:
    with pytest.raises(DictionaryImportError):
        parse_import_text(text)


def test_import_status_text() -> None:
    assert import_status(3) == "3 件インポートしました"


def test_export_filename_is_zero_padded_local_time() -> None:
    assert export_filename(datetime(2024, 1, 2, 3, 4, 5)) == "decoder_dict_20240102030405.json"


def test_export_text_is_pretty_printed_utf8() -> None:
    text = export_text({"亜": "a"})
    assert text == '{\n  "亜": "a"\n}'


def test_write_export_creates_timestamped_file(tmp_path: Path) -> None:
    path = write_export({"亜": "a", "尾": "b"}, tmp_path / "out", datetime(2025, 12, 31, 23, 59, 58))
    assert path.name == "decoder_dict_20251231235958.json"
    assert json.loads(path.read_text(encoding="utf-8")) == {"亜": "a", "尾": "b"}
