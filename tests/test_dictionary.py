from __future__ import annotations

import json
from pathlib import Path

import pytest

from mojikae.dictionary import (
    DELETED_KEYS_KEY,
    USER_DICT_KEY,
    DictionaryImportError,
    DictionaryStore,
    LoadError,
    ValidationError,
    count_label,
    filter_entries,
    list_status,
    load_base_dictionary,
    merge_layers,
)
from mojikae.storage import JsonFileStorage, MemoryStorage, StorageError


class _BrokenStorage:
    def get(self, keys):
        raise StorageError("disk on fire")

    def set(self, values):
        raise AssertionError("set should not be called")


class _ReadOnlyStorage(MemoryStorage):
    def set(self, values):
        raise StorageError("read-only disk")


def _store(base: dict[str, str], **records: object) -> tuple[DictionaryStore, MemoryStorage]:
    storage = MemoryStorage(records)
    store = DictionaryStore(storage, base)
    store.load()
    return store, storage


def test_merge_layers_user_wins_and_suppressed_keys_drop() -> None:
    base = {"亜": "a", "尾": "b", "詩": "c"}
    user = {"尾": "B", "新": "n"}
    merged = merge_layers(base, user, ["詩"])
    assert merged == {"亜": "a", "尾": "B", "新": "n"}
    assert list(merged) == ["亜", "尾", "新"]


def test_merge_layers_user_override_beats_suppression() -> None:
    merged = merge_layers({"亜": "a", "尾": "b"}, {"亜": "A"}, ["亜"])
    assert merged == {"亜": "A", "尾": "b"}
    assert list(merged) == ["亜", "尾"]


def test_merge_layers_key_set_matches_layer_algebra() -> None:
    base = {"一": "1", "二": "2", "三": "3", "四": "4"}
    user = {"二": "two", "五": "5"}
    suppressed = ["三", "五", "無"]
    merged = merge_layers(base, user, suppressed)
    assert set(merged) == (set(base) - set(suppressed)) | set(user)
    for key in set(base) & set(user):
        assert merged[key] == user[key]


def test_load_reads_user_layers_from_storage() -> None:
    store, _ = _store(
        {"亜": "a", "尾": "b"},
        userDict={"新": "n", "bad": 3},
        deletedKeys=["尾", "尾", 5],
    )
    base, user, suppressed = store.load()
    assert base == {"亜": "a", "尾": "b"}
    assert user == {"新": "n"}
    assert suppressed == ["尾"]
    assert store.merged() == {"亜": "a", "新": "n"}


def test_load_defaults_when_storage_is_empty() -> None:
    store, _ = _store({"亜": "a"})
    assert store.user == {}
    assert store.suppressed == []
    assert store.merged() == {"亜": "a"}


def test_load_degrades_to_empty_user_layer_on_storage_failure() -> None:
    store = DictionaryStore(_BrokenStorage(), {"亜": "a"})
    _, user, suppressed = store.load()
    assert user == {}
    assert suppressed == []
    assert store.merged() == {"亜": "a"}


def test_load_fails_when_base_resource_missing(tmp_path: Path) -> None:
    store = DictionaryStore(MemoryStorage(), base_path=tmp_path / "missing.json")
    with pytest.raises(LoadError):
        store.load()


@pytest.mark.parametrize(
    "content",
    ["not json", "[1, 2]", json.dumps({"亜": 1})],
)
def test_load_base_dictionary_rejects_malformed_resource(tmp_path: Path, content: str) -> None:
    path = tmp_path / "dict.json"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(LoadError):
        load_base_dictionary(path)


def test_bundled_base_dictionary_loads() -> None:
    base = load_base_dictionary()
    assert base["亜"] == "a"
    assert all(isinstance(k, str) and isinstance(v, str) for k, v in base.items())


def test_base_dictionary_env_override(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "alt.json"
    path.write_text(json.dumps({"α": "alpha"}), encoding="utf-8")
    monkeypatch.setenv("MOJIKAE_BASE_DICT", str(path))
    assert load_base_dictionary() == {"α": "alpha"}


def test_set_entry_trims_persists_and_clears_suppression() -> None:
    store, storage = _store({"亜": "a"}, deletedKeys=["亜"])
    assert store.merged() == {}
    store.set_entry(" 亜 ", "  A ")
    assert store.user == {"亜": "A"}
    assert store.suppressed == []
    assert storage.get([USER_DICT_KEY, DELETED_KEYS_KEY]) == {
        USER_DICT_KEY: {"亜": "A"},
        DELETED_KEYS_KEY: [],
    }


@pytest.mark.parametrize("cipher,decoded", [("", "a"), ("  ", "a"), ("亜", ""), ("亜", "   ")])
def test_set_entry_rejects_blank_values(cipher: str, decoded: str) -> None:
    store, storage = _store({"亜": "a"})
    with pytest.raises(ValidationError):
        store.set_entry(cipher, decoded)
    assert storage.get([USER_DICT_KEY]) == {}


def test_remove_user_only_entry() -> None:
    store, storage = _store({"亜": "a"}, userDict={"新": "n"})
    assert store.remove_entry("新") is True
    assert store.merged() == {"亜": "a"}
    assert store.suppressed == []
    assert storage.get([USER_DICT_KEY])[USER_DICT_KEY] == {}


def test_remove_base_entry_adds_tombstone_once() -> None:
    store, storage = _store({"亜": "a", "尾": "b"})
    assert store.remove_entry("亜") is True
    assert store.remove_entry("亜") is False
    assert store.suppressed == ["亜"]
    assert store.merged() == {"尾": "b"}
    assert storage.get([DELETED_KEYS_KEY])[DELETED_KEYS_KEY] == ["亜"]


def test_remove_overridden_base_entry_suppresses_base_value_too() -> None:
    store, _ = _store({"亜": "a"}, userDict={"亜": "A"})
    store.remove_entry("亜")
    assert "亜" not in store.user
    assert "亜" in store.suppressed
    assert "亜" not in store.merged()


def test_remove_unknown_entry_is_noop() -> None:
    store, storage = _store({"亜": "a"})
    assert store.remove_entry("無") is False
    assert storage.get([USER_DICT_KEY, DELETED_KEYS_KEY]) == {}


def test_set_remove_set_cycle_ends_with_latest_value() -> None:
    store, _ = _store({"亜": "a"})
    store.set_entry("亜", "v1")
    store.remove_entry("亜")
    store.set_entry("亜", "v2")
    assert store.merged()["亜"] == "v2"
    assert "亜" not in store.suppressed


def test_import_entries_skips_non_string_pairs() -> None:
    store, storage = _store({})
    count = store.import_entries({"a": "b", "x": 1, 2: "y"})
    assert count == 1
    assert store.user == {"a": "b"}
    assert storage.get([USER_DICT_KEY, DELETED_KEYS_KEY]) == {USER_DICT_KEY: {"a": "b"}}


def test_import_entries_leaves_suppression_untouched() -> None:
    store, _ = _store({"亜": "a"}, deletedKeys=["亜"])
    store.import_entries({"亜": "A"})
    assert store.suppressed == ["亜"]
    assert store.merged() == {"亜": "A"}


def test_import_entries_rejects_non_mapping() -> None:
    store, _ = _store({})
    with pytest.raises(DictionaryImportError):
        store.import_entries(["a", "b"])


def test_failed_writes_leave_layers_unchanged() -> None:
    store = DictionaryStore(_ReadOnlyStorage(), {"亜": "a"})
    store.load()
    with pytest.raises(StorageError):
        store.remove_entry("亜")
    with pytest.raises(StorageError):
        store.set_entry("尾", "b")
    with pytest.raises(StorageError):
        store.import_entries({"詩": "c"})
    assert store.merged() == {"亜": "a"}
    assert store.user == {}
    assert store.suppressed == []


def test_failed_set_keeps_existing_suppression() -> None:
    store = DictionaryStore(_ReadOnlyStorage({DELETED_KEYS_KEY: ["亜"]}), {"亜": "a"})
    store.load()
    with pytest.raises(StorageError):
        store.set_entry("亜", "A")
    assert store.suppressed == ["亜"]
    assert store.merged() == {}


def test_end_to_end_layer_transitions(tmp_path: Path) -> None:
    base_path = tmp_path / "dict.json"
    base_path.write_text(json.dumps({"亜": "a"}, ensure_ascii=False), encoding="utf-8")
    storage_path = tmp_path / "state" / "storage.json"
    store = DictionaryStore.open(JsonFileStorage(storage_path), base_path=base_path)
    assert store.merged() == {"亜": "a"}

    store.remove_entry("亜")
    assert store.suppressed == ["亜"]
    assert store.merged() == {}

    store.set_entry("亜", "A")
    assert store.user == {"亜": "A"}
    assert store.suppressed == []
    assert store.merged() == {"亜": "A"}

    reopened = DictionaryStore.open(JsonFileStorage(storage_path), base_path=base_path)
    assert reopened.merged() == {"亜": "A"}
    payload = json.loads(storage_path.read_text(encoding="utf-8"))
    assert payload == {"userDict": {"亜": "A"}, "deletedKeys": []}


def test_filter_entries_matches_cipher_or_decoded() -> None:
    merged = {"亜": "a", "尾": "b", "詩": "ab"}
    assert filter_entries(merged, "") == list(merged.items())
    assert filter_entries(merged, "尾") == [("尾", "b")]
    assert filter_entries(merged, "a") == [("亜", "a"), ("詩", "ab")]


def test_status_labels() -> None:
    assert count_label(3) == "3 文字"
    assert list_status(2, 5, True) == "2 / 5 件表示"
    assert list_status(5, 5, False) == "5 件"
