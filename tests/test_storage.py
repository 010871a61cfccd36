"""Unit tests for the in-memory and directory key-value stores."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from kotarchive.core.errors import StorageError
from kotarchive.core.storage.disk import DirectoryStore
from kotarchive.core.storage.kv import KeyValueStore
from kotarchive.core.storage.memory import MemoryStore


def test_memory_store_basic_contract() -> None:
    kv = MemoryStore()
    kv.set("KOT_ARCHIVE_GAME_LOGS", [{"id": "a"}])
    kv.set("kot_game_20260501120000.log", {"meta": {}})

    assert isinstance(kv, KeyValueStore)
    assert kv.get("KOT_ARCHIVE_GAME_LOGS") == [{"id": "a"}]
    assert kv.get("missing", default=[]) == []
    assert kv.keys("kot_") == ("kot_game_20260501120000.log",)
    assert kv.size_of("KOT_ARCHIVE_GAME_LOGS") == len('[{"id": "a"}]')
    assert kv.revision == 2


def test_memory_store_returns_copies() -> None:
    """Mutating a value read back never changes what is stored."""
    kv = MemoryStore()
    kv.set("k", {"rounds": []})
    value = kv.get("k")
    value["rounds"].append(1)
    assert kv.get("k") == {"rounds": []}


def test_memory_store_remove_reports_existence() -> None:
    kv = MemoryStore()
    kv.set("k", 1)
    assert kv.remove("k") is True
    assert kv.remove("k") is False
    assert kv.get("k") is None


@pytest.mark.parametrize(  # type: ignore[misc]
    "bad_key", ["", "../escape", "with space", "slash/key"]
)
def test_invalid_keys_are_rejected(bad_key: str) -> None:
    with pytest.raises(StorageError):
        MemoryStore().set(bad_key, 1)


def test_unserializable_value_is_rejected() -> None:
    kv = MemoryStore()
    with pytest.raises(StorageError):
        kv.set("k", {"when": object()})
    assert kv.revision == 0


def test_directory_store_roundtrip(tmp_path: Path) -> None:
    kv = DirectoryStore(tmp_path / "kv")
    kv.set("KOT_ARCHIVE_AIDT_LOGS", [{"id": "x", "name": "Ünïcode"}])

    path = tmp_path / "kv" / "KOT_ARCHIVE_AIDT_LOGS.json"
    assert path.exists()
    assert kv.get("KOT_ARCHIVE_AIDT_LOGS") == [{"id": "x", "name": "Ünïcode"}]
    assert kv.size_of("KOT_ARCHIVE_AIDT_LOGS") == path.stat().st_size
    assert kv.size_of("missing") == 0
    # no temp files are left behind
    assert [p.name for p in (tmp_path / "kv").iterdir()] == ["KOT_ARCHIVE_AIDT_LOGS.json"]


def test_directory_store_keys_sorted_and_filtered(tmp_path: Path) -> None:
    kv = DirectoryStore(tmp_path)
    for key in ("kot_game_20260501120500.log", "kot_game_20260501120000.log", "other"):
        kv.set(key, {})
    (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")

    assert kv.keys("kot_game_") == (
        "kot_game_20260501120000.log",
        "kot_game_20260501120500.log",
    )
    assert kv.remove("other") is True
    assert kv.remove("other") is False


def test_directory_store_corrupt_file_degrades_to_default(tmp_path: Path) -> None:
    kv = DirectoryStore(tmp_path)
    (tmp_path / "KOT_ARCHIVE_GAME_LOGS.json").write_text("{not json", encoding="utf-8")
    assert kv.get("KOT_ARCHIVE_GAME_LOGS", []) == []


def test_directory_store_uses_env_dir(tmp_path: Path, monkeypatch: Any) -> None:
    target = tmp_path / "from-env"
    monkeypatch.setenv("KOT_ARCHIVE_DIR", str(target))
    kv = DirectoryStore()
    kv.set("k", 1)
    assert (target / "k.json").exists()
