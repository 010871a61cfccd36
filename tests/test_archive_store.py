"""ArchiveStore: archiving, listing, loading, deleting and import/export."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from conftest import START, FakeClock, make_log

from kotarchive.core.contracts.archive import (
    ArchiveRecord,
    ArchiveType,
    DecisionTreePayload,
    GameLogPayload,
    parse_payload,
)
from kotarchive.core.contracts.snapshot import GameStateSnapshot
from kotarchive.core.errors import ArchiveNotFoundError
from kotarchive.core.storage.disk import DirectoryStore
from kotarchive.core.storage.memory import MemoryStore
from kotarchive.services.archive_store import (
    LIST_KEYS,
    ArchiveStore,
    auto_key_time,
    content_type_of,
)

TREE: dict[str, Any] = {
    "rounds": [
        {"round": 1, "turns": [{"turn": 1, "rolls": [{"playerName": "Alice", "action": "keep"}]}]},
        {"round": 2, "turns": []},
    ]
}


class RecordingStore(MemoryStore):
    """MemoryStore that remembers the order of writes."""

    def __init__(self) -> None:
        super().__init__()
        self.writes: list[str] = []

    def set(self, key: str, value: Any) -> None:
        self.writes.append(key)
        super().set(key, value)


def test_content_type_labels() -> None:
    assert content_type_of("gameLog") == "gameLog"
    assert content_type_of("game") == "gameLog"
    assert content_type_of(ArchiveType.AIDT) == "aidt"
    with pytest.raises(ValueError):
        content_type_of("auto")
    with pytest.raises(ValueError):
        content_type_of("chess")


def test_archive_writes_payload_before_metadata(clock: FakeClock) -> None:
    kv = RecordingStore()
    store = ArchiveStore(kv, clock=clock)
    record = store.archive("gameLog", make_log(3), "Friday game")

    assert kv.writes == [record.key, LIST_KEYS["gameLog"]]
    assert record.key == f"KOT_ARCHIVE_GAME_LOG_{record.id}"
    assert record.id.startswith("gameLog_")
    assert record.size_metric == 3
    assert record.category == "Game Log"


def test_archive_envelope_shape(store: ArchiveStore, kv: MemoryStore) -> None:
    record = store.archive("aidt", TREE)
    raw = kv.get(record.key)

    assert set(raw) == {"meta", "data"}
    assert raw["meta"]["type"] == "aidt"
    assert raw["meta"]["sizeMetric"] == 2
    assert raw["meta"]["name"] == "AI Decisions 2026-05-01 12:00:00"
    assert raw["data"]["rounds"][0]["turns"][0]["rolls"][0]["playerName"] == "Alice"
    assert kv.get(LIST_KEYS["aidt"]) == [record.list_entry()]


def test_archive_with_snapshot_round_trips(store: ArchiveStore) -> None:
    snapshot = GameStateSnapshot(
        timestamp=START, slices={"players": {"order": [], "byId": {}}, "phase": "END", "meta": {}}
    )
    record = store.archive("gameLog", make_log(2), state_snapshot=snapshot)
    payload = store.load(record)

    assert isinstance(payload, GameLogPayload)
    assert payload.state_snapshot == snapshot
    assert [e.message for e in payload.data] == ["Entry 0", "Entry 1"]


def test_listing_is_chronological(store: ArchiveStore, clock: FakeClock) -> None:
    first = store.archive("gameLog", make_log(1), "first")
    clock.advance(minutes=5)
    second = store.archive("gameLog", make_log(1), "second")
    clock.advance(minutes=5)
    store.archive("aidt", TREE, "tree")

    assert [r.id for r in store.list_archives("gameLog")] == [first.id, second.id]
    assert [r.name for r in store.list_all()] == ["first", "second", "tree"]
    assert store.find(second.id) == second
    assert store.find("nope") is None


def test_listing_reads_legacy_and_skips_malformed(store: ArchiveStore, kv: MemoryStore) -> None:
    kv.set(
        LIST_KEYS["gameLog"],
        [
            {"id": "old1", "name": "Legacy", "ts": "2024-01-01T00:00:00Z", "size": 4},
            {"id": "broken", "timestamp": "not a date"},
            "junk",
            {"name": "no id"},
        ],
    )
    records = store.list_archives("gameLog")

    assert [r.id for r in records] == ["old1"]
    assert records[0].size_metric == 4
    assert records[0].timestamp.year == 2024


def test_load_missing_payload_raises(store: ArchiveStore, kv: MemoryStore) -> None:
    record = store.archive("gameLog", make_log(1))
    kv.remove(record.key)
    with pytest.raises(ArchiveNotFoundError):
        store.load(record)


def test_load_corrupt_payload_raises_value_error(store: ArchiveStore, kv: MemoryStore) -> None:
    record = store.archive("gameLog", make_log(1))
    kv.set(record.key, {"meta": {"type": "aidt"}})
    with pytest.raises(ValueError):
        store.load(record)


def test_bad_fields_degrade_without_rejecting_payload() -> None:
    meta = {"name": "x", "timestamp": "2026-01-01T00:00:00Z", "id": "a"}
    game = parse_payload(
        {
            "meta": {**meta, "type": "gameLog"},
            "data": [
                {"timestamp": "10:32:15 PM", "player": 7, "round": "two", "message": None},
                42,
                {"ts": 1767225600000, "message": "ok"},
            ],
        }
    )
    assert isinstance(game, GameLogPayload)
    assert len(game.data) == 2
    first, second = game.data
    assert first.timestamp is None
    assert (first.player, first.round, first.message) == ("7", None, "")
    assert second.timestamp is not None and second.timestamp.year == 2026

    tree = parse_payload(
        {
            "meta": {**meta, "type": "aidt"},
            "data": {
                "rounds": [
                    {"round": 1, "turns": None},
                    {"round": 2, "turns": [{"turn": "x", "rolls": "none"}, "junk"]},
                    {"round": 3, "turns": [{"rolls": [{"action": "keep", "faces": {}}]}]},
                ]
            },
        }
    )
    assert isinstance(tree, DecisionTreePayload)
    assert [len(r.turns) for r in tree.data.rounds] == [0, 1, 1]
    assert tree.data.rounds[1].turns[0].turn is None
    [(_, _, roll)] = tree.data.iter_rolls()
    assert roll.action == "keep"
    assert roll.faces is None


def test_delete_removes_metadata_then_payload(clock: FakeClock) -> None:
    kv = RecordingStore()
    store = ArchiveStore(kv, clock=clock)
    keep = store.archive("gameLog", make_log(1), "keep")
    drop = store.archive("gameLog", make_log(1), "drop")
    kv.writes.clear()

    assert store.delete(drop) is True
    assert kv.writes == [LIST_KEYS["gameLog"]]
    assert kv.get(drop.key) is None
    assert [r.id for r in store.list_archives("gameLog")] == [keep.id]
    assert store.delete(drop) is False


def test_auto_archive_key_format_and_listing(store: ArchiveStore, clock: FakeClock) -> None:
    key = store.auto_archive("gameLog", make_log(2))
    assert key == "kot_game_20260501120000.log"
    assert auto_key_time(key) == START

    records = store.list_archives("auto")
    assert len(records) == 1
    auto = records[0]
    assert auto.type is ArchiveType.AUTO and auto.content_type == "gameLog"
    assert auto.id == key and auto.category == "Auto Archive"
    assert isinstance(store.load(auto), GameLogPayload)


def test_auto_archive_same_second_gets_suffix(store: ArchiveStore) -> None:
    first = store.auto_archive("aidt", TREE)
    second = store.auto_archive("aidt", TREE)
    assert first == "kot_aidt_20260501120000.log"
    assert second == "kot_aidt_20260501120000_001.log"
    assert sorted([second, first]) == [first, second]
    assert auto_key_time(second) == START


def test_storage_stats_counts_archive_keys(store: ArchiveStore, kv: MemoryStore) -> None:
    store.archive("gameLog", make_log(5))
    store.auto_archive("aidt", TREE)
    kv.set("unrelated", {"x": 1})

    stats = store.storage_stats()
    assert stats.archive_count == 3  # payload + list + auto key
    assert stats.total_size > 0
    assert stats.average_size == pytest.approx(stats.total_size / 3)
    assert stats.estimated_mb == pytest.approx(stats.total_size / (1024 * 1024))


# --------------------------------------------------------------------------- #
# Import / export
# --------------------------------------------------------------------------- #


def test_export_then_import_into_fresh_store(store: ArchiveStore, tmp_path: Path) -> None:
    record = store.archive("aidt", TREE, "Tree: final/round")
    path = store.export_to_file(store.load(record), tmp_path)
    assert path.name == "Tree_final_round.json"

    fresh = ArchiveStore(MemoryStore())
    outcome = fresh.import_from_file(path)
    assert outcome.is_ok()
    imported = outcome.unwrap()
    assert isinstance(imported, DecisionTreePayload)
    assert [r.id for r in fresh.list_archives("aidt")] == [record.id]


@pytest.mark.parametrize(  # type: ignore[misc]
    "raw",
    [
        {"data": []},
        {"meta": {"type": "gameLog", "name": "x", "timestamp": "2026-01-01T00:00:00Z", "id": "a"}},
        {"meta": {"type": "chess", "name": "x", "timestamp": "2026-01-01T00:00:00Z", "id": "a"},
         "data": []},
        {"meta": {"type": "gameLog", "name": "x", "id": "a"}, "data": []},
        {"meta": {"type": "aidt", "name": "x", "timestamp": "2026-01-01T00:00:00Z", "id": "a"},
         "data": []},
        ["not", "an", "object"],
    ],
)
def test_import_rejects_invalid_payload_without_writing(raw: Any) -> None:
    kv = MemoryStore()
    store = ArchiveStore(kv)
    outcome = store.import_payload(raw, source="upload.json")

    assert outcome.is_err()
    error = outcome.unwrap_err()
    assert error.source == "upload.json"
    assert kv.revision == 0


def test_import_same_id_replaces_metadata(store: ArchiveStore) -> None:
    record = store.archive("gameLog", make_log(1), "original")
    raw = store.load(record).to_wire()
    raw["meta"]["name"] = "renamed"

    assert store.import_payload(raw).is_ok()
    listed = store.list_archives("gameLog")
    assert [(r.id, r.name) for r in listed] == [(record.id, "renamed")]


def test_import_from_file_reports_bad_json(tmp_path: Path, store: ArchiveStore) -> None:
    path = tmp_path / "broken.json"
    path.write_text("{", encoding="utf-8")
    outcome = store.import_from_file(path)
    assert outcome.is_err()
    assert "not valid JSON" in outcome.unwrap_err().reason


def test_disk_backed_store_survives_reopen(tmp_path: Path) -> None:
    clock = FakeClock()
    first = ArchiveStore(DirectoryStore(tmp_path), clock=clock)
    record = first.archive("gameLog", make_log(4), "persisted")

    reopened = ArchiveStore(DirectoryStore(tmp_path))
    assert [r.id for r in reopened.list_all()] == [record.id]
    payload = reopened.load(record)
    assert len(payload.data) == 4  # type: ignore[arg-type]
    on_disk = json.loads((tmp_path / f"{record.key}.json").read_text(encoding="utf-8"))
    assert on_disk["meta"]["id"] == record.id


def test_archive_reuses_existing_payload(store: ArchiveStore, clock: FakeClock) -> None:
    record = store.archive("gameLog", make_log(2), "source")
    payload = store.load(record)
    clock.advance(minutes=1)

    copy = store.archive("gameLog", payload, "copy")
    assert copy.id != record.id
    assert isinstance(copy, ArchiveRecord) and copy.size_metric == 2
