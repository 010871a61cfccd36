"""End-of-game archival and manual archive of the live game."""

from __future__ import annotations

from typing import Any

from conftest import FakeClock, make_log

from kotarchive.core.collaborators import GameStateContainer
from kotarchive.core.contracts.archive import DecisionTreePayload, GameLogPayload
from kotarchive.core.settings import Settings
from kotarchive.services.archive_store import ArchiveStore
from kotarchive.services.game_over import (
    archive_decision_tree,
    archive_game_log,
    archive_on_game_over,
    current_decision_payload,
    current_game_log_payload,
)
from kotarchive.services.snapshot import SnapshotService

TREE = {"rounds": [{"round": 1, "turns": []}]}


class BrokenProvider:
    """Log, decision and state provider that fails on every read."""

    def get_log_entries(self) -> list[Any]:
        raise RuntimeError("log unavailable")

    def get_decision_tree(self) -> Any:
        raise RuntimeError("tree unavailable")

    def get_state(self) -> dict[str, Any]:
        raise RuntimeError("state unavailable")

    def dispatch(self, action: Any) -> None:
        raise RuntimeError("read only")


def _live(game_state: dict[str, Any]) -> GameStateContainer:
    return GameStateContainer(game_state, log=make_log(4), decision_tree=TREE)


def test_game_over_archives_both_types_with_snapshot(
    store: ArchiveStore, clock: FakeClock, game_state: dict[str, Any]
) -> None:
    live = _live(game_state)
    result = archive_on_game_over(store, SnapshotService(clock), live, live, live, Settings())

    assert result.game_log_key == "kot_game_20260501120000.log"
    assert result.decision_key == "kot_aidt_20260501120000.log"
    assert result.snapshot_captured

    records = {r.id: r for r in store.list_archives("auto")}
    game = store.load(records["kot_game_20260501120000.log"])
    assert isinstance(game, GameLogPayload)
    assert len(game.data) == 4
    assert game.state_snapshot is not None
    assert game.state_snapshot.slices["meta"]["turn"] == 4
    assert "ui" not in game.state_snapshot.slices

    tree = store.load(records["kot_aidt_20260501120000.log"])
    assert isinstance(tree, DecisionTreePayload)
    assert tree.state_snapshot == game.state_snapshot


def test_game_over_respects_disabled_types(
    store: ArchiveStore, clock: FakeClock, game_state: dict[str, Any]
) -> None:
    live = _live(game_state)
    cfg = Settings(auto_archive_game_logs=False, auto_archive_decision_logs=True)
    result = archive_on_game_over(store, SnapshotService(clock), live, live, live, cfg)

    assert result.game_log_key is None
    assert result.decision_key is not None
    assert [r.content_type for r in store.list_archives("auto")] == ["aidt"]


def test_failing_log_provider_still_archives_decisions(
    store: ArchiveStore, clock: FakeClock, game_state: dict[str, Any]
) -> None:
    live = _live(game_state)
    broken = BrokenProvider()
    result = archive_on_game_over(store, SnapshotService(clock), live, broken, live, Settings())

    assert result.game_log_key is None
    assert result.decision_key == "kot_aidt_20260501120000.log"


def test_failed_capture_archives_without_snapshot(
    store: ArchiveStore, clock: FakeClock, game_state: dict[str, Any]
) -> None:
    live = _live(game_state)
    result = archive_on_game_over(
        store, SnapshotService(clock), BrokenProvider(), live, live, Settings()
    )

    assert not result.snapshot_captured
    assert result.game_log_key is not None
    game = store.load(store.list_archives("auto")[-1])
    assert game.state_snapshot is None


def test_manual_archive_of_live_game(
    store: ArchiveStore, clock: FakeClock, game_state: dict[str, Any]
) -> None:
    live = _live(game_state)
    snapshot = SnapshotService(clock).capture(live)

    record = archive_game_log(store, live, "Tuesday night", state_snapshot=snapshot)
    assert record is not None
    assert record.name == "Tuesday night" and record.size_metric == 4

    tree_record = archive_decision_tree(store, live)
    assert tree_record is not None
    assert tree_record.name.startswith("AI Decisions ")

    assert archive_game_log(store, BrokenProvider()) is None
    assert archive_decision_tree(store, BrokenProvider()) is None
    assert len(store.list_all()) == 2


def test_live_payloads_are_not_archived(
    store: ArchiveStore, kv: Any, clock: FakeClock, game_state: dict[str, Any]
) -> None:
    live = _live(game_state)
    game = current_game_log_payload(live, clock)
    tree = current_decision_payload(live, clock)

    assert isinstance(game, GameLogPayload)
    assert isinstance(tree, DecisionTreePayload)
    assert game.meta.name == "Live Game Log"
    assert game.meta.id.startswith("live_game_")
    assert game.meta.size_metric == 4
    assert tree.meta.name == "Live AI Decisions"
    assert tree.meta.size_metric == 1
    assert kv.revision == 0
