"""Snapshot capture, validation, restore and slice diffs."""

from __future__ import annotations

from typing import Any

from conftest import START, FakeClock

from kotarchive.core.collaborators import STATE_IMPORTED, GameStateContainer
from kotarchive.core.contracts.snapshot import CORE_SLICES, GameStateSnapshot
from kotarchive.services.snapshot import SnapshotService


class _BrokenAccessor:
    def get_state(self) -> dict[str, Any]:
        raise RuntimeError("store not ready")

    def dispatch(self, action: Any) -> None:
        raise RuntimeError("read only")


def test_capture_copies_only_core_slices(container: GameStateContainer) -> None:
    service = SnapshotService(clock=FakeClock())
    snap = service.capture(container)

    assert snap is not None
    assert snap.timestamp == START
    assert snap.version == "1.0"
    assert list(snap.slices) == list(CORE_SLICES)
    assert "ui" not in snap.slices and "settings" not in snap.slices


def test_capture_is_a_deep_copy(container: GameStateContainer) -> None:
    snap = SnapshotService().capture(container)
    assert snap is not None
    container.get_state()["players"]["byId"]["p1"]["health"] = 1
    assert snap.slices["players"]["byId"]["p1"]["health"] == 10


def test_capture_failure_returns_none() -> None:
    assert SnapshotService().capture(_BrokenAccessor()) is None


def test_validate_accepts_full_snapshot(container: GameStateContainer) -> None:
    service = SnapshotService()
    result = service.validate(service.capture(container))
    assert result.valid
    assert result.errors == [] and result.warnings == []


def test_validate_missing_critical_slice_is_an_error() -> None:
    snap = GameStateSnapshot(
        timestamp=START, slices={"players": {"order": [], "byId": {}}, "phase": "ROLL"}
    )
    result = SnapshotService().validate(snap)
    assert not result.valid
    assert result.errors == ["Missing critical slice: meta"]


def test_validate_missing_recommended_slices_only_warn() -> None:
    snap = GameStateSnapshot(
        timestamp=START,
        slices={"players": {"order": ["p1"], "byId": {}}, "phase": "ROLL", "meta": {}},
    )
    result = SnapshotService().validate(snap)
    assert result.valid
    assert result.warnings == [
        "Missing recommended slice: dice",
        "Missing recommended slice: tokyo",
        "Missing recommended slice: cards",
    ]


def test_validate_malformed_players_slice_warns() -> None:
    result = SnapshotService().validate(
        {"slices": {"players": {"byId": []}, "phase": "ROLL", "meta": {}}}
    )
    assert result.valid
    assert "Players order is missing or invalid" in result.warnings
    assert "Players byId is missing or invalid" in result.warnings


def test_validate_none_and_sliceless() -> None:
    service = SnapshotService()
    assert not service.validate(None).valid
    assert not service.validate({"timestamp": "x"}).valid


def test_restore_round_trip(container: GameStateContainer) -> None:
    """Capture from one game, restore into a blank one, capture again: same slices."""
    service = SnapshotService()
    original = service.capture(container)
    assert original is not None

    target = GameStateContainer({"ui": {"modal": None}})
    assert service.restore(target, original) is True
    assert target.dispatched == [STATE_IMPORTED]

    again = service.capture(target)
    assert again is not None
    assert again.slices == original.slices
    # transient slices of the target are left alone
    assert target.get_state()["ui"] == {"modal": None}
    assert target.paused is False


def test_restore_failure_returns_false(container: GameStateContainer) -> None:
    service = SnapshotService()
    snap = service.capture(container)
    assert service.restore(_BrokenAccessor(), snap) is False
    assert service.restore(container, None) is False


def test_diff_and_apply_reconstruct_new(container: GameStateContainer) -> None:
    clock = FakeClock()
    service = SnapshotService(clock=clock)
    old = service.capture(container)
    assert old is not None

    state = container.get_state()
    state["dice"]["faces"] = ["claw", "claw", "claw"]
    state["meta"]["turn"] = 5
    del state["monsters"]
    clock.advance(seconds=5)
    new = service.capture(container)
    assert new is not None

    diff = service.diff(old, new)
    assert list(diff.changes) == ["dice", "meta"]
    assert diff.removed == ["monsters"]

    rebuilt = service.apply_diff(old, diff)
    assert rebuilt.slices == new.slices
    assert rebuilt.timestamp == new.timestamp


def test_diff_against_nothing_and_identical(container: GameStateContainer) -> None:
    service = SnapshotService()
    snap = service.capture(container)
    assert snap is not None

    full = service.diff(None, snap)
    assert set(full.changes) == set(snap.slices)
    assert full.removed == []
    assert service.diff(snap, snap).is_empty


def test_diff_ignores_key_order() -> None:
    a = GameStateSnapshot(timestamp=START, slices={"tokyo": {"city": "p1", "bay": None}})
    b = GameStateSnapshot(timestamp=START, slices={"tokyo": {"bay": None, "city": "p1"}})
    assert SnapshotService().diff(a, b).is_empty


def test_capture_lightweight(container: GameStateContainer) -> None:
    light = SnapshotService(clock=FakeClock()).capture_lightweight(container)
    assert light is not None
    assert light.version == "1.0-light"

    essential = light.essential
    assert essential.turn == 4 and essential.round == 2
    assert essential.active_player_index == 0
    assert [v.id for v in essential.player_vitals] == ["p1", "p2"]
    assert essential.player_vitals[1].is_in_tokyo is True
    assert essential.player_vitals[0].victory_points == 7
    assert essential.dice.faces == ["1", "claw", "heart"]
    assert essential.dice.rerolls_remaining == 2
    assert essential.tokyo == {"city": "p2", "bay": None}


def test_capture_lightweight_failure_returns_none() -> None:
    assert SnapshotService().capture_lightweight(_BrokenAccessor()) is None
