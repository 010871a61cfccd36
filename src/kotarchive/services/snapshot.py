"""
Capture, validate, restore and diff game-state snapshots.

Only the slices in :data:`CORE_SLICES` are copied. Capture and restore sit on
the game-over and replay paths, so they never raise: a failure is logged and
reported as ``None`` / ``False`` and the caller carries on without a snapshot.

Copies go through a JSON round-trip. That both detaches the snapshot from the
live state and guarantees that whatever was captured can later be archived.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from kotarchive.core.clock import Clock, utc_now
from kotarchive.core.collaborators import StateAccessor, state_imported
from kotarchive.core.contracts.snapshot import (
    CORE_SLICES,
    CRITICAL_SLICES,
    RECOMMENDED_SLICES,
    SNAPSHOT_VERSION,
    DiceVitals,
    GameStateSnapshot,
    LightweightEssentials,
    LightweightSnapshot,
    PlayerVitals,
    StateDiff,
    ValidationResult,
)
from kotarchive.core.settings import get_logger

logger = get_logger("kotarchive.snapshot")


def _json_copy(value: Any) -> Any:
    return json.loads(json.dumps(value))


def _ordered_slice_names(*slice_maps: Mapping[str, Any]) -> list[str]:
    """Core slices first in their canonical order, then any extras sorted."""
    seen = {name for m in slice_maps for name in m}
    extras = sorted(seen.difference(CORE_SLICES))
    return [name for name in CORE_SLICES if name in seen] + extras


class SnapshotService:
    """Stateless helper around :class:`GameStateSnapshot`."""

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock

    def capture(self, accessor: StateAccessor) -> GameStateSnapshot | None:
        """Deep-copy the core slices of the live state, or return None on failure."""
        try:
            state = accessor.get_state()
            slices = {name: _json_copy(state[name]) for name in CORE_SLICES if name in state}
            return GameStateSnapshot(
                timestamp=self._clock(), version=SNAPSHOT_VERSION, slices=slices
            )
        except Exception:
            logger.warning("Failed to capture game state", exc_info=True)
            return None

    def validate(self, snapshot: GameStateSnapshot | Mapping[str, Any] | None) -> ValidationResult:
        """Check that the critical slices exist and the players slice is well formed."""
        result = ValidationResult()
        if snapshot is None:
            return ValidationResult(valid=False, errors=["Snapshot is missing"])
        if isinstance(snapshot, GameStateSnapshot):
            slices: Any = snapshot.slices
        else:
            slices = snapshot.get("slices")
        if not isinstance(slices, Mapping):
            return ValidationResult(valid=False, errors=["Snapshot has no slices"])

        for name in CRITICAL_SLICES:
            if name not in slices:
                result.valid = False
                result.errors.append(f"Missing critical slice: {name}")
        for name in RECOMMENDED_SLICES:
            if name not in slices:
                result.warnings.append(f"Missing recommended slice: {name}")

        players = slices.get("players")
        if players is not None:
            order = players.get("order") if isinstance(players, Mapping) else None
            by_id = players.get("byId") if isinstance(players, Mapping) else None
            if not isinstance(order, list):
                result.warnings.append("Players order is missing or invalid")
            if not isinstance(by_id, Mapping):
                result.warnings.append("Players byId is missing or invalid")
        return result

    def restore(self, accessor: StateAccessor, snapshot: GameStateSnapshot | None) -> bool:
        """Dispatch one ``STATE_IMPORTED`` action carrying the whole snapshot."""
        try:
            if snapshot is None:
                raise ValueError("no snapshot to restore")
            missing = [name for name in CORE_SLICES if name not in snapshot.slices]
            if missing:
                logger.info("Restoring snapshot without slices: %s", ", ".join(missing))
            accessor.dispatch(state_imported(snapshot.model_dump(mode="json")))
            return True
        except Exception:
            logger.warning("Failed to restore game state", exc_info=True)
            return False

    def diff(self, old: GameStateSnapshot | None, new: GameStateSnapshot) -> StateDiff:
        """Slice-level structural diff; slice order and dict key order never matter."""
        old_slices = old.slices if old is not None else {}
        changes: dict[str, Any] = {}
        for name in _ordered_slice_names(new.slices):
            if name not in old_slices or old_slices[name] != new.slices[name]:
                changes[name] = _json_copy(new.slices[name])
        removed = [name for name in _ordered_slice_names(old_slices) if name not in new.slices]
        return StateDiff(
            timestamp=new.timestamp, version=new.version, changes=changes, removed=removed
        )

    def apply_diff(self, base: GameStateSnapshot, diff: StateDiff) -> GameStateSnapshot:
        """Return a new snapshot equal to ``base`` with ``diff`` applied."""
        slices = _json_copy(base.slices)
        for name, value in diff.changes.items():
            slices[name] = _json_copy(value)
        for name in diff.removed:
            slices.pop(name, None)
        ordered = {name: slices[name] for name in _ordered_slice_names(slices)}
        return GameStateSnapshot(timestamp=diff.timestamp, version=diff.version, slices=ordered)

    def capture_lightweight(self, accessor: StateAccessor) -> LightweightSnapshot | None:
        """Vitals-only checkpoint for frequent, cheap captures."""
        try:
            state = accessor.get_state()
            meta = state.get("meta") or {}
            players = state.get("players") or {}
            by_id = players.get("byId") or {}
            vitals = [
                PlayerVitals(
                    id=str(pid),
                    health=by_id[pid].get("health"),
                    victory_points=by_id[pid].get("victoryPoints"),
                    energy=by_id[pid].get("energy"),
                    is_in_tokyo=by_id[pid].get("isInTokyo"),
                    is_eliminated=by_id[pid].get("isEliminated"),
                )
                for pid in players.get("order") or []
                if isinstance(by_id.get(pid), Mapping)
            ]
            dice = state.get("dice") or {}
            essentials = LightweightEssentials(
                phase=_json_copy(state.get("phase")),
                active_player_index=meta.get("activePlayerIndex"),
                turn=meta.get("turn"),
                round=meta.get("round"),
                player_vitals=vitals,
                dice=DiceVitals(
                    faces=_json_copy(dice.get("faces") or []),
                    phase=dice.get("phase"),
                    rerolls_remaining=dice.get("rerollsRemaining"),
                ),
                tokyo=_json_copy(state.get("tokyo")),
            )
            return LightweightSnapshot(timestamp=self._clock(), essential=essentials)
        except Exception:
            logger.warning("Failed to capture lightweight state", exc_info=True)
            return None


__all__ = ["SnapshotService"]
