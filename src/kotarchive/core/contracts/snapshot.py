"""
Game-state snapshot contracts.

A snapshot is a versioned deep copy of the state slices needed to reproduce
gameplay, not the full state tree. Transient UI and settings slices are never
captured so that restoring a snapshot cannot clobber the viewer's preferences.

Slices
------
- ``players``: ``{"order": [id, ...], "byId": {id: record}}``
- ``dice``, ``tokyo``, ``cards``, ``phase``, ``meta``, ``effectQueue``, ``monsters``

Validity
--------
``players``, ``phase`` and ``meta`` are critical; ``dice``, ``tokyo`` and
``cards`` are recommended and only produce warnings when absent.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from kotarchive.core.clock import UtcDatetime

#: Slices copied into a full snapshot, in diff/iteration order.
CORE_SLICES: tuple[str, ...] = (
    "players",
    "dice",
    "tokyo",
    "cards",
    "phase",
    "meta",
    "effectQueue",
    "monsters",
)
CRITICAL_SLICES: tuple[str, ...] = ("players", "phase", "meta")
RECOMMENDED_SLICES: tuple[str, ...] = ("dice", "tokyo", "cards")

SNAPSHOT_VERSION = "1.0"
LIGHTWEIGHT_VERSION = "1.0-light"


class GameStateSnapshot(BaseModel):
    """Immutable, versioned copy of the enumerated state slices."""

    model_config = ConfigDict(frozen=True)

    timestamp: UtcDatetime = Field(description="UTC capture time.")
    version: str = Field(default=SNAPSHOT_VERSION, description="Snapshot schema version.")
    slices: dict[str, Any] = Field(default_factory=dict, description="sliceName -> value")

    def has_slice(self, name: str) -> bool:
        return name in self.slices


class ValidationResult(BaseModel):
    """Outcome of :meth:`SnapshotService.validate`."""

    valid: bool = True
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class StateDiff(BaseModel):
    """Slice-level difference between two snapshots.

    ``changes`` holds the new value of every slice that differs structurally;
    ``removed`` lists slices present in the old snapshot but absent in the new one.
    """

    model_config = ConfigDict(frozen=True)

    timestamp: UtcDatetime
    version: str = SNAPSHOT_VERSION
    changes: dict[str, Any] = Field(default_factory=dict)
    removed: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.changes and not self.removed


class PlayerVitals(BaseModel):
    id: str
    health: int | None = None
    victory_points: int | None = None
    energy: int | None = None
    is_in_tokyo: bool | None = None
    is_eliminated: bool | None = None


class DiceVitals(BaseModel):
    faces: list[Any] = Field(default_factory=list)
    phase: str | None = None
    rerolls_remaining: int | None = None


class LightweightEssentials(BaseModel):
    phase: Any = None
    active_player_index: int | None = None
    turn: int | None = None
    round: int | None = None
    player_vitals: list[PlayerVitals] = Field(default_factory=list)
    dice: DiceVitals = Field(default_factory=DiceVitals)
    tokyo: Any = None


class LightweightSnapshot(BaseModel):
    """Cheap checkpoint of per-player vitals, dice faces and phase/territory pointers."""

    model_config = ConfigDict(frozen=True)

    timestamp: UtcDatetime
    version: str = LIGHTWEIGHT_VERSION
    essential: LightweightEssentials


__all__ = [
    "CORE_SLICES",
    "CRITICAL_SLICES",
    "RECOMMENDED_SLICES",
    "SNAPSHOT_VERSION",
    "LIGHTWEIGHT_VERSION",
    "GameStateSnapshot",
    "ValidationResult",
    "StateDiff",
    "PlayerVitals",
    "DiceVitals",
    "LightweightEssentials",
    "LightweightSnapshot",
]
