"""Shared fixtures: a controllable clock, in-memory stores and a sample game.

Every test runs with `KOT_ENV=test` and an archive directory under `tmp_path`
so nothing touches `artifacts/` in the working tree.
"""

from __future__ import annotations

import copy
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from kotarchive.core.collaborators import GameStateContainer
from kotarchive.core.settings import Settings, load_settings
from kotarchive.core.storage.memory import MemoryStore
from kotarchive.services.archive_store import ArchiveStore

START = datetime(2026, 5, 1, 12, 0, 0, tzinfo=UTC)

GAME_STATE: dict[str, Any] = {
    "players": {
        "order": ["p1", "p2"],
        "byId": {
            "p1": {
                "name": "Alice",
                "health": 10,
                "victoryPoints": 7,
                "energy": 3,
                "isInTokyo": False,
                "isEliminated": False,
            },
            "p2": {
                "name": "Bob",
                "health": 6,
                "victoryPoints": 4,
                "energy": 1,
                "isInTokyo": True,
                "isEliminated": False,
            },
        },
    },
    "dice": {"faces": ["1", "claw", "heart"], "phase": "rolling", "rerollsRemaining": 2},
    "tokyo": {"city": "p2", "bay": None},
    "cards": {"market": ["Energize", "Giant Brain", "Jets"]},
    "phase": "ROLL",
    "meta": {"activePlayerIndex": 0, "turn": 4, "round": 2},
    "effectQueue": {"items": []},
    "monsters": {"p1": "The King", "p2": "Meka Dragon"},
    "ui": {"modal": "settings", "theme": "dark"},
    "settings": {"volume": 5},
}


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now += timedelta(**delta)
        return self.now


def make_log(count: int, start: datetime = START, step_seconds: int = 30) -> list[dict[str, Any]]:
    """A plain game log of ``count`` info entries, ``step_seconds`` apart."""
    return [
        {
            "timestamp": (start + timedelta(seconds=i * step_seconds)).isoformat(),
            "type": "info",
            "player": "System",
            "message": f"Entry {i}",
        }
        for i in range(count)
    ]


@pytest.fixture(autouse=True)  # type: ignore[misc]
def isolated_settings(tmp_path: Path, monkeypatch: Any) -> Iterator[None]:
    monkeypatch.setenv("KOT_ENV", "test")
    monkeypatch.setenv("KOT_ARCHIVE_DIR", str(tmp_path / "archives"))
    monkeypatch.setenv("KOT_STORAGE_BACKEND", "disk")
    load_settings.cache_clear()
    yield
    load_settings.cache_clear()


@pytest.fixture  # type: ignore[misc]
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture  # type: ignore[misc]
def kv() -> MemoryStore:
    return MemoryStore()


@pytest.fixture  # type: ignore[misc]
def store(kv: MemoryStore, clock: FakeClock) -> ArchiveStore:
    return ArchiveStore(kv, clock=clock)


@pytest.fixture  # type: ignore[misc]
def game_state() -> dict[str, Any]:
    return copy.deepcopy(GAME_STATE)


@pytest.fixture  # type: ignore[misc]
def container(game_state: dict[str, Any]) -> GameStateContainer:
    return GameStateContainer(game_state)


@pytest.fixture  # type: ignore[misc]
def fast_settings() -> Settings:
    """Replay ticks every 100 ms at 1x; no analytics cache surprises."""
    return Settings(replay_interval_ms=100, analytics_cache_seconds=300)
