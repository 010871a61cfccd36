from __future__ import annotations

from .analytics import AnalyticsEngine
from .archive_store import ArchiveStore
from .decisions import DecisionQuery, DecisionTreeIndex
from .game_over import archive_on_game_over
from .query import AdvancedSearch, ArchiveFilter, ArchiveSelection
from .replay import ReplayEngine, ReplaySession, ReplayState
from .snapshot import SnapshotService

__all__ = [
    "SnapshotService",
    "ArchiveStore",
    "ArchiveFilter",
    "AdvancedSearch",
    "ArchiveSelection",
    "DecisionTreeIndex",
    "DecisionQuery",
    "AnalyticsEngine",
    "ReplayEngine",
    "ReplaySession",
    "ReplayState",
    "archive_on_game_over",
]
