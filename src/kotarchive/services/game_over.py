"""
Archival flows driven by the live game.

- Manual archive of the current game log or decision tree (``archive_*``).
- Live export envelopes that are not archived (``current_*_payload``).
- The end-of-game hook, which captures one final snapshot and auto-archives
  each enabled content type under the configured retention policy.

Every flow here is best-effort: a failure is logged and the game carries on.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import cast

from kotarchive.core.clock import Clock, epoch_ms, utc_now
from kotarchive.core.collaborators import DecisionLogProvider, GameLogProvider, StateAccessor
from kotarchive.core.contracts.archive import (
    ArchiveRecord,
    DecisionTreePayload,
    GameLogPayload,
    RetentionPolicy,
)
from kotarchive.core.contracts.snapshot import GameStateSnapshot
from kotarchive.core.settings import Settings, get_logger, load_settings
from kotarchive.services.archive_store import ArchiveStore, build_payload
from kotarchive.services.snapshot import SnapshotService

logger = get_logger("kotarchive.game_over")


def current_game_log_payload(
    log_provider: GameLogProvider, clock: Clock = utc_now
) -> GameLogPayload:
    """Envelope of the live game log, for export without archiving."""
    now = clock()
    payload = build_payload(
        "gameLog",
        list(log_provider.get_log_entries()),
        name="Live Game Log",
        archive_id=f"live_game_{epoch_ms(now)}",
        timestamp=now,
    )
    return cast(GameLogPayload, payload)


def current_decision_payload(
    decision_provider: DecisionLogProvider, clock: Clock = utc_now
) -> DecisionTreePayload:
    """Envelope of the live decision tree, for export without archiving."""
    now = clock()
    payload = build_payload(
        "aidt",
        decision_provider.get_decision_tree(),
        name="Live AI Decisions",
        archive_id=f"live_aidt_{epoch_ms(now)}",
        timestamp=now,
    )
    return cast(DecisionTreePayload, payload)


def archive_game_log(
    store: ArchiveStore,
    log_provider: GameLogProvider,
    name: str | None = None,
    *,
    state_snapshot: GameStateSnapshot | None = None,
) -> ArchiveRecord | None:
    """Archive the live game log; returns None (logged) on failure."""
    try:
        return store.archive(
            "gameLog", list(log_provider.get_log_entries()), name, state_snapshot=state_snapshot
        )
    except Exception:
        logger.warning("Failed to archive game log", exc_info=True)
        return None


def archive_decision_tree(
    store: ArchiveStore,
    decision_provider: DecisionLogProvider,
    name: str | None = None,
    *,
    state_snapshot: GameStateSnapshot | None = None,
) -> ArchiveRecord | None:
    """Archive the live decision tree; returns None (logged) on failure."""
    try:
        return store.archive(
            "aidt", decision_provider.get_decision_tree(), name, state_snapshot=state_snapshot
        )
    except Exception:
        logger.warning("Failed to archive decision tree", exc_info=True)
        return None


@dataclass(frozen=True, slots=True)
class GameOverArchives:
    """Keys written by :func:`archive_on_game_over` (None when skipped or failed)."""

    game_log_key: str | None = None
    decision_key: str | None = None
    snapshot_captured: bool = False


def archive_on_game_over(
    store: ArchiveStore,
    snapshots: SnapshotService,
    accessor: StateAccessor,
    log_provider: GameLogProvider,
    decision_provider: DecisionLogProvider,
    settings: Settings | None = None,
) -> GameOverArchives:
    """Capture a final snapshot and auto-archive each enabled content type.

    A failure while archiving one type never prevents the other, and a failed
    capture only means the archives carry no snapshot.
    """
    cfg = settings or load_settings()
    policy = RetentionPolicy.from_settings(cfg)
    final = snapshots.capture(accessor)
    if final is None:
        logger.warning("Game over: archiving without a state snapshot")

    game_key: str | None = None
    if cfg.auto_archive_game_logs:
        try:
            game_key = store.auto_archive(
                "gameLog", list(log_provider.get_log_entries()), policy, state_snapshot=final
            )
        except Exception:
            logger.warning("Game over: auto-archive of the game log failed", exc_info=True)

    decision_key: str | None = None
    if cfg.auto_archive_decision_logs:
        try:
            decision_key = store.auto_archive(
                "aidt", decision_provider.get_decision_tree(), policy, state_snapshot=final
            )
        except Exception:
            logger.warning("Game over: auto-archive of the decision tree failed", exc_info=True)

    return GameOverArchives(
        game_log_key=game_key, decision_key=decision_key, snapshot_captured=final is not None
    )


__all__ = [
    "current_game_log_payload",
    "current_decision_payload",
    "archive_game_log",
    "archive_decision_tree",
    "archive_on_game_over",
    "GameOverArchives",
]
