"""
Timed, pausable, speed-controlled playback of an archived game log.

Lifecycle
---------
``Idle -> Running <-> Paused -> Finished | Stopped``

- :meth:`ReplayEngine.start_replay` stops any active session, hydrates the
  live state from the archive's snapshot when it validates, suspends the live
  engine (``GAME_PAUSED``) and schedules the first tick with zero delay.
- Each tick plays exactly one entry: the cursor advances, then an ``entry``
  event is emitted, then best-effort enrichment events. The next tick is
  armed ``replay_interval_ms / speed`` later.
- ``pause`` cancels the pending tick; ``resume`` re-arms it from the next
  unplayed entry. Nothing is skipped or played twice across the cycle.
- ``stop`` and natural completion both cancel the timer, resume the live
  engine (``GAME_RESUMED``) and emit one ``ended`` event. Calling either
  again is a no-op.

All callbacks run on the scheduler's thread; there is no locking.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any

from kotarchive.core.collaborators import GAME_PAUSED, GAME_RESUMED, StateAccessor
from kotarchive.core.contracts.archive import (
    DecisionTreePayload,
    GameLogPayload,
    LogEntry,
    parse_payload,
)
from kotarchive.core.errors import ReplayError
from kotarchive.core.events import (
    AIDecisionMatched,
    EntryClassified,
    EventBus,
    ReplayEnded,
    ReplayEntry,
    ReplayEventName,
    ReplayStarted,
    StateRestored,
)
from kotarchive.core.scheduler import ManualScheduler, Scheduler, TimerHandle
from kotarchive.core.settings import Settings, get_logger, load_settings
from kotarchive.services.decisions import DecisionTreeIndex
from kotarchive.services.snapshot import SnapshotService

logger = get_logger("kotarchive.replay")


class ReplayState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    FINISHED = "finished"
    STOPPED = "stopped"


_ACTIVE_STATES = frozenset({ReplayState.RUNNING, ReplayState.PAUSED})


# --------------------------------------------------------------------------- #
# Entry classification
# --------------------------------------------------------------------------- #

_Rule = Callable[[LogEntry], bool]

_CLASSIFIERS: tuple[tuple[ReplayEventName, _Rule], ...] = (
    (ReplayEventName.PHASE_CHANGE, lambda e: e.type == "phase" and "Phase:" in e.message),
    (ReplayEventName.COMBAT, lambda e: e.type == "combat" or e.kind == "damage"),
    (ReplayEventName.VP_CHANGE, lambda e: e.kind == "vp" or "VP" in e.message),
    (ReplayEventName.TOKYO_CHANGE, lambda e: e.kind == "tokyo" or "Tokyo" in e.message),
    (ReplayEventName.DICE_ROLL, lambda e: e.type == "dice" or "rolled" in e.message),
    (ReplayEventName.ENERGY_CHANGE, lambda e: e.kind == "energy" or "energy" in e.message),
    (ReplayEventName.HEALTH_CHANGE, lambda e: "health" in e.message or "damage" in e.message),
)


def classify_entry(entry: LogEntry) -> list[ReplayEventName]:
    """Enrichment events implied by an entry's type, kind and message text."""
    return [name for name, rule in _CLASSIFIERS if rule(entry)]


def _is_dice_entry(entry: LogEntry) -> bool:
    return entry.type == "dice" or "rolled" in entry.message


# --------------------------------------------------------------------------- #
# Session
# --------------------------------------------------------------------------- #


class ReplaySession:
    """Handle on one playback. Methods on a finished or replaced session do nothing."""

    def __init__(
        self,
        engine: ReplayEngine,
        entries: list[LogEntry],
        speed: float,
        has_state_snapshot: bool,
        decisions: DecisionTreeIndex | None,
    ) -> None:
        self.id: str = uuid.uuid4().hex[:12]
        self.entries: tuple[LogEntry, ...] = tuple(entries)
        self.speed = speed
        self.has_state_snapshot = has_state_snapshot
        self.snapshot_restored = False
        self.state = ReplayState.IDLE
        self.decisions = decisions
        self._cursor = 0
        self._engine = engine
        self._handle: TimerHandle | None = None

    @property
    def current_index(self) -> int:
        """Index of the next entry to play."""
        return self._cursor

    @property
    def total(self) -> int:
        return len(self.entries)

    @property
    def paused(self) -> bool:
        return self.state is ReplayState.PAUSED

    @property
    def is_active(self) -> bool:
        return self.state in _ACTIVE_STATES

    def pause(self) -> bool:
        return self._engine._pause(self)

    def resume(self) -> bool:
        return self._engine._resume(self)

    def stop(self) -> bool:
        return self._engine._end(self, ReplayState.STOPPED)

    def set_speed(self, speed: float) -> None:
        self._engine._set_speed(self, speed)

    def status(self) -> dict[str, Any]:
        return {
            "sessionId": self.id,
            "state": self.state.value,
            "currentIndex": self._cursor,
            "total": self.total,
            "speed": self.speed,
            "paused": self.paused,
            "hasStateSnapshot": self.has_state_snapshot,
            "snapshotRestored": self.snapshot_restored,
        }


# --------------------------------------------------------------------------- #
# Engine
# --------------------------------------------------------------------------- #


class ReplayEngine:
    """Owns at most one :class:`ReplaySession` at a time."""

    def __init__(
        self,
        accessor: StateAccessor,
        snapshots: SnapshotService | None = None,
        bus: EventBus | None = None,
        scheduler: Scheduler | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._accessor = accessor
        self._snapshots = snapshots or SnapshotService()
        self.bus = bus or EventBus()
        self._scheduler: Scheduler = scheduler or ManualScheduler()
        self._settings = settings or load_settings()
        self._session: ReplaySession | None = None

    @property
    def session(self) -> ReplaySession | None:
        return self._session

    def is_replaying(self) -> bool:
        return self._session is not None and self._session.is_active

    # ------------------------------------------------------------------ #
    # Public controls (act on the active session)
    # ------------------------------------------------------------------ #
    def start_replay(
        self,
        payload: GameLogPayload | Mapping[str, Any],
        speed: float = 1.0,
        decisions: DecisionTreeIndex | DecisionTreePayload | None = None,
    ) -> ReplaySession:
        """Start playing ``payload``; any active session is stopped first.

        Raises
        ------
        ReplayError
            If the payload is not a game log or ``speed`` is not positive.
        """
        log = self._as_game_log(payload)
        if speed <= 0:
            raise ReplayError(f"Replay speed must be positive, got {speed}")
        if isinstance(decisions, DecisionTreePayload):
            decisions = DecisionTreeIndex.from_payload(decisions)

        self.stop()

        session = ReplaySession(
            self,
            list(log.data),
            speed=speed,
            has_state_snapshot=log.state_snapshot is not None,
            decisions=decisions,
        )
        self._session = session
        session.state = ReplayState.RUNNING

        if log.state_snapshot is not None:
            self._hydrate(session, log)
        else:
            logger.info("No state snapshot in %s; log-only replay", log.meta.id)

        self._dispatch(GAME_PAUSED)
        self.bus.emit(
            ReplayEventName.STARTED,
            ReplayStarted(
                session_id=session.id,
                has_state_snapshot=session.has_state_snapshot,
                entry_count=session.total,
                speed=session.speed,
            ),
        )
        self._arm(session, 0)
        return session

    def pause(self) -> bool:
        return self._session is not None and self._pause(self._session)

    def resume(self) -> bool:
        return self._session is not None and self._resume(self._session)

    def stop(self) -> bool:
        """Stop the active session; False when there was nothing to stop."""
        return self._session is not None and self._end(self._session, ReplayState.STOPPED)

    def set_speed(self, speed: float) -> None:
        if self._session is not None:
            self._set_speed(self._session, speed)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    @staticmethod
    def _as_game_log(payload: GameLogPayload | Mapping[str, Any]) -> GameLogPayload:
        if isinstance(payload, GameLogPayload):
            return payload
        if isinstance(payload, DecisionTreePayload):
            raise ReplayError("Decision-tree archives cannot be replayed as a game log")
        try:
            parsed = parse_payload(payload)
        except ValueError as exc:
            raise ReplayError(f"Invalid archive for replay: {exc}") from exc
        if not isinstance(parsed, GameLogPayload):
            raise ReplayError("Decision-tree archives cannot be replayed as a game log")
        return parsed

    def _hydrate(self, session: ReplaySession, log: GameLogPayload) -> None:
        validation = self._snapshots.validate(log.state_snapshot)
        if not validation.valid:
            logger.warning(
                "Invalid state snapshot (%s); log-only replay", "; ".join(validation.errors)
            )
            return
        if validation.warnings:
            logger.info("State snapshot warnings: %s", "; ".join(validation.warnings))
        if not self._snapshots.restore(self._accessor, log.state_snapshot):
            logger.warning("State restore failed; log-only replay")
            return
        session.snapshot_restored = True
        self.bus.emit(ReplayEventName.STATE_RESTORED, StateRestored(snapshot=log.state_snapshot))

    def _dispatch(self, action_type: str) -> None:
        try:
            self._accessor.dispatch({"type": action_type})
        except Exception:
            logger.warning("Live engine rejected %s", action_type, exc_info=True)

    def _interval_ms(self, session: ReplaySession) -> float:
        return self._settings.replay_interval_ms / session.speed

    def _arm(self, session: ReplaySession, delay_ms: float) -> None:
        session._handle = self._scheduler.call_later(delay_ms, lambda: self._tick(session))

    def _tick(self, session: ReplaySession) -> None:
        session._handle = None
        if session is not self._session or session.state is not ReplayState.RUNNING:
            return
        if session._cursor >= session.total:
            self._end(session, ReplayState.FINISHED)
            return

        index = session._cursor
        entry = session.entries[index]
        session._cursor += 1
        self.bus.emit(
            ReplayEventName.ENTRY, ReplayEntry(entry=entry, index=index, total=session.total)
        )
        self._enrich(session, entry, index)

        if session is not self._session or session.state is not ReplayState.RUNNING:
            return
        if session._cursor >= session.total:
            self._end(session, ReplayState.FINISHED)
        else:
            self._arm(session, self._interval_ms(session))

    def _enrich(self, session: ReplaySession, entry: LogEntry, index: int) -> None:
        try:
            for name in classify_entry(entry):
                self.bus.emit(name, EntryClassified(entry=entry, index=index))
            if session.decisions is not None and _is_dice_entry(entry):
                decision = session.decisions.match_log_entry(entry)
                if decision is not None:
                    self.bus.emit(
                        ReplayEventName.AI_DECISION,
                        AIDecisionMatched(entry=entry, index=index, decision=decision),
                    )
        except Exception:
            logger.warning("Failed to classify replay entry %d", index, exc_info=True)

    def _pause(self, session: ReplaySession) -> bool:
        if session.state is not ReplayState.RUNNING:
            return False
        if session._handle is not None:
            session._handle.cancel()
            session._handle = None
        session.state = ReplayState.PAUSED
        logger.debug("Replay %s paused at %d/%d", session.id, session._cursor, session.total)
        return True

    def _resume(self, session: ReplaySession) -> bool:
        if session.state is not ReplayState.PAUSED or session is not self._session:
            return False
        session.state = ReplayState.RUNNING
        self._arm(session, 0)
        logger.debug("Replay %s resumed at %d/%d", session.id, session._cursor, session.total)
        return True

    def _set_speed(self, session: ReplaySession, speed: float) -> None:
        if speed <= 0:
            raise ReplayError(f"Replay speed must be positive, got {speed}")
        session.speed = speed

    def _end(self, session: ReplaySession, outcome: ReplayState) -> bool:
        if session.state not in _ACTIVE_STATES:
            return False
        if session._handle is not None:
            session._handle.cancel()
            session._handle = None
        session.state = outcome
        if session is self._session:
            self._session = None
        self._dispatch(GAME_RESUMED)
        reason = "finished" if outcome is ReplayState.FINISHED else "stopped"
        logger.info(
            "Replay %s %s after %d/%d entries", session.id, reason, session._cursor, session.total
        )
        self.bus.emit(
            ReplayEventName.ENDED,
            ReplayEnded(
                session_id=session.id, reason=reason, played=session._cursor, total=session.total
            ),
        )
        return True


__all__ = ["ReplayEngine", "ReplaySession", "ReplayState", "classify_entry"]
