"""
Typed event bus for replay consumers.

Event names are enumerated in :class:`ReplayEventName`; each name carries one
frozen payload dataclass. Presentation layers subscribe with :meth:`EventBus.on`
(or the ``"*"`` wildcard) and never need a reference to the engine internals.

Listener errors are logged and swallowed so a faulty consumer cannot stall
playback.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from kotarchive.core.settings import get_logger

logger = get_logger("kotarchive.events")

WILDCARD = "*"


class ReplayEventName(str, Enum):
    """Every event the replay engine can emit."""

    # lifecycle
    STARTED = "started"
    ENTRY = "entry"
    STATE_RESTORED = "stateRestored"
    ENDED = "ended"
    # enrichment
    PHASE_CHANGE = "phaseChange"
    COMBAT = "combat"
    VP_CHANGE = "vpChange"
    TOKYO_CHANGE = "tokyoChange"
    DICE_ROLL = "diceRoll"
    ENERGY_CHANGE = "energyChange"
    HEALTH_CHANGE = "healthChange"
    AI_DECISION = "aiDecision"


ENRICHMENT_EVENTS: frozenset[ReplayEventName] = frozenset(
    {
        ReplayEventName.PHASE_CHANGE,
        ReplayEventName.COMBAT,
        ReplayEventName.VP_CHANGE,
        ReplayEventName.TOKYO_CHANGE,
        ReplayEventName.DICE_ROLL,
        ReplayEventName.ENERGY_CHANGE,
        ReplayEventName.HEALTH_CHANGE,
    }
)


@dataclass(frozen=True, slots=True)
class ReplayStarted:
    session_id: str
    has_state_snapshot: bool
    entry_count: int
    speed: float


@dataclass(frozen=True, slots=True)
class ReplayEntry:
    """One played log entry; ``index`` runs 0..total-1 without gaps."""

    entry: Any
    index: int
    total: int


@dataclass(frozen=True, slots=True)
class StateRestored:
    snapshot: Any


@dataclass(frozen=True, slots=True)
class ReplayEnded:
    session_id: str
    reason: Literal["finished", "stopped"]
    played: int
    total: int


@dataclass(frozen=True, slots=True)
class EntryClassified:
    """Secondary event derived from an entry's content."""

    entry: Any
    index: int


@dataclass(frozen=True, slots=True)
class AIDecisionMatched:
    entry: Any
    index: int
    decision: dict[str, Any] = field(default_factory=dict)


Listener = Callable[[Any, ReplayEventName], None]


class EventBus:
    """Minimal pub/sub keyed by :class:`ReplayEventName`."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def on(self, event: ReplayEventName | str, listener: Listener) -> Callable[[], None]:
        """Subscribe ``listener`` and return a callable that unsubscribes it."""
        key = _key(event)
        self._listeners.setdefault(key, []).append(listener)
        return lambda: self.off(event, listener)

    def off(self, event: ReplayEventName | str, listener: Listener) -> None:
        key = _key(event)
        listeners = self._listeners.get(key)
        if not listeners:
            return
        if listener in listeners:
            listeners.remove(listener)
        if not listeners:
            del self._listeners[key]

    def emit(self, event: ReplayEventName, payload: Any) -> None:
        """Deliver ``payload`` to exact listeners first, then wildcard ones."""
        for listener in list(self._listeners.get(event.value, ())):
            self._safe_invoke(listener, event, payload)
        for listener in list(self._listeners.get(WILDCARD, ())):
            self._safe_invoke(listener, event, payload)

    def listener_count(self, event: ReplayEventName | str | None = None) -> int:
        if event is None:
            return sum(len(v) for v in self._listeners.values())
        return len(self._listeners.get(_key(event), ()))

    @staticmethod
    def _safe_invoke(listener: Listener, event: ReplayEventName, payload: Any) -> None:
        try:
            listener(payload, event)
        except Exception:
            logger.warning("Listener failed for event %s", event.value, exc_info=True)


def _key(event: ReplayEventName | str) -> str:
    return event.value if isinstance(event, ReplayEventName) else str(event)


__all__ = [
    "ReplayEventName",
    "ENRICHMENT_EVENTS",
    "ReplayStarted",
    "ReplayEntry",
    "StateRestored",
    "ReplayEnded",
    "EntryClassified",
    "AIDecisionMatched",
    "EventBus",
    "WILDCARD",
]
