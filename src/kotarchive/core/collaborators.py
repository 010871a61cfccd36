"""
Interfaces of the live game that the archive subsystem consumes.

The rules engine, the automated opponent and the presentation layer live
outside this package. The archive services only need three narrow views of
them:

- :class:`StateAccessor`: ``get_state()`` / ``dispatch(action)``, where the
  only action the services send are ``STATE_IMPORTED``, ``GAME_PAUSED`` and
  ``GAME_RESUMED``.
- :class:`GameLogProvider`: the current ordered game log.
- :class:`DecisionLogProvider`: the in-memory decision tree of the opponent.

:class:`GameStateContainer` implements all three on top of plain dicts. It is
what the CLI and the tests hand to the services, and a convenient adapter
for embedding code that keeps its state elsewhere.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel

# Action types understood by the live state container.
STATE_IMPORTED = "STATE_IMPORTED"
GAME_PAUSED = "GAME_PAUSED"
GAME_RESUMED = "GAME_RESUMED"
LOG_APPENDED = "LOG_APPENDED"


@runtime_checkable
class StateAccessor(Protocol):
    def get_state(self) -> Mapping[str, Any]: ...

    def dispatch(self, action: Mapping[str, Any]) -> None: ...


@runtime_checkable
class GameLogProvider(Protocol):
    def get_log_entries(self) -> Sequence[Any]: ...


@runtime_checkable
class DecisionLogProvider(Protocol):
    def get_decision_tree(self) -> Any: ...


def state_imported(snapshot: Any) -> dict[str, Any]:
    """Build the single action that replaces the live state with a snapshot."""
    return {"type": STATE_IMPORTED, "payload": {"snapshot": snapshot}}


def _snapshot_slices(snapshot: Any) -> dict[str, Any]:
    if isinstance(snapshot, BaseModel):
        snapshot = snapshot.model_dump(mode="json")
    if not isinstance(snapshot, Mapping) or not isinstance(snapshot.get("slices"), Mapping):
        raise ValueError("STATE_IMPORTED payload must carry a snapshot with 'slices'")
    return dict(snapshot["slices"])


class GameStateContainer:
    """Dict-backed live game: state tree, ordered log and decision tree.

    ``engine.paused`` is the cooperative flag the live engine reads before
    taking autonomous actions; replay toggles it through ``GAME_PAUSED`` /
    ``GAME_RESUMED``. It lives outside the captured slices, so restoring a
    snapshot never clears it.
    """

    def __init__(
        self,
        state: Mapping[str, Any] | None = None,
        log: Sequence[Any] | None = None,
        decision_tree: Any = None,
    ) -> None:
        self._state: dict[str, Any] = copy.deepcopy(dict(state or {}))
        self._state.setdefault("engine", {"paused": False})
        self._log: list[Any] = list(log or [])
        self._decision_tree: Any = decision_tree if decision_tree is not None else {"rounds": []}
        self.dispatched: list[str] = []

    # StateAccessor
    def get_state(self) -> dict[str, Any]:
        return self._state

    def dispatch(self, action: Mapping[str, Any]) -> None:
        kind = action.get("type")
        payload = action.get("payload") or {}
        if kind == STATE_IMPORTED:
            for name, value in _snapshot_slices(payload.get("snapshot")).items():
                self._state[name] = copy.deepcopy(value)
        elif kind == GAME_PAUSED:
            self._state["engine"]["paused"] = True
        elif kind == GAME_RESUMED:
            self._state["engine"]["paused"] = False
        elif kind == LOG_APPENDED:
            self._log.append(payload.get("entry"))
        else:
            raise ValueError(f"Unsupported action type: {kind!r}")
        self.dispatched.append(str(kind))

    @property
    def paused(self) -> bool:
        return bool(self._state["engine"].get("paused"))

    # GameLogProvider
    def get_log_entries(self) -> list[Any]:
        return list(self._log)

    # DecisionLogProvider
    def get_decision_tree(self) -> Any:
        return self._decision_tree


__all__ = [
    "STATE_IMPORTED",
    "GAME_PAUSED",
    "GAME_RESUMED",
    "LOG_APPENDED",
    "StateAccessor",
    "GameLogProvider",
    "DecisionLogProvider",
    "GameStateContainer",
    "state_imported",
]
