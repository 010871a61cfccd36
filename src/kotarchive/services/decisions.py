"""Index over an archived decision tree: summary, search and log correlation."""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from kotarchive.core.contracts.archive import (
    DecisionRoll,
    DecisionTree,
    DecisionTreePayload,
    LogEntry,
    WireModel,
)

_PLAYER_RE = re.compile(r"Player (\w+)")
_FACES_RE = re.compile(r"\broll(?:s|ed)?\s+([0-9a-z,]+)", re.IGNORECASE)


def normalize_faces(faces: Any) -> str:
    """Lower-case, whitespace-free, sorted comma list (``"Claw, 1"`` -> ``"1,claw"``)."""
    if faces is None:
        return ""
    text = ",".join(str(f) for f in faces) if isinstance(faces, list | tuple) else str(faces)
    parts = re.sub(r"\s+", "", text.lower()).split(",")
    return ",".join(sorted(p for p in parts if p))


class DecisionQuery(BaseModel):
    """Search criteria; unset fields match everything."""

    model_config = ConfigDict(frozen=True)

    player_name: str | None = None
    action: str | None = None
    min_score: float | None = None
    max_score: float | None = None
    faces: str | None = None
    rationale: str | None = None


class DecisionSummary(WireModel):
    total_rounds: int = 0
    total_turns: int = 0
    total_rolls: int = 0
    decision_types: dict[str, int] = Field(default_factory=dict)
    average_score: float = 0.0
    top_decisions: list[dict[str, Any]] = Field(default_factory=list)


class DecisionTreeIndex:
    """Flattened, read-only view of one decision tree."""

    def __init__(self, tree: DecisionTree | Mapping[str, Any]) -> None:
        self.tree = tree if isinstance(tree, DecisionTree) else DecisionTree.model_validate(tree)
        self._rows: list[dict[str, Any]] = [
            {**roll.to_wire(), "roundNumber": rnd.round, "turnNumber": turn.turn}
            for rnd, turn, roll in self.tree.iter_rolls()
        ]
        self._rolls: list[DecisionRoll] = [roll for _, _, roll in self.tree.iter_rolls()]

    @classmethod
    def from_payload(cls, payload: DecisionTreePayload) -> DecisionTreeIndex:
        return cls(payload.data)

    def __len__(self) -> int:
        return len(self._rows)

    def summary(self, top: int = 5) -> DecisionSummary:
        """Counts, action histogram, mean score and the ``top`` highest-scored rolls."""
        scored = [
            (roll.score, row)
            for roll, row in zip(self._rolls, self._rows, strict=True)
            if roll.score is not None
        ]
        best = sorted(scored, key=lambda pair: pair[0], reverse=True)[:top]
        return DecisionSummary(
            total_rounds=len(self.tree.rounds),
            total_turns=sum(len(rnd.turns) for rnd in self.tree.rounds),
            total_rolls=len(self._rows),
            decision_types=dict(Counter(roll.action or "unknown" for roll in self._rolls)),
            average_score=sum(s for s, _ in scored) / len(scored) if scored else 0.0,
            top_decisions=[dict(row) for _, row in best],
        )

    def search(self, query: DecisionQuery) -> list[dict[str, Any]]:
        wanted_faces = normalize_faces(query.faces) if query.faces else ""
        needle = (query.rationale or "").casefold()
        hits: list[dict[str, Any]] = []
        for roll, row in zip(self._rolls, self._rows, strict=True):
            if query.player_name and roll.player_name != query.player_name:
                continue
            if query.action and roll.action != query.action:
                continue
            if query.min_score is not None and (roll.score is None or roll.score < query.min_score):
                continue
            if query.max_score is not None and (roll.score is None or roll.score > query.max_score):
                continue
            if wanted_faces and wanted_faces not in normalize_faces(roll.faces):
                continue
            if needle and needle not in (roll.rationale or "").casefold():
                continue
            hits.append(dict(row))
        return hits

    def match_log_entry(self, entry: LogEntry) -> dict[str, Any] | None:
        """Find the decision behind a dice log line such as ``Player Alice rolls 1,claw``.

        Correlation needs both a player name and a face list in the message;
        the first roll of that player with the same face multiset wins.
        """
        player = _PLAYER_RE.search(entry.message)
        faces = _FACES_RE.search(entry.message)
        if player is None or faces is None:
            return None
        target = normalize_faces(faces.group(1))
        for roll, row in zip(self._rolls, self._rows, strict=True):
            if roll.player_name == player.group(1) and normalize_faces(roll.faces) == target:
                return dict(row)
        return None


__all__ = ["DecisionTreeIndex", "DecisionQuery", "DecisionSummary", "normalize_faces"]
