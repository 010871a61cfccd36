"""
Archive contracts: log entries, decision trees, payload envelopes and metadata.

Wire format
-----------
Everything persisted or exported is JSON with camelCase keys, matching the
envelope the live client writes::

    {
      "meta": {"type": "gameLog", "name": "...", "timestamp": "...",
               "id": "...", "sizeMetric": 42},
      "data": [ ...log entries... ]  |  {"rounds": [...]},
      "stateSnapshot": {...}          # optional
    }

Older archives used ``ts``/``size`` in place of ``timestamp``/``sizeMetric`` and
``"game"`` as a type label; the models accept those spellings on read and always
write the current ones.

Discrimination
--------------
The payload union is resolved once, by :func:`parse_payload`, from
``meta.type``. Consumers then branch on the concrete class rather than probing
whether ``data`` looks like a list or a tree.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, ClassVar, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from kotarchive.core.clock import UtcDatetime, lenient_utc
from kotarchive.core.contracts.snapshot import GameStateSnapshot

ContentType = Literal["gameLog", "aidt"]

_LEGACY_TYPE_LABELS: dict[str, str] = {"game": "gameLog", "gamelog": "gameLog", "AIDT": "aidt"}


class ArchiveType(str, Enum):
    """Archive families. ``AUTO`` archives hold either content type."""

    GAME_LOG = "gameLog"
    AIDT = "aidt"
    AUTO = "auto"

    @property
    def category(self) -> str:
        return _CATEGORIES[self]


_CATEGORIES: dict[ArchiveType, str] = {
    ArchiveType.GAME_LOG: "Game Log",
    ArchiveType.AIDT: "AI Decisions",
    ArchiveType.AUTO: "Auto Archive",
}


def normalize_content_type(value: Any) -> Any:
    """Map legacy type labels (``"game"``) onto the current ones."""
    if isinstance(value, str):
        return _LEGACY_TYPE_LABELS.get(value, value)
    return value


def _lenient_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _optional_text(value: Any) -> str | None:
    if value is None or isinstance(value, dict | list):
        return None
    return str(value)


def _object_items(value: Any) -> list[Any]:
    """Keep the object-shaped items of a list; anything that is not a list is empty."""
    if not isinstance(value, list | tuple):
        return []
    return [item for item in value if isinstance(item, dict | BaseModel)]


class WireModel(BaseModel):
    """Base for camelCase JSON models."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Dump to the persisted JSON shape (camelCase, no nulls)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# --------------------------------------------------------------------------- #
# Log entries
# --------------------------------------------------------------------------- #


class LogEntry(WireModel):
    """One game-log line. Unknown fields (``meta``, ``turn``, ...) are preserved."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow", frozen=True
    )

    timestamp: UtcDatetime | None = Field(
        default=None, validation_alias=AliasChoices("timestamp", "ts")
    )
    type: str = "info"
    kind: str | None = None
    player: str | None = None
    message: str = ""
    round: int | None = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def _lenient_timestamp(cls, v: Any) -> Any:
        return lenient_utc(v)

    @field_validator("kind", "player", mode="before")
    @classmethod
    def _coerce_text(cls, v: Any) -> str | None:
        return _optional_text(v)

    @field_validator("message", mode="before")
    @classmethod
    def _coerce_message(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, v: Any) -> str:
        return "info" if v is None else str(v)

    @field_validator("round", mode="before")
    @classmethod
    def _coerce_round(cls, v: Any) -> int | None:
        return _lenient_int(v)


# --------------------------------------------------------------------------- #
# Decision trees (automated opponent rationale, structured by round/turn)
# --------------------------------------------------------------------------- #


class DecisionRoll(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    player_name: str | None = None
    action: str | None = None
    score: float | None = None
    rationale: str | None = None
    faces: list[str] | str | None = None

    @field_validator("score", mode="before")
    @classmethod
    def _coerce_score(cls, v: Any) -> float | None:
        if isinstance(v, bool):
            return None
        try:
            return None if v is None else float(v)
        except (TypeError, ValueError):
            return None

    @field_validator("faces", mode="before")
    @classmethod
    def _coerce_faces(cls, v: Any) -> Any:
        if isinstance(v, list | tuple):
            return [str(f) for f in v]
        return v if isinstance(v, str) else None

    @field_validator("player_name", "action", "rationale", mode="before")
    @classmethod
    def _coerce_text(cls, v: Any) -> str | None:
        return _optional_text(v)


class DecisionTurn(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    turn: int | None = None
    rolls: list[DecisionRoll] = Field(default_factory=list)

    @field_validator("turn", mode="before")
    @classmethod
    def _coerce_turn(cls, v: Any) -> int | None:
        return _lenient_int(v)

    @field_validator("rolls", mode="before")
    @classmethod
    def _coerce_rolls(cls, v: Any) -> list[Any]:
        return _object_items(v)


class DecisionRound(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    round: int | None = None
    turns: list[DecisionTurn] = Field(default_factory=list)

    @field_validator("round", mode="before")
    @classmethod
    def _coerce_round(cls, v: Any) -> int | None:
        return _lenient_int(v)

    @field_validator("turns", mode="before")
    @classmethod
    def _coerce_turns(cls, v: Any) -> list[Any]:
        return _object_items(v)


class DecisionTree(WireModel):
    """Rounds of turns of rolls. Missing or malformed levels read as empty."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    rounds: list[DecisionRound] = Field(default_factory=list)

    @field_validator("rounds", mode="before")
    @classmethod
    def _coerce_rounds(cls, v: Any) -> list[Any]:
        return _object_items(v)

    def iter_rolls(self) -> list[tuple[DecisionRound, DecisionTurn, DecisionRoll]]:
        """Flatten the tree in round/turn/roll order."""
        return [
            (rnd, turn, roll) for rnd in self.rounds for turn in rnd.turns for roll in turn.rolls
        ]


# --------------------------------------------------------------------------- #
# Envelopes
# --------------------------------------------------------------------------- #


class ArchiveMeta(WireModel):
    type: ContentType
    name: str
    timestamp: UtcDatetime = Field(validation_alias=AliasChoices("timestamp", "ts"))
    id: str
    size_metric: int = Field(
        default=0, validation_alias=AliasChoices("sizeMetric", "size_metric", "size")
    )

    @field_validator("type", mode="before")
    @classmethod
    def _legacy_type(cls, v: Any) -> Any:
        return normalize_content_type(v)


class GameLogPayload(WireModel):
    """Archived ordered game log."""

    content_type: ClassVar[ContentType] = "gameLog"

    meta: ArchiveMeta
    data: list[LogEntry] = Field(default_factory=list)
    state_snapshot: GameStateSnapshot | None = None

    @field_validator("data", mode="before")
    @classmethod
    def _drop_non_object_entries(cls, v: Any) -> Any:
        return _object_items(v) if isinstance(v, list | tuple) else v

    @model_validator(mode="after")
    def _type_matches(self) -> GameLogPayload:
        if self.meta.type != "gameLog":
            raise ValueError(f"expected meta.type 'gameLog', got {self.meta.type!r}")
        return self


class DecisionTreePayload(WireModel):
    """Archived decision tree of the automated opponent."""

    content_type: ClassVar[ContentType] = "aidt"

    meta: ArchiveMeta
    data: DecisionTree = Field(default_factory=DecisionTree)
    state_snapshot: GameStateSnapshot | None = None

    @model_validator(mode="after")
    def _type_matches(self) -> DecisionTreePayload:
        if self.meta.type != "aidt":
            raise ValueError(f"expected meta.type 'aidt', got {self.meta.type!r}")
        return self


ArchivePayload = GameLogPayload | DecisionTreePayload

_PAYLOAD_BY_TYPE: dict[str, type[GameLogPayload] | type[DecisionTreePayload]] = {
    "gameLog": GameLogPayload,
    "aidt": DecisionTreePayload,
}


def parse_payload(raw: Any) -> ArchivePayload:
    """Resolve the payload union from ``meta.type`` and validate it.

    Raises
    ------
    ValueError
        If ``raw`` lacks a ``meta`` or ``data`` block, names an unknown type,
        or fails model validation (pydantic's ``ValidationError`` is a
        ``ValueError``).
    """
    if not isinstance(raw, dict):
        raise ValueError("payload must be a JSON object")
    meta = raw.get("meta")
    if not isinstance(meta, dict) or "data" not in raw or raw.get("data") is None:
        raise ValueError("payload must contain both 'meta' and 'data' blocks")
    content_type = normalize_content_type(meta.get("type"))
    model = _PAYLOAD_BY_TYPE.get(str(content_type))
    if model is None:
        raise ValueError(f"unknown archive type {meta.get('type')!r}")
    return model.model_validate(raw)


def size_metric_for(data: list[LogEntry] | DecisionTree | list[Any] | dict[str, Any]) -> int:
    """Entry count for logs, round count for decision trees."""
    if isinstance(data, DecisionTree):
        return len(data.rounds)
    if isinstance(data, list):
        return len(data)
    if isinstance(data, dict):
        rounds = data.get("rounds")
        return len(rounds) if isinstance(rounds, list) else 0
    return 0


# --------------------------------------------------------------------------- #
# Metadata, retention, bulk results
# --------------------------------------------------------------------------- #


class ArchiveRecord(WireModel):
    """Lightweight metadata, listed without loading the payload.

    ``key`` is the storage key of the payload. For auto archives ``id`` equals
    ``key`` and ``content_type`` is taken from the key prefix.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    type: ArchiveType
    name: str
    timestamp: UtcDatetime
    size_metric: int = 0
    key: str
    content_type: ContentType

    @property
    def category(self) -> str:
        return self.type.category

    def list_entry(self) -> dict[str, Any]:
        """The row written into a per-type metadata list."""
        return {
            "id": self.id,
            "name": self.name,
            "timestamp": self.model_dump(mode="json")["timestamp"],
            "sizeMetric": self.size_metric,
        }


class RetentionPolicy(WireModel):
    """Age and count bounds applied per content type to auto archives."""

    max_age_days: float = Field(default=3, gt=0)
    max_count_per_type: int = Field(default=10, ge=1)

    @classmethod
    def from_settings(cls, settings: Any) -> RetentionPolicy:
        return cls(
            max_age_days=settings.archive_retention_days,
            max_count_per_type=settings.archive_max_per_type,
        )


class PruneReport(WireModel):
    removed_expired: list[str] = Field(default_factory=list)
    removed_excess: list[str] = Field(default_factory=list)
    remaining: int = 0

    @property
    def removed(self) -> list[str]:
        return [*self.removed_expired, *self.removed_excess]


class BulkItemError(WireModel):
    id: str
    error: str


class BulkResult(WireModel):
    """Per-item outcome of a bulk operation; one failure never hides the rest."""

    success_count: int = 0
    errors: list[BulkItemError] = Field(default_factory=list)

    @property
    def failure_count(self) -> int:
        return len(self.errors)


class BulkExportItem(WireModel):
    metadata: ArchiveRecord
    content: dict[str, Any]


class BulkExport(WireModel):
    export_date: UtcDatetime
    export_type: Literal["bulk"] = "bulk"
    archives: list[BulkExportItem] = Field(default_factory=list)


class StorageStats(WireModel):
    total_size: int = 0
    archive_count: int = 0
    average_size: float = 0.0
    estimated_mb: float = 0.0


__all__ = [
    "ContentType",
    "ArchiveType",
    "WireModel",
    "LogEntry",
    "DecisionRoll",
    "DecisionTurn",
    "DecisionRound",
    "DecisionTree",
    "ArchiveMeta",
    "GameLogPayload",
    "DecisionTreePayload",
    "ArchivePayload",
    "parse_payload",
    "size_metric_for",
    "normalize_content_type",
    "ArchiveRecord",
    "RetentionPolicy",
    "PruneReport",
    "BulkItemError",
    "BulkResult",
    "BulkExportItem",
    "BulkExport",
    "StorageStats",
]
